"""Environment configuration for the pricing service."""
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _split(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass(frozen=True)
class Settings:
    # Path to Firebase service account JSON
    firebase_cred_path: str = "./serviceAccountKey.json"
    firebase_db_url: Optional[str] = None
    admin_api_key: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["http://127.0.0.1:5500"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        origins = os.getenv("CORS_ORIGINS")
        return cls(
            firebase_cred_path=os.getenv("FIREBASE_CRED_JSON", defaults.firebase_cred_path),
            firebase_db_url=os.getenv("FIREBASE_DB_URL", defaults.firebase_db_url),
            admin_api_key=os.getenv("ADMIN_API_KEY"),
            cors_origins=_split(origins) if origins else defaults.cors_origins,
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )


settings = Settings.from_env()
