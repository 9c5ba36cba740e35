"""
Logging configuration for the discount engine.

One package logger, ``discounts``, configured from LOG_LEVEL.
"""
import logging
import sys

from settings import settings

LOG_LEVEL = settings.log_level
logger = logging.getLogger("discounts")
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(LOG_LEVEL)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

# Keep engine logs out of the root logger (uvicorn installs its own handlers)
logger.propagate = False


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Optional child name (appended to 'discounts')

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f"discounts.{name}")
    return logger
