import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

import firebase_admin
from firebase_admin import credentials, db
from pydantic import ValidationError

from log_util import get_logger
from models import DiscountRule, normalize_code
from settings import settings

logger = get_logger("firebase")


@lru_cache(maxsize=1)
def get_db_ref():
    """Firebase root DB reference; the app is initialised on first use."""
    if not firebase_admin._apps:
        try:
            cred = credentials.Certificate(settings.firebase_cred_path)
            firebase_admin.initialize_app(cred, {
                'databaseURL': settings.firebase_db_url
            })
        except Exception as e:
            raise RuntimeError(f"Firebase initialization failed: {e}") from e
    return db.reference("/")


def _entries(node: Any) -> Dict[str, Any]:
    # RTDB returns arrays for densely numbered keys
    if node is None:
        return {}
    if isinstance(node, list):
        return {str(i): v for i, v in enumerate(node) if v is not None}
    return dict(node)


def _increment(current: Optional[int]) -> int:
    return (current or 0) + 1


class FirebaseRuleStore:
    """
    Discount rules and usage counters in the Realtime Database.

    Layout:
      /discountRules/<ruleId>                 rule document (camelCase)
      /couponUsage/<customerId>/<ruleId>      prior uses by that customer
      /redemptions/<orderId>                  one record per committed order
    """

    def __init__(self, ref=None):
        self._ref = ref

    @property
    def ref(self):
        if self._ref is None:
            self._ref = get_db_ref()
        return self._ref

    def load_rules(self) -> List[DiscountRule]:
        """Every valid rule; website and group scope are judged per cart by the engine."""
        rules = []
        for key, raw in _entries(self.ref.child("discountRules").get()).items():
            try:
                rule = DiscountRule.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Skipping invalid discount rule '{key}': {e.error_count()} error(s)")
                continue
            rules.append(rule)
        return rules

    def customer_usage(self, customer_id: Optional[int]) -> Dict[int, int]:
        if customer_id is None:
            return {}
        node = self.ref.child("couponUsage").child(str(customer_id)).get()
        return {int(rule_id): int(count) for rule_id, count in _entries(node).items()}

    def redeem(
        self,
        order_id: str,
        rule_ids: Iterable[int],
        customer_id: Optional[int] = None,
        coupon_code: Optional[str] = None,
    ) -> bool:
        """
        Record that an order consumed the given rules.

        The per-order marker is claimed in a transaction before any counter
        moves. Returns False when the order was already redeemed, so retries
        and concurrent duplicates never count twice.
        """
        rule_ids = sorted(set(rule_ids))
        record = {
            "claimId": uuid.uuid4().hex,
            "ruleIds": rule_ids,
            "customerId": customer_id,
            "couponCode": normalize_code(coupon_code) if coupon_code else None,
            "redeemedAt": datetime.now(timezone.utc).isoformat(),
        }
        marker = self.ref.child("redemptions").child(order_id)
        claimed = marker.transaction(lambda current: record if current is None else current)
        if not claimed or claimed.get("claimId") != record["claimId"]:
            logger.info(f"Order {order_id} already redeemed, counters left alone")
            return False

        for rule_id in rule_ids:
            rule_ref = self.ref.child("discountRules").child(str(rule_id))
            rule_ref.child("usageCount").transaction(_increment)
            if coupon_code:
                self._increment_coupon(rule_ref, coupon_code)
            if customer_id is not None:
                self.ref.child("couponUsage").child(str(customer_id)).child(str(rule_id)).transaction(_increment)

        logger.info(f"Order {order_id} redeemed rules {rule_ids}")
        return True

    def _increment_coupon(self, rule_ref, coupon_code: str) -> None:
        wanted = normalize_code(coupon_code)
        for key, coupon in _entries(rule_ref.child("coupons").get()).items():
            if normalize_code(str(coupon.get("code", ""))) == wanted:
                rule_ref.child("coupons").child(key).child("timesUsed").transaction(_increment)
