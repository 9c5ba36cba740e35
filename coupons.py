"""
Coupon code resolution.

Maps a customer-entered code to the specific-coupon rule that owns it and
checks the rule is usable for this cart: active, in date range, in scope,
under its global limit, and under the customer's limit. Auto coupons never
match an entered code; callers hand those rules to the pricer directly.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, List, Mapping, Optional

from eligibility import has_expired, has_started, in_scope, under_usage_limit
from models import CouponType, DiscountRule, PricingContext, normalize_code


class CouponErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    CUSTOMER_LIMIT_EXCEEDED = "customer_limit_exceeded"
    SCOPE_MISMATCH = "scope_mismatch"
    USAGE_LIMIT_REACHED = "usage_limit_reached"


_MESSAGES = {
    CouponErrorCode.NOT_FOUND: "Invalid coupon code",
    CouponErrorCode.EXPIRED: "Coupon has expired",
    CouponErrorCode.CUSTOMER_LIMIT_EXCEEDED: "Coupon already used the maximum number of times",
    CouponErrorCode.SCOPE_MISMATCH: "Coupon is not valid for this store or customer group",
    CouponErrorCode.USAGE_LIMIT_REACHED: "Coupon usage limit reached",
}


class CouponError(Exception):
    """A coupon code that cannot be applied to this cart."""

    def __init__(self, code: CouponErrorCode, coupon_code: str = ""):
        self.code = code
        self.coupon_code = coupon_code
        self.message = _MESSAGES[code]
        super().__init__(f"{coupon_code}: {self.message}" if coupon_code else self.message)


def _owners(code: str, rules: Iterable[DiscountRule]) -> List[DiscountRule]:
    owners = [
        rule
        for rule in rules
        if rule.coupon_type == CouponType.SPECIFIC_COUPON and code in rule.coupon_codes()
    ]
    return sorted(owners, key=lambda r: (r.priority, r.id))


def _check(rule: DiscountRule, code: str, context: PricingContext, now: datetime, prior_uses: int) -> None:
    if not rule.is_active or not has_started(rule, now):
        raise CouponError(CouponErrorCode.NOT_FOUND, code)
    if has_expired(rule, now):
        raise CouponError(CouponErrorCode.EXPIRED, code)
    if not in_scope(rule, context):
        raise CouponError(CouponErrorCode.SCOPE_MISMATCH, code)

    coupon = rule.find_coupon(code)
    if not under_usage_limit(rule):
        raise CouponError(CouponErrorCode.USAGE_LIMIT_REACHED, code)
    if coupon and coupon.usage_limit is not None and coupon.times_used >= coupon.usage_limit:
        raise CouponError(CouponErrorCode.USAGE_LIMIT_REACHED, code)

    if rule.customer_usage_limit is not None and prior_uses >= rule.customer_usage_limit:
        raise CouponError(CouponErrorCode.CUSTOMER_LIMIT_EXCEEDED, code)
    if coupon and coupon.usage_per_customer is not None and prior_uses >= coupon.usage_per_customer:
        raise CouponError(CouponErrorCode.CUSTOMER_LIMIT_EXCEEDED, code)


def resolve(
    code: str,
    rules: Iterable[DiscountRule],
    context: PricingContext,
    now: datetime,
    customer_usage: Optional[Mapping[int, int]] = None,
) -> DiscountRule:
    """
    Find the rule a coupon code unlocks.

    Matching is case-insensitive on the trimmed code. When several rules
    share a code the first usable one in priority order wins; if none is
    usable, the error of the highest-priority owner is raised.

    Args:
        code: Code as typed by the customer.
        rules: Candidate rules (typically everything the store holds for the website).
        context: Cart being priced.
        now: Evaluation time.
        customer_usage: Prior uses per rule id by this customer, from the persistence layer.

    Raises:
        CouponError
    """
    normalized = normalize_code(code)
    if not normalized:
        raise CouponError(CouponErrorCode.NOT_FOUND, normalized)

    usage = customer_usage or {}
    first_error = None
    for rule in _owners(normalized, rules):
        try:
            _check(rule, normalized, context, now, usage.get(rule.id, 0))
        except CouponError as e:
            first_error = first_error or e
            continue
        return rule

    raise first_error or CouponError(CouponErrorCode.NOT_FOUND, normalized)
