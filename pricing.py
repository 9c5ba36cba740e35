"""
Cart pricing: the public entry points of the discount engine.

Every call recomputes the whole CartPricing from its inputs: eligibility,
coupon resolution, stacking, then totals. Applying or removing a coupon
only changes the context's coupon code before that same recomputation.

Nothing here performs I/O. Rules, per-customer usage counts and the tax
amount are resolved by the caller; consumed_rule_ids on the result tell
the caller which usage counters to increment when the order commits.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Mapping, Optional, Sequence, Tuple

from actions import ZERO
from conditions import evaluate
from coupons import CouponError, resolve
from eligibility import as_utc, filter_eligible, is_available
from log_util import get_logger
from models import (
    CartPricing,
    CouponType,
    CouponValidation,
    DiscountRule,
    PricingContext,
    normalize_code,
)
from stacker import apply_rules, order_rules

logger = get_logger("pricing")


@dataclass(frozen=True)
class CouponOutcome:
    """Result of applying a coupon; pricing is always usable, with or without the code."""

    valid: bool
    context: PricingContext
    pricing: CartPricing
    error: Optional[CouponError] = None

    @property
    def message(self) -> str:
        if self.error:
            return self.error.message
        return f"{self.context.coupon_code} applied"


def _price(
    context: PricingContext,
    rules: Sequence[DiscountRule],
    tax_amount: Decimal,
    now: datetime,
    customer_usage: Optional[Mapping[int, int]],
    auto_rules: Sequence[DiscountRule],
) -> Tuple[CartPricing, Optional[CouponError]]:
    candidates = filter_eligible(rules, context, now)
    candidates.extend(
        rule
        for rule in auto_rules
        if rule.coupon_type == CouponType.AUTO and is_available(rule, context, now)
    )

    applied_code = None
    coupon_error = None
    if context.coupon_code:
        try:
            candidates.append(resolve(context.coupon_code, rules, context, now, customer_usage))
            applied_code = normalize_code(context.coupon_code)
        except CouponError as e:
            coupon_error = e

    stack = apply_rules(candidates, context, evaluate)

    shipping = ZERO if stack.free_shipping_granted else context.shipping_amount
    final_total = max(ZERO, context.subtotal + shipping + tax_amount - stack.discount_total)

    pricing = CartPricing(
        subtotal=context.subtotal,
        shipping_amount=context.shipping_amount,
        tax_amount=tax_amount,
        discount_total=stack.discount_total,
        final_total=final_total,
        applied_discounts=stack.applied_discounts,
        free_shipping_granted=stack.free_shipping_granted,
        coupon_code=applied_code,
        consumed_rule_ids=stack.consumed_rule_ids,
    )
    return pricing, coupon_error


def price_cart(
    context: PricingContext,
    rules: Sequence[DiscountRule],
    tax_amount: Decimal = ZERO,
    now: Optional[datetime] = None,
    customer_usage: Optional[Mapping[int, int]] = None,
    auto_rules: Sequence[DiscountRule] = (),
) -> CartPricing:
    """
    Price a cart against a rule set.

    A coupon code on the context that no longer resolves (expired since it
    was applied, limit reached, ...) is dropped from this pricing, not raised.
    """
    pricing, coupon_error = _price(context, rules, tax_amount, _now(now), customer_usage, auto_rules)
    if coupon_error:
        logger.warning(f"Stored coupon no longer applies: {coupon_error}")
    return pricing


def apply_coupon(
    context: PricingContext,
    code: str,
    rules: Sequence[DiscountRule],
    tax_amount: Decimal = ZERO,
    now: Optional[datetime] = None,
    customer_usage: Optional[Mapping[int, int]] = None,
    auto_rules: Sequence[DiscountRule] = (),
) -> CouponOutcome:
    """
    Apply a coupon code to a cart, replacing any code already applied.

    On a coupon error the returned context and pricing are those of the cart
    without the attempted code.
    """
    now = _now(now)
    normalized = normalize_code(code)
    candidate = context.with_coupon(normalized)

    pricing, coupon_error = _price(candidate, rules, tax_amount, now, customer_usage, auto_rules)
    if coupon_error:
        logger.info(f"Coupon rejected: {coupon_error}")
        pricing = price_cart(context, rules, tax_amount, now, customer_usage, auto_rules)
        return CouponOutcome(valid=False, context=context, pricing=pricing, error=coupon_error)

    logger.info(f"Coupon {normalized} applied for website {context.website_id}")
    return CouponOutcome(valid=True, context=candidate, pricing=pricing)


def without_coupon(context: PricingContext, code: str) -> PricingContext:
    """Drop ``code`` from the context; a code that is not applied leaves it unchanged."""
    if context.coupon_code and normalize_code(context.coupon_code) == normalize_code(code):
        return context.with_coupon(None)
    return context


def remove_coupon(
    context: PricingContext,
    code: str,
    rules: Sequence[DiscountRule],
    tax_amount: Decimal = ZERO,
    now: Optional[datetime] = None,
    customer_usage: Optional[Mapping[int, int]] = None,
    auto_rules: Sequence[DiscountRule] = (),
) -> CartPricing:
    updated = without_coupon(context, code)
    if updated is not context:
        logger.info(f"Coupon {normalize_code(code)} removed")
    return price_cart(updated, rules, tax_amount, now, customer_usage, auto_rules)


def validate_coupon(
    context: PricingContext,
    code: str,
    rules: Sequence[DiscountRule],
    tax_amount: Decimal = ZERO,
    now: Optional[datetime] = None,
    customer_usage: Optional[Mapping[int, int]] = None,
    auto_rules: Sequence[DiscountRule] = (),
) -> CouponValidation:
    """Preview a code: what it would save on this cart, without applying it."""
    now = _now(now)
    normalized = normalize_code(code)
    bare = context.with_coupon(None)

    with_code, coupon_error = _price(
        bare.with_coupon(normalized), rules, tax_amount, now, customer_usage, auto_rules
    )
    if coupon_error:
        return CouponValidation(
            is_valid=False,
            message=coupon_error.message,
            errors=(coupon_error.code.value,),
        )

    baseline = price_cart(bare, rules, tax_amount, now, customer_usage, auto_rules)
    saving = with_code.discount_total - baseline.discount_total
    message = f"{normalized} saves {saving}"
    if with_code.free_shipping_granted and not baseline.free_shipping_granted:
        message += " and ships free"
    return CouponValidation(is_valid=True, discount_amount=saving, message=message)


def available_discounts(
    context: PricingContext,
    rules: Sequence[DiscountRule],
    now: Optional[datetime] = None,
) -> List[DiscountRule]:
    """
    Automatic (non-coupon) rules that would currently apply, in application order.

    Stops after the first matching rule that halts further processing.
    """
    matching = []
    for rule in order_rules(filter_eligible(rules, context, _now(now))):
        if rule.condition_root is not None and not evaluate(context, rule.condition_root):
            continue
        matching.append(rule)
        if rule.stop_rules_processing:
            break
    return matching


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now else datetime.now(timezone.utc)
