"""
Rule selection and stacking.

Candidate rules run in priority order (lower first, ties by id) against a
running pricing state, so every rule discounts what earlier rules left.
A matched rule with stop_rules_processing ends the run; rules after it are
never evaluated.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Set, Tuple

from actions import ZERO, PricingState, compute_amount
from conditions import evaluate
from log_util import get_logger
from models import (
    PERCENT_KINDS,
    AppliedDiscount,
    CouponType,
    DiscountRule,
    PricingContext,
    normalize_code,
)

logger = get_logger("stacker")

Evaluator = Callable[[PricingContext, object], bool]


@dataclass(frozen=True)
class StackResult:
    applied_discounts: Tuple[AppliedDiscount, ...]
    discount_total: Decimal
    free_shipping_granted: bool
    consumed_rule_ids: Tuple[int, ...]


def order_rules(rules: Iterable[DiscountRule]) -> List[DiscountRule]:
    ordered = sorted(rules, key=lambda r: (r.priority, r.id))
    seen = set()
    unique = []
    for rule in ordered:
        if rule.id in seen:
            continue
        seen.add(rule.id)
        unique.append(rule)
    return unique


def _coupon_code_for(rule: DiscountRule, context: PricingContext) -> Optional[str]:
    if rule.coupon_type == CouponType.SPECIFIC_COUPON and context.coupon_code:
        return normalize_code(context.coupon_code)
    if rule.coupon_type == CouponType.AUTO and rule.coupon_code:
        return normalize_code(rule.coupon_code)
    return None


def _describe(rule: DiscountRule) -> str:
    return rule.description or rule.name


def _waive_shipping(applied: List[AppliedDiscount], shipping_shares: List[Decimal]) -> Set[int]:
    """
    Take back what earlier discounts drew from shipping once shipping is free.

    Updates both lists in place and returns the ids of rules left with nothing.
    """
    dropped = set()
    kept, kept_shares = [], []
    for discount, share in zip(applied, shipping_shares):
        amount = discount.discount_amount - share
        if amount > ZERO:
            kept.append(discount.model_copy(update={"discount_amount": amount}))
            kept_shares.append(ZERO)
        else:
            dropped.add(discount.rule_id)
    applied[:] = kept
    shipping_shares[:] = kept_shares
    return dropped


def apply_rules(
    rules: Iterable[DiscountRule],
    context: PricingContext,
    evaluator: Evaluator = evaluate,
) -> StackResult:
    """
    Apply candidate rules in order and collect the discounts they grant.

    Args:
        rules: Eligible rules plus any coupon/auto rules for this cart.
        context: Cart being priced.
        evaluator: Condition evaluator; tests substitute a counting one.

    Returns:
        StackResult with discounts in application order.
    """
    state = PricingState.from_context(context)
    applied: List[AppliedDiscount] = []
    # part of each applied discount taken from shipping, parallel to ``applied``
    shipping_shares: List[Decimal] = []
    consumed: List[int] = []
    free_shipping = False

    for rule in order_rules(rules):
        if rule.condition_root is not None and not evaluator(context, rule.condition_root):
            logger.debug(f"Rule {rule.id} conditions not met, skipping")
            continue

        try:
            amount = compute_amount(rule.action, state, rule.apply_to_shipping)
        except (TypeError, ArithmeticError) as e:
            logger.warning(f"Skipping malformed rule {rule.id}: {e}")
            continue

        if amount > ZERO:
            applied.append(
                AppliedDiscount(
                    rule_id=rule.id,
                    coupon_code=_coupon_code_for(rule, context),
                    discount_amount=amount,
                    discount_type="percentage" if rule.action.kind in PERCENT_KINDS else "fixed",
                    description=_describe(rule),
                )
            )
            remaining = state.after(rule.action, amount, rule.apply_to_shipping)
            shipping_shares.append(state.shipping_remaining - remaining.shipping_remaining)
            state = remaining
            logger.debug(f"Rule {rule.id} applied: -{amount}")

        if amount > ZERO or rule.free_shipping:
            consumed.append(rule.id)

        if rule.free_shipping and not free_shipping:
            free_shipping = True
            dropped = _waive_shipping(applied, shipping_shares)
            consumed = [rid for rid in consumed if rid == rule.id or rid not in dropped]
            state = replace(state, shipping_remaining=ZERO)

        if rule.stop_rules_processing:
            logger.debug(f"Rule {rule.id} stops further rule processing")
            break

    total = sum((d.discount_amount for d in applied), ZERO)
    total = min(total, context.subtotal + (ZERO if free_shipping else context.shipping_amount))

    return StackResult(
        applied_discounts=tuple(applied),
        discount_total=total,
        free_shipping_granted=free_shipping,
        consumed_rule_ids=tuple(consumed),
    )
