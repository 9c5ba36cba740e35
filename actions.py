"""
Discount amount calculation.

Each action kind computes its amount against the running ``PricingState``
(what earlier rules left of the subtotal, the shipping, and the per-line
unit quantities). Amounts are clamped to what remains and rounded once,
half-to-even, to the cent.
"""

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_EVEN, Decimal
from typing import FrozenSet, Tuple

from models import (
    BuyXGetYAction,
    BuyXGetYFixedAction,
    BuyXGetYPercentAction,
    CartFixedAction,
    FixedAction,
    PercentAction,
    PricingContext,
)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_EVEN)


@dataclass(frozen=True)
class LineState:
    unit_price: Decimal
    category_ids: FrozenSet[int]
    remaining_qty: int


@dataclass(frozen=True)
class PricingState:
    subtotal_remaining: Decimal
    shipping_remaining: Decimal
    lines: Tuple[LineState, ...] = ()

    @classmethod
    def from_context(cls, context: PricingContext) -> "PricingState":
        return cls(
            subtotal_remaining=context.subtotal,
            shipping_remaining=context.shipping_amount,
            lines=tuple(
                LineState(item.unit_price, item.category_ids, item.quantity)
                for item in context.items
            ),
        )

    def discountable(self, apply_to_shipping: bool = False) -> Decimal:
        if apply_to_shipping:
            return self.subtotal_remaining + self.shipping_remaining
        return self.subtotal_remaining

    def after(self, action, amount: Decimal, apply_to_shipping: bool = False) -> "PricingState":
        """Return the state left once ``amount`` has been granted for ``action``."""
        from_subtotal = min(amount, self.subtotal_remaining)
        spill = amount - from_subtotal if apply_to_shipping else ZERO
        lines = self.lines
        if isinstance(action, _GROUP_ACTIONS):
            groups = group_counts(action, self)
            lines = tuple(
                replace(line, remaining_qty=line.remaining_qty - count * action.step)
                for line, count in zip(self.lines, groups)
            )
        return PricingState(
            subtotal_remaining=self.subtotal_remaining - from_subtotal,
            shipping_remaining=max(ZERO, self.shipping_remaining - spill),
            lines=lines,
        )


_GROUP_ACTIONS = (BuyXGetYAction, BuyXGetYPercentAction, BuyXGetYFixedAction)


def group_counts(action, state: PricingState) -> Tuple[int, ...]:
    """Whole discounted groups per line; partial groups never count and lines are never pooled."""
    counts = []
    for line in state.lines:
        if action.category_ids and not (action.category_ids & line.category_ids):
            counts.append(0)
            continue
        counts.append(min(line.remaining_qty // action.step, action.quantity))
    return tuple(counts)


def _group_value(action, unit_price: Decimal) -> Decimal:
    if isinstance(action, BuyXGetYPercentAction):
        return unit_price * action.amount / HUNDRED
    if isinstance(action, BuyXGetYFixedAction):
        return min(action.amount, unit_price)
    # the free unit
    return unit_price


def compute_amount(action, state: PricingState, apply_to_shipping: bool = False) -> Decimal:
    """
    Compute the discount an action grants against the running state.

    Args:
        action: One of the DiscountAction variants.
        state: What earlier rules left.
        apply_to_shipping: Let cart-level kinds reach into remaining shipping.

    Returns:
        A non-negative amount rounded to the cent, never more than remains.
    """
    if isinstance(action, PercentAction):
        base = state.discountable(apply_to_shipping)
        raw = base * action.amount / HUNDRED
        cap = base
    elif isinstance(action, (FixedAction, CartFixedAction)):
        # both kinds reduce the cart once; there is no per-line targeting for fixed amounts
        raw = action.amount
        cap = state.discountable(apply_to_shipping)
    elif isinstance(action, _GROUP_ACTIONS):
        groups = group_counts(action, state)
        raw = sum(
            (count * _group_value(action, line.unit_price) for line, count in zip(state.lines, groups)),
            ZERO,
        )
        cap = state.subtotal_remaining
    else:
        raise TypeError(f"Unsupported discount action {type(action).__name__}")

    return max(ZERO, round_money(min(raw, cap)))
