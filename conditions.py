"""
Condition tree evaluation.

A rule's condition root is either a leaf comparison (attribute / operator /
value) or an ``all``/``any`` node over child conditions. Evaluation is a pure
function of the pricing context and the node.

Attribute vocabulary:
  cart.subtotal, cart.shippingAmount, cart.totalQty, cart.itemsCount
  item.productIds, item.categoryIds, item.variantIds   (collections)
  customer.id, customer.groupId, website.id
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, FrozenSet, Optional

from log_util import get_logger
from models import Aggregator, CombineCondition, LeafCondition, Operator, PricingContext

logger = get_logger("conditions")

MAX_CONDITION_DEPTH = 32

_MISSING = object()

_ATTRIBUTES: Dict[str, Callable[[PricingContext], Any]] = {
    "cart.subtotal": lambda ctx: ctx.subtotal,
    "cart.shippingAmount": lambda ctx: ctx.shipping_amount,
    "cart.totalQty": lambda ctx: sum(i.quantity for i in ctx.items),
    "cart.itemsCount": lambda ctx: len(ctx.items),
    "item.productIds": lambda ctx: frozenset(i.product_id for i in ctx.items),
    "item.categoryIds": lambda ctx: frozenset(c for i in ctx.items for c in i.category_ids),
    "item.variantIds": lambda ctx: frozenset(
        i.variant_id for i in ctx.items if i.variant_id is not None
    ),
    "customer.id": lambda ctx: ctx.customer_id,
    "customer.groupId": lambda ctx: ctx.customer_group_id,
    "website.id": lambda ctx: ctx.website_id,
}


def resolve_attribute(context: PricingContext, attribute: str) -> Any:
    getter = _ATTRIBUTES.get(attribute)
    if getter is None:
        return _MISSING
    return getter(context)


def _normalize(value: Any) -> Any:
    # Rule values arrive from admin forms as strings ("100", "5"); compare
    # numbers as decimals and everything else as trimmed strings.
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        text = value.strip()
        try:
            return Decimal(text)
        except InvalidOperation:
            return text
    return value


def _as_set(value: Any) -> FrozenSet[Any]:
    if isinstance(value, (tuple, list, set, frozenset)):
        return frozenset(_normalize(v) for v in value)
    return frozenset([_normalize(value)])


def _compare_collection(actual: FrozenSet[Any], operator: Operator, expected: Any) -> bool:
    members = frozenset(_normalize(v) for v in actual)
    if operator in (Operator.EQ, Operator.CONTAINS):
        return _normalize(expected) in members
    if operator == Operator.NEQ:
        return _normalize(expected) not in members
    if operator == Operator.IN:
        return bool(members & _as_set(expected))
    if operator == Operator.NOT_IN:
        return not members & _as_set(expected)
    return False


def _compare_scalar(actual: Any, operator: Operator, expected: Any) -> bool:
    left = _normalize(actual)
    if operator == Operator.IN:
        return left in _as_set(expected)
    if operator == Operator.NOT_IN:
        return left not in _as_set(expected)
    if isinstance(expected, (tuple, list)):
        return False

    right = _normalize(expected)
    if operator == Operator.EQ:
        return left == right
    if operator == Operator.NEQ:
        return left != right
    if operator == Operator.CONTAINS:
        return isinstance(left, str) and isinstance(right, str) and right in left

    try:
        if operator == Operator.GT:
            return left > right
        if operator == Operator.GTE:
            return left >= right
        if operator == Operator.LT:
            return left < right
        if operator == Operator.LTE:
            return left <= right
    except TypeError:
        # decimal vs string
        return False
    return False


def evaluate_leaf(context: PricingContext, node: LeafCondition) -> bool:
    actual = resolve_attribute(context, node.attribute)
    if actual is _MISSING:
        logger.debug(f"Unknown condition attribute '{node.attribute}', treating as no match")
        return False
    if actual is None:
        return False
    if isinstance(actual, frozenset):
        return _compare_collection(actual, node.operator, node.value)
    return _compare_scalar(actual, node.operator, node.value)


def evaluate(context: PricingContext, node, depth: int = 0, max_depth: Optional[int] = None) -> bool:
    """
    Evaluate a condition node against a pricing context.

    ``all`` over no children is true, ``any`` over no children is false.
    Trees nested deeper than ``max_depth`` (default MAX_CONDITION_DEPTH)
    evaluate to False.
    """
    limit = MAX_CONDITION_DEPTH if max_depth is None else max_depth
    if depth > limit:
        logger.warning(f"Condition tree deeper than {limit} levels, treating as no match")
        return False

    if isinstance(node, LeafCondition):
        return evaluate_leaf(context, node)

    if isinstance(node, CombineCondition):
        results = (evaluate(context, child, depth + 1, limit) for child in node.children)
        if node.aggregator == Aggregator.ALL:
            return all(results)
        return any(results)

    logger.warning(f"Unsupported condition node {type(node).__name__}, treating as no match")
    return False
