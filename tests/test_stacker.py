from decimal import Decimal

from conditions import evaluate
from models import (
    CartFixedAction,
    CouponType,
    DiscountRule,
    FixedAction,
    LeafCondition,
    Operator,
    PercentAction,
)
from stacker import apply_rules, order_rules

D = Decimal


def subtotal_at_least(amount):
    return LeafCondition(attribute="cart.subtotal", operator=Operator.GTE, value=amount)


def test_ordered_by_priority_then_id(make_rule):
    rules = [make_rule(5, priority=2), make_rule(3, priority=1), make_rule(1, priority=2), make_rule(3, priority=9)]
    assert [r.id for r in order_rules(rules)] == [3, 1, 5]


def test_percent_then_fixed_on_remaining(make_rule, make_context):
    rules = [
        make_rule(2, priority=2, action=FixedAction(amount=D("5"))),
        make_rule(1, priority=1, action=PercentAction(amount=D("10"))),
    ]
    result = apply_rules(rules, make_context(subtotal=D("100")))
    assert [d.discount_amount for d in result.applied_discounts] == [D("10.00"), D("5.00")]
    assert result.discount_total == D("15.00")
    assert result.consumed_rule_ids == (1, 2)


def test_percent_then_percent_compounds(make_rule, make_context):
    rules = [
        make_rule(1, priority=1, action=PercentAction(amount=D("10"))),
        make_rule(2, priority=2, action=PercentAction(amount=D("5"))),
    ]
    result = apply_rules(rules, make_context(subtotal=D("100")))
    assert result.discount_total == D("14.50")
    assert D("100") - result.discount_total == D("85.50")


def test_stop_processing_skips_later_rules(make_rule, make_context):
    seen = []

    def spy(context, node):
        seen.append(node)
        return evaluate(context, node)

    first_condition = subtotal_at_least(1)
    second_condition = subtotal_at_least(2)
    rules = [
        make_rule(1, priority=1, stop_rules_processing=True, condition_root=first_condition),
        make_rule(2, priority=2, condition_root=second_condition),
    ]
    result = apply_rules(rules, make_context(subtotal=D("100")), evaluator=spy)

    assert seen == [first_condition]
    assert [d.rule_id for d in result.applied_discounts] == [1]


def test_unmatched_stop_rule_does_not_stop(make_rule, make_context):
    rules = [
        make_rule(1, priority=1, stop_rules_processing=True, condition_root=subtotal_at_least(500)),
        make_rule(2, priority=2),
    ]
    result = apply_rules(rules, make_context(subtotal=D("100")))
    assert [d.rule_id for d in result.applied_discounts] == [2]


def test_zero_amount_match_still_stops(make_rule, make_context):
    rules = [
        make_rule(1, priority=1, stop_rules_processing=True, action=FixedAction(amount=D("0"))),
        make_rule(2, priority=2),
    ]
    result = apply_rules(rules, make_context(subtotal=D("100")))
    assert result.applied_discounts == ()
    assert result.consumed_rule_ids == ()


def test_free_shipping_is_granted_and_consumed(make_rule, make_context):
    rules = [make_rule(1, free_shipping=True, action=FixedAction(amount=D("0")))]
    result = apply_rules(rules, make_context(subtotal=D("50"), shipping_amount=D("15")))
    assert result.free_shipping_granted
    assert result.applied_discounts == ()
    assert result.consumed_rule_ids == (1,)


def test_total_never_exceeds_subtotal_plus_shipping(make_rule, make_context):
    rules = [
        make_rule(1, priority=1, apply_to_shipping=True, action=CartFixedAction(amount=D("500"))),
        make_rule(2, priority=2, apply_to_shipping=True, action=PercentAction(amount=D("50"))),
    ]
    result = apply_rules(rules, make_context(subtotal=D("40"), shipping_amount=D("10")))
    assert result.discount_total == D("50.00")
    assert [d.rule_id for d in result.applied_discounts] == [1]


def test_discount_metadata(make_rule, make_context):
    rules = [
        make_rule(1, priority=1, description="Ten percent off"),
        make_rule(
            2,
            priority=2,
            action=FixedAction(amount=D("1")),
            coupon_type=CouponType.SPECIFIC_COUPON,
            coupon_code="save1",
        ),
    ]
    result = apply_rules(rules, make_context(subtotal=D("100"), coupon_code=" Save1"))
    first, second = result.applied_discounts
    assert (first.description, first.discount_type, first.coupon_code) == ("Ten percent off", "percentage", None)
    assert (second.description, second.discount_type, second.coupon_code) == ("Rule 2", "fixed", "SAVE1")


def test_malformed_rule_is_skipped(make_rule, make_context):
    broken = DiscountRule.model_construct(
        id=1, name="broken", priority=0, condition_root=None, action=object(),
        apply_to_shipping=False, free_shipping=False, stop_rules_processing=True,
    )
    result = apply_rules([broken, make_rule(2, priority=1)], make_context(subtotal=D("100")))
    assert [d.rule_id for d in result.applied_discounts] == [2]


def test_free_shipping_rule_does_not_also_discount_shipping(make_rule, make_context):
    rules = [
        make_rule(1, apply_to_shipping=True, free_shipping=True, action=PercentAction(amount=D("100"))),
    ]
    result = apply_rules(rules, make_context(subtotal=D("100"), shipping_amount=D("15")))
    assert result.free_shipping_granted
    assert [d.discount_amount for d in result.applied_discounts] == [D("100.00")]
    assert result.discount_total == D("100.00")


def test_free_shipping_takes_back_earlier_shipping_share(make_rule, make_context):
    rules = [
        make_rule(1, priority=1, apply_to_shipping=True, action=CartFixedAction(amount=D("60"))),
        make_rule(2, priority=2, free_shipping=True, action=FixedAction(amount=D("0"))),
    ]
    result = apply_rules(rules, make_context(subtotal=D("50"), shipping_amount=D("15")))
    assert [d.discount_amount for d in result.applied_discounts] == [D("50.00")]
    assert result.discount_total == D("50.00")
    assert result.consumed_rule_ids == (1, 2)


def test_shipping_only_discount_dropped_when_shipping_is_free(make_rule, make_context):
    rules = [
        make_rule(1, priority=1, apply_to_shipping=True, action=FixedAction(amount=D("5"))),
        make_rule(2, priority=2, free_shipping=True, action=FixedAction(amount=D("0"))),
    ]
    result = apply_rules(rules, make_context(subtotal=D("0"), shipping_amount=D("15")))
    assert result.applied_discounts == ()
    assert result.discount_total == D("0")
    assert result.consumed_rule_ids == (2,)


def test_no_shipping_left_to_discount_after_free_shipping(make_rule, make_context):
    rules = [
        make_rule(1, priority=1, free_shipping=True, action=FixedAction(amount=D("0"))),
        make_rule(2, priority=2, apply_to_shipping=True, action=PercentAction(amount=D("100"))),
    ]
    result = apply_rules(rules, make_context(subtotal=D("50"), shipping_amount=D("15")))
    assert result.discount_total == D("50.00")
