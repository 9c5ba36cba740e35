"""Rule data is validated when it is built, not when it is evaluated."""

from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from models import (
    BuyXGetYAction,
    CombineCondition,
    CouponType,
    DiscountRule,
    LeafCondition,
    PricingContext,
)


def _rule_doc(**overrides):
    doc = {
        "id": 7,
        "name": "Spring sale",
        "action": {"kind": "by_percent", "amount": "15"},
    }
    doc.update(overrides)
    return doc


def test_rule_parses_camel_case_document():
    rule = DiscountRule.model_validate(_rule_doc(
        stopRulesProcessing=True,
        websiteIds=[1, 2],
        conditionRoot={
            "aggregator": "all",
            "children": [
                {"attribute": "cart.subtotal", "operator": "gte", "value": "100"},
                {"aggregator": "any", "children": []},
            ],
        },
        createdAt="2026-01-01T00:00:00Z",
    ))
    assert rule.stop_rules_processing is True
    assert rule.website_ids == frozenset({1, 2})
    assert isinstance(rule.condition_root, CombineCondition)
    assert isinstance(rule.condition_root.children[0], LeafCondition)
    assert isinstance(rule.condition_root.children[1], CombineCondition)


def test_buy_x_get_y_requires_step_and_quantity():
    with pytest.raises(ValidationError):
        DiscountRule.model_validate(_rule_doc(action={"kind": "buy_x_get_y", "quantity": 1}))
    with pytest.raises(ValidationError):
        BuyXGetYAction(step=0, quantity=1)


def test_unknown_action_kind_rejected():
    with pytest.raises(ValidationError):
        DiscountRule.model_validate(_rule_doc(action={"kind": "by_magic", "amount": "1"}))


def test_percent_above_hundred_rejected():
    with pytest.raises(ValidationError):
        DiscountRule.model_validate(_rule_doc(action={"kind": "by_percent", "amount": "150"}))


def test_condition_node_cannot_be_leaf_and_interior():
    with pytest.raises(ValidationError):
        DiscountRule.model_validate(_rule_doc(conditionRoot={
            "aggregator": "all",
            "children": [],
            "attribute": "cart.subtotal",
            "operator": "gt",
            "value": 1,
        }))


def test_specific_coupon_rule_needs_a_code():
    with pytest.raises(ValidationError):
        DiscountRule.model_validate(_rule_doc(couponType="specific_coupon"))

    rule = DiscountRule.model_validate(_rule_doc(couponType="specific_coupon", couponCode=" save10 "))
    assert rule.coupon_type == CouponType.SPECIFIC_COUPON
    assert rule.coupon_codes() == ["SAVE10"]


def test_start_after_end_rejected():
    with pytest.raises(ValidationError):
        DiscountRule.model_validate(_rule_doc(
            startDate=datetime(2026, 5, 1), endDate=datetime(2026, 4, 1)
        ))


def test_context_subtotal_defaults_to_line_totals(item):
    ctx = PricingContext(website_id=1, items=(item(quantity=3, unit_price="2.50"), item(unit_price="4")))
    assert ctx.subtotal == Decimal("11.50")

    explicit = PricingContext(website_id=1, items=(item(),), subtotal=Decimal("99"))
    assert explicit.subtotal == Decimal("99")


def test_context_is_immutable(make_context):
    ctx = make_context(coupon_code="A")
    with pytest.raises(ValidationError):
        ctx.coupon_code = "B"
    assert ctx.with_coupon("B").coupon_code == "B"
    assert ctx.coupon_code == "A"


def test_context_subtotal_defaults_from_wire_document():
    ctx = PricingContext.model_validate({
        "websiteId": 1,
        "items": [
            {"productId": 1, "quantity": 2, "unitPrice": "19.99"},
            {"productId": 2, "quantity": 1, "unitPrice": "5"},
        ],
    })
    assert ctx.subtotal == Decimal("44.98")
    assert PricingContext.model_validate({"websiteId": 1}).subtotal == Decimal("0")


def test_context_with_bad_line_reports_the_line():
    with pytest.raises(ValidationError) as excinfo:
        PricingContext.model_validate({"websiteId": 1, "items": [{"productId": 1, "quantity": -1, "unitPrice": "5"}]})
    assert excinfo.value.errors()[0]["loc"][0] == "items"
