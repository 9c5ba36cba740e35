"""Shared builders for discount engine tests."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from models import DiscountRule, LineItem, PercentAction, PricingContext

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_context():
    """Build a PricingContext; ``subtotal`` defaults to the line totals."""

    def _make(items=(), **overrides):
        fields = {"website_id": 1}
        fields.update(overrides)
        return PricingContext(items=tuple(items), **fields)

    return _make


@pytest.fixture
def item():
    def _make(product_id=1, quantity=1, unit_price="10.00", category_ids=(), variant_id=None):
        return LineItem(
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            unit_price=Decimal(unit_price),
            category_ids=frozenset(category_ids),
        )

    return _make


@pytest.fixture
def make_rule():
    """Build a DiscountRule; defaults to an always-on 10% rule."""

    def _make(rule_id=1, **overrides):
        fields = {
            "id": rule_id,
            "name": f"Rule {rule_id}",
            "action": PercentAction(amount=Decimal("10")),
        }
        fields.update(overrides)
        return DiscountRule(**fields)

    return _make
