from datetime import datetime, timezone
from typing import Iterable, List

from models import DiscountRule, PricingContext


def as_utc(moment: datetime) -> datetime:
    # naive timestamps from the store are UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def has_started(rule: DiscountRule, now: datetime) -> bool:
    return rule.start_date is None or as_utc(rule.start_date) <= as_utc(now)


def has_expired(rule: DiscountRule, now: datetime) -> bool:
    return rule.end_date is not None and as_utc(now) > as_utc(rule.end_date)


def in_date_range(rule: DiscountRule, now: datetime) -> bool:
    return has_started(rule, now) and not has_expired(rule, now)


def in_scope(rule: DiscountRule, context: PricingContext) -> bool:
    """Website and customer group restrictions; an empty set means unrestricted."""
    if rule.website_ids and context.website_id not in rule.website_ids:
        return False
    if rule.customer_group_ids and context.customer_group_id not in rule.customer_group_ids:
        return False
    return True


def under_usage_limit(rule: DiscountRule) -> bool:
    return rule.usage_limit is None or rule.usage_count < rule.usage_limit


def is_available(rule: DiscountRule, context: PricingContext, now: datetime) -> bool:
    """Active, in its date window, in scope and not used up; ignores coupon gating."""
    return (
        rule.is_active
        and in_date_range(rule, now)
        and in_scope(rule, context)
        and under_usage_limit(rule)
    )


def filter_eligible(
    rules: Iterable[DiscountRule],
    context: PricingContext,
    now: datetime,
    include_coupon_rules: bool = False,
) -> List[DiscountRule]:
    """
    Narrow a rule set to the rules that may apply to this cart right now.

    Coupon-gated rules are left out unless ``include_coupon_rules`` is set;
    they only reach the stacker through the coupon resolver or as auto rules.
    """
    return [
        rule
        for rule in rules
        if (include_coupon_rules or not rule.is_coupon_gated) and is_available(rule, context, now)
    ]
