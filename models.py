from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    NonNegativeInt,
    PositiveInt,
    Tag,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

Money = Decimal


class _Model(BaseModel):
    # camelCase on the wire (coupon store documents, HTTP bodies), snake_case in code
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ==================== Enums ====================

class Operator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"


class Aggregator(str, Enum):
    ALL = "all"
    ANY = "any"


class CouponType(str, Enum):
    NO_COUPON = "no_coupon"
    SPECIFIC_COUPON = "specific_coupon"
    AUTO = "auto"


# ==================== Cart ====================

class LineItem(_Model):
    product_id: int
    variant_id: Optional[int] = None
    category_ids: FrozenSet[int] = frozenset()
    quantity: NonNegativeInt
    unit_price: Money = Field(ge=0)

    @property
    def row_total(self) -> Money:
        return self.unit_price * self.quantity


class PricingContext(_Model):
    """Snapshot of a cart as seen by one pricing run.

    Never mutated: coupon apply/remove produce a copy via ``with_coupon``.
    """

    items: Tuple[LineItem, ...] = ()
    subtotal: Optional[Money] = Field(default=None, ge=0)
    shipping_amount: Money = Field(default=Decimal("0"), ge=0)
    customer_id: Optional[int] = None
    customer_group_id: Optional[int] = None
    website_id: int
    coupon_code: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _default_subtotal(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("subtotal") is not None:
            return data
        try:
            items = [LineItem.model_validate(i) for i in data.get("items") or ()]
        except (ValidationError, TypeError):
            # left to field validation, which reports the bad line
            return data
        return {**data, "subtotal": sum((i.row_total for i in items), Decimal("0"))}

    def with_coupon(self, code: Optional[str]) -> "PricingContext":
        return self.model_copy(update={"coupon_code": code})


# ==================== Conditions ====================

Scalar = Union[bool, int, Decimal, str]


class LeafCondition(_Model):
    attribute: str
    operator: Operator
    value: Union[Scalar, Tuple[Scalar, ...]]


class CombineCondition(_Model):
    aggregator: Aggregator
    children: Tuple["Condition", ...] = ()


def _condition_tag(raw: Any) -> str:
    if isinstance(raw, dict):
        return "combine" if "aggregator" in raw else "leaf"
    return "combine" if isinstance(raw, CombineCondition) else "leaf"


Condition = Annotated[
    Union[
        Annotated[LeafCondition, Tag("leaf")],
        Annotated[CombineCondition, Tag("combine")],
    ],
    Discriminator(_condition_tag),
]

CombineCondition.model_rebuild()


# ==================== Actions ====================

class PercentAction(_Model):
    kind: Literal["by_percent"] = "by_percent"
    amount: Decimal = Field(ge=0, le=100)


class FixedAction(_Model):
    kind: Literal["by_fixed"] = "by_fixed"
    amount: Money = Field(ge=0)


class CartFixedAction(_Model):
    kind: Literal["cart_fixed"] = "cart_fixed"
    amount: Money = Field(ge=0)


class _GroupAction(_Model):
    """Every ``step`` eligible units of a line form one discounted group."""

    step: PositiveInt
    # cap on discounted groups per line item
    quantity: PositiveInt
    category_ids: FrozenSet[int] = frozenset()


class BuyXGetYAction(_GroupAction):
    kind: Literal["buy_x_get_y"] = "buy_x_get_y"
    amount: Decimal = Field(default=Decimal("0"), ge=0)


class BuyXGetYPercentAction(_GroupAction):
    kind: Literal["buy_x_get_y_percent"] = "buy_x_get_y_percent"
    amount: Decimal = Field(ge=0, le=100)


class BuyXGetYFixedAction(_GroupAction):
    kind: Literal["buy_x_get_y_fixed"] = "buy_x_get_y_fixed"
    amount: Money = Field(ge=0)


DiscountAction = Annotated[
    Union[
        PercentAction,
        FixedAction,
        CartFixedAction,
        BuyXGetYAction,
        BuyXGetYPercentAction,
        BuyXGetYFixedAction,
    ],
    Field(discriminator="kind"),
]

PERCENT_KINDS = frozenset({"by_percent", "buy_x_get_y_percent"})
GROUP_KINDS = frozenset({"buy_x_get_y", "buy_x_get_y_percent", "buy_x_get_y_fixed"})


# ==================== Rules ====================

def normalize_code(code: str) -> str:
    return code.strip().upper()


class DiscountCoupon(_Model):
    model_config = ConfigDict(extra="ignore")

    code: str = Field(min_length=1)
    usage_limit: Optional[NonNegativeInt] = None
    usage_per_customer: Optional[NonNegativeInt] = None
    times_used: NonNegativeInt = 0


class DiscountRule(_Model):
    # stored rule documents carry admin bookkeeping (createdAt, sortOrder, ...)
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    description: Optional[str] = None
    is_active: bool = True
    priority: int = 0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_limit: Optional[NonNegativeInt] = None
    usage_count: NonNegativeInt = 0
    customer_usage_limit: Optional[NonNegativeInt] = None
    condition_root: Optional[Condition] = None
    action: DiscountAction
    coupon_type: CouponType = CouponType.NO_COUPON
    coupon_code: Optional[str] = None
    coupons: Tuple[DiscountCoupon, ...] = ()
    apply_to_shipping: bool = False
    free_shipping: bool = False
    stop_rules_processing: bool = False
    website_ids: FrozenSet[int] = frozenset()
    customer_group_ids: FrozenSet[int] = frozenset()

    @model_validator(mode="after")
    def _check_consistency(self) -> "DiscountRule":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        if self.coupon_type == CouponType.SPECIFIC_COUPON and not self.coupon_codes():
            raise ValueError("specific_coupon rules need a couponCode or coupons")
        return self

    @property
    def is_coupon_gated(self) -> bool:
        return self.coupon_type != CouponType.NO_COUPON

    def coupon_codes(self) -> List[str]:
        codes = [c.code for c in self.coupons]
        if self.coupon_code:
            codes.insert(0, self.coupon_code)
        return [normalize_code(c) for c in codes if c.strip()]

    def find_coupon(self, code: str) -> Optional[DiscountCoupon]:
        wanted = normalize_code(code)
        return next((c for c in self.coupons if normalize_code(c.code) == wanted), None)


# ==================== Results ====================

class AppliedDiscount(_Model):
    rule_id: int
    coupon_code: Optional[str] = None
    discount_amount: Money
    discount_type: Literal["percentage", "fixed"]
    description: str


class CartPricing(_Model):
    subtotal: Money
    shipping_amount: Money
    tax_amount: Money
    discount_total: Money
    final_total: Money
    applied_discounts: Tuple[AppliedDiscount, ...] = ()
    free_shipping_granted: bool = False
    coupon_code: Optional[str] = None
    consumed_rule_ids: Tuple[int, ...] = ()


class CouponValidation(_Model):
    is_valid: bool
    discount_amount: Money = Decimal("0")
    message: str
    errors: Tuple[str, ...] = ()


# ==================== HTTP bodies ====================

class CartPriceRequest(_Model):
    context: PricingContext
    tax_amount: Money = Field(default=Decimal("0"), ge=0)


class CouponRequest(_Model):
    context: PricingContext
    code: str
    tax_amount: Money = Field(default=Decimal("0"), ge=0)


class CouponResponse(_Model):
    valid: bool
    message: str
    error: Optional[str] = None
    context: PricingContext
    pricing: CartPricing


class AvailableDiscountsRequest(_Model):
    context: PricingContext


class AvailableDiscount(_Model):
    id: int
    name: str
    description: Optional[str] = None


class RedeemRequest(_Model):
    rule_ids: List[int]
    customer_id: Optional[int] = None
    coupon_code: Optional[str] = None


class RedeemResponse(_Model):
    success: bool
    message: str


CustomerUsage = Dict[int, int]
