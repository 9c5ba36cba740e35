from datetime import datetime, timezone
from typing import List, Tuple

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from firebase_util import FirebaseRuleStore
from log_util import get_logger
from models import (
    AvailableDiscount,
    AvailableDiscountsRequest,
    CartPriceRequest,
    CartPricing,
    CouponRequest,
    CouponResponse,
    CouponType,
    CouponValidation,
    DiscountRule,
    RedeemRequest,
    RedeemResponse,
)
from pricing import (
    apply_coupon,
    available_discounts,
    price_cart,
    remove_coupon,
    validate_coupon,
    without_coupon,
)
from settings import settings

logger = get_logger("api")

app = FastAPI(title="Cart discount pricing")

# 🔐 Allow frontend CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_rule_store() -> FirebaseRuleStore:
    return FirebaseRuleStore()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _load_rules(store) -> Tuple[List[DiscountRule], List[DiscountRule]]:
    # auto-coupon rules bypass the code lookup and join every pricing run
    rules = store.load_rules()
    return rules, [r for r in rules if r.coupon_type == CouponType.AUTO]


# 🔐 Admin API key check
def check_admin(api_key: str = Header(..., alias="x-api-key")):
    if not settings.admin_api_key or api_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


# 🎯 1. PRICE CART
@app.post("/api/cart/price", response_model=CartPricing)
def price(body: CartPriceRequest, store: FirebaseRuleStore = Depends(get_rule_store)):
    ctx = body.context
    rules, auto_rules = _load_rules(store)
    return price_cart(
        ctx,
        rules,
        body.tax_amount,
        _now(),
        store.customer_usage(ctx.customer_id),
        auto_rules=auto_rules,
    )


# 🎯 2. APPLY COUPON
@app.post("/api/cart/coupon", response_model=CouponResponse)
def apply(body: CouponRequest, store: FirebaseRuleStore = Depends(get_rule_store)):
    ctx = body.context
    rules, auto_rules = _load_rules(store)
    outcome = apply_coupon(
        ctx,
        body.code,
        rules,
        body.tax_amount,
        _now(),
        store.customer_usage(ctx.customer_id),
        auto_rules=auto_rules,
    )
    return CouponResponse(
        valid=outcome.valid,
        message=outcome.message,
        error=outcome.error.code.value if outcome.error else None,
        context=outcome.context,
        pricing=outcome.pricing,
    )


# 🎯 3. REMOVE COUPON
@app.post("/api/cart/coupon/remove", response_model=CouponResponse)
def remove(body: CouponRequest, store: FirebaseRuleStore = Depends(get_rule_store)):
    ctx = body.context
    rules, auto_rules = _load_rules(store)
    pricing = remove_coupon(
        ctx,
        body.code,
        rules,
        body.tax_amount,
        _now(),
        store.customer_usage(ctx.customer_id),
        auto_rules=auto_rules,
    )
    return CouponResponse(
        valid=True,
        message="Coupon removed",
        context=without_coupon(ctx, body.code),
        pricing=pricing,
    )


# 🎯 4. VALIDATE COUPON
@app.post("/api/coupons/validate", response_model=CouponValidation)
def validate(body: CouponRequest, store: FirebaseRuleStore = Depends(get_rule_store)):
    ctx = body.context
    rules, auto_rules = _load_rules(store)
    return validate_coupon(
        ctx,
        body.code,
        rules,
        body.tax_amount,
        _now(),
        store.customer_usage(ctx.customer_id),
        auto_rules=auto_rules,
    )


# 🎯 5. AVAILABLE DISCOUNTS
@app.post("/api/discounts/available", response_model=List[AvailableDiscount])
def available(body: AvailableDiscountsRequest, store: FirebaseRuleStore = Depends(get_rule_store)):
    ctx = body.context
    rules = available_discounts(ctx, store.load_rules(), _now())
    return [AvailableDiscount(id=r.id, name=r.name, description=r.description) for r in rules]


# 🎯 6. REDEEM (order committed)
@app.post("/api/orders/{order_id}/redeem", response_model=RedeemResponse)
def redeem(
    order_id: str,
    body: RedeemRequest,
    api_key: str = Header(..., alias="x-api-key"),
    store: FirebaseRuleStore = Depends(get_rule_store),
):
    check_admin(api_key)

    if not store.redeem(order_id, body.rule_ids, body.customer_id, body.coupon_code):
        raise HTTPException(status_code=409, detail="Order already redeemed")

    return {"success": True, "message": f"Order {order_id} redeemed"}
