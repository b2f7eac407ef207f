"""
Cart schemas

Quantities are plain ints here; range checks live in CartService so that
out-of-range input is a 400 INVALID_QUANTITY like every other cart rule.
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from storefront.services.cart_service import CartView


class CartItemCreate(BaseModel):
    product_id: int
    quantity: int = 1


class CartItemUpdate(BaseModel):
    quantity: int


class CouponApply(BaseModel):
    code: str = Field(..., max_length=50)
    discount_value: Decimal
    discount_type: str = "percentage"


class CartLineResponse(BaseModel):
    product_id: int
    name: str
    image_url: Optional[str] = None
    quantity: int
    price_snapshot: Decimal
    line_total: Decimal


class CouponResponse(BaseModel):
    code: str
    discount_value: Decimal
    discount_type: str


class PricingResponse(BaseModel):
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


class CartResponse(BaseModel):
    items: List[CartLineResponse] = []
    coupon: Optional[CouponResponse] = None
    pricing: PricingResponse
    item_count: int = 0

    @classmethod
    def from_view(cls, view: CartView) -> "CartResponse":
        return cls(
            items=[CartLineResponse(**line.__dict__) for line in view.items],
            coupon=CouponResponse(**view.coupon.__dict__) if view.coupon else None,
            pricing=PricingResponse(**view.pricing.as_dict()),
            item_count=view.item_count,
        )
