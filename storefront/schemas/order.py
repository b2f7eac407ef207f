"""
Order schemas

Pydantic models for order requests and responses.
"""
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ==================== Address Schemas ====================


class Address(BaseModel):
    """Shipping/billing address snapshot stored on the order."""
    name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    street: str = Field(..., min_length=1, max_length=200)
    landmark: Optional[str] = Field(None, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    pincode: str
    country: str = Field("India", max_length=100)

    @field_validator("pincode")
    @classmethod
    def validate_pincode(cls, v):
        v = v.strip()
        if not re.fullmatch(r"\d{6}", v):
            raise ValueError("Pincode must be 6 digits")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            digits = re.sub(r'\D', '', v)
            if len(digits) < 10 or len(digits) > 15:
                raise ValueError("Phone number must be 10-15 digits")
        return v


# ==================== Request Schemas ====================


class OrderCreate(BaseModel):
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: str
    coupon_code: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentConfirm(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)


class OrderStatusUpdate(BaseModel):
    status: str
    tracking_number: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=500)


# ==================== Response Schemas ====================


class OrderItemResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    name: str
    image_url: Optional[str] = None
    unit_price: Decimal
    quantity: int

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: Optional[int] = None
    order_status: str
    payment_status: str
    payment_method: str
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    coupon_snapshot: Optional[Dict[str, Any]] = None
    shipping_address: Dict[str, Any]
    billing_address: Dict[str, Any]
    payment_intent_id: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    order: OrderResponse
    client_secret: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    status: str


class OrderList(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    per_page: int
    pages: int


class OrderStatsResponse(BaseModel):
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    by_status: Dict[str, int]
    by_payment_method: Dict[str, int]


class StatusHistoryResponse(BaseModel):
    id: int
    from_status: Optional[str] = None
    to_status: str
    comment: Optional[str] = None
    changed_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
