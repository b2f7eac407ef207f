"""
Order models

Order core fields (totals, addresses, items) are fixed at creation. Only
payment_status, order_status, tracking_number, delivered_at and the payment
references change afterwards. OrderItem is a frozen copy of the product at
checkout time, so later catalog edits never rewrite order history.
"""
import enum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON, Numeric, Index
from sqlalchemy.orm import relationship

from storefront.core.database import Base
from storefront.core.utils import utcnow


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


# Statuses at or past the point where goods have physically left the warehouse
SHIPPED_OR_LATER = frozenset({
    OrderStatus.SHIPPED.value,
    OrderStatus.OUT_FOR_DELIVERY.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.RETURNED.value,
    OrderStatus.REFUNDED.value,
})

# Excluded from revenue reporting
NON_REVENUE_STATUSES = frozenset({
    OrderStatus.CANCELLED.value,
    OrderStatus.REFUNDED.value,
})


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"
    COD = "cod"
    WALLET = "wallet"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    order_number = Column(String(50), unique=True, index=True, nullable=False)
    order_status = Column(String(30), default=OrderStatus.PENDING.value, nullable=False, index=True)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False, index=True)

    # Pricing - Numeric(12,2) for monetary values
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    shipping = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    coupon_snapshot = Column(JSON, nullable=True)  # {code, discount_value, discount_type}

    # Addresses (snapshot at checkout)
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)

    # Payment
    payment_method = Column(String(20), nullable=False)
    payment_intent_id = Column(String(255), nullable=True, index=True)
    payment_id = Column(String(255), nullable=True)

    # Fulfillment
    tracking_number = Column(String(100), nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    # Relationships
    user = relationship("User", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    @property
    def requires_payment(self) -> bool:
        return (
            self.payment_method == PaymentMethod.CARD.value
            and self.payment_status == PaymentStatus.PENDING.value
        )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    # Snapshot of product at time of order
    name = Column(String(500), nullable=False)
    image_url = Column(String)
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)

    # Relationships
    order = relationship("Order", back_populates="items")
    product = relationship("Product", back_populates="order_items")

    @property
    def line_total(self):
        return self.unit_price * self.quantity


class OrderStatusHistory(Base):
    """Audit trail of order_status transitions."""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(String(30), nullable=True)  # NULL for the creation row
    to_status = Column(String(30), nullable=False)
    comment = Column(Text)
    changed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    order = relationship("Order", back_populates="status_history")
