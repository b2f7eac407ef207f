"""
Cart models

One Cart row per user, created lazily on the first add and never deleted.
Totals are derived on read by the pricing engine and never stored.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.core.database import Base
from storefront.core.utils import utcnow


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # Applied coupon (last write wins, no stacking)
    coupon_code = Column(String(50), nullable=True)
    coupon_discount_value = Column(Numeric(12, 2), nullable=True)
    coupon_discount_type = Column(String(20), nullable=True)  # 'percentage', 'fixed'

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="cart")
    items = relationship(
        "CartItem",
        back_populates="cart",
        order_by="CartItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def has_coupon(self) -> bool:
        return self.coupon_code is not None

    def clear_coupon(self) -> None:
        self.coupon_code = None
        self.coupon_discount_value = None
        self.coupon_discount_type = None


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=1)
    # Refreshed from Product on every cart mutation, never taken from the client
    price_snapshot = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    cart = relationship("Cart", back_populates="items")
    product = relationship("Product", back_populates="cart_items")

    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        # Upper bound is MAX_ITEM_QUANTITY, enforced in CartService
        CheckConstraint("quantity >= 1", name="check_cart_item_quantity"),
    )
