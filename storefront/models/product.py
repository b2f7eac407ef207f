"""
Product model

The catalog is owned by the product service; the checkout core reads price,
active flag and stock, and only ever writes ``stock``.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import relationship

from storefront.core.database import Base
from storefront.core.utils import utcnow


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(50), unique=True, index=True, nullable=True)
    name = Column(String(500), nullable=False)

    # Pricing - Numeric(12,2) for monetary values
    price = Column(Numeric(12, 2), nullable=False)

    # Availability
    active = Column(Boolean, default=True, nullable=False, index=True)
    stock = Column(Integer, default=0, nullable=False)

    # Media
    image_url = Column(String)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    cart_items = relationship("CartItem", back_populates="product")
    order_items = relationship("OrderItem", back_populates="product")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="check_stock_non_negative"),
        CheckConstraint("price >= 0", name="check_price_non_negative"),
    )

    def __repr__(self):
        return f"<Product(id={self.id}, name={self.name!r}, stock={self.stock})>"
