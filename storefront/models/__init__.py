from storefront.models.user import User
from storefront.models.product import Product
from storefront.models.cart import Cart, CartItem
from storefront.models.order import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderStatus,
    PaymentStatus,
    PaymentMethod,
)

__all__ = [
    "User",
    "Product",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
]
