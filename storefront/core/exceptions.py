"""
Storefront Exception Hierarchy

Structured exception classes for the cart and checkout core. Every exception
carries a machine-readable code, a message and a details dict so the API layer
can render it and the logs can audit it.

Exception Hierarchy:
    StorefrontError
    ├── NotFoundError
    │   ├── ProductNotFoundError
    │   ├── CartNotFoundError
    │   ├── ItemNotFoundError
    │   └── OrderNotFoundError
    ├── UnavailableError
    │   └── ProductUnavailableError
    ├── InsufficientStockError
    ├── InvalidInputError
    │   └── EmptyCartError
    ├── ForbiddenError
    ├── PaymentFailedError
    ├── ConflictError
    │   ├── AlreadyDeliveredError
    │   ├── AlreadyCancelledError
    │   └── StaleOrderStateError
    └── UpstreamUnavailableError

Validation and business-rule errors are raised before any mutation.
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """
    Base exception for all storefront errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        http_status: Status the API layer responds with
    """

    default_code: str = "STOREFRONT_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(StorefrontError):
    default_code = "NOT_FOUND"
    http_status = 404


class ProductNotFoundError(NotFoundError):
    default_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details["product_id"] = product_id
        super().__init__("Product not found", details=details, **kwargs)


class CartNotFoundError(NotFoundError):
    default_code = "CART_NOT_FOUND"

    def __init__(self, message: str = "Cart not found", **kwargs):
        super().__init__(message, **kwargs)


class ItemNotFoundError(NotFoundError):
    default_code = "ITEM_NOT_FOUND"

    def __init__(self, product_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details["product_id"] = product_id
        super().__init__("Item not found in cart", details=details, **kwargs)


class OrderNotFoundError(NotFoundError):
    default_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details["order_id"] = order_id
        super().__init__("Order not found", details=details, **kwargs)


# =============================================================================
# CATALOG / STOCK
# =============================================================================

class UnavailableError(StorefrontError):
    default_code = "UNAVAILABLE"
    http_status = 400


class ProductUnavailableError(UnavailableError):
    default_code = "PRODUCT_UNAVAILABLE"

    def __init__(self, product_id: int, name: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["product_id"] = product_id
        label = name or f"Product #{product_id}"
        super().__init__(f"{label} is no longer available", details=details, **kwargs)


class InsufficientStockError(StorefrontError):
    """Requested quantity exceeds live stock."""
    default_code = "INSUFFICIENT_STOCK"
    http_status = 400

    def __init__(
        self,
        product_id: int,
        requested_qty: Optional[int] = None,
        available_qty: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "product_id": product_id,
            "requested_qty": requested_qty,
            "available_qty": available_qty,
        })
        if available_qty is not None:
            message = f"Only {available_qty} items available in stock"
        else:
            message = "Insufficient stock"
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# INPUT / ACCESS
# =============================================================================

class InvalidInputError(StorefrontError):
    default_code = "INVALID_INPUT"
    http_status = 400


class EmptyCartError(InvalidInputError):
    default_code = "EMPTY_CART"

    def __init__(self, message: str = "Cart is empty", **kwargs):
        super().__init__(message, **kwargs)


class ForbiddenError(StorefrontError):
    default_code = "FORBIDDEN"
    http_status = 403

    def __init__(self, message: str = "Not authorized", **kwargs):
        super().__init__(message, **kwargs)


# =============================================================================
# PAYMENT
# =============================================================================

class PaymentFailedError(StorefrontError):
    """Gateway reported the payment as not succeeded. Order is left untouched."""
    default_code = "PAYMENT_FAILED"
    http_status = 400

    def __init__(self, payment_intent_id: str, status: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({
            "payment_intent_id": payment_intent_id,
            "status": status,
        })
        super().__init__(f"Payment not completed. Status: {status}", details=details, **kwargs)


# =============================================================================
# STATE MACHINE
# =============================================================================

class ConflictError(StorefrontError):
    default_code = "CONFLICT"
    http_status = 400


class AlreadyDeliveredError(ConflictError):
    default_code = "ALREADY_DELIVERED"

    def __init__(self, order_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details["order_id"] = order_id
        super().__init__("Cannot cancel delivered order", details=details, **kwargs)


class AlreadyCancelledError(ConflictError):
    default_code = "ALREADY_CANCELLED"

    def __init__(self, order_id: int, **kwargs):
        details = kwargs.pop("details", {})
        details["order_id"] = order_id
        super().__init__("Order already cancelled", details=details, **kwargs)


class StaleOrderStateError(ConflictError):
    """Compare-and-set on order_status lost a race with another writer."""
    default_code = "STALE_ORDER_STATE"
    http_status = 409

    def __init__(self, order_id: int, expected_status: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({
            "order_id": order_id,
            "expected_status": expected_status,
        })
        super().__init__(
            "Order status changed concurrently, reload and retry",
            details=details,
            **kwargs
        )


# =============================================================================
# UPSTREAM
# =============================================================================

class UpstreamUnavailableError(StorefrontError):
    """Payment gateway (or another collaborator) failed or timed out."""
    default_code = "UPSTREAM_UNAVAILABLE"
    http_status = 502

    def __init__(self, message: str, service: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["service"] = service
        super().__init__(message, details=details, **kwargs)
