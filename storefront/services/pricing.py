"""
Pricing engine

Pure, stateless computation of cart and order totals. No I/O, no ORM objects:
callers pass ``(price_snapshot, quantity)`` pairs plus the applied coupon, and
get the same breakdown back for the same inputs every time.

Order of operations matches the storefront's published pricing rules:
    subtotal = Σ price × qty
    discount = percentage of subtotal | min(fixed, subtotal)
    tax      = subtotal × tax_rate          (pre-discount)
    shipping = 0 above the free-shipping threshold, else flat fee
    total    = max(0, subtotal − discount + tax + shipping)
"""
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from storefront.core.exceptions import InvalidInputError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)

Number = Union[Decimal, int, float, str]


def to_money(amount: Optional[Number]) -> Decimal:
    """Quantize to 2 decimal places, ROUND_HALF_UP."""
    if amount is None:
        return ZERO
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Number) -> int:
    """Convert a major-unit amount to the gateway's integer minor units (×100)."""
    return int(to_money(amount) * 100)


def from_minor_units(amount_minor: int) -> Decimal:
    return to_money(Decimal(amount_minor) / Decimal(100))


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: Decimal = Decimal("0.18")
    free_shipping_threshold: Decimal = Decimal("1000")
    flat_shipping_fee: Decimal = Decimal("100")

    @classmethod
    def from_settings(cls, settings) -> "PricingPolicy":
        return cls(
            tax_rate=Decimal(str(settings.TAX_RATE)),
            free_shipping_threshold=Decimal(str(settings.FREE_SHIPPING_THRESHOLD)),
            flat_shipping_fee=Decimal(str(settings.FLAT_SHIPPING_FEE)),
        )


DEFAULT_POLICY = PricingPolicy()


@dataclass(frozen=True)
class CouponTerms:
    """Discount descriptor attached to a cart and frozen into an order."""
    code: str
    discount_value: Decimal
    discount_type: str

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "discount_value": str(self.discount_value),
            "discount_type": self.discount_type,
        }


@dataclass(frozen=True)
class PricingBreakdown:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal

    def as_dict(self) -> Dict[str, Decimal]:
        return asdict(self)


def validate_coupon_terms(code: str, discount_value: Number, discount_type: str) -> CouponTerms:
    """
    Validate coupon input.

    Raises:
        InvalidInputError: empty code, unknown type, or value out of range
    """
    code = (code or "").strip()
    if not code:
        raise InvalidInputError("Coupon code is required", code="INVALID_COUPON")

    if discount_type not in DISCOUNT_TYPES:
        raise InvalidInputError(
            "Discount type must be percentage or fixed",
            code="INVALID_COUPON",
            details={"discount_type": discount_type},
        )

    try:
        value = Decimal(str(discount_value))
    except (ArithmeticError, ValueError):
        raise InvalidInputError("Discount must be a number", code="INVALID_COUPON")

    if not value.is_finite() or value < 0:
        raise InvalidInputError(
            "Discount cannot be negative",
            code="INVALID_COUPON",
            details={"discount_value": str(discount_value)},
        )

    if discount_type == DISCOUNT_PERCENTAGE and value > 100:
        raise InvalidInputError(
            "Discount percentage must be between 0 and 100",
            code="INVALID_COUPON",
            details={"discount_value": str(discount_value)},
        )

    return CouponTerms(code=code, discount_value=value, discount_type=discount_type)


def compute_subtotal(lines: Iterable[Tuple[Number, int]]) -> Decimal:
    return sum(
        (Decimal(str(price)) * int(quantity) for price, quantity in lines),
        Decimal("0"),
    )


def compute_discount(subtotal: Decimal, coupon: Optional[CouponTerms]) -> Decimal:
    if coupon is None:
        return Decimal("0")
    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        # Not capped beyond subtotal; the 0..100 range is enforced at apply time
        return subtotal * coupon.discount_value / Decimal(100)
    return min(coupon.discount_value, subtotal)


def compute_tax(subtotal: Decimal, policy: PricingPolicy = DEFAULT_POLICY) -> Decimal:
    return subtotal * policy.tax_rate


def compute_shipping(subtotal: Decimal, policy: PricingPolicy = DEFAULT_POLICY) -> Decimal:
    if subtotal > policy.free_shipping_threshold:
        return Decimal("0")
    return policy.flat_shipping_fee


def compute_totals(
    lines: Iterable[Tuple[Number, int]],
    coupon: Optional[CouponTerms] = None,
    policy: PricingPolicy = DEFAULT_POLICY,
) -> PricingBreakdown:
    """
    Compute the full pricing breakdown for a cart snapshot.

    An empty snapshot prices to all zeros (no shipping fee on nothing).
    """
    lines = list(lines)
    if not lines:
        return PricingBreakdown(ZERO, ZERO, ZERO, ZERO, ZERO)

    raw_subtotal = compute_subtotal(lines)
    subtotal = to_money(raw_subtotal)
    discount = to_money(compute_discount(raw_subtotal, coupon))
    tax = to_money(compute_tax(raw_subtotal, policy))
    shipping = to_money(compute_shipping(raw_subtotal, policy))
    total = max(ZERO, subtotal - discount + tax + shipping)

    return PricingBreakdown(
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        shipping=shipping,
        total=total,
    )
