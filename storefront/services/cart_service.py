"""
Cart service

Owns per-user cart state: lines, quantities and the applied coupon.

Rules:
- Stock and availability are checked against the live catalog, never a cache
- price_snapshot always comes from the catalog, never from client input
- Every mutation ends with a price refresh, so the cart never serves stale
  prices and silently drops lines whose product went inactive
- remove_item / clear / apply_coupon on a user with no cart raise
  CartNotFoundError (no implicit creation outside add_item)
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.config import settings
from storefront.core.exceptions import (
    CartNotFoundError,
    InsufficientStockError,
    InvalidInputError,
    ItemNotFoundError,
    ProductNotFoundError,
    ProductUnavailableError,
)
from storefront.models import Cart, CartItem
from storefront.services.catalog import ProductCatalog
from storefront.services.pricing import (
    CouponTerms,
    PricingBreakdown,
    PricingPolicy,
    compute_totals,
    to_money,
    validate_coupon_terms,
)

logger = logging.getLogger(__name__)


@dataclass
class CartLine:
    product_id: int
    name: str
    image_url: Optional[str]
    quantity: int
    price_snapshot: Decimal
    line_total: Decimal


@dataclass
class CartView:
    """Read model returned by every cart operation."""
    user_id: int
    items: List[CartLine] = field(default_factory=list)
    coupon: Optional[CouponTerms] = None
    pricing: Optional[PricingBreakdown] = None
    item_count: int = 0


def coupon_terms_for(cart: Cart) -> Optional[CouponTerms]:
    """Coupon stored on the cart, or None."""
    if not cart.has_coupon:
        return None
    return CouponTerms(
        code=cart.coupon_code,
        discount_value=to_money(cart.coupon_discount_value),
        discount_type=cart.coupon_discount_type,
    )


class CartService:
    def __init__(
        self,
        db: AsyncSession,
        catalog: Optional[ProductCatalog] = None,
        policy: Optional[PricingPolicy] = None,
        max_quantity: Optional[int] = None,
    ):
        self.db = db
        self.catalog = catalog or ProductCatalog(db)
        self.policy = policy or PricingPolicy.from_settings(settings)
        self.max_quantity = max_quantity or settings.MAX_ITEM_QUANTITY

    # ------------------------------------------------------------------ reads

    async def load_cart(self, user_id: int) -> Optional[Cart]:
        result = await self.db.execute(
            select(Cart)
            .where(Cart.user_id == user_id)
            .options(selectinload(Cart.items).selectinload(CartItem.product))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require_cart(self, user_id: int) -> Cart:
        cart = await self.load_cart(user_id)
        if cart is None:
            raise CartNotFoundError()
        return cart

    async def get_cart(self, user_id: int) -> CartView:
        cart = await self.load_cart(user_id)
        if cart is None:
            return self.view_empty(user_id)
        return self.view(cart)

    def view_empty(self, user_id: int) -> CartView:
        return CartView(user_id=user_id, pricing=compute_totals([], None, self.policy))

    def view(self, cart: Cart) -> CartView:
        coupon = coupon_terms_for(cart)
        lines = [
            CartLine(
                product_id=item.product_id,
                name=item.product.name if item.product is not None else f"Product #{item.product_id}",
                image_url=item.product.image_url if item.product is not None else None,
                quantity=item.quantity,
                price_snapshot=to_money(item.price_snapshot),
                line_total=to_money(Decimal(str(item.price_snapshot)) * item.quantity),
            )
            for item in cart.items
        ]
        pricing = compute_totals(
            [(line.price_snapshot, line.quantity) for line in lines],
            coupon,
            self.policy,
        )
        return CartView(
            user_id=cart.user_id,
            items=lines,
            coupon=coupon,
            pricing=pricing,
            item_count=sum(line.quantity for line in lines),
        )

    # -------------------------------------------------------------- mutations

    def _validate_quantity(self, quantity: int, allow_zero: bool = False) -> None:
        minimum = 0 if allow_zero else 1
        if not isinstance(quantity, int) or isinstance(quantity, bool) or not minimum <= quantity <= self.max_quantity:
            raise InvalidInputError(
                f"Quantity must be between {minimum} and {self.max_quantity}",
                code="INVALID_QUANTITY",
                details={"quantity": quantity},
            )

    async def add_item(self, user_id: int, product_id: int, quantity: int = 1) -> CartView:
        """Add a product, merging with an existing line for the same product."""
        self._validate_quantity(quantity)

        product = await self.catalog.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if not product.active:
            raise ProductUnavailableError(product_id, product.name)
        if quantity > product.stock:
            raise InsufficientStockError(product_id, quantity, product.stock)

        cart = await self.load_cart(user_id)
        if cart is None:
            cart = Cart(user_id=user_id)
            self.db.add(cart)

        existing = next((item for item in cart.items if item.product_id == product_id), None)
        new_quantity = quantity + (existing.quantity if existing else 0)

        if new_quantity > self.max_quantity:
            raise InvalidInputError(
                f"Cannot have more than {self.max_quantity} of one item in the cart",
                code="QUANTITY_LIMIT_EXCEEDED",
                details={"product_id": product_id, "requested_qty": new_quantity},
            )
        if new_quantity > product.stock:
            raise InsufficientStockError(product_id, new_quantity, product.stock)

        if existing:
            existing.quantity = new_quantity
        else:
            cart.items.append(
                CartItem(
                    product_id=product_id,
                    product=product,
                    quantity=new_quantity,
                    price_snapshot=product.price,
                )
            )

        await self._refresh_prices(cart)
        await self.db.commit()

        logger.info("Cart add user_id=%s product_id=%s quantity=%s", user_id, product_id, new_quantity)
        return self.view(cart)

    async def update_quantity(self, user_id: int, product_id: int, quantity: int) -> CartView:
        """Overwrite a line's quantity; zero removes the line."""
        self._validate_quantity(quantity, allow_zero=True)
        if quantity == 0:
            return await self.remove_item(user_id, product_id)

        cart = await self._require_cart(user_id)
        item = next((i for i in cart.items if i.product_id == product_id), None)
        if item is None:
            raise ItemNotFoundError(product_id)

        product = await self.catalog.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if quantity > product.stock:
            raise InsufficientStockError(product_id, quantity, product.stock)

        item.quantity = quantity

        await self._refresh_prices(cart)
        await self.db.commit()
        return self.view(cart)

    async def remove_item(self, user_id: int, product_id: int) -> CartView:
        cart = await self._require_cart(user_id)
        item = next((i for i in cart.items if i.product_id == product_id), None)
        if item is None:
            raise ItemNotFoundError(product_id)

        cart.items.remove(item)

        await self._refresh_prices(cart)
        await self.db.commit()
        return self.view(cart)

    async def clear(self, user_id: int) -> None:
        """Empty the cart and drop its coupon. The cart row itself is kept."""
        cart = await self._require_cart(user_id)
        self.empty(cart)
        await self.db.commit()

    def empty(self, cart: Cart) -> None:
        """Remove every line and the coupon without committing."""
        cart.items.clear()
        cart.clear_coupon()

    async def apply_coupon(
        self,
        user_id: int,
        code: str,
        discount_value,
        discount_type: str = "percentage",
    ) -> CartView:
        """Attach a coupon, replacing any existing one."""
        terms = validate_coupon_terms(code, discount_value, discount_type)
        cart = await self._require_cart(user_id)

        if cart.has_coupon and cart.coupon_code != terms.code:
            logger.info("Cart coupon replaced user_id=%s old=%s new=%s", user_id, cart.coupon_code, terms.code)

        cart.coupon_code = terms.code
        cart.coupon_discount_value = terms.discount_value
        cart.coupon_discount_type = terms.discount_type

        await self._refresh_prices(cart)
        await self.db.commit()
        return self.view(cart)

    async def remove_coupon(self, user_id: int) -> CartView:
        cart = await self._require_cart(user_id)
        cart.clear_coupon()
        await self._refresh_prices(cart)
        await self.db.commit()
        return self.view(cart)

    async def refresh_prices(self, user_id: int) -> CartView:
        cart = await self._require_cart(user_id)
        await self._refresh_prices(cart)
        await self.db.commit()
        return self.view(cart)

    async def _refresh_prices(self, cart: Cart) -> None:
        """Re-read every line's product; drop inactive ones, update prices on the rest."""
        if not cart.items:
            return

        products = await self.catalog.get_many(item.product_id for item in cart.items)

        for item in list(cart.items):
            product = products.get(item.product_id)
            if product is None or not product.active:
                cart.items.remove(item)
                logger.info(
                    "Dropped unavailable product from cart user_id=%s product_id=%s",
                    cart.user_id,
                    item.product_id,
                )
                continue

            item.product = product
            if item.price_snapshot is None or to_money(item.price_snapshot) != to_money(product.price):
                item.price_snapshot = product.price

        await self.db.flush()
