"""
Checkout coordinator

Turns a cart into an order and drives the order through payment and
fulfilment.

SAFE CHECKOUT FLOW:
1. Re-validate every cart line against the live catalog (nothing written yet)
2. Price the cart with its applied coupon
3. Conditional stock decrement per line (stock >= qty), order insert and
   cart clear in ONE transaction; any short line rolls the whole thing back
4. Card orders get their PaymentIntent inside that transaction; a gateway
   failure rolls it back and the checkout fails with nothing saved
5. Commit, then best-effort confirmation mail for every order

Status changes are compare-and-set on order_status. Payment confirmation is
idempotent: a completed order is returned as-is without calling the gateway.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.exceptions import (
    AlreadyCancelledError,
    AlreadyDeliveredError,
    ConflictError,
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    InvalidInputError,
    PaymentFailedError,
    ProductUnavailableError,
    StaleOrderStateError,
    UpstreamUnavailableError,
)
from storefront.core.utils import utcnow
from storefront.models import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, User
from storefront.models.order import SHIPPED_OR_LATER
from storefront.services.cart_service import CartService, coupon_terms_for
from storefront.services.catalog import ProductCatalog
from storefront.services.notifications import NotificationSink, notify_order_confirmation
from storefront.services.order_store import OrderStore, generate_order_number
from storefront.services.payment_gateway import INTENT_SUCCEEDED, PaymentGateway, PaymentIntent
from storefront.services.pricing import PricingPolicy, compute_totals, to_minor_units

logger = logging.getLogger(__name__)

# Settled at creation time (no redirect/intent round trip)
INSTANT_PAYMENT_METHODS = frozenset({
    PaymentMethod.UPI.value,
    PaymentMethod.NETBANKING.value,
    PaymentMethod.WALLET.value,
})

PAYMENT_METHODS = frozenset(m.value for m in PaymentMethod)
ORDER_STATUSES = frozenset(s.value for s in OrderStatus)


@dataclass
class CheckoutResult:
    order: Order
    client_secret: Optional[str] = None


def _can_access(order: Order, user: User) -> bool:
    return order.user_id == user.id or bool(user.is_admin)


class CheckoutService:
    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[NotificationSink] = None,
        policy: Optional[PricingPolicy] = None,
        currency: Optional[str] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.policy = policy or PricingPolicy.from_settings(settings)
        self.currency = currency or settings.STRIPE_CURRENCY
        self.catalog = ProductCatalog(db)
        self.carts = CartService(db, catalog=self.catalog, policy=self.policy)
        self.orders = OrderStore(db)

    # ---------------------------------------------------------------- create

    async def create_order(
        self,
        user: User,
        shipping_address: Dict[str, Any],
        payment_method: str,
        billing_address: Optional[Dict[str, Any]] = None,
        coupon_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CheckoutResult:
        start_time = time.time()
        user_id = user.id

        if payment_method not in PAYMENT_METHODS:
            raise InvalidInputError(
                f"Unsupported payment method: {payment_method}",
                code="INVALID_PAYMENT_METHOD",
                details={"payment_method": payment_method},
            )

        cart = await self.carts.load_cart(user_id)
        if cart is None or not cart.items:
            raise EmptyCartError()

        # Step 1: re-validate against the live catalog
        products = await self.catalog.get_many(item.product_id for item in cart.items)
        lines: List[Tuple[Any, int]] = []
        for item in cart.items:
            product = products.get(item.product_id)
            if product is None or not product.active:
                raise ProductUnavailableError(
                    item.product_id,
                    product.name if product is not None else None,
                )
            if item.quantity > product.stock:
                raise InsufficientStockError(product.id, item.quantity, product.stock)
            lines.append((product, item.quantity))

        # Step 2: price it with the cart's coupon; a coupon_code sent at checkout is informational
        coupon = coupon_terms_for(cart)
        if coupon_code is not None and coupon_code.strip():
            if coupon is None or coupon.code.lower() != coupon_code.strip().lower():
                logger.info(
                    "Checkout coupon_code ignored, cart coupon applies user_id=%s sent=%s cart=%s",
                    user_id,
                    coupon_code,
                    coupon.code if coupon else None,
                )

        pricing = compute_totals(
            [(product.price, quantity) for product, quantity in lines],
            coupon,
            self.policy,
        )

        now = utcnow()
        instant = payment_method in INSTANT_PAYMENT_METHODS
        order = Order(
            user_id=user_id,
            order_number=generate_order_number(now),
            order_status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.COMPLETED.value if instant else PaymentStatus.PENDING.value,
            subtotal=pricing.subtotal,
            discount=pricing.discount,
            tax=pricing.tax,
            shipping=pricing.shipping,
            total=pricing.total,
            coupon_snapshot=coupon.to_snapshot() if coupon else None,
            shipping_address=shipping_address,
            billing_address=billing_address or shipping_address,
            payment_method=payment_method,
            notes=notes,
            created_at=now,
            paid_at=now if instant else None,
            estimated_delivery=now + timedelta(days=settings.ESTIMATED_DELIVERY_DAYS),
            items=[
                OrderItem(
                    product_id=product.id,
                    name=product.name,
                    image_url=product.image_url,
                    unit_price=product.price,
                    quantity=quantity,
                )
                for product, quantity in lines
            ],
        )

        # Step 3: stock, order and cart in one transaction
        for product, quantity in sorted(lines, key=lambda line: line[0].id):
            product_id = product.id
            if not await self.catalog.decrement_stock(product_id, quantity):
                await self.db.rollback()
                current = await self.catalog.get(product_id)
                available = current.stock if current is not None else 0
                logger.info(
                    "CHECKOUT_METRIC: checkout_stock_conflict "
                    f"user_id={user_id} product_id={product_id} requested={quantity} available={available}"
                )
                raise InsufficientStockError(product_id, quantity, available)

        await self.orders.add(order, changed_by=user_id)
        self.carts.empty(cart)

        # Step 4: card payment intent, still uncommitted
        client_secret = None
        if payment_method == PaymentMethod.CARD.value:
            order_number = order.order_number
            try:
                intent = await self._create_intent(order)
            except UpstreamUnavailableError as e:
                await self.db.rollback()
                logger.warning(
                    "Payment intent creation failed; checkout rolled back user_id=%s order_number=%s: %s",
                    user_id,
                    order_number,
                    e.message,
                )
                logger.info(
                    "CHECKOUT_METRIC: checkout_payment_failed "
                    f"user_id={user_id} order_number={order_number}"
                )
                raise
            order.payment_intent_id = intent.id
            client_secret = intent.client_secret

        await self.db.commit()

        order_id = order.id
        order = await self.orders.get(order_id)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"CHECKOUT_METRIC: order_created "
            f"user_id={user_id} "
            f"order_id={order_id} "
            f"order_number={order.order_number} "
            f"payment_method={payment_method} "
            f"total={order.total} "
            f"item_count={len(lines)} "
            f"duration_ms={duration_ms:.2f}"
        )

        # Step 5: every order gets a confirmation; card orders get another once paid
        await self._notify(order, user)

        return CheckoutResult(order=order, client_secret=client_secret)

    async def _create_intent(self, order: Order) -> PaymentIntent:
        if self.gateway is None:
            raise UpstreamUnavailableError("Payment provider not configured", service="payment")
        return await self.gateway.create_intent(
            to_minor_units(order.total),
            self.currency,
            {
                "order_id": str(order.id),
                "order_number": order.order_number,
                "user_id": str(order.user_id),
            },
        )

    async def _owner_of(self, order: Order, requester: User) -> Optional[User]:
        if order.user_id == requester.id:
            return requester
        if order.user_id is None:
            return None
        return await self.db.get(User, order.user_id)

    async def _notify(self, order: Order, user: User) -> None:
        await notify_order_confirmation(
            self.notifier,
            order,
            user,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )

    # --------------------------------------------------------------- payment

    async def get_order(self, order_id: int, requester: User) -> Order:
        order = await self.orders.get(order_id)
        if not _can_access(order, requester):
            raise ForbiddenError()
        return order

    async def confirm_payment(self, order_id: int, payment_intent_id: str, requester: User) -> Order:
        """
        Verify a card payment with the gateway and record it.

        Idempotent: an already-completed order is returned unchanged and the
        gateway is not called.
        """
        order = await self.get_order(order_id, requester)

        if order.payment_status == PaymentStatus.COMPLETED.value:
            logger.info("Payment already confirmed order_id=%s", order_id)
            return order

        if not payment_intent_id:
            raise InvalidInputError("payment_intent_id is required", code="INVALID_PAYMENT_INTENT")

        if order.payment_intent_id and order.payment_intent_id != payment_intent_id:
            raise InvalidInputError(
                "Payment intent does not belong to this order",
                code="PAYMENT_INTENT_MISMATCH",
                details={"order_id": order_id},
            )

        if self.gateway is None:
            raise UpstreamUnavailableError("Payment provider not configured", service="payment")

        intent = await self.gateway.retrieve_intent(payment_intent_id)
        if intent.status != INTENT_SUCCEEDED:
            logger.info(
                "CHECKOUT_METRIC: payment_not_completed "
                f"order_id={order_id} intent_id={payment_intent_id} status={intent.status}"
            )
            raise PaymentFailedError(payment_intent_id, intent.status)

        if order.order_status == OrderStatus.CANCELLED.value:
            # Money was captured after the order was released; record it so it can be refunded
            logger.warning("Payment captured for cancelled order order_id=%s; refund required", order_id)

        if not order.payment_intent_id:
            await self.orders.set_payment_intent(order_id, payment_intent_id)
        updated = await self.orders.mark_paid(order_id, payment_id=intent.id)
        await self.db.commit()

        order = await self.orders.get(order_id)
        if updated:
            logger.info(
                "CHECKOUT_METRIC: payment_confirmed "
                f"order_id={order_id} intent_id={payment_intent_id} total={order.total}"
            )
            owner = await self._owner_of(order, requester)
            await self._notify(order, owner)
        return order

    async def retry_payment_intent(self, order_id: int, requester: User) -> PaymentIntent:
        """
        Return a usable PaymentIntent for an unpaid card order.

        Re-reads the stored intent so the client can resume with its secret.
        An order with no stored intent gets a new one.
        """
        order = await self.get_order(order_id, requester)

        if order.payment_method != PaymentMethod.CARD.value:
            raise InvalidInputError("Order is not a card order", code="NOT_CARD_ORDER")
        if order.payment_status == PaymentStatus.COMPLETED.value:
            raise ConflictError("Order already paid", code="ALREADY_PAID", details={"order_id": order_id})
        if order.order_status == OrderStatus.CANCELLED.value:
            raise AlreadyCancelledError(order_id)

        if order.payment_intent_id:
            if self.gateway is None:
                raise UpstreamUnavailableError("Payment provider not configured", service="payment")
            return await self.gateway.retrieve_intent(order.payment_intent_id)

        intent = await self._create_intent(order)
        await self.orders.set_payment_intent(order_id, intent.id)
        await self.db.commit()
        logger.info(f"CHECKOUT_METRIC: payment_intent_retried order_id={order_id} intent_id={intent.id}")
        return intent

    # ----------------------------------------------------------- fulfilment

    async def cancel_order(self, order_id: int, requester: User) -> Order:
        order = await self.get_order(order_id, requester)

        current = order.order_status
        if current == OrderStatus.DELIVERED.value:
            raise AlreadyDeliveredError(order_id)
        if current == OrderStatus.CANCELLED.value:
            raise AlreadyCancelledError(order_id)
        if current in SHIPPED_OR_LATER:
            logger.warning(
                "Cancelling order past shipment order_id=%s status=%s; restock may not be physical",
                order_id,
                current,
            )

        restock = [(item.product_id, item.quantity) for item in order.items if item.product_id is not None]

        await self.orders.transition_status(
            order_id,
            expected_status=current,
            new_status=OrderStatus.CANCELLED.value,
            changed_by=requester.id,
            comment="Cancelled by admin" if requester.id != order.user_id else "Cancelled by customer",
            values={"cancelled_at": utcnow()},
        )
        for product_id, quantity in restock:
            await self.catalog.increment_stock(product_id, quantity)
        await self.db.commit()

        logger.info(
            "CHECKOUT_METRIC: order_cancelled "
            f"order_id={order_id} from_status={current} by={requester.id} restocked_lines={len(restock)}"
        )
        return await self.orders.get(order_id)

    async def update_status(
        self,
        order_id: int,
        new_status: str,
        actor: User,
        tracking_number: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Order:
        """Admin status change. Does not touch stock."""
        if not actor.is_admin:
            raise ForbiddenError("Admin access required")
        if new_status not in ORDER_STATUSES:
            raise InvalidInputError(
                f"Invalid status: {new_status}",
                code="INVALID_STATUS",
                details={"status": new_status, "allowed": sorted(ORDER_STATUSES)},
            )

        order = await self.orders.get(order_id)
        current = order.order_status

        values: Dict[str, Any] = {}
        if tracking_number:
            values["tracking_number"] = tracking_number

        if new_status == current:
            if values:
                await self.orders.update_fields(order_id, **values)
                await self.db.commit()
            return await self.orders.get(order_id)

        if new_status == OrderStatus.DELIVERED.value:
            values["delivered_at"] = utcnow()
        elif new_status == OrderStatus.CANCELLED.value:
            values["cancelled_at"] = utcnow()

        await self.orders.transition_status(
            order_id,
            expected_status=current,
            new_status=new_status,
            changed_by=actor.id,
            comment=comment,
            values=values,
        )
        await self.db.commit()

        logger.info(f"Order status updated order_id={order_id} {current} -> {new_status} by={actor.id}")
        return await self.orders.get(order_id)

    # ----------------------------------------------------------------- sweep

    async def release_stale_card_orders(self, older_than: timedelta, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Cancel card orders that never got paid and put their stock back.

        Orders whose intent turns out to have succeeded are marked paid
        instead. Orders whose intent cannot be checked are left alone.
        """
        stats = {"orders_released": 0, "orders_paid": 0, "stock_restored": 0, "skipped": 0}
        cutoff = (now or utcnow()) - older_than

        stale = await self.orders.find_stale_card_orders(cutoff)
        # Plain values only: rollbacks below expire ORM instances
        plan = [
            (
                order.id,
                order.payment_intent_id,
                [(item.product_id, item.quantity) for item in order.items if item.product_id is not None],
            )
            for order in stale
        ]

        for order_id, intent_id, restock in plan:
            if intent_id:
                try:
                    intent = await self._check_intent(intent_id)
                except UpstreamUnavailableError:
                    stats["skipped"] += 1
                    continue
                if intent.status == INTENT_SUCCEEDED:
                    await self.orders.mark_paid(order_id, payment_id=intent.id)
                    await self.db.commit()
                    stats["orders_paid"] += 1
                    continue

            try:
                await self.orders.transition_status(
                    order_id,
                    expected_status=OrderStatus.PENDING.value,
                    new_status=OrderStatus.CANCELLED.value,
                    comment="Payment not completed in time",
                    values={"cancelled_at": utcnow()},
                )
            except StaleOrderStateError:
                await self.db.rollback()
                stats["skipped"] += 1
                continue

            for product_id, quantity in restock:
                await self.catalog.increment_stock(product_id, quantity)
                stats["stock_restored"] += quantity
            await self.db.commit()
            stats["orders_released"] += 1

        if stats["orders_released"] or stats["orders_paid"]:
            logger.info(
                f"Released {stats['orders_released']} stale card orders, "
                f"restored {stats['stock_restored']} units, "
                f"found {stats['orders_paid']} paid"
            )
        return stats

    async def _check_intent(self, payment_intent_id: str) -> PaymentIntent:
        if self.gateway is None:
            raise UpstreamUnavailableError("Payment provider not configured", service="payment")
        return await self.gateway.retrieve_intent(payment_intent_id)
