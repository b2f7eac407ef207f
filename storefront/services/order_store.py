"""
Order persistence

Orders are inserted once (with their item snapshots and the initial history
row) and afterwards only the mutable payment/fulfilment columns change.
Status changes are compare-and-set against the status the caller read, so two
admins (or an admin and the stale-order sweep) can never interleave a
transition silently.
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.exceptions import OrderNotFoundError, StaleOrderStateError
from storefront.core.utils import utcnow
from storefront.models import Order, OrderStatusHistory
from storefront.models.order import NON_REVENUE_STATUSES
from storefront.services.pricing import ZERO, to_money

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-YYYYMMDD-XXXXXXXX"""
    now = now or utcnow()
    return f"ORD-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


@dataclass
class OrderPage:
    orders: List[Order]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.per_page else 0


@dataclass
class OrderStats:
    total_orders: int = 0
    total_revenue: Decimal = ZERO
    average_order_value: Decimal = ZERO
    by_status: Dict[str, int] = field(default_factory=dict)
    by_payment_method: Dict[str, int] = field(default_factory=dict)


def _clamp_page(page: int, per_page: int):
    page = max(1, int(page or 1))
    per_page = max(1, min(int(per_page or DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE))
    return page, per_page


class OrderStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _base_query(self):
        return select(Order).options(selectinload(Order.items))

    async def add(self, order: Order, changed_by: Optional[int] = None) -> Order:
        """
        Stage a new order with its items and the initial history row.

        Flushes but does not commit: the caller owns the transaction, so the
        insert lands together with the stock decrement and cart clear.
        """
        if not order.order_number:
            order.order_number = generate_order_number()
        order.status_history.append(
            OrderStatusHistory(
                from_status=None,
                to_status=order.order_status,
                comment="Order created",
                changed_by=changed_by,
            )
        )
        self.db.add(order)
        await self.db.flush()
        return order

    async def get(self, order_id: int) -> Order:
        result = await self.db.execute(
            self._base_query()
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def list_for_user(
        self,
        user_id: int,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> OrderPage:
        page, per_page = _clamp_page(page, per_page)

        total = await self.db.scalar(
            select(func.count(Order.id)).where(Order.user_id == user_id)
        )
        result = await self.db.execute(
            self._base_query()
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return OrderPage(list(result.scalars().all()), total or 0, page, per_page)

    async def list_all(
        self,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> OrderPage:
        page, per_page = _clamp_page(page, per_page)

        count_query = select(func.count(Order.id))
        query = self._base_query()
        if status:
            count_query = count_query.where(Order.order_status == status)
            query = query.where(Order.order_status == status)

        total = await self.db.scalar(count_query)
        result = await self.db.execute(
            query
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return OrderPage(list(result.scalars().all()), total or 0, page, per_page)

    async def stats(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> OrderStats:
        """
        Aggregate counts and revenue over an optional created_at window.

        Revenue and average order value ignore cancelled and refunded orders;
        the histograms count everything in the window.
        """
        filters = []
        if date_from is not None:
            filters.append(Order.created_at >= date_from)
        if date_to is not None:
            filters.append(Order.created_at <= date_to)

        status_rows = await self.db.execute(
            select(Order.order_status, func.count(Order.id))
            .where(*filters)
            .group_by(Order.order_status)
        )
        by_status = {status: count for status, count in status_rows.all()}

        method_rows = await self.db.execute(
            select(Order.payment_method, func.count(Order.id))
            .where(*filters)
            .group_by(Order.payment_method)
        )
        by_payment_method = {method: count for method, count in method_rows.all()}

        revenue_row = await self.db.execute(
            select(func.count(Order.id), func.coalesce(func.sum(Order.total), 0))
            .where(*filters, Order.order_status.notin_(NON_REVENUE_STATUSES))
        )
        revenue_count, revenue = revenue_row.one()
        revenue = to_money(revenue)
        average = to_money(revenue / revenue_count) if revenue_count else ZERO

        return OrderStats(
            total_orders=sum(by_status.values()),
            total_revenue=revenue,
            average_order_value=average,
            by_status=by_status,
            by_payment_method=by_payment_method,
        )

    async def transition_status(
        self,
        order_id: int,
        expected_status: str,
        new_status: str,
        changed_by: Optional[int] = None,
        comment: Optional[str] = None,
        values: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Move order_status from ``expected_status`` to ``new_status``.

        ``values`` carries extra columns written in the same UPDATE
        (delivered_at, cancelled_at, tracking_number).

        Raises:
            StaleOrderStateError: the row no longer holds ``expected_status``
        """
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.order_status == expected_status)
            .values(order_status=new_status, updated_at=utcnow(), **(values or {}))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Order status compare-and-set lost order_id=%s expected=%s new=%s",
                order_id,
                expected_status,
                new_status,
            )
            raise StaleOrderStateError(order_id, expected_status)

        self.db.add(
            OrderStatusHistory(
                order_id=order_id,
                from_status=expected_status,
                to_status=new_status,
                comment=comment,
                changed_by=changed_by,
            )
        )
        await self.db.flush()

    async def update_fields(self, order_id: int, **values) -> None:
        """Write mutable non-status columns (tracking number and similar)."""
        await self.db.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )

    async def mark_paid(self, order_id: int, payment_id: str, paid_at: Optional[datetime] = None) -> bool:
        """
        Flip payment_status pending -> completed.

        Returns False when the order was already completed (a concurrent
        confirmation won), which callers treat as success.
        """
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status != "completed")
            .values(
                payment_status="completed",
                payment_id=payment_id,
                paid_at=paid_at or utcnow(),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_payment_intent(self, order_id: int, payment_intent_id: str) -> None:
        await self.update_fields(order_id, payment_intent_id=payment_intent_id)

    async def history(self, order_id: int) -> List[OrderStatusHistory]:
        exists = await self.db.scalar(select(Order.id).where(Order.id == order_id))
        if exists is None:
            raise OrderNotFoundError(order_id)
        result = await self.db.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.id)
        )
        return list(result.scalars().all())

    async def find_stale_card_orders(self, created_before: datetime, limit: int = 100) -> List[Order]:
        """Card orders still pending and unpaid, created before the cutoff."""
        result = await self.db.execute(
            self._base_query()
            .where(
                Order.payment_method == "card",
                Order.payment_status == "pending",
                Order.order_status == "pending",
                Order.created_at < created_before,
            )
            .order_by(Order.id)
            .limit(limit)
        )
        return list(result.scalars().all())
