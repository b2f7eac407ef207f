"""
Admin order routes

Fulfilment status changes, order listing, stats and status audit trail.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from storefront.api.deps import get_checkout_service, get_current_admin
from storefront.models.user import User
from storefront.schemas.order import (
    OrderList,
    OrderResponse,
    OrderStatsResponse,
    OrderStatusUpdate,
    StatusHistoryResponse,
)
from storefront.services.checkout_service import CheckoutService
from storefront.services.order_store import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter()


@router.get("/orders", response_model=OrderList)
async def list_all_orders(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    admin: User = Depends(get_current_admin),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    result = await checkout.orders.list_all(status=status, page=page, per_page=per_page)
    return OrderList(
        orders=[OrderResponse.model_validate(o) for o in result.orders],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        pages=result.pages,
    )


@router.get("/orders/stats", response_model=OrderStatsResponse)
async def order_stats(
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    admin: User = Depends(get_current_admin),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Order counts, revenue (excluding cancelled/refunded) and breakdowns"""
    stats = await checkout.orders.stats(date_from=date_from, date_to=date_to)
    return OrderStatsResponse(**stats.__dict__)


@router.put("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    admin: User = Depends(get_current_admin),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    return await checkout.update_status(
        order_id,
        payload.status,
        actor=admin,
        tracking_number=payload.tracking_number,
        comment=payload.comment,
    )


@router.get("/orders/{order_id}/history", response_model=List[StatusHistoryResponse])
async def order_status_history(
    order_id: int,
    admin: User = Depends(get_current_admin),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    return await checkout.orders.history(order_id)
