"""
Order routes

Customer-facing checkout, payment and cancellation.
"""
from fastapi import APIRouter, Depends, Query, status

from storefront.api.deps import get_checkout_service, get_current_user
from storefront.models.user import User
from storefront.schemas.order import (
    OrderCreate,
    OrderCreateResponse,
    OrderList,
    OrderResponse,
    PaymentConfirm,
    PaymentIntentResponse,
)
from storefront.services.checkout_service import CheckoutService
from storefront.services.order_store import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter()


@router.post("", response_model=OrderCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: OrderCreate,
    user: User = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Create order from cart"""
    result = await checkout.create_order(
        user,
        shipping_address=order_data.shipping_address.model_dump(),
        billing_address=order_data.billing_address.model_dump() if order_data.billing_address else None,
        payment_method=order_data.payment_method,
        coupon_code=order_data.coupon_code,
        notes=order_data.notes,
    )
    return OrderCreateResponse(
        order=OrderResponse.model_validate(result.order),
        client_secret=result.client_secret,
    )


@router.get("", response_model=OrderList)
async def list_orders(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Get current user's orders, newest first"""
    result = await checkout.orders.list_for_user(user.id, page=page, per_page=per_page)
    return OrderList(
        orders=[OrderResponse.model_validate(o) for o in result.orders],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        pages=result.pages,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    user: User = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Get single order"""
    return await checkout.get_order(order_id, user)


@router.post("/{order_id}/payment", response_model=OrderResponse)
async def confirm_payment(
    order_id: int,
    payload: PaymentConfirm,
    user: User = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Verify card payment with the gateway. Safe to repeat."""
    return await checkout.confirm_payment(order_id, payload.payment_intent_id, user)


@router.post("/{order_id}/payment-intent", response_model=PaymentIntentResponse)
async def retry_payment_intent(
    order_id: int,
    user: User = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    intent = await checkout.retry_payment_intent(order_id, user)
    return PaymentIntentResponse(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        status=intent.status,
    )


@router.put("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    user: User = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Cancel order and restore stock"""
    return await checkout.cancel_order(order_id, user)
