"""
Cart routes

Every mutating route returns the refreshed cart with its pricing breakdown.
"""
from fastapi import APIRouter, Depends

from storefront.api.deps import get_cart_service, get_current_user
from storefront.models.user import User
from storefront.schemas.cart import CartItemCreate, CartItemUpdate, CartResponse, CouponApply
from storefront.services.cart_service import CartService

router = APIRouter()


@router.get("", response_model=CartResponse)
async def get_cart(
    user: User = Depends(get_current_user),
    carts: CartService = Depends(get_cart_service),
):
    """Get current user's cart"""
    view = await carts.get_cart(user.id)
    return CartResponse.from_view(view)


@router.post("/items", response_model=CartResponse)
async def add_to_cart(
    item: CartItemCreate,
    user: User = Depends(get_current_user),
    carts: CartService = Depends(get_cart_service),
):
    """Add item to cart"""
    view = await carts.add_item(user.id, item.product_id, item.quantity)
    return CartResponse.from_view(view)


@router.put("/items/{product_id}", response_model=CartResponse)
async def update_cart_item(
    product_id: int,
    update: CartItemUpdate,
    user: User = Depends(get_current_user),
    carts: CartService = Depends(get_cart_service),
):
    """Update cart item quantity (0 removes the line)"""
    view = await carts.update_quantity(user.id, product_id, update.quantity)
    return CartResponse.from_view(view)


@router.delete("/items/{product_id}", response_model=CartResponse)
async def remove_from_cart(
    product_id: int,
    user: User = Depends(get_current_user),
    carts: CartService = Depends(get_cart_service),
):
    """Remove item from cart"""
    view = await carts.remove_item(user.id, product_id)
    return CartResponse.from_view(view)


@router.delete("")
async def clear_cart(
    user: User = Depends(get_current_user),
    carts: CartService = Depends(get_cart_service),
):
    """Clear entire cart"""
    await carts.clear(user.id)
    return {"message": "Cart cleared"}


@router.post("/coupon", response_model=CartResponse)
async def apply_coupon(
    coupon: CouponApply,
    user: User = Depends(get_current_user),
    carts: CartService = Depends(get_cart_service),
):
    view = await carts.apply_coupon(user.id, coupon.code, coupon.discount_value, coupon.discount_type)
    return CartResponse.from_view(view)


@router.delete("/coupon", response_model=CartResponse)
async def remove_coupon(
    user: User = Depends(get_current_user),
    carts: CartService = Depends(get_cart_service),
):
    view = await carts.remove_coupon(user.id)
    return CartResponse.from_view(view)
