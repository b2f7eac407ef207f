"""
API dependencies
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from storefront.core.database import get_db
from storefront.core.security import decode_token
from storefront.models.user import User
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService
from storefront.services.notifications import NotificationSink
from storefront.services.payment_gateway import PaymentGateway

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated user"""
    payload = decode_token(credentials.credentials)

    if not payload or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled"
        )

    return user


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    """Require admin user"""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user


def get_payment_gateway(request: Request) -> Optional[PaymentGateway]:
    return getattr(request.app.state, "payment_gateway", None)


def get_notifier(request: Request) -> Optional[NotificationSink]:
    return getattr(request.app.state, "notifier", None)


async def get_cart_service(db: AsyncSession = Depends(get_db)) -> CartService:
    return CartService(db)


async def get_checkout_service(
    db: AsyncSession = Depends(get_db),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
    notifier: Optional[NotificationSink] = Depends(get_notifier),
) -> CheckoutService:
    return CheckoutService(db, gateway=gateway, notifier=notifier)
