"""
Stale card order sweeper

Card orders hold their stock from checkout until payment. Orders that stay
unpaid past STALE_ORDER_TTL_MINUTES are cancelled and the stock goes back on
the shelf. Runs inside the app lifespan; heartbeat is exposed on /health.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from storefront.core.config import Settings
from storefront.core.database import Database
from storefront.core.utils import utcnow
from storefront.services.checkout_service import CheckoutService
from storefront.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)


def new_heartbeat() -> Dict[str, Any]:
    return {
        "last_run": None,
        "last_success": None,
        "orders_released": 0,
        "errors": 0,
    }


async def run_stale_order_sweep(
    database: Database,
    gateway: Optional[PaymentGateway],
    ttl_minutes: int,
    heartbeat: Optional[Dict[str, Any]] = None,
) -> Dict[str, int]:
    heartbeat = heartbeat if heartbeat is not None else new_heartbeat()
    heartbeat["last_run"] = utcnow().isoformat()

    try:
        async with database.session_scope() as db:
            service = CheckoutService(db, gateway=gateway)
            stats = await service.release_stale_card_orders(timedelta(minutes=ttl_minutes))
    except Exception as e:
        heartbeat["errors"] += 1
        logger.error(f"Stale order sweep failed: {e}")
        raise

    heartbeat["last_success"] = utcnow().isoformat()
    heartbeat["orders_released"] += stats.get("orders_released", 0)
    return stats


async def stale_order_scheduler(
    database: Database,
    gateway: Optional[PaymentGateway],
    settings: Settings,
    heartbeat: Dict[str, Any],
) -> None:
    """Runs the sweep every STALE_ORDER_SWEEP_INTERVAL_MINUTES until cancelled."""
    interval_seconds = settings.STALE_ORDER_SWEEP_INTERVAL_MINUTES * 60
    logger.info(f"Stale order sweeper started (interval: {settings.STALE_ORDER_SWEEP_INTERVAL_MINUTES} minutes)")

    while True:
        try:
            await run_stale_order_sweep(database, gateway, settings.STALE_ORDER_TTL_MINUTES, heartbeat)
        except Exception as e:
            logger.error(f"Stale order sweeper error: {e}")

        await asyncio.sleep(interval_seconds)
