"""
Storefront checkout API
FastAPI application entry point

- Database handle opened/closed in the lifespan (no import-time engine)
- Stale card order sweeper with heartbeat on /health
- Structured domain errors, error sanitization middleware
- Payment gateway and notification sink live on app.state
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from sqlalchemy import text

from storefront import __version__
from storefront.api.routes import admin_orders, cart, orders
from storefront.core.config import Settings, settings as default_settings
from storefront.core.database import Database
from storefront.core.error_handler import ErrorSanitizationMiddleware, storefront_error_handler
from storefront.core.exceptions import StorefrontError
from storefront.jobs.stale_orders import new_heartbeat, stale_order_scheduler
from storefront.services.notifications import LoggingNotificationSink, NotificationSink, SendGridNotificationSink
from storefront.services.payment_gateway import PaymentGateway, StripePaymentGateway

logger = logging.getLogger(__name__)


def build_notifier(settings: Settings) -> NotificationSink:
    if settings.SENDGRID_API_KEY:
        return SendGridNotificationSink(
            api_key=settings.SENDGRID_API_KEY,
            from_email=settings.SENDGRID_FROM_EMAIL,
            from_name=settings.SENDGRID_FROM_NAME,
            client_url=settings.CLIENT_URL,
        )
    logger.warning("SENDGRID_API_KEY not set - order mail will be logged, not sent")
    return LoggingNotificationSink()


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not set - card payments will fail with 502")
    return StripePaymentGateway(settings.STRIPE_SECRET_KEY, timeout=settings.PAYMENT_TIMEOUT_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Open the database and start background tasks on startup; undo on shutdown.
    """
    settings: Settings = app.state.settings
    database: Database = app.state.db

    await database.init()

    sweeper_task = None
    if settings.STALE_ORDER_SWEEP_ENABLED:
        sweeper_task = asyncio.create_task(
            stale_order_scheduler(database, app.state.payment_gateway, settings, app.state.sweeper_heartbeat)
        )
        logger.info("Stale order sweeper ENABLED")
    else:
        logger.info("Stale order sweeper DISABLED via config")

    yield

    if sweeper_task and not sweeper_task.done():
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            logger.info("Stale order sweeper cancelled")

    close = getattr(app.state.notifier, "close", None)
    if close is not None:
        await close()
        logger.info("Notification HTTP client closed")

    await database.close()


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    payment_gateway: Optional[PaymentGateway] = None,
    notifier: Optional[NotificationSink] = None,
) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        lifespan=lifespan,
        title=settings.APP_NAME,
        description="Cart, pricing and checkout API",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
        openapi_tags=[
            {"name": "Health", "description": "Health check"},
            {"name": "Cart", "description": "Shopping cart operations"},
            {"name": "Orders", "description": "Checkout, payment and order history"},
            {"name": "Admin - Orders", "description": "Fulfilment and reporting"},
        ],
    )

    app.state.settings = settings
    app.state.db = database or Database(settings)
    app.state.payment_gateway = payment_gateway or build_payment_gateway(settings)
    app.state.notifier = notifier or build_notifier(settings)
    app.state.sweeper_heartbeat = new_heartbeat()

    app.add_exception_handler(StorefrontError, storefront_error_handler)

    # Catches unhandled exceptions
    app.add_middleware(ErrorSanitizationMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(cart.router, prefix="/api/cart", tags=["Cart"])
    app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
    app.include_router(admin_orders.router, prefix="/api/admin", tags=["Admin - Orders"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """
        Health check with an actual DB ping and sweeper heartbeat.
        Returns 503 if the database is unreachable.
        """
        health_status = {
            "status": "healthy",
            "database": "unknown",
            "stale_order_sweeper": app.state.sweeper_heartbeat,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            async with app.state.db.session() as db:
                await db.execute(text("SELECT 1"))
            health_status["database"] = "connected"
        except Exception as e:
            health_status["database"] = f"error: {type(e).__name__}"
            health_status["status"] = "unhealthy"
            return JSONResponse(status_code=503, content=health_status)

        return health_status

    return app


app = create_app()
