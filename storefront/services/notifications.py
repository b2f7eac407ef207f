"""
Order notifications

Transactional order-confirmation email via SendGrid. Sending is best-effort:
checkout and payment confirmation never fail because mail did.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from storefront.models import Order, User

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationSink(Protocol):
    async def send_order_confirmation(self, order: Order, user: User) -> SendResult:
        ...


def order_summary(order: Order) -> Dict[str, Any]:
    return {
        "order_number": order.order_number,
        "order_status": order.order_status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "total": str(order.total),
        "items": [
            {"name": item.name, "quantity": item.quantity, "unit_price": str(item.unit_price)}
            for item in order.items
        ],
    }


def render_confirmation_text(order: Order, user: User, client_url: str = "") -> str:
    lines = [
        f"Hi {user.name or user.email},",
        "",
        f"Thanks for your order {order.order_number}.",
        "",
    ]
    for item in order.items:
        lines.append(f"  {item.quantity} x {item.name} @ {item.unit_price}")
    lines += [
        "",
        f"Subtotal: {order.subtotal}",
        f"Discount: {order.discount}",
        f"Tax: {order.tax}",
        f"Shipping: {order.shipping}",
        f"Total: {order.total}",
    ]
    if client_url:
        lines += ["", f"Track your order: {client_url.rstrip('/')}/orders/{order.id}"]
    return "\n".join(lines)


class SendGridNotificationSink:
    """SendGrid provider for order mail."""

    BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(self, api_key: str, from_email: str, from_name: str = "", client_url: str = ""):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.client_url = client_url
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=30.0,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._http_client

    async def close(self):
        """Explicit cleanup method."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send_order_confirmation(self, order: Order, user: User) -> SendResult:
        if not self.api_key:
            logger.warning("SendGrid API key not configured")
            return SendResult(success=False, error="Email not configured")

        payload = {
            "personalizations": [{
                "to": [{"email": user.email, "name": user.name or ""}],
            }],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": f"Order confirmed: {order.order_number}",
            "content": [{
                "type": "text/plain",
                "value": render_confirmation_text(order, user, self.client_url),
            }],
            "categories": ["order_confirmation"],
        }

        http = await self._get_http_client()
        resp = await http.post(f"{self.BASE_URL}/mail/send", json=payload)

        if resp.status_code in (200, 202):
            return SendResult(success=True, message_id=resp.headers.get("X-Message-Id"))
        return SendResult(success=False, error=f"{resp.status_code}: {resp.text}")


class LoggingNotificationSink:
    """Dev/test sink: logs instead of sending."""

    async def send_order_confirmation(self, order: Order, user: User) -> SendResult:
        logger.info("Order confirmation (not sent) to=%s summary=%s", user.email, order_summary(order))
        return SendResult(success=True, message_id="logged")

    async def close(self):
        pass


async def notify_order_confirmation(
    sink: Optional[NotificationSink],
    order: Order,
    user: User,
    timeout: float = 10.0,
) -> bool:
    """
    Best-effort confirmation send. Returns True if the sink reported success.

    Failures and timeouts are logged and swallowed.
    """
    if sink is None or user is None:
        return False

    try:
        result = await asyncio.wait_for(sink.send_order_confirmation(order, user), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Order confirmation timed out order_number=%s", order.order_number)
        return False
    except Exception as e:
        logger.warning("Order confirmation failed order_number=%s: %s", order.order_number, e)
        return False

    if not result.success:
        logger.warning("Order confirmation not delivered order_number=%s: %s", order.order_number, result.error)
    return result.success
