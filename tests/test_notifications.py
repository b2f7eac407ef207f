"""
Tests for order confirmation mail.
"""
import asyncio
import json
import pytest
from decimal import Decimal

import httpx

from storefront.models import Order, OrderItem, User
from storefront.services.notifications import (
    LoggingNotificationSink,
    SendGridNotificationSink,
    SendResult,
    notify_order_confirmation,
    render_confirmation_text,
)


def make_order():
    return Order(
        id=42,
        order_number="ORD-20260301-ABCDEF12",
        order_status="pending",
        payment_status="pending",
        payment_method="cod",
        subtotal=Decimal("1250.00"),
        discount=Decimal("125.00"),
        tax=Decimal("225.00"),
        shipping=Decimal("0.00"),
        total=Decimal("1350.00"),
        items=[
            OrderItem(name="Comic A", unit_price=Decimal("600.00"), quantity=2),
            OrderItem(name="Poster B", unit_price=Decimal("50.00"), quantity=1),
        ],
    )


def make_user():
    return User(email="asha@example.com", name="Asha")


class RaisingSink:
    async def send_order_confirmation(self, order, user):
        raise httpx.ConnectError("connection refused")


class SlowSink:
    async def send_order_confirmation(self, order, user):
        await asyncio.sleep(1)
        return SendResult(success=True)


class TestRenderConfirmation:
    def test_lists_items_and_totals(self):
        text = render_confirmation_text(make_order(), make_user(), "https://shop.example.com/")

        assert "Hi Asha," in text
        assert "2 x Comic A @ 600.00" in text
        assert "Total: 1350.00" in text
        assert "https://shop.example.com/orders/42" in text


class TestSendGridSink:
    """Test SendGridNotificationSink over a mock transport."""

    @pytest.mark.asyncio
    async def test_posts_mail(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(202, headers={"X-Message-Id": "msg-1"})

        sink = SendGridNotificationSink("SG.key", "orders@example.com", "Storefront")
        sink._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        result = await sink.send_order_confirmation(make_order(), make_user())
        await sink.close()

        assert result.success
        assert result.message_id == "msg-1"
        assert captured["url"].endswith("/mail/send")
        assert captured["body"]["personalizations"][0]["to"][0]["email"] == "asha@example.com"
        assert "ORD-20260301-ABCDEF12" in captured["body"]["subject"]

    @pytest.mark.asyncio
    async def test_provider_rejection(self):
        sink = SendGridNotificationSink("SG.key", "orders@example.com")
        sink._http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(401, text="unauthorized"))
        )

        result = await sink.send_order_confirmation(make_order(), make_user())
        await sink.close()

        assert not result.success
        assert result.error.startswith("401")

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        result = await SendGridNotificationSink("", "orders@example.com").send_order_confirmation(
            make_order(), make_user()
        )
        assert not result.success


class TestNotifyOrderConfirmation:
    """Test that sending never raises."""

    @pytest.mark.asyncio
    async def test_success(self):
        assert await notify_order_confirmation(LoggingNotificationSink(), make_order(), make_user()) is True

    @pytest.mark.asyncio
    async def test_exception_swallowed(self):
        assert await notify_order_confirmation(RaisingSink(), make_order(), make_user()) is False

    @pytest.mark.asyncio
    async def test_timeout_swallowed(self):
        assert await notify_order_confirmation(SlowSink(), make_order(), make_user(), timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_no_sink(self):
        assert await notify_order_confirmation(None, make_order(), make_user()) is False
