"""
Tests for the HTTP surface: auth, error mapping and the checkout flow end to end.
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from storefront.core.config import settings
from storefront.core.security import create_access_token
from storefront.main import create_app


@pytest.fixture
def app(database, gateway, notifier):
    return create_app(settings=settings, database=database, payment_gateway=gateway, notifier=notifier)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def auth(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}


class TestHealthAndAuth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    @pytest.mark.asyncio
    async def test_missing_token(self, client, seed):
        response = await client.get("/api/cart")
        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_garbage_token(self, client, seed):
        response = await client.get("/api/cart", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_admin_routes_require_admin(self, client, seed):
        response = await client.get("/api/admin/orders", headers=auth(seed.customer))
        assert response.status_code == 403


class TestCartRoutes:
    """Test /api/cart."""

    @pytest.mark.asyncio
    async def test_add_and_price(self, client, seed):
        headers = auth(seed.customer)

        response = await client.post(
            "/api/cart/items",
            json={"product_id": seed.product_a.id, "quantity": 2},
            headers=headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["item_count"] == 2
        assert body["pricing"]["subtotal"] == "1200.00"
        assert body["pricing"]["shipping"] == "0.00"

        response = await client.post(
            "/api/cart/coupon",
            json={"code": "FLAT", "discount_value": "2000", "discount_type": "fixed"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["pricing"]["discount"] == "1200.00"

    @pytest.mark.asyncio
    async def test_invalid_quantity_is_400(self, client, seed):
        response = await client.post(
            "/api/cart/items",
            json={"product_id": seed.product_a.id, "quantity": 11},
            headers=auth(seed.customer),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_QUANTITY"

    @pytest.mark.asyncio
    async def test_unknown_product_is_404(self, client, seed):
        response = await client.post(
            "/api/cart/items",
            json={"product_id": 4242, "quantity": 1},
            headers=auth(seed.customer),
        )
        assert response.status_code == 404
        assert response.json()["error"] == "PRODUCT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_clear_without_cart_is_404(self, client, seed):
        response = await client.delete("/api/cart", headers=auth(seed.customer))
        assert response.status_code == 404
        assert response.json()["error"] == "CART_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_update_and_remove(self, client, seed):
        headers = auth(seed.customer)
        await client.post("/api/cart/items", json={"product_id": seed.product_b.id, "quantity": 1}, headers=headers)

        response = await client.put(f"/api/cart/items/{seed.product_b.id}", json={"quantity": 3}, headers=headers)
        assert response.json()["items"][0]["quantity"] == 3

        response = await client.delete(f"/api/cart/items/{seed.product_b.id}", headers=headers)
        assert response.status_code == 200
        assert response.json()["items"] == []


class TestOrderRoutes:
    """Test /api/orders and /api/admin/orders."""

    async def _checkout(self, client, seed, address, payment_method="card"):
        headers = auth(seed.customer)
        await client.post("/api/cart/items", json={"product_id": seed.product_a.id, "quantity": 2}, headers=headers)
        await client.post("/api/cart/items", json={"product_id": seed.product_b.id, "quantity": 1}, headers=headers)
        await client.post(
            "/api/cart/coupon",
            json={"code": "SAVE10", "discount_value": 10, "discount_type": "percentage"},
            headers=headers,
        )
        return await client.post(
            "/api/orders",
            json={"shipping_address": address, "payment_method": payment_method},
            headers=headers,
        )

    @pytest.mark.asyncio
    async def test_card_checkout_and_confirm(self, client, seed, address, gateway):
        response = await self._checkout(client, seed, address)
        assert response.status_code == 201
        body = response.json()
        assert body["client_secret"] == "pi_test_1_secret"
        assert body["order"]["total"] == "1350.00"
        order_id = body["order"]["id"]

        cart = await client.get("/api/cart", headers=auth(seed.customer))
        assert cart.json()["items"] == []

        for _ in range(2):
            response = await client.post(
                f"/api/orders/{order_id}/payment",
                json={"payment_intent_id": "pi_test_1"},
                headers=auth(seed.customer),
            )
            assert response.status_code == 200
            assert response.json()["payment_status"] == "completed"
        assert gateway.retrieved == ["pi_test_1"]

    @pytest.mark.asyncio
    async def test_gateway_outage_fails_checkout(self, client, seed, address, gateway, notifier):
        gateway.fail_create = True
        response = await self._checkout(client, seed, address)
        assert response.status_code == 502
        assert response.json()["error"] == "UPSTREAM_UNAVAILABLE"
        assert notifier.sent == []

        cart = await client.get("/api/cart", headers=auth(seed.customer))
        assert cart.json()["item_count"] == 3
        assert cart.json()["coupon"]["code"] == "SAVE10"

        orders = await client.get("/api/orders", headers=auth(seed.customer))
        assert orders.json()["total"] == 0

        gateway.fail_create = False
        response = await client.post(
            "/api/orders",
            json={"shipping_address": address, "payment_method": "card"},
            headers=auth(seed.customer),
        )
        assert response.status_code == 201
        assert response.json()["client_secret"] == "pi_test_1_secret"
        assert "payment_error" not in response.json()

    @pytest.mark.asyncio
    async def test_payment_intent_resume(self, client, seed, address):
        response = await self._checkout(client, seed, address)
        order_id = response.json()["order"]["id"]

        response = await client.post(f"/api/orders/{order_id}/payment-intent", headers=auth(seed.customer))
        assert response.status_code == 200
        assert response.json()["payment_intent_id"] == "pi_test_1"
        assert response.json()["client_secret"] == "pi_test_1_secret"

    @pytest.mark.asyncio
    async def test_confirm_with_gateway_down_is_502(self, client, seed, address, gateway):
        response = await self._checkout(client, seed, address)
        order_id = response.json()["order"]["id"]
        gateway.fail_retrieve = True

        response = await client.post(
            f"/api/orders/{order_id}/payment",
            json={"payment_intent_id": "pi_test_1"},
            headers=auth(seed.customer),
        )
        assert response.status_code == 502
        assert response.json()["error"] == "UPSTREAM_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_empty_cart_checkout(self, client, seed, address):
        response = await client.post(
            "/api/orders",
            json={"shipping_address": address, "payment_method": "cod"},
            headers=auth(seed.customer),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "EMPTY_CART"

    @pytest.mark.asyncio
    async def test_bad_pincode_rejected(self, client, seed, address):
        response = await client.post(
            "/api/orders",
            json={"shipping_address": dict(address, pincode="12AB"), "payment_method": "cod"},
            headers=auth(seed.customer),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_other_customer_forbidden(self, client, seed, address):
        response = await self._checkout(client, seed, address, "cod")
        order_id = response.json()["order"]["id"]

        response = await client.get(f"/api/orders/{order_id}", headers=auth(seed.other_customer))
        assert response.status_code == 403

        response = await client.get(f"/api/orders/{order_id}", headers=auth(seed.admin))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_list_my_orders(self, client, seed, address):
        await self._checkout(client, seed, address, "cod")

        response = await client.get("/api/orders?page=1&per_page=5", headers=auth(seed.customer))
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["pages"] == 1
        assert body["orders"][0]["items"][0]["name"] == "Comic A"

    @pytest.mark.asyncio
    async def test_admin_fulfilment_flow(self, client, seed, address):
        response = await self._checkout(client, seed, address, "cod")
        order_id = response.json()["order"]["id"]
        admin = auth(seed.admin)

        response = await client.put(
            f"/api/admin/orders/{order_id}/status",
            json={"status": "shipped", "tracking_number": "TRK42"},
            headers=admin,
        )
        assert response.status_code == 200
        assert response.json()["tracking_number"] == "TRK42"

        response = await client.put(
            f"/api/admin/orders/{order_id}/status",
            json={"status": "delivered"},
            headers=admin,
        )
        assert response.json()["delivered_at"] is not None

        response = await client.put(f"/api/orders/{order_id}/cancel", headers=auth(seed.customer))
        assert response.status_code == 400
        assert response.json()["error"] == "ALREADY_DELIVERED"

        response = await client.get(f"/api/admin/orders/{order_id}/history", headers=admin)
        assert [h["to_status"] for h in response.json()] == ["pending", "shipped", "delivered"]

        response = await client.get("/api/admin/orders/stats", headers=admin)
        assert response.status_code == 200
        stats = response.json()
        assert stats["total_orders"] == 1
        assert stats["total_revenue"] == "1350.00"
        assert stats["by_status"] == {"delivered": 1}

    @pytest.mark.asyncio
    async def test_invalid_status_is_400(self, client, seed, address):
        response = await self._checkout(client, seed, address, "cod")
        order_id = response.json()["order"]["id"]

        response = await client.put(
            f"/api/admin/orders/{order_id}/status",
            json={"status": "lost"},
            headers=auth(seed.admin),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_STATUS"

    @pytest.mark.asyncio
    async def test_cancel_restores_and_reports(self, client, seed, address):
        response = await self._checkout(client, seed, address, "cod")
        order_id = response.json()["order"]["id"]

        response = await client.put(f"/api/orders/{order_id}/cancel", headers=auth(seed.customer))
        assert response.status_code == 200
        assert response.json()["order_status"] == "cancelled"

        response = await client.put(f"/api/orders/{order_id}/cancel", headers=auth(seed.customer))
        assert response.status_code == 400
        assert response.json()["error"] == "ALREADY_CANCELLED"

    @pytest.mark.asyncio
    async def test_missing_order_is_404(self, client, seed):
        response = await client.get("/api/orders/777", headers=auth(seed.customer))
        assert response.status_code == 404
        assert response.json()["error"] == "ORDER_NOT_FOUND"
