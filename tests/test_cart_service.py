"""
Tests for the cart service against an in-memory database.
"""
import pytest
from decimal import Decimal

from storefront.core.exceptions import (
    CartNotFoundError,
    InsufficientStockError,
    InvalidInputError,
    ItemNotFoundError,
    ProductNotFoundError,
    ProductUnavailableError,
)
from storefront.services.cart_service import CartService


@pytest.fixture
def carts(session):
    return CartService(session)


class TestAddItem:
    """Test add_item rules."""

    @pytest.mark.asyncio
    async def test_creates_cart_lazily(self, carts, seed):
        view = await carts.add_item(seed.customer.id, seed.product_a.id, 2)

        assert view.item_count == 2
        assert len(view.items) == 1
        assert view.items[0].price_snapshot == Decimal("600.00")
        assert view.pricing.subtotal == Decimal("1200.00")

    @pytest.mark.asyncio
    async def test_merges_existing_line(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.product_a.id, 2)
        view = await carts.add_item(seed.customer.id, seed.product_a.id, 3)

        assert len(view.items) == 1
        assert view.items[0].quantity == 5

    @pytest.mark.asyncio
    async def test_merged_line_over_limit_rejected(self, carts, seed, set_product):
        await set_product(seed.product_a.id, stock=50)
        await carts.add_item(seed.customer.id, seed.product_a.id, 8)

        with pytest.raises(InvalidInputError) as exc_info:
            await carts.add_item(seed.customer.id, seed.product_a.id, 3)
        assert exc_info.value.code == "QUANTITY_LIMIT_EXCEEDED"

        view = await carts.get_cart(seed.customer.id)
        assert view.items[0].quantity == 8

    @pytest.mark.asyncio
    async def test_merged_line_must_fit_stock(self, carts, seed, set_product):
        await set_product(seed.product_a.id, stock=8)
        await carts.add_item(seed.customer.id, seed.product_a.id, 6)

        with pytest.raises(InsufficientStockError) as exc_info:
            await carts.add_item(seed.customer.id, seed.product_a.id, 3)
        assert exc_info.value.details["requested_qty"] == 9
        assert exc_info.value.details["available_qty"] == 8

    @pytest.mark.asyncio
    async def test_raised_quantity_limit_persists(self, session, seed, set_product):
        await set_product(seed.product_a.id, stock=50)
        carts = CartService(session, max_quantity=25)

        view = await carts.add_item(seed.customer.id, seed.product_a.id, 20)

        assert view.items[0].quantity == 20
        reloaded = await CartService(session, max_quantity=25).get_cart(seed.customer.id)
        assert reloaded.items[0].quantity == 20

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1, 11])
    async def test_quantity_range(self, carts, seed, quantity):
        with pytest.raises(InvalidInputError):
            await carts.add_item(seed.customer.id, seed.product_a.id, quantity)

    @pytest.mark.asyncio
    async def test_unknown_product(self, carts, seed):
        with pytest.raises(ProductNotFoundError):
            await carts.add_item(seed.customer.id, 9999, 1)

    @pytest.mark.asyncio
    async def test_inactive_product(self, carts, seed):
        with pytest.raises(ProductUnavailableError):
            await carts.add_item(seed.customer.id, seed.inactive.id, 1)

    @pytest.mark.asyncio
    async def test_over_stock(self, carts, seed):
        with pytest.raises(InsufficientStockError):
            await carts.add_item(seed.customer.id, seed.last_copy.id, 2)


class TestUpdateAndRemove:
    """Test update_quantity / remove_item / clear."""

    @pytest.mark.asyncio
    async def test_update_overwrites(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.product_a.id, 2)
        view = await carts.update_quantity(seed.customer.id, seed.product_a.id, 4)
        assert view.items[0].quantity == 4

    @pytest.mark.asyncio
    async def test_update_to_zero_removes(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.product_a.id, 2)
        await carts.add_item(seed.customer.id, seed.product_b.id, 1)

        view = await carts.update_quantity(seed.customer.id, seed.product_a.id, 0)
        assert [line.product_id for line in view.items] == [seed.product_b.id]

    @pytest.mark.asyncio
    async def test_update_missing_line(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.product_a.id, 1)
        with pytest.raises(ItemNotFoundError):
            await carts.update_quantity(seed.customer.id, seed.product_b.id, 2)

    @pytest.mark.asyncio
    async def test_update_over_stock(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.last_copy.id, 1)
        with pytest.raises(InsufficientStockError):
            await carts.update_quantity(seed.customer.id, seed.last_copy.id, 2)

    @pytest.mark.asyncio
    async def test_remove_without_cart(self, carts, seed):
        with pytest.raises(CartNotFoundError):
            await carts.remove_item(seed.customer.id, seed.product_a.id)

    @pytest.mark.asyncio
    async def test_remove_missing_line(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.product_a.id, 1)
        with pytest.raises(ItemNotFoundError):
            await carts.remove_item(seed.customer.id, seed.product_b.id)

    @pytest.mark.asyncio
    async def test_clear_without_cart(self, carts, seed):
        with pytest.raises(CartNotFoundError):
            await carts.clear(seed.customer.id)

    @pytest.mark.asyncio
    async def test_clear_drops_items_and_coupon(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.product_a.id, 1)
        await carts.apply_coupon(seed.customer.id, "SAVE10", 10, "percentage")

        await carts.clear(seed.customer.id)

        view = await carts.get_cart(seed.customer.id)
        assert view.items == []
        assert view.coupon is None
        assert view.pricing.total == Decimal("0.00")


class TestCoupons:
    """Test apply_coupon / remove_coupon."""

    @pytest.mark.asyncio
    async def test_apply_without_cart(self, carts, seed):
        with pytest.raises(CartNotFoundError):
            await carts.apply_coupon(seed.customer.id, "SAVE10", 10, "percentage")

    @pytest.mark.asyncio
    async def test_last_write_wins(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.product_a.id, 2)
        await carts.add_item(seed.customer.id, seed.product_b.id, 1)
        await carts.apply_coupon(seed.customer.id, "FLAT50", 50, "fixed")
        view = await carts.apply_coupon(seed.customer.id, "SAVE10", 10, "percentage")

        assert view.coupon.code == "SAVE10"
        assert view.pricing.discount == Decimal("125.00")
        assert view.pricing.total == Decimal("1350.00")

    @pytest.mark.asyncio
    async def test_invalid_percentage(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.product_a.id, 1)
        with pytest.raises(InvalidInputError):
            await carts.apply_coupon(seed.customer.id, "TOO-MUCH", 150, "percentage")

    @pytest.mark.asyncio
    async def test_remove_coupon(self, carts, seed):
        await carts.add_item(seed.customer.id, seed.product_a.id, 1)
        await carts.apply_coupon(seed.customer.id, "SAVE10", 10, "percentage")

        view = await carts.remove_coupon(seed.customer.id)
        assert view.coupon is None
        assert view.pricing.discount == Decimal("0.00")


class TestRefreshPrices:
    """Test price refresh against the live catalog."""

    @pytest.mark.asyncio
    async def test_picks_up_price_change(self, carts, seed, set_product):
        await carts.add_item(seed.customer.id, seed.product_a.id, 1)
        await set_product(seed.product_a.id, price=Decimal("650.00"))

        view = await carts.refresh_prices(seed.customer.id)
        assert view.items[0].price_snapshot == Decimal("650.00")

    @pytest.mark.asyncio
    async def test_drops_deactivated_product(self, carts, seed, set_product):
        await carts.add_item(seed.customer.id, seed.product_a.id, 1)
        await carts.add_item(seed.customer.id, seed.product_b.id, 1)
        await set_product(seed.product_b.id, active=False)

        view = await carts.refresh_prices(seed.customer.id)
        assert [line.product_id for line in view.items] == [seed.product_a.id]

    @pytest.mark.asyncio
    async def test_get_cart_without_cart_is_empty(self, carts, seed):
        view = await carts.get_cart(seed.customer.id)
        assert view.items == []
        assert view.pricing.total == Decimal("0.00")
