"""
Product catalog access for the checkout core

Reads always hit the database (populate_existing) so stock and price checks
never run against a stale identity-map copy. Stock writes are single
conditional UPDATE statements, never read-modify-write.
"""
import logging
from typing import Dict, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import Product

logger = logging.getLogger(__name__)


class ProductCatalog:
    """Narrow catalog contract: read price/active/stock, adjust stock."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, product_id: int, lock: bool = False) -> Optional[Product]:
        query = (
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_many(self, product_ids: Iterable[int], lock: bool = False) -> Dict[int, Product]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        query = (
            select(Product)
            .where(Product.id.in_(ids))
            .order_by(Product.id)  # Stable lock order
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return {product.id: product for product in result.scalars().all()}

    async def decrement_stock(self, product_id: int, quantity: int) -> bool:
        """
        Atomically take ``quantity`` units if at least that many remain.

        Returns False (and changes nothing) when stock is short.
        """
        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        decremented = result.rowcount == 1
        if not decremented:
            logger.warning(
                "Conditional stock decrement rejected product_id=%s quantity=%s",
                product_id,
                quantity,
            )
        return decremented

    async def increment_stock(self, product_id: int, quantity: int) -> None:
        await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
