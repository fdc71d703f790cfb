"""
Inventory Service - Digital content units.

Units are claimed FIFO by (created_at, id) with SKIP LOCKED so two
concurrent claims never receive the same row.
"""

from collections.abc import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.db.models import DigitalProduct
from tokenhub.exceptions import InsufficientStockError

logger = get_logger(__name__)


class InventoryService:
    """Claims, counts and adds digital inventory units."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def claim(self, product_id: str, qty: int) -> list[str]:
        """
        Lock qty unused units and mark them used.

        Nothing is marked when fewer than qty unlocked units exist. The
        caller's commit makes the claim durable.

        Raises:
            InsufficientStockError: Fewer than qty units available
        """
        stmt = (
            select(DigitalProduct)
            .where(DigitalProduct.product_id == product_id, DigitalProduct.is_used.is_(False))
            .order_by(DigitalProduct.created_at, DigitalProduct.id)
            .limit(qty)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        units = list(result.scalars().all())

        if len(units) < qty:
            logger.info(
                "inventory_insufficient",
                product_id=product_id,
                available=len(units),
                requested=qty,
            )
            raise InsufficientStockError(available=len(units), required=qty)

        await self.session.execute(
            update(DigitalProduct)
            .where(DigitalProduct.id.in_([unit.id for unit in units]))
            .values(is_used=True)
        )
        logger.debug("inventory_claimed", product_id=product_id, qty=qty)
        return [unit.content for unit in units]

    async def count_available(self, product_id: str) -> int:
        """Number of unused units for a product."""
        stmt = select(func.count(DigitalProduct.id)).where(
            DigitalProduct.product_id == product_id, DigitalProduct.is_used.is_(False)
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    def add_units(self, product_id: str, contents: Iterable[str]) -> int:
        """Stage new unused units; returns how many were added. Does not commit."""
        added = 0
        for content in contents:
            self.session.add(DigitalProduct(product_id=product_id, content=content, is_used=False))
            added += 1
        return added
