"""
Catalog Service - Product resolution and listings.
"""

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.db.models import Product
from tokenhub.exceptions import ProductNotFoundError
from tokenhub.models.api import ItemSummary, ProductSummary, ProductType
from tokenhub.services.inventory import InventoryService


class CatalogService:
    """Looks up products by id or name."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def resolve(self, product_id: str | None, product_name: str | None) -> Product:
        """
        Resolve a product by id, or by name when no id is given.

        Raises:
            ProductNotFoundError: Neither matches
        """
        if product_id:
            stmt = select(Product).where(Product.id == product_id)
            ref = product_id
        elif product_name:
            stmt = select(Product).where(Product.name == product_name)
            ref = product_name
        else:
            raise ProductNotFoundError("")

        result = await self.session.execute(stmt)
        product = result.scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(ref)
        return product

    async def list_visible(self) -> list[ProductSummary]:
        """Public fields of every visible product."""
        stmt = select(Product).where(Product.visible.is_(True)).order_by(Product.name)
        result = await self.session.execute(stmt)
        return [
            ProductSummary(
                id=p.id,
                name=p.name,
                short_description=p.short_description,
                category=p.category,
                subcategory=p.subcategory,
                quantity=p.quantity,
            )
            for p in result.scalars().all()
        ]

    async def list_items(self) -> list[ItemSummary]:
        """
        Availability of every product.

        Digital products with no cached quantity get a live count.
        """
        result = await self.session.execute(select(Product).order_by(Product.name))
        inventory = InventoryService(self.session)
        items: list[ItemSummary] = []
        for p in result.scalars().all():
            quantity = p.quantity
            if p.product_type == ProductType.DIGITAL.value and not quantity:
                quantity = await inventory.count_available(p.id)
            items.append(ItemSummary(id=p.id, name=p.name, quantity=quantity))
        return items

    async def all_products(self) -> list[Product]:
        """Every product, ordered by id."""
        result = await self.session.execute(select(Product).order_by(Product.id))
        return list(result.scalars().all())

    async def set_quantity(self, product_id: str, quantity: int) -> None:
        """Overwrite a product's cached quantity. Does not commit."""
        await self.session.execute(
            update(Product).where(Product.id == product_id).values(quantity=quantity)
        )

    async def set_value(self, product_id: str, value: Decimal) -> None:
        """Overwrite a product's price in credits. Does not commit."""
        await self.session.execute(
            update(Product).where(Product.id == product_id).values(value=value)
        )
