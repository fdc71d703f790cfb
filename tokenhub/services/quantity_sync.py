"""
Quantity Sync - Refresh the cached quantity of every product.

Digital products count their unused units. API products ask their
configured upstream; anything unusable in the reply means 0.
"""

import re
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.db.models import Product, ProductQuantitySource
from tokenhub.models.api import ProductType
from tokenhub.models.domain import QuantitySyncSummary, QuantityUpdate, UpstreamCallTemplate
from tokenhub.services.catalog import CatalogService
from tokenhub.services.inventory import InventoryService
from tokenhub.services.upstream import UpstreamClient, extract_path, is_missing

logger = get_logger(__name__)

_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")
FALLBACK_FIELDS = ("quantity", "amount", "count")


def parse_quantity(value: Any) -> int | None:
    """Leading integer of a value, None when there is none."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def source_template(source: ProductQuantitySource) -> UpstreamCallTemplate:
    """Upstream request described by a products_quantity row."""
    return UpstreamCallTemplate(
        url=source.upstream_url or "",
        method=source.http_method or "GET",
        headers=dict(source.header_http or {}),
        payload_template=source.payload_template,
    )


def extract_quantity(body: Any, path_body: str | None, regex_output: str | None) -> int:
    """
    Quantity from a stock check response.

    Walks path_body when set, else tries the fallback fields. regex_output
    narrows the value to its first match. Unparseable results give 0.
    """
    value: Any = None
    if path_body:
        found = extract_path(body, path_body)
        value = None if is_missing(found) else found
    elif isinstance(body, dict):
        for name in FALLBACK_FIELDS:
            if body.get(name):
                value = body[name]
                break

    if regex_output and regex_output.strip() and value is not None:
        try:
            match = re.search(regex_output, str(value))
        except re.error:
            logger.warning("quantity_regex_invalid", pattern=regex_output)
            match = None
        if match:
            value = match.group(0)

    quantity = parse_quantity(value)
    return quantity if quantity is not None else 0


async def quantity_source(session: AsyncSession, product_id: str) -> ProductQuantitySource | None:
    """The products_quantity row of a product, if any."""
    result = await session.execute(
        select(ProductQuantitySource).where(ProductQuantitySource.id == product_id)
    )
    return result.scalar_one_or_none()


class QuantitySyncService:
    """Recomputes products.quantity."""

    def __init__(self, session: AsyncSession, upstream: UpstreamClient | None = None) -> None:
        self.session = session
        self.catalog = CatalogService(session)
        self.inventory = InventoryService(session)
        self.upstream = upstream or UpstreamClient()

    async def run(self) -> QuantitySyncSummary:
        """Update every product; one failure does not stop the rest."""
        results: list[QuantityUpdate] = []
        for product in await self.catalog.all_products():
            try:
                quantity = await self._quantity_for(product)
                await self.catalog.set_quantity(product.id, quantity)
                await self.session.commit()
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error("quantity_update_failed", product_id=product.id, error=str(e))
                results.append(QuantityUpdate(product_id=product.id, success=False, error=str(e)))
                continue
            results.append(QuantityUpdate(product_id=product.id, success=True, quantity=quantity))

        updated = sum(1 for r in results if r.success)
        summary = QuantitySyncSummary(
            updated_count=updated, error_count=len(results) - updated, results=results
        )
        logger.info(
            "quantity_sync_complete",
            updated_count=summary.updated_count,
            error_count=summary.error_count,
        )
        return summary

    async def _quantity_for(self, product: Product) -> int:
        if product.product_type == ProductType.DIGITAL.value:
            return await self.inventory.count_available(product.id)

        source = await quantity_source(self.session, product.id)
        if source is None or not source.upstream_url:
            logger.debug("quantity_source_missing", product_id=product.id)
            return 0

        reply = await self.upstream.call(
            source_template(source), qty=1, operation="quantity_sync"
        )
        if not reply.ok or not reply.is_json:
            return 0
        return extract_quantity(reply.body, source.path_body, source.regex_output)
