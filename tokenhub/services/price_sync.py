"""
Price Sync - Reprice products from their supplier's quoted price.

Each product's products_quantity row names the supplier endpoint and the
path to its price (path_body_value). The quoted price gets a tiered
markup and is converted at the configured exchange rate into credits with
four decimals. Any failure to obtain a usable quote writes the default
value instead.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.config import settings
from tokenhub.db.models import Product, ProductQuantitySource
from tokenhub.models.domain import PriceSyncSummary, PriceUpdate
from tokenhub.services.catalog import CatalogService
from tokenhub.services.quantity_sync import quantity_source, source_template
from tokenhub.services.upstream import UpstreamClient, extract_path, is_missing

logger = get_logger(__name__)

# (low, high, multiplier), inclusive bounds, first match wins
MARKUP_TIERS: tuple[tuple[Decimal, Decimal, Decimal], ...] = (
    (Decimal("1"), Decimal("49"), Decimal("1.50")),
    (Decimal("50"), Decimal("499"), Decimal("1.35")),
    (Decimal("500"), Decimal("1000"), Decimal("1.25")),
    (Decimal("1000"), Decimal("2500"), Decimal("1.20")),
    (Decimal("2500"), Decimal("5000"), Decimal("1.18")),
)
DEFAULT_MARKUP = Decimal("1.15")
PRICE_PLACES = Decimal("0.0001")

_LEADING_NUMBER = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+))")


def markup_for(price: Decimal) -> Decimal:
    """Multiplier applied to a supplier price."""
    for low, high, multiplier in MARKUP_TIERS:
        if low <= price <= high:
            return multiplier
    return DEFAULT_MARKUP


def parse_price(value: Any) -> Decimal | None:
    """Leading decimal number of a value, None when there is none."""
    if isinstance(value, bool) or value is None:
        return None
    match = _LEADING_NUMBER.match(str(value))
    if not match:
        return None
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return None


def extract_price(body: Any, path: str, regex_output: str | None) -> Decimal | None:
    """Supplier price at path, narrowed by regex_output when set."""
    value = extract_path(body, path)
    if is_missing(value):
        return None

    if regex_output and regex_output.strip() and value:
        try:
            match = re.search(regex_output, str(value))
        except re.error:
            logger.warning("price_regex_invalid", pattern=regex_output)
            match = None
        if match:
            value = match.group(0)

    return parse_price(value)


def convert_price(price: Decimal, exchange_rate: Decimal) -> Decimal:
    """Marked-up supplier price in credits, four decimals."""
    credits = price * markup_for(price) / exchange_rate
    return credits.quantize(PRICE_PLACES, rounding=ROUND_HALF_UP)


class PriceSyncService:
    """Recomputes products.value."""

    def __init__(self, session: AsyncSession, upstream: UpstreamClient | None = None) -> None:
        self.session = session
        self.catalog = CatalogService(session)
        self.upstream = upstream or UpstreamClient()
        self.exchange_rate = settings.price_sync_exchange_rate
        self.default_value = settings.price_sync_default_value

    async def run(self) -> PriceSyncSummary:
        """Reprice every configured product; one failure does not stop the rest."""
        results: list[PriceUpdate] = []
        for product in await self.catalog.all_products():
            results.append(await self._sync_one(product))

        updated = sum(1 for r in results if r.success)
        summary = PriceSyncSummary(
            updated_count=updated, error_count=len(results) - updated, results=results
        )
        logger.info(
            "price_sync_complete",
            updated_count=summary.updated_count,
            error_count=summary.error_count,
        )
        return summary

    async def _sync_one(self, product: Product) -> PriceUpdate:
        source = await quantity_source(self.session, product.id)
        if source is None:
            return PriceUpdate(
                product_id=product.id,
                success=False,
                error="No products_quantity configuration found",
            )
        if not source.path_body_value or not source.upstream_url:
            return PriceUpdate(
                product_id=product.id,
                success=False,
                error="Missing path_body_value or upstream_url configuration",
            )

        value = await self._quoted_value(product.id, source)
        try:
            await self.catalog.set_value(product.id, value)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("price_update_failed", product_id=product.id, error=str(e))
            return PriceUpdate(product_id=product.id, success=False, error=f"Update failed: {e}")

        logger.debug("price_updated", product_id=product.id, value=str(value))
        return PriceUpdate(product_id=product.id, success=True, value=value)

    async def _quoted_value(self, product_id: str, source: ProductQuantitySource) -> Decimal:
        quote = await self.upstream.call(source_template(source), qty=1, operation="price_sync")
        if not quote.ok or not quote.is_json:
            logger.warning("price_quote_unavailable", product_id=product_id, error=quote.error)
            return self.default_value

        price = extract_price(quote.body, source.path_body_value, source.regex_output)
        if price is None or price <= 0:
            logger.warning("price_quote_invalid", product_id=product_id)
            return self.default_value

        value = convert_price(price, self.exchange_rate)
        if value <= 0:
            # products.value must stay positive
            logger.warning("price_quote_rounds_to_zero", product_id=product_id, price=str(price))
            return self.default_value
        return value
