"""
Restock - Turn outputs of successful source transactions into new
inventory units of a destination digital product.
"""

import re
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.db.models import RestockConfig, Transaction
from tokenhub.models.api import TransactionStatus
from tokenhub.models.domain import RestockSummary
from tokenhub.services.inventory import InventoryService

logger = get_logger(__name__)

_LIST_WRAPPER = re.compile(r'^\["|"\]$')
_QUOTES = re.compile(r'^"|"$')


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def clean_output(entry: Any) -> str:
    """Strip an enclosing `["…"]` and quotes from one output entry."""
    text = entry if isinstance(entry, str) else str(entry)
    text = _QUOTES.sub("", _LIST_WRAPPER.sub("", text))
    return text.strip()


class RestockService:
    """Moves delivered outputs into destination inventory."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.inventory = InventoryService(session)

    async def run(self) -> RestockSummary:
        """Process every configuration in creation order, committing each."""
        result = await self.session.execute(
            select(RestockConfig).order_by(RestockConfig.created_at)
        )
        configs = list(result.scalars().all())

        processed = 0
        inserted = 0
        for config in configs:
            config_processed, config_inserted = await self._run_config(config)
            processed += config_processed
            inserted += config_inserted

        logger.info(
            "restock_complete",
            configurations=len(configs),
            transactions=processed,
            inserted=inserted,
        )
        return RestockSummary(
            processed_configurations=len(configs),
            processed_transactions=processed,
            inserted_units=inserted,
        )

    async def _run_config(self, config: RestockConfig) -> tuple[int, int]:
        threshold = max(
            config.last_check_time,
            _utc_now() - timedelta(minutes=config.start_check_minutes),
        )
        result = await self.session.execute(
            select(Transaction)
            .where(
                Transaction.product_id.in_(config.source_product_ids),
                Transaction.status == TransactionStatus.SUCCESS.value,
                Transaction.timestamp > threshold,
            )
            .order_by(Transaction.timestamp)
        )
        transactions = list(result.scalars().all())
        if not transactions:
            return 0, 0

        contents = [
            cleaned
            for tx in transactions
            for cleaned in (clean_output(entry) for entry in tx.output_result or [])
            if cleaned
        ]
        inserted = self.inventory.add_units(config.destination_product_id, contents)
        config.last_check_time = transactions[-1].timestamp
        await self.session.commit()

        logger.info(
            "restock_config_complete",
            config_id=config.id,
            destination=config.destination_product_id,
            transactions=len(transactions),
            inserted=inserted,
        )
        return len(transactions), inserted
