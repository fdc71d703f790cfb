"""
Refund Sweep - Automatic reversal of successful transactions whose
output matches a configured failure signature.

Each configuration row is locked with SKIP LOCKED for the duration of its
pass, so concurrent sweepers split the work instead of double-crediting.
The "Refunded" note marks a transaction as already reversed.
"""

import json
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.db.models import RefundSweepConfig, Transaction
from tokenhub.models.api import TransactionStatus
from tokenhub.models.domain import REFUNDED_NOTE, REFUNDED_OUTPUT, RefundSweepSummary
from tokenhub.observability.logging import log_context
from tokenhub.observability.metrics import metrics
from tokenhub.services.ledger import LedgerService

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def is_eligible(tx: Transaction, signatures: list[str]) -> bool:
    """True when the transaction's output contains any failure signature."""
    if not signatures:
        return False
    serialized = json.dumps(tx.output_result, ensure_ascii=False).lower()
    return any(sig in serialized for sig in signatures)


def already_refunded(tx: Transaction) -> bool:
    """True when the note already carries the refunded marker."""
    return bool(tx.note) and REFUNDED_NOTE in tx.note


def refunded_note(note: str | None) -> str:
    """Append the refunded marker to a transaction note."""
    return f"{note} {REFUNDED_NOTE}" if note else REFUNDED_NOTE


class RefundSweepService:
    """Runs the sweep over every configuration."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.ledger = LedgerService(session)

    async def run(self) -> RefundSweepSummary:
        """Process every configuration not held by another sweeper."""
        result = await self.session.execute(
            select(RefundSweepConfig.id).order_by(RefundSweepConfig.id)
        )
        config_ids = list(result.scalars().all())

        processed = 0
        refunded = 0
        for config_id in config_ids:
            with log_context(sweep_config_id=config_id):
                config_processed, config_refunded = await self._run_config(config_id)
            processed += config_processed
            refunded += config_refunded

        logger.info(
            "refund_sweep_complete",
            configs=len(config_ids),
            processed=processed,
            refunded=refunded,
        )
        return RefundSweepSummary(configs=len(config_ids), processed=processed, refunded=refunded)

    async def _run_config(self, config_id: int) -> tuple[int, int]:
        result = await self.session.execute(
            select(RefundSweepConfig)
            .where(RefundSweepConfig.id == config_id)
            .with_for_update(skip_locked=True)
        )
        config = result.scalar_one_or_none()
        if config is None:
            logger.info("sweep_config_skipped_locked")
            await self.session.rollback()
            return 0, 0

        now = _utc_now()
        stmt = (
            select(Transaction)
            .where(
                Transaction.status == TransactionStatus.SUCCESS.value,
                Transaction.timestamp >= now - timedelta(hours=config.window_hours),
            )
            .order_by(Transaction.timestamp)
            .with_for_update(skip_locked=True)
        )
        if config.product_ids:
            stmt = stmt.where(Transaction.product_id.in_(config.product_ids))
        result = await self.session.execute(stmt)

        signatures = config.signatures
        eligible = [tx for tx in result.scalars().all() if is_eligible(tx, signatures)]

        refunded = 0
        for tx in eligible:
            if already_refunded(tx):
                continue
            if await self._reverse(tx):
                refunded += 1

        config.last_checked_at = now
        await self.session.commit()

        logger.info("sweep_config_complete", processed=len(eligible), refunded=refunded)
        return len(eligible), refunded

    async def _reverse(self, tx: Transaction) -> bool:
        """Return what the transaction charged and mark it. False if the token is gone."""
        amount = tx.credits_charged
        balance = await self.ledger.credit(
            tx.token,
            amount,
            is_master=tx.use_master_token,
            note_entry=f"{REFUNDED_NOTE} ({tx.id})",
        )
        if balance is None:
            logger.warning("sweep_token_missing", transaction_id=str(tx.id))
            return False

        tx.output_result = [REFUNDED_OUTPUT]
        tx.note = refunded_note(tx.note)
        metrics.record_sweep_refund("tokens_master" if tx.use_master_token else "tokens")
        logger.info("transaction_refunded", transaction_id=str(tx.id), amount=str(amount))
        return True
