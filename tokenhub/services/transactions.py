"""
Transaction Log - Append-only record of settlement attempts.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.db.models import Transaction
from tokenhub.exceptions import InvalidTokenError, TransactionNotFoundError
from tokenhub.models.api import TransactionItem, TransactionStatus
from tokenhub.services.ledger import LedgerService


def normalize_output(payload: Any) -> list[Any]:
    """Wrap a scalar or object payload in a one-element list."""
    if isinstance(payload, list):
        return payload
    if payload is None:
        return []
    return [payload]


class TransactionLog:
    """Writes and reads transaction rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def record(
        self,
        *,
        token: str,
        product_id: str,
        product_name: str,
        qty: int,
        status: TransactionStatus,
        output: Any,
        response_data: Any = None,
        note: str | None = None,
        use_master_token: bool = False,
        credits_charged: Decimal = Decimal("0"),
    ) -> Transaction:
        """Stage a transaction row with a client-side id. Does not commit."""
        row = Transaction(
            id=uuid4(),
            token=token,
            product_id=product_id,
            product_name=product_name,
            qty=qty,
            status=status.value,
            output_result=normalize_output(output),
            response_data=response_data,
            note=note,
            use_master_token=use_master_token,
            credits_charged=credits_charged if status == TransactionStatus.SUCCESS else Decimal("0"),
        )
        self.session.add(row)
        return row

    async def get(self, transaction_id: UUID) -> Transaction:
        """Raises TransactionNotFoundError for unknown ids."""
        result = await self.session.execute(
            select(Transaction).where(Transaction.id == transaction_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise TransactionNotFoundError(transaction_id)
        return row

    async def find_many(self, transaction_ids: list[UUID]) -> list[Transaction]:
        """Rows for the given ids, unknown ids ignored."""
        if not transaction_ids:
            return []
        result = await self.session.execute(
            select(Transaction).where(Transaction.id.in_(transaction_ids))
        )
        return list(result.scalars().all())

    async def history(self, token: str) -> list[TransactionItem]:
        """
        Successful transactions of a token, newest first.

        Raises:
            InvalidTokenError: Token absent from both ledgers
        """
        if not await LedgerService(self.session).token_exists(token):
            raise InvalidTokenError(is_master=False)

        stmt = (
            select(Transaction)
            .where(
                Transaction.token == token,
                Transaction.status == TransactionStatus.SUCCESS.value,
            )
            .order_by(Transaction.timestamp.desc())
        )
        result = await self.session.execute(stmt)
        return [to_item(row) for row in result.scalars().all()]


def to_item(row: Transaction) -> TransactionItem:
    """Wire representation of a transaction row."""
    return TransactionItem(
        id=row.id,
        token=row.token,
        product_id=row.product_id,
        product_name=row.product_name,
        qty=row.qty,
        status=TransactionStatus(row.status),
        output_result=list(row.output_result or []),
        note=row.note,
        timestamp=row.timestamp.isoformat(),
    )
