"""
Ledger Service - Token resolution, gates, and credit mutations.

Two ledgers exist: regular tokens (scoped to one product) and master
tokens (usable against any product). Every debit is a single conditional
UPDATE so concurrent spends can never drive a balance negative.
"""

from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.config import settings
from tokenhub.db.models import MasterToken, Product, Token
from tokenhub.exceptions import (
    ActivationPendingError,
    ActivationRejectedError,
    InsufficientCreditsError,
    InvalidTokenError,
    TokenLockedError,
    TokenNotActivatedError,
)
from tokenhub.models.api import ActivationStatus
from tokenhub.models.domain import ResolvedToken

logger = get_logger(__name__)


def compute_price(qty: int, value: Decimal, is_master: bool) -> Decimal:
    """
    Credits required for qty units of a product.

    Master tokens pay qty * value. Regular tokens pay qty unless
    PRICE_REGULAR_TOKENS_BY_VALUE is set.
    """
    if is_master or settings.price_regular_tokens_by_value:
        return Decimal(qty) * Decimal(value)
    return Decimal(qty)


def _ledger_model(is_master: bool) -> type[Token] | type[MasterToken]:
    return MasterToken if is_master else Token


def _check_regular_gates(row: Token) -> None:
    """Lock and activation gates for a regular token."""
    if row.locked:
        raise TokenLockedError()
    if row.activation_status == ActivationStatus.PENDING.value:
        raise ActivationPendingError()
    if row.activation_status == ActivationStatus.REJECTED.value:
        raise ActivationRejectedError()
    if not row.activated:
        raise TokenNotActivatedError()


class LedgerService:
    """Reads and mutates token balances."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def resolve_token(
        self, token: str, use_master_token: bool, product_id: str | None = None
    ) -> ResolvedToken:
        """
        Look up a token in its ledger and apply the spend gates.

        Regular tokens are scoped to product_id when one is given.

        Raises:
            InvalidTokenError: Token absent from the ledger
            AuthorizationError: Token locked or not activated
        """
        if use_master_token:
            stmt = select(MasterToken).where(MasterToken.token == token)
            result = await self.session.execute(stmt)
            master = result.scalar_one_or_none()
            if master is None:
                logger.info("master_token_not_found")
                raise InvalidTokenError(is_master=True)
            if master.locked:
                raise TokenLockedError()
            return ResolvedToken(
                token=master.token, credits=master.credits, product_id=None, is_master=True
            )

        stmt = select(Token).where(Token.token == token)
        if product_id is not None:
            stmt = stmt.where(Token.product_id == product_id)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            logger.info("token_not_found", product_id=product_id)
            raise InvalidTokenError(is_master=False, product_id=product_id)

        _check_regular_gates(row)
        return ResolvedToken(
            token=row.token, credits=row.credits, product_id=row.product_id, is_master=False
        )

    @staticmethod
    def ensure_credits(resolved: ResolvedToken, required: Decimal) -> None:
        """Raise InsufficientCreditsError when the balance does not cover required."""
        if resolved.credits < required:
            raise InsufficientCreditsError(available=resolved.credits, required=required)

    async def debit(self, token: str, amount: Decimal, is_master: bool) -> Decimal | None:
        """
        Conditionally subtract amount from a token's balance.

        Returns the new balance, or None when no row matched (token gone or
        balance below amount). Does not commit.
        """
        model = _ledger_model(is_master)
        stmt = (
            update(model)
            .where(model.token == token, model.credits >= amount)
            .values(credits=model.credits - amount)
            .returning(model.credits)
        )
        result = await self.session.execute(stmt)
        remaining = result.scalar_one_or_none()
        if remaining is None:
            logger.warning(
                "debit_rejected", ledger=model.__tablename__, amount=str(amount)
            )
        return remaining

    async def credit(
        self, token: str, amount: Decimal, is_master: bool, note_entry: str | None = None
    ) -> Decimal | None:
        """
        Add amount to a token's balance, optionally appending to its note.

        Returns the new balance, or None when the token no longer exists.
        Does not commit.
        """
        model = _ledger_model(is_master)
        values: dict[str, object] = {"credits": model.credits + amount}
        if note_entry:
            values["note"] = func.concat_ws(" ", model.note, note_entry)
        stmt = update(model).where(model.token == token).values(**values).returning(model.credits)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def token_exists(self, token: str) -> bool:
        """True when the token is present in either ledger."""
        for model in (Token, MasterToken):
            result = await self.session.execute(select(model.id).where(model.token == token))
            if result.scalar_one_or_none() is not None:
                return True
        return False

    async def get_credits(self, token: str) -> tuple[Decimal, str | None]:
        """
        Balance of a token and its product's name.

        The regular ledger is consulted first; master tokens report no
        product name.
        """
        stmt = (
            select(Token.credits, Product.name)
            .outerjoin(Product, Product.id == Token.product_id)
            .where(Token.token == token)
        )
        result = await self.session.execute(stmt)
        row = result.first()
        if row is not None:
            return row[0], row[1]

        result = await self.session.execute(
            select(MasterToken.credits).where(MasterToken.token == token)
        )
        master_credits = result.scalar_one_or_none()
        if master_credits is None:
            raise InvalidTokenError(is_master=False)
        return master_credits, None
