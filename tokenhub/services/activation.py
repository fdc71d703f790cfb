"""
Activation Service - Move a regular token out of the unactivated state.

A token can go through activation once. Tokens flagged for
auto-activation are activated immediately when a master token pays the
amount due; everything else waits as Pending for an operator decision.
"""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.db.models import Token
from tokenhub.exceptions import ActivationAlreadyExistsError, TokenNotEligibleForActivationError
from tokenhub.models.api import ActivationStatus
from tokenhub.models.domain import ActivationResult
from tokenhub.services.ledger import LedgerService

logger = get_logger(__name__)


def activation_message(result: ActivationResult) -> str:
    """Caller-facing summary of an activation."""
    if result.activated:
        return "Token activated successfully and balance deducted"
    message = f"Token activation created with status: {result.status}."
    if result.total_usd_due > 0:
        message += f" Amount due: ${result.total_usd_due}"
    return message


class ActivationService:
    """Records activation requests against the regular ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.ledger = LedgerService(session)

    async def activate(self, token: str, master_token: str | None = None) -> ActivationResult:
        """
        Request activation of a token.

        Raises:
            TokenNotEligibleForActivationError: No unlocked, unactivated token
            ActivationAlreadyExistsError: The token already has a status
        """
        result = await self.session.execute(
            select(Token)
            .where(Token.token == token, Token.activated.is_(False), Token.locked.is_(False))
            .with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise TokenNotEligibleForActivationError()
        if row.activation_status is not None:
            await self.session.rollback()
            raise ActivationAlreadyExistsError(row.activation_status)

        due = Decimal(row.total_usd_due or 0)
        status = ActivationStatus.PENDING
        if row.auto_activation and await self._pay(due, master_token):
            status = ActivationStatus.ACTIVATED
            due = Decimal("0")

        row.activation_status = status.value
        row.total_usd_due = due
        if status == ActivationStatus.ACTIVATED:
            row.activated = True
        await self.session.commit()

        logger.info("token_activation_recorded", status=status.value, total_usd_due=str(due))
        return ActivationResult(token=token, status=status.value, total_usd_due=due)

    async def _pay(self, due: Decimal, master_token: str | None) -> bool:
        """Settle the amount due from a master token. Nothing owed needs no payer."""
        if due <= 0:
            return True
        if not master_token:
            logger.info("auto_activation_without_payer")
            return False
        remaining = await self.ledger.debit(master_token, due, is_master=True)
        if remaining is None:
            logger.info("auto_activation_insufficient_balance", amount=str(due))
            return False
        return True
