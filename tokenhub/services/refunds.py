"""
Refund Service - On-demand refund requests.

A refund request never touches token balances: it forwards the
transaction to an external approval workflow and records the decision.
At most one refund record exists per transaction.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.config import settings
from tokenhub.db.models import RefundTransaction, Transaction
from tokenhub.exceptions import (
    RefundAlreadyRequestedError,
    RefundWindowExpiredError,
    ServiceConfigurationError,
)
from tokenhub.models.domain import RefundRecordData, WorkflowDecision
from tokenhub.observability.metrics import metrics
from tokenhub.services.transactions import TransactionLog

logger = get_logger(__name__)

DEFAULT_STATUS = "pending"
PROCESSED_MESSAGE = "Refund request processed"
SUBMITTED_MESSAGE = "Refund request submitted successfully"
FAILED_STATUS = "failed"
SERVER_ERROR_MESSAGE = "Server Error"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def transaction_payload(tx: Transaction) -> dict[str, Any]:
    """Full transaction as JSON for the approval workflow."""
    return {
        "id": str(tx.id),
        "token": tx.token,
        "product_id": tx.product_id,
        "product_name": tx.product_name,
        "qty": tx.qty,
        "status": tx.status,
        "output_result": tx.output_result,
        "response_data": tx.response_data,
        "note": tx.note,
        "use_master_token": tx.use_master_token,
        "credits_charged": str(tx.credits_charged),
        "timestamp": tx.timestamp.isoformat(),
    }


def _to_record(row: RefundTransaction) -> RefundRecordData:
    return RefundRecordData(
        refund_id=row.id,
        transaction_id=row.transaction_id,
        refund_status=row.refund_status,
        response_message=row.response_message,
        created_at=row.created_at,
    )


class RefundWorkflowClient:
    """Posts transactions to the external refund-approval workflow."""

    def __init__(
        self,
        url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.url = url if url is not None else settings.refund_workflow_url
        self.timeout = timeout if timeout is not None else settings.refund_workflow_timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def submit(self, payload: dict[str, Any]) -> WorkflowDecision:
        """
        Ask the workflow for a decision.

        HTTP 200 yields the body's refund_status/response_message. Anything
        else, including network errors, yields failed/"Server Error".
        """
        if not self.url:
            raise ServiceConfigurationError("REFUND_WORKFLOW_URL is not configured")

        try:
            response = await self.http_client.post(self.url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.warning("refund_workflow_unreachable", error=str(e))
            return WorkflowDecision(FAILED_STATUS, SERVER_ERROR_MESSAGE)

        if response.status_code != 200:
            logger.warning("refund_workflow_rejected", status_code=response.status_code)
            return WorkflowDecision(FAILED_STATUS, SERVER_ERROR_MESSAGE)

        try:
            body = response.json()
        except ValueError:
            return WorkflowDecision(DEFAULT_STATUS, SUBMITTED_MESSAGE)
        if not isinstance(body, dict):
            return WorkflowDecision(DEFAULT_STATUS, SUBMITTED_MESSAGE)

        return WorkflowDecision(
            refund_status=str(body.get("refund_status") or DEFAULT_STATUS),
            response_message=str(body.get("response_message") or PROCESSED_MESSAGE),
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()


class RefundService:
    """Validates and records refund requests."""

    def __init__(
        self, session: AsyncSession, workflow: RefundWorkflowClient | None = None
    ) -> None:
        self.session = session
        self.workflow = workflow or RefundWorkflowClient()
        self.window_minutes = settings.refund_window_minutes

    async def _existing(self, transaction_id: UUID) -> RefundTransaction | None:
        result = await self.session.execute(
            select(RefundTransaction).where(RefundTransaction.transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def request_refund(self, transaction_id: UUID) -> RefundRecordData:
        """
        Submit a refund request for a transaction.

        Raises:
            TransactionNotFoundError: Unknown transaction
            RefundAlreadyRequestedError: A record already exists
            RefundWindowExpiredError: Transaction older than the window
        """
        tx = await TransactionLog(self.session).get(transaction_id)

        existing = await self._existing(transaction_id)
        if existing is not None:
            raise RefundAlreadyRequestedError(_to_record(existing))

        age_minutes = (_utc_now() - tx.timestamp).total_seconds() / 60
        if age_minutes > self.window_minutes:
            logger.info(
                "refund_window_expired",
                transaction_id=str(transaction_id),
                age_minutes=round(age_minutes, 2),
            )
            raise RefundWindowExpiredError(age_minutes, self.window_minutes)

        decision = await self.workflow.submit(transaction_payload(tx))

        row = RefundTransaction(
            id=uuid4(),
            transaction_id=transaction_id,
            refund_status=decision.refund_status,
            response_message=decision.response_message,
            created_at=_utc_now(),
        )
        self.session.add(row)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info("refund_request_race", transaction_id=str(transaction_id))
            winner = await self._existing(transaction_id)
            if winner is None:
                raise
            raise RefundAlreadyRequestedError(_to_record(winner)) from None

        metrics.record_refund_request(decision.refund_status)
        logger.info(
            "refund_request_recorded",
            transaction_id=str(transaction_id),
            refund_status=decision.refund_status,
        )
        return _to_record(row)
