"""
Settlement Service - Redeem token credits for a product.

Gate order: product, token (lock/activation), credits, delivery. Every
attempt that reaches delivery writes exactly one transaction row. Credits
are debited only when delivery succeeded, and inventory marking,
transaction insert and debit share one database transaction.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.db.models import Product
from tokenhub.exceptions import InsufficientStockError, PostDeliveryLedgerError
from tokenhub.models.api import ProductType, TransactionStatus
from tokenhub.models.domain import (
    DeliveryOutcome,
    ResolvedToken,
    SettlementIntent,
    SettlementResult,
    UpstreamCallTemplate,
)
from tokenhub.observability.metrics import metrics
from tokenhub.observability.tracing import trace_operation
from tokenhub.services.catalog import CatalogService
from tokenhub.services.inventory import InventoryService
from tokenhub.services.ledger import LedgerService, compute_price
from tokenhub.services.transactions import TransactionLog
from tokenhub.services.upstream import UpstreamClient

logger = get_logger(__name__)


def template_for(product: Product) -> UpstreamCallTemplate | None:
    """Upstream call template of an API product, None when it has no URL."""
    if not product.upstream_url:
        return None
    return UpstreamCallTemplate(
        url=product.upstream_url,
        method=product.http_method or "GET",
        headers=dict(product.header_http or {}),
        payload_template=product.payload_template,
        path_body=product.path_body,
        condition_reply_output=product.condition_reply_output,
    )


def _success_message(remaining: Decimal, is_master: bool) -> str:
    suffix = " USD" if is_master else ""
    return f"Transaction completed successfully. Remaining credits: {remaining}{suffix}"


def _failure_message(payload: Any) -> str:
    if isinstance(payload, dict) and payload.get("error"):
        return f"Transaction failed: {payload['error']}"
    return "Transaction failed"


class SettlementService:
    """Runs the settlement pipeline against one database session."""

    def __init__(self, session: AsyncSession, upstream: UpstreamClient | None = None) -> None:
        self.session = session
        self.catalog = CatalogService(session)
        self.ledger = LedgerService(session)
        self.inventory = InventoryService(session)
        self.transactions = TransactionLog(session)
        self.upstream = upstream or UpstreamClient()

    async def settle(self, intent: SettlementIntent) -> SettlementResult:
        """
        Settle one redemption request.

        Raises:
            ProductNotFoundError: Unknown product
            InvalidTokenError: Token absent from its ledger
            AuthorizationError: Token locked or not activated
            InsufficientCreditsError: Balance below the price
            PostDeliveryLedgerError: Delivered but the debit matched no row

        A failed delivery is not raised: it is recorded and returned with
        success=False.
        """
        with trace_operation(
            "settlement.settle", qty=intent.qty, use_master_token=intent.use_master_token
        ) as span:
            product = await self.catalog.resolve(intent.product_id, intent.product_name)
            span.set_attribute("product_id", product.id)

            resolved = await self.ledger.resolve_token(
                intent.token,
                intent.use_master_token,
                product_id=None if intent.use_master_token else product.id,
            )
            required = compute_price(intent.qty, product.value, resolved.is_master)
            self.ledger.ensure_credits(resolved, required)

            with trace_operation("settlement.deliver", product_type=product.product_type):
                outcome = await self._deliver(product, intent.qty)

            row = self.transactions.record(
                token=intent.token,
                product_id=product.id,
                product_name=product.name,
                qty=intent.qty,
                status=outcome.status,
                output=outcome.delivered_payload,
                response_data=outcome.response_data,
                use_master_token=resolved.is_master,
                credits_charged=required,
            )

            remaining: Decimal | None = None
            if outcome.succeeded:
                remaining = await self._debit(resolved, required, row.id)

            await self.session.commit()

        metrics.record_settlement(
            product_type=product.product_type,
            status=outcome.status.value,
            ledger=resolved.ledger,
            credits=float(required),
            units=intent.qty,
        )
        logger.info(
            "settlement_recorded",
            transaction_id=str(row.id),
            product_id=product.id,
            qty=intent.qty,
            status=outcome.status.value,
            ledger=resolved.ledger,
        )

        if not outcome.succeeded:
            return SettlementResult(
                success=False,
                message=_failure_message(outcome.delivered_payload),
                transaction_id=row.id,
                delivered_payload=outcome.delivered_payload,
                credits_charged=Decimal("0"),
                remaining_credits=resolved.credits,
            )

        assert remaining is not None
        return SettlementResult(
            success=True,
            message=_success_message(remaining, resolved.is_master),
            transaction_id=row.id,
            delivered_payload=outcome.delivered_payload,
            credits_charged=required,
            remaining_credits=remaining,
        )

    async def _deliver(self, product: Product, qty: int) -> DeliveryOutcome:
        if product.product_type == ProductType.DIGITAL.value:
            try:
                contents = await self.inventory.claim(product.id, qty)
            except InsufficientStockError as e:
                diagnostic = {"error": str(e), "available": e.available, "requested": e.required}
                return DeliveryOutcome(
                    status=TransactionStatus.FAILED,
                    delivered_payload=diagnostic,
                    response_data=diagnostic,
                )
            return DeliveryOutcome(
                status=TransactionStatus.SUCCESS,
                delivered_payload=contents,
                response_data=None,
            )

        template = template_for(product)
        if template is None:
            diagnostic = {"error": "Product has no upstream endpoint configured"}
            logger.error("upstream_not_configured", product_id=product.id)
            return DeliveryOutcome(
                status=TransactionStatus.FAILED,
                delivered_payload=diagnostic,
                response_data=diagnostic,
            )
        return await self.upstream.deliver(template, qty)

    async def _debit(self, resolved: ResolvedToken, amount: Decimal, transaction_id: Any) -> Decimal:
        remaining = await self.ledger.debit(resolved.token, amount, resolved.is_master)
        if remaining is not None:
            return remaining

        # Goods are out the door: keep the delivery and its record.
        await self.session.commit()
        metrics.record_error("post_delivery_ledger_error", "settle")
        logger.error(
            "post_delivery_debit_failed",
            transaction_id=str(transaction_id),
            ledger=resolved.ledger,
            amount=str(amount),
        )
        raise PostDeliveryLedgerError(
            transaction_id=transaction_id, token=resolved.token, amount=amount
        )
