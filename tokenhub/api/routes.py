"""
Settlement API routes - Settle, refunds, token activation and read-side lookups.

Errors raised by services are MarketplaceError subclasses; the app-level
handler turns them into the shared failure JSON.
"""

from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.api.dependencies import get_http_client, parse_params, request_params
from tokenhub.db.session import get_read_db, get_write_db
from tokenhub.models.api import (
    ActivationRequest,
    ActivationResponse,
    CreditsResponse,
    HistoryResponse,
    ItemsResponse,
    ProductsResponse,
    RefundRequest,
    RefundResponse,
    SettleRequest,
    SettleResponse,
    TokenQuery,
)
from tokenhub.models.domain import SettlementIntent
from tokenhub.services.activation import ActivationService, activation_message
from tokenhub.services.catalog import CatalogService
from tokenhub.services.ledger import LedgerService
from tokenhub.services.refunds import RefundService, RefundWorkflowClient
from tokenhub.services.settlement import SettlementService
from tokenhub.services.transactions import TransactionLog
from tokenhub.services.upstream import UpstreamClient

logger = get_logger(__name__)
router = APIRouter(prefix="/v1", tags=["settlement"])


# =============================================================================
# Settlement
# =============================================================================


@router.api_route("/process", methods=["GET", "POST"], response_model=SettleResponse)
async def settle(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_write_db)],
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_http_client)],
) -> SettleResponse:
    """
    Redeem token credits for a product.

    Accepts query parameters (GET) or a JSON body (POST). A failed
    delivery is returned with success=false and a transaction id.
    """
    params = parse_params(SettleRequest, await request_params(request))
    intent = SettlementIntent(
        token=params.token,
        qty=params.qty,
        product_id=params.product_id,
        product_name=params.product_name,
        use_master_token=params.use_master_token,
    )

    service = SettlementService(db, upstream=UpstreamClient(http_client=http_client))
    result = await service.settle(intent)

    return SettleResponse(
        success=result.success,
        message=result.message,
        transaction_id=result.transaction_id,
        delivered_payload=result.delivered_payload,
    )


# =============================================================================
# Refunds
# =============================================================================


@router.post("/refunds", response_model=RefundResponse)
async def request_refund(
    body: RefundRequest,
    db: Annotated[AsyncSession, Depends(get_write_db)],
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_http_client)],
) -> RefundResponse:
    """Submit a refund request for a transaction."""
    service = RefundService(db, workflow=RefundWorkflowClient(http_client=http_client))
    record = await service.request_refund(body.transaction_id)

    return RefundResponse(
        refund_status=record.refund_status,
        response_message=record.response_message,
        created_at=record.created_at.isoformat(),
    )


# =============================================================================
# Read-side
# =============================================================================


@router.api_route("/credits", methods=["GET", "POST"], response_model=CreditsResponse)
async def get_credits(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_read_db)],
) -> CreditsResponse:
    """Balance of a token, regular ledger first."""
    query = parse_params(TokenQuery, await request_params(request))
    credits, product_name = await LedgerService(db).get_credits(query.token.strip())
    return CreditsResponse(credits=float(credits), product_name=product_name)


@router.api_route("/history", methods=["GET", "POST"], response_model=HistoryResponse)
async def get_history(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_read_db)],
) -> HistoryResponse:
    """Successful transactions of a token, newest first."""
    query = parse_params(TokenQuery, await request_params(request))
    transactions = await TransactionLog(db).history(query.token.strip())
    return HistoryResponse(transactions=transactions)


@router.get("/products", response_model=ProductsResponse)
async def list_products(db: Annotated[AsyncSession, Depends(get_read_db)]) -> ProductsResponse:
    """Visible products."""
    return ProductsResponse(products=await CatalogService(db).list_visible())


@router.get("/items", response_model=ItemsResponse)
async def list_items(db: Annotated[AsyncSession, Depends(get_read_db)]) -> ItemsResponse:
    """Availability of every product."""
    return ItemsResponse(products=await CatalogService(db).list_items())


# =============================================================================
# Activation
# =============================================================================


@router.post("/tokens/activate", response_model=ActivationResponse)
async def activate_token(
    body: ActivationRequest,
    db: Annotated[AsyncSession, Depends(get_write_db)],
) -> ActivationResponse:
    """Request activation of an unactivated token."""
    result = await ActivationService(db).activate(body.token, master_token=body.master_token)
    return ActivationResponse(
        status=result.status,
        message=activation_message(result),
        total_usd_due=float(result.total_usd_due),
    )
