"""
Internal API routes - On-demand triggers for the scheduled sweeps and syncs.
"""

from typing import Annotated

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.api.dependencies import get_http_client
from tokenhub.db.session import get_write_db
from tokenhub.models.api import (
    PriceSyncItem,
    PriceSyncResponse,
    QuantitySyncItem,
    QuantitySyncResponse,
    RefundSweepResponse,
    RestockResponse,
)
from tokenhub.services.price_sync import PriceSyncService
from tokenhub.services.quantity_sync import QuantitySyncService
from tokenhub.services.refund_sweep import RefundSweepService
from tokenhub.services.restock import RestockService
from tokenhub.services.upstream import UpstreamClient

router = APIRouter(prefix="/v1/internal", tags=["internal"])


@router.post("/refund-sweep", response_model=RefundSweepResponse)
async def run_refund_sweep(
    db: Annotated[AsyncSession, Depends(get_write_db)],
) -> RefundSweepResponse:
    """Reverse successful transactions matching a failure signature."""
    summary = await RefundSweepService(db).run()
    return RefundSweepResponse(
        message=f"Processed {summary.configs} refund configurations",
        configs=summary.configs,
        total_processed=summary.processed,
        total_refunded=summary.refunded,
    )


@router.post("/quantity-sync", response_model=QuantitySyncResponse)
async def run_quantity_sync(
    db: Annotated[AsyncSession, Depends(get_write_db)],
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_http_client)],
) -> QuantitySyncResponse:
    """Refresh every product's cached quantity."""
    summary = await QuantitySyncService(db, upstream=UpstreamClient(http_client=http_client)).run()
    return QuantitySyncResponse(
        message=f"Updated quantities for {summary.updated_count} products",
        updated_count=summary.updated_count,
        error_count=summary.error_count,
        results=[
            QuantitySyncItem(id=r.product_id, success=r.success, quantity=r.quantity, error=r.error)
            for r in summary.results
        ],
    )


@router.post("/restock", response_model=RestockResponse)
async def run_restock(db: Annotated[AsyncSession, Depends(get_write_db)]) -> RestockResponse:
    """Turn recent source outputs into destination inventory."""
    summary = await RestockService(db).run()
    return RestockResponse(
        message="Transaction results processed successfully",
        processed_configurations=summary.processed_configurations,
        total_processed_transactions=summary.processed_transactions,
        total_inserted_units=summary.inserted_units,
    )


@router.post("/price-sync", response_model=PriceSyncResponse)
async def run_price_sync(
    db: Annotated[AsyncSession, Depends(get_write_db)],
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_http_client)],
) -> PriceSyncResponse:
    """Reprice every product from its supplier quote."""
    service = PriceSyncService(db, upstream=UpstreamClient(http_client=http_client))
    summary = await service.run()
    return PriceSyncResponse(
        message=f"Processed {len(summary.results)} products",
        updated_count=summary.updated_count,
        error_count=summary.error_count,
        exchange_rate=f"1 credit = {service.exchange_rate}",
        results=[
            PriceSyncItem(
                id=r.product_id,
                success=r.success,
                value=float(r.value) if r.value is not None else None,
                error=r.error,
            )
            for r in summary.results
        ],
    )
