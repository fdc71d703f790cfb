"""
Scheduled Sweeps - APScheduler jobs for refund sweep, quantity sync,
price sync and restock.

Each job opens its own write session. Jobs that call upstreams get one
UpstreamClient per tick, closed when the tick ends. max_instances=1 keeps
a slow run from overlapping the next tick within one process; row locks
handle the multi-process case.
"""

from collections.abc import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.config import settings
from tokenhub.db.session import get_write_session
from tokenhub.observability.metrics import metrics
from tokenhub.services.price_sync import PriceSyncService
from tokenhub.services.quantity_sync import QuantitySyncService
from tokenhub.services.refund_sweep import RefundSweepService
from tokenhub.services.restock import RestockService
from tokenhub.services.upstream import UpstreamClient

logger = get_logger(__name__)


async def _run_job(name: str, job: Callable[[AsyncSession], Awaitable[object]]) -> None:
    try:
        async with get_write_session() as session:
            await job(session)
    except Exception as e:
        metrics.record_error(type(e).__name__, name)
        logger.error("scheduled_job_failed", job=name, error=str(e), exc_info=True)


async def _run_upstream_job(
    name: str, job: Callable[[AsyncSession, UpstreamClient], Awaitable[object]]
) -> None:
    upstream = UpstreamClient()
    try:
        await _run_job(name, lambda session: job(session, upstream))
    finally:
        await upstream.close()


async def refund_sweep_job() -> None:
    await _run_job("refund_sweep", lambda session: RefundSweepService(session).run())


async def quantity_sync_job() -> None:
    await _run_upstream_job(
        "quantity_sync",
        lambda session, upstream: QuantitySyncService(session, upstream=upstream).run(),
    )


async def price_sync_job() -> None:
    await _run_upstream_job(
        "price_sync",
        lambda session, upstream: PriceSyncService(session, upstream=upstream).run(),
    )


async def restock_job() -> None:
    await _run_job("restock", lambda session: RestockService(session).run())


def create_scheduler() -> AsyncIOScheduler:
    """Build a scheduler with the sweep jobs registered; price sync only when enabled."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    jobs = [
        (refund_sweep_job, "refund_sweep", settings.refund_sweep_interval_seconds),
        (quantity_sync_job, "quantity_sync", settings.quantity_sync_interval_seconds),
        (restock_job, "restock", settings.restock_interval_seconds),
    ]
    if settings.price_sync_enabled:
        jobs.append((price_sync_job, "price_sync", settings.price_sync_interval_seconds))

    for func, job_id, interval in jobs:
        scheduler.add_job(
            func,
            "interval",
            seconds=interval,
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    logger.info("scheduler_configured", jobs=[job_id for _, job_id, _ in jobs])
    return scheduler
