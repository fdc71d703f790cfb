"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from tokenhub.api.dependencies import error_response, validation_message
from tokenhub.api.internal_routes import router as internal_router
from tokenhub.api.routes import router
from tokenhub.api.utility_routes import router as utility_router
from tokenhub.config import settings
from tokenhub.db.migration_runner import run_migrations
from tokenhub.db.session import close_engines
from tokenhub.exceptions import MarketplaceError
from tokenhub.models.api import ErrorResponse
from tokenhub.observability import get_logger, metrics, setup_logging, setup_tracing
from tokenhub.observability.tracing import instrument_fastapi
from tokenhub.scheduler import create_scheduler

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Owns the shared HTTP client and, when enabled, the sweep scheduler.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        sweeps_enabled=settings.sweeps_enabled,
    )

    if settings.run_migrations_on_startup:
        run_migrations()

    app.state.http_client = httpx.AsyncClient(
        timeout=settings.upstream_timeout_seconds,
        limits=httpx.Limits(max_connections=max(settings.lookup_concurrency * 2, 20)),
    )

    scheduler = None
    if settings.sweeps_enabled:
        scheduler = create_scheduler()
        scheduler.start()
        logger.info("scheduler_started")

    yield

    logger.info("application_shutting_down")
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    await app.state.http_client.aclose()
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed requests are 400 with the shared failure shape."""
    message = validation_message(exc)
    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        error=message,
    )
    body = ErrorResponse(message=message, error_type="validation_error")
    return JSONResponse(status_code=400, content=body.model_dump(mode="json", exclude_none=True))


@app.exception_handler(MarketplaceError)
async def marketplace_exception_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    """Translate domain errors into the shared failure JSON."""
    metrics.record_error(exc.error_type, request.url.path)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_rejected",
        path=request.url.path,
        error_type=exc.error_type,
        status_code=exc.status_code,
        message=str(exc),
    )
    return error_response(exc)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected failures are logged with a traceback and hidden from callers."""
    metrics.record_error(type(exc).__name__, request.url.path)
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=exc)
    body = ErrorResponse(message="Internal server error", error_type="internal_error")
    return JSONResponse(status_code=500, content=body.model_dump(mode="json", exclude_none=True))


# Setup tracing
setup_tracing()
instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    logger.info("request_started", method=method, path=endpoint, request_id=request_id)

    try:
        response = await call_next(request)
    except Exception as e:
        duration = time.time() - start_time
        metrics.record_http_request(endpoint, method, 500, duration)
        logger.error(
            "request_failed",
            method=method,
            path=endpoint,
            error=str(e),
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise

    duration = time.time() - start_time
    metrics.record_http_request(endpoint, method, response.status_code, duration)
    logger.info(
        "request_completed",
        method=method,
        path=endpoint,
        status_code=response.status_code,
        duration_seconds=duration,
        request_id=request_id,
    )
    return response


app.include_router(router)
app.include_router(utility_router)
app.include_router(internal_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics in text format."""
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tokenhub.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
