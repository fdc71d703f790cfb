"""
FastAPI Dependencies - Shared HTTP client, request parsing and the error
response helper.
"""

from typing import Any, TypeVar

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from structlog import get_logger

from tokenhub.exceptions import (
    InvalidRequestError,
    MarketplaceError,
    PostDeliveryLedgerError,
    RefundAlreadyRequestedError,
)
from tokenhub.models.api import ErrorResponse, RefundData

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def get_http_client(request: Request) -> httpx.AsyncClient | None:
    """Process-wide HTTP client created in the app lifespan, if any."""
    return getattr(request.app.state, "http_client", None)


def error_response(exc: MarketplaceError) -> JSONResponse:
    """Translate a MarketplaceError into the shared failure JSON."""
    body = ErrorResponse(message=str(exc), error_type=exc.error_type)
    if isinstance(exc, RefundAlreadyRequestedError):
        body.refund_data = RefundData(
            refund_status=exc.existing.refund_status,
            response_message=exc.existing.response_message,
            created_at=exc.existing.created_at.isoformat(),
        )
    if isinstance(exc, PostDeliveryLedgerError):
        body.transaction_id = exc.transaction_id
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )


def validation_message(exc: ValidationError | Any) -> str:
    """First human-readable message of a pydantic validation failure."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = str(first.get("msg", "Invalid request")).removeprefix("Value error, ")
    return f"{loc}: {msg}" if loc else msg


async def request_params(request: Request) -> dict[str, Any]:
    """
    Query parameters merged with the JSON body (body wins).

    GET requests carry everything in the query string.
    """
    params: dict[str, Any] = dict(request.query_params)
    if request.method != "GET":
        raw = await request.body()
        if raw:
            try:
                body = await request.json()
            except ValueError as e:
                raise InvalidRequestError("Request body must be valid JSON") from e
            if not isinstance(body, dict):
                raise InvalidRequestError("Request body must be a JSON object")
            params.update(body)
    return params


def parse_params(model: type[ModelT], params: dict[str, Any]) -> ModelT:
    """Validate params into model, raising InvalidRequestError on failure."""
    try:
        return model.model_validate(params)
    except ValidationError as e:
        raise InvalidRequestError(validation_message(e)) from e
