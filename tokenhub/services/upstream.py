"""
Upstream Client - Third-party HTTP calls for API products.

Templates may carry the {{qty}} placeholder in the URL and payload. A body
is only sent for POST. Failures never raise out of deliver(); they become
a failed DeliveryOutcome with a diagnostic payload.
"""

import json
import time
from typing import Any

import httpx
from structlog import get_logger

from tokenhub.config import settings
from tokenhub.models.api import TransactionStatus
from tokenhub.models.domain import DeliveryOutcome, UpstreamCallTemplate, UpstreamResult
from tokenhub.observability.metrics import metrics

logger = get_logger(__name__)

QTY_PLACEHOLDER = "{{qty}}"

_MISSING = object()


def render_qty(value: Any, qty: int) -> Any:
    """Replace {{qty}} in every string of a JSON-like value."""
    if isinstance(value, str):
        return value.replace(QTY_PLACEHOLDER, str(qty))
    if isinstance(value, dict):
        return {k: render_qty(v, qty) for k, v in value.items()}
    if isinstance(value, list):
        return [render_qty(v, qty) for v in value]
    return value


def extract_path(body: Any, path: str) -> Any:
    """
    Walk a dot-separated path through dicts and lists.

    Numeric segments index lists. Callers check the result with
    `is_missing`.
    """
    current = body
    for segment in path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.lstrip("-").isdigit():
            index = int(segment)
            if -len(current) <= index < len(current):
                current = current[index]
            else:
                return _MISSING
        else:
            return _MISSING
    return current


def is_missing(value: Any) -> bool:
    """True when extract_path found nothing."""
    return value is _MISSING


def matches_condition(body: Any, condition: str | None) -> bool:
    """True when the serialized body contains the failure signature (case-insensitive)."""
    if not condition:
        return False
    serialized = json.dumps(body, ensure_ascii=False).lower()
    return condition.lower() in serialized


class UpstreamClient:
    """Sends templated requests to third-party endpoints."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._http_client = http_client
        self.timeout = timeout if timeout is not None else settings.upstream_timeout_seconds

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def call(
        self, template: UpstreamCallTemplate, qty: int, operation: str = "settlement"
    ) -> UpstreamResult:
        """Render and send one request. Network errors are captured, not raised."""
        method = (template.method or "GET").upper()
        url = render_qty(template.url, qty)
        headers = {"User-Agent": settings.upstream_user_agent}
        headers.update({str(k): str(v) for k, v in (template.headers or {}).items()})

        kwargs: dict[str, Any] = {"headers": headers, "timeout": self.timeout}
        if method == "POST" and template.payload_template is not None:
            payload = render_qty(template.payload_template, qty)
            if isinstance(payload, str):
                kwargs["content"] = payload
            else:
                kwargs["json"] = payload

        started = time.perf_counter()
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            metrics.record_upstream_call(operation, False, time.perf_counter() - started)
            logger.warning("upstream_request_failed", url=url, method=method, error=str(e))
            return UpstreamResult(
                ok=False,
                status_code=None,
                body=None,
                raw_text="",
                is_json=False,
                error=str(e) or type(e).__name__,
            )

        ok = response.is_success
        metrics.record_upstream_call(operation, ok, time.perf_counter() - started)

        raw_text = response.text
        try:
            body: Any = response.json()
            is_json = True
        except ValueError:
            body = raw_text
            is_json = False

        if not ok:
            logger.warning("upstream_non_success", url=url, status_code=response.status_code)
        return UpstreamResult(
            ok=ok,
            status_code=response.status_code,
            body=body,
            raw_text=raw_text,
            is_json=is_json,
            error=None if ok else f"Upstream returned HTTP {response.status_code}",
        )

    async def deliver(self, template: UpstreamCallTemplate, qty: int) -> DeliveryOutcome:
        """
        Call the upstream and decide the settlement outcome.

        - non-2xx / network error: failed with a diagnostic payload
        - 2xx JSON matching condition_reply_output: failed
        - 2xx JSON: extraction path applied, full body on any miss
        - 2xx non-JSON: delivered as text
        """
        result = await self.call(template, qty)

        if not result.ok:
            diagnostic = {
                "error": result.error,
                "status_code": result.status_code,
                "response": result.body,
            }
            return DeliveryOutcome(
                status=TransactionStatus.FAILED,
                delivered_payload=diagnostic,
                response_data=diagnostic,
            )

        if not result.is_json:
            return DeliveryOutcome(
                status=TransactionStatus.SUCCESS,
                delivered_payload=result.raw_text,
                response_data=result.raw_text,
            )

        if matches_condition(result.body, template.condition_reply_output):
            logger.info("upstream_condition_matched", condition=template.condition_reply_output)
            return DeliveryOutcome(
                status=TransactionStatus.FAILED,
                delivered_payload=result.body,
                response_data=result.body,
            )

        payload = result.body
        if template.path_body:
            extracted = extract_path(result.body, template.path_body)
            if is_missing(extracted):
                logger.debug("upstream_path_missing", path=template.path_body)
            else:
                payload = extracted

        return DeliveryOutcome(
            status=TransactionStatus.SUCCESS,
            delivered_payload=payload,
            response_data=result.body,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
