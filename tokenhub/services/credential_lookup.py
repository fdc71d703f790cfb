"""
Credential Lookup Service - Batched refresh-token retrieval.

Credits for the whole batch are debited up front. A fixed-width pool of
asyncio workers then drains a shared iterator of credentials; each worker
writes only its own result slot, so results keep input order. One
transaction row is staged per credential and committed once the pool
drains.
"""

import asyncio
import json
from collections.abc import Iterator
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.config import settings
from tokenhub.db.models import Product
from tokenhub.exceptions import (
    BatchLimitExceededError,
    InsufficientCreditsError,
    InvalidCredentialFormatError,
    ServiceConfigurationError,
)
from tokenhub.models.api import TransactionStatus
from tokenhub.models.domain import BatchLookupResult, CredentialPair, LookupOutcome
from tokenhub.observability.metrics import metrics
from tokenhub.services.catalog import CatalogService
from tokenhub.services.ledger import LedgerService, compute_price
from tokenhub.services.transactions import TransactionLog

logger = get_logger(__name__)


def parse_credential_line(line: str) -> CredentialPair | None:
    """
    Parse `email|password` or `email:password`.

    `|` wins when both separators appear. Lines with a missing or empty
    part, or extra parts, are rejected.
    """
    line = line.strip()
    if not line:
        return None
    separator = "|" if "|" in line else ":" if ":" in line else None
    if separator is None:
        return None
    parts = [part.strip() for part in line.split(separator)]
    if len(parts) != 2 or not all(parts):
        return None
    return CredentialPair(email=parts[0], password=parts[1])


def parse_credentials(lines: list[str], remove_duplicates: bool = False) -> list[CredentialPair]:
    """Parse every line, dropping malformed ones and optionally duplicate emails."""
    pairs: list[CredentialPair] = []
    seen: set[str] = set()
    for line in lines:
        pair = parse_credential_line(line)
        if pair is None:
            continue
        if remove_duplicates:
            key = pair.email.lower()
            if key in seen:
                continue
            seen.add(key)
        pairs.append(pair)
    return pairs


def collect_lines(email_password: str | None, email_passwords: str | None) -> list[str]:
    """Single-credential and multi-line inputs merged into one list of lines."""
    lines: list[str] = []
    if email_password:
        lines.append(email_password)
    if email_passwords:
        lines.extend(email_passwords.splitlines())
    return lines


def error_message_from(body: Any, raw_text: str) -> str:
    """Pick the most specific error text from an upstream response."""
    message: Any = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error_description") or body.get("error")
    message = message or raw_text or "Request failed"
    return message if isinstance(message, str) else json.dumps(message)


class CredentialLookupService:
    """Spends token credits on a batch of credential lookups."""

    def __init__(
        self,
        session: AsyncSession,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.session = session
        self._http_client = http_client
        self.url = settings.credential_lookup_url
        self.client_id = settings.credential_lookup_client_id
        self.concurrency = settings.lookup_concurrency
        self.timeout = settings.lookup_timeout_seconds
        self.max_items = settings.lookup_max_items

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def lookup(
        self,
        token: str,
        lines: list[str],
        use_master_token: bool = False,
        remove_duplicates: bool = False,
    ) -> BatchLookupResult:
        """
        Run a batched lookup.

        Raises:
            ServiceConfigurationError: Lookup URL or client id unset
            InvalidCredentialFormatError: No parseable line
            BatchLimitExceededError: Too many credentials
            ProductNotFoundError / InvalidTokenError / AuthorizationError
            InsufficientCreditsError: Balance below the batch price
        """
        if not self.url or not self.client_id:
            raise ServiceConfigurationError("Credential lookup endpoint is not configured")

        pairs = parse_credentials(lines, remove_duplicates=remove_duplicates)
        if not pairs:
            raise InvalidCredentialFormatError()
        if len(pairs) > self.max_items:
            raise BatchLimitExceededError(limit=self.max_items, received=len(pairs))

        product = await CatalogService(self.session).resolve(
            None, settings.credential_lookup_product_name
        )
        ledger = LedgerService(self.session)
        resolved = await ledger.resolve_token(
            token, use_master_token, product_id=None if use_master_token else product.id
        )
        required = compute_price(len(pairs), product.value, resolved.is_master)
        ledger.ensure_credits(resolved, required)

        remaining = await ledger.debit(token, required, resolved.is_master)
        if remaining is None:
            await self.session.rollback()
            raise InsufficientCreditsError(available=resolved.credits, required=required)
        await self.session.commit()
        logger.info(
            "lookup_batch_debited",
            count=len(pairs),
            amount=str(required),
            ledger=resolved.ledger,
        )

        unit_price = compute_price(1, product.value, resolved.is_master)
        results = await self._run_pool(pairs, token, product, resolved.is_master, unit_price)
        await self.session.commit()

        logger.info(
            "lookup_batch_complete",
            count=len(results),
            succeeded=sum(1 for r in results if r.status == TransactionStatus.SUCCESS),
        )
        return BatchLookupResult(count=len(results), results=results)

    async def _run_pool(
        self,
        pairs: list[CredentialPair],
        token: str,
        product: Product,
        is_master: bool,
        unit_price: Decimal,
    ) -> list[LookupOutcome]:
        slots: list[LookupOutcome | None] = [None] * len(pairs)
        work: Iterator[tuple[int, CredentialPair]] = iter(enumerate(pairs))
        log = TransactionLog(self.session)

        async def worker() -> None:
            for index, pair in work:
                outcome = await self._lookup_one(pair)
                slots[index] = outcome
                self._record(log, outcome, pair, token, product, is_master, unit_price)

        width = min(self.concurrency, len(pairs))
        await asyncio.gather(*(worker() for _ in range(width)))
        return [slot for slot in slots if slot is not None]

    async def _lookup_one(self, pair: CredentialPair) -> LookupOutcome:
        metrics.lookup_in_flight.inc()
        try:
            response = await self.http_client.post(
                self.url,
                json={"email": pair.email, "password": pair.password},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            message = str(e) or "Connection error"
            logger.warning("lookup_request_failed", email=pair.email, error=message)
            return LookupOutcome(
                email=pair.email, status=TransactionStatus.FAILED, error_message=message
            )
        finally:
            metrics.lookup_in_flight.dec()

        try:
            body: Any = response.json()
        except ValueError:
            body = None

        if response.status_code == 200 and isinstance(body, dict) and body.get("refresh_token"):
            result_text = f"{pair.email}|{pair.password}|{body['refresh_token']}|{self.client_id}"
            return LookupOutcome(
                email=pair.email,
                status=TransactionStatus.SUCCESS,
                result_text=result_text,
                response={**body, "CLIENT_ID": self.client_id, "Result": result_text},
            )

        return LookupOutcome(
            email=pair.email,
            status=TransactionStatus.FAILED,
            error_message=error_message_from(body, response.text),
        )

    @staticmethod
    def _record(
        log: TransactionLog,
        outcome: LookupOutcome,
        pair: CredentialPair,
        token: str,
        product: Product,
        is_master: bool,
        unit_price: Decimal,
    ) -> None:
        metrics.record_lookup_item(outcome.status.value)
        if outcome.status == TransactionStatus.SUCCESS:
            output: Any = outcome.result_text
            response_data: Any = outcome.response
        else:
            output = f"{pair.email}|{pair.password} {outcome.error_message}"
            response_data = output
        log.record(
            token=token,
            product_id=product.id,
            product_name=product.name,
            qty=1,
            status=outcome.status,
            output=output,
            response_data=response_data,
            note=pair.email,
            use_master_token=is_master,
            credits_charged=unit_price,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
