"""
Inbox Service - Read verification codes from delivered mailbox credentials.

Credentials come as `email|password|refresh_token|client_id`, either from
the first output of an allowed transaction or passed in directly. A
credential that fails at any step contributes no messages.
"""

import re
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.config import settings
from tokenhub.db.models import EmailExtractionPattern
from tokenhub.exceptions import InvalidTokenError, TokenRequiredError
from tokenhub.models.domain import InboxMessage
from tokenhub.services.ledger import LedgerService
from tokenhub.services.transactions import TransactionLog

logger = get_logger(__name__)

DEFAULT_CODE_PATTERN = r"\b\d{4,8}\b"
UNKNOWN_SENDER = "(unknown sender)"


def format_received(value: str | None) -> str:
    """ISO timestamp as `HH:MM - DD/MM/YYYY`; empty when unparseable."""
    if not value:
        return ""
    try:
        received = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return ""
    return received.strftime("%H:%M - %d/%m/%Y")


def extract_code(pattern: str, text: str) -> str:
    """First match of pattern in text, or an empty string."""
    try:
        match = re.search(pattern, text)
    except re.error:
        logger.warning("extraction_pattern_invalid", pattern=pattern)
        return ""
    return match.group(0) if match else ""


def split_credential(value: str) -> tuple[str, str, str] | None:
    """(email, refresh_token, client_id) from a delivered credential string."""
    parts = [part.strip() for part in value.split("|")]
    if len(parts) < 4 or not parts[0] or not parts[2] or not parts[3]:
        return None
    return parts[0], parts[2], parts[3]


class InboxService:
    """Reads inboxes through the mail provider's token and messages endpoints."""

    def __init__(
        self,
        session: AsyncSession,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.session = session
        self._http_client = http_client
        self.max_items = settings.inbox_max_items
        self.allowed_products = set(settings.inbox_allowed_product_names)
        self._patterns: dict[str, str] | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.inbox_timeout_seconds)
        return self._http_client

    async def read(
        self,
        transaction_ids: list[str],
        email_strings: list[str],
        token: str | None = None,
    ) -> list[InboxMessage]:
        """
        Collect messages for every credential.

        Raises:
            TokenRequiredError: email_strings given without a token
            InvalidTokenError: Token absent from both ledgers
        """
        if email_strings:
            if not token:
                raise TokenRequiredError()
            if not await LedgerService(self.session).token_exists(token):
                raise InvalidTokenError(is_master=False)

        credentials = await self._credentials_from_transactions(transaction_ids)
        credentials.extend(email_strings[: self.max_items])

        results: list[InboxMessage] = []
        for credential in credentials:
            results.extend(await self._read_one(credential))
        logger.info("inbox_read_complete", credentials=len(credentials), messages=len(results))
        return results

    async def _credentials_from_transactions(self, transaction_ids: list[str]) -> list[str]:
        ids: list[UUID] = []
        for raw in transaction_ids[: self.max_items]:
            try:
                ids.append(UUID(raw.strip()))
            except ValueError:
                logger.info("inbox_transaction_id_invalid", transaction_id=raw)

        credentials: list[str] = []
        for tx in await TransactionLog(self.session).find_many(ids):
            if tx.product_name not in self.allowed_products:
                logger.info("inbox_product_not_allowed", product_name=tx.product_name)
                continue
            if tx.output_result and isinstance(tx.output_result[0], str):
                credentials.append(tx.output_result[0])
        return credentials

    async def _pattern_for(self, sender: str) -> str:
        if self._patterns is None:
            result = await self.session.execute(select(EmailExtractionPattern))
            self._patterns = {p.from_email: p.regex_pattern for p in result.scalars().all()}
        return self._patterns.get(sender, DEFAULT_CODE_PATTERN)

    async def _read_one(self, credential: str) -> list[InboxMessage]:
        parsed = split_credential(credential)
        if parsed is None:
            logger.info("inbox_credential_malformed")
            return []
        email, refresh_token, client_id = parsed

        try:
            messages = await self._fetch_messages(refresh_token, client_id)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning("inbox_fetch_failed", mail=email, error=str(e))
            return []

        results: list[InboxMessage] = []
        for msg in messages:
            sender = (msg.get("from") or {}).get("emailAddress", {}).get("address") or UNKNOWN_SENDER
            preview = msg.get("bodyPreview") or ""
            subject = msg.get("subject") or ""
            results.append(
                InboxMessage(
                    mail=email,
                    sender=sender,
                    time=format_received(msg.get("receivedDateTime")),
                    content=f"Subject: {subject}\nFrom: {sender}\nPreview: {preview}",
                    code=extract_code(await self._pattern_for(sender), preview),
                )
            )
        return results

    async def _fetch_messages(self, refresh_token: str, client_id: str) -> list[dict[str, Any]]:
        token_response = await self.http_client.post(
            settings.inbox_token_url,
            data={
                "client_id": client_id,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": settings.inbox_scope,
            },
        )
        token_response.raise_for_status()
        access_token = token_response.json()["access_token"]

        inbox_response = await self.http_client.get(
            settings.inbox_messages_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        inbox_response.raise_for_status()
        return list(inbox_response.json().get("value", []))

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
