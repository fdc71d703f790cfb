"""
Utility API routes - Credential lookup, TOTP and inbox reading.
"""

from typing import Annotated

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenhub.api.dependencies import get_http_client
from tokenhub.db.session import get_write_db
from tokenhub.models.api import (
    CredentialLookupItem,
    CredentialLookupRequest,
    CredentialLookupResponse,
    InboxMessageItem,
    InboxRequest,
    InboxResponse,
    TotpRequest,
    TotpResponse,
)
from tokenhub.services.credential_lookup import CredentialLookupService, collect_lines
from tokenhub.services.inbox import InboxService
from tokenhub.services.totp import generate_totp

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/utils", tags=["utilities"])


@router.post("/oauth2-token", response_model=CredentialLookupResponse)
async def lookup_credentials(
    body: CredentialLookupRequest,
    db: Annotated[AsyncSession, Depends(get_write_db)],
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_http_client)],
) -> CredentialLookupResponse:
    """Batched refresh-token lookup, one credential per line."""
    service = CredentialLookupService(db, http_client=http_client)
    result = await service.lookup(
        token=body.token,
        lines=collect_lines(body.email_password, body.email_passwords),
        use_master_token=body.use_master_token,
        remove_duplicates=body.remove_duplicates,
    )
    return CredentialLookupResponse(
        count=result.count,
        results=[
            CredentialLookupItem(
                email=r.email,
                status=r.status,
                result_text=r.result_text,
                response=r.response,
                error_message=r.error_message,
            )
            for r in result.results
        ],
    )


@router.post("/totp", response_model=TotpResponse)
async def derive_totp(body: TotpRequest) -> TotpResponse:
    """Current one-time code for a base32 secret or otpauth:// URI."""
    code = generate_totp(body.secret)
    return TotpResponse(code=code.code, remaining_seconds=code.remaining_seconds)


@router.post("/inbox", response_model=InboxResponse, response_model_by_alias=True)
async def read_inbox(
    body: InboxRequest,
    db: Annotated[AsyncSession, Depends(get_write_db)],
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_http_client)],
) -> InboxResponse:
    """Recent inbox messages, with extracted codes, for delivered mailboxes."""
    messages = await InboxService(db, http_client=http_client).read(
        transaction_ids=body.transaction_ids,
        email_strings=body.email_strings,
        token=body.token.strip() if body.token else None,
    )
    return InboxResponse(
        message=f"Processed {len(messages)} emails successfully",
        results=[
            InboxMessageItem(
                mail=m.mail, sender=m.sender, time=m.time, content=m.content, code=m.code
            )
            for m in messages
        ],
    )
