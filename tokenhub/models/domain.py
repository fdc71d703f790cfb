"""
Domain Models - Internal business logic models using dataclasses.

All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from tokenhub.models.api import TransactionStatus

REFUNDED_NOTE = "Refunded"
REFUNDED_OUTPUT = "Order Refunded"


@dataclass(frozen=True)
class SettlementIntent:
    """A single redemption request before any gate has run."""

    token: str
    qty: int
    product_id: str | None = None
    product_name: str | None = None
    use_master_token: bool = False

    def __post_init__(self) -> None:
        """Validate settlement constraints."""
        if not self.token:
            raise ValueError("token cannot be empty")
        if self.qty <= 0:
            raise ValueError(f"qty must be positive: {self.qty}")
        if not self.product_id and not self.product_name:
            raise ValueError("product_id or product_name is required")


@dataclass(frozen=True)
class ResolvedToken:
    """A token that passed every gate, with the ledger it belongs to."""

    token: str
    credits: Decimal
    product_id: str | None
    is_master: bool

    @property
    def ledger(self) -> str:
        """Table name of the ledger holding this token."""
        return "tokens_master" if self.is_master else "tokens"


@dataclass(frozen=True)
class UpstreamCallTemplate:
    """How to call a third-party endpoint for an API product."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    payload_template: Any = None
    path_body: str | None = None
    condition_reply_output: str | None = None


@dataclass(frozen=True)
class UpstreamResult:
    """Raw outcome of one upstream HTTP call."""

    ok: bool
    status_code: int | None
    body: Any
    raw_text: str
    is_json: bool
    error: str | None = None


@dataclass(frozen=True)
class DeliveryOutcome:
    """What the delivery phase produced, before it is recorded."""

    status: TransactionStatus
    delivered_payload: Any
    response_data: Any

    @property
    def succeeded(self) -> bool:
        """True when the goods were delivered."""
        return self.status == TransactionStatus.SUCCESS


@dataclass(frozen=True)
class SettlementResult:
    """Terminal result of a settlement attempt."""

    success: bool
    message: str
    transaction_id: UUID
    delivered_payload: Any
    credits_charged: Decimal
    remaining_credits: Decimal | None


@dataclass(frozen=True)
class RefundRecordData:
    """Immutable refund record after persistence."""

    refund_id: UUID
    transaction_id: UUID
    refund_status: str
    response_message: str | None
    created_at: datetime


@dataclass(frozen=True)
class WorkflowDecision:
    """Response of the external refund-approval workflow."""

    refund_status: str
    response_message: str


@dataclass(frozen=True)
class RefundSweepSummary:
    """Totals of a scheduled refund sweep."""

    configs: int
    processed: int
    refunded: int


@dataclass(frozen=True)
class CredentialPair:
    """One parsed `identifier|secret` line."""

    email: str
    password: str


@dataclass(frozen=True)
class LookupOutcome:
    """Result slot of one credential processed by the lookup pool."""

    email: str
    status: TransactionStatus
    result_text: str | None = None
    response: dict[str, Any] | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class BatchLookupResult:
    """All result slots of a batched lookup, in input order."""

    count: int
    results: list[LookupOutcome]


@dataclass(frozen=True)
class TotpCode:
    """A derived one-time code."""

    code: str
    remaining_seconds: int


@dataclass(frozen=True)
class InboxMessage:
    """One inbox message with its extracted verification code."""

    mail: str
    sender: str
    time: str
    content: str
    code: str


@dataclass(frozen=True)
class QuantityUpdate:
    """Outcome of refreshing one product's cached quantity."""

    product_id: str
    success: bool
    quantity: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class QuantitySyncSummary:
    """Totals of a quantity sync pass."""

    updated_count: int
    error_count: int
    results: list[QuantityUpdate]


@dataclass(frozen=True)
class RestockSummary:
    """Totals of a restock pass."""

    processed_configurations: int
    processed_transactions: int
    inserted_units: int


@dataclass(frozen=True)
class PriceUpdate:
    """Outcome of refreshing one product's price."""

    product_id: str
    success: bool
    value: Decimal | None = None
    error: str | None = None


@dataclass(frozen=True)
class PriceSyncSummary:
    """Totals of a price sync pass."""

    updated_count: int
    error_count: int
    results: list[PriceUpdate]


@dataclass(frozen=True)
class ActivationResult:
    """Activation state a token was moved to."""

    token: str
    status: str
    total_usd_due: Decimal

    @property
    def activated(self) -> bool:
        """True when the token can be spent right away."""
        return self.status == "Activated"
