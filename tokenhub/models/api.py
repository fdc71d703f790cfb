"""
API Models - Pydantic models for request/response validation.

All wire payloads are snake_case JSON.
"""

from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class ProductType(str, Enum):
    """How a product is fulfilled."""

    DIGITAL = "digital"
    API = "api"


class TransactionStatus(str, Enum):
    """Terminal status of a settlement attempt."""

    SUCCESS = "success"
    FAILED = "failed"


class ActivationStatus(str, Enum):
    """Activation state of a regular token."""

    PENDING = "Pending"
    ACTIVATED = "Activated"
    REJECTED = "Rejected"


# ============================================================================
# Error Models
# ============================================================================


class RefundData(BaseModel):
    """Refund record as shown to callers."""

    refund_status: str
    response_message: str | None = None
    created_at: str  # ISO 8601 timestamp


class ErrorResponse(BaseModel):
    """Failure shape shared by every endpoint."""

    success: Literal[False] = False
    message: str
    error_type: str
    transaction_id: UUID | None = None
    refund_data: RefundData | None = None


# ============================================================================
# Settlement Models
# ============================================================================


class SettleRequest(BaseModel):
    """GET/POST /v1/process request."""

    product_id: str | None = Field(None, max_length=255)
    product_name: str | None = Field(
        None,
        max_length=255,
        validation_alias=AliasChoices("product_name", "product"),
    )
    token: str = Field(..., min_length=1, max_length=255)
    qty: int = Field(..., gt=0, le=10_000)
    use_master_token: bool = False

    @field_validator("token")
    @classmethod
    def strip_token(cls, v: str) -> str:
        """Tokens are pasted by hand; surrounding whitespace is never significant."""
        v = v.strip()
        if not v:
            raise ValueError("token cannot be blank")
        return v

    @model_validator(mode="after")
    def require_product(self) -> "SettleRequest":
        """Either product_id or product_name must be supplied."""
        if not self.product_id and not self.product_name:
            raise ValueError("Missing required parameters: (product_name OR product_id)")
        return self


class SettleResponse(BaseModel):
    """Settlement outcome. A failed delivery still carries a transaction id."""

    success: bool
    message: str
    transaction_id: UUID | None
    delivered_payload: Any = None


# ============================================================================
# Refund Models
# ============================================================================


class RefundRequest(BaseModel):
    """POST /v1/refunds request body."""

    transaction_id: UUID


class RefundResponse(BaseModel):
    """POST /v1/refunds response."""

    success: bool = True
    message: str = "Refund request submitted successfully"
    refund_status: str
    response_message: str | None
    created_at: str


# ============================================================================
# Activation Models
# ============================================================================


class ActivationRequest(BaseModel):
    """POST /v1/tokens/activate request body."""

    token: str = Field(
        ...,
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("token", "token_string"),
    )
    master_token: str | None = Field(None, max_length=255)

    @field_validator("token")
    @classmethod
    def strip_token(cls, v: str) -> str:
        """Strip surrounding whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("Missing required parameter: token")
        return v


class ActivationResponse(BaseModel):
    """POST /v1/tokens/activate response."""

    success: bool = True
    status: str
    message: str
    total_usd_due: float


# ============================================================================
# Read-side Models
# ============================================================================


class TokenQuery(BaseModel):
    """Body for token-keyed POST lookups."""

    token: str = Field(..., min_length=1, max_length=255)


class CreditsResponse(BaseModel):
    """GET/POST /v1/credits response."""

    success: bool = True
    credits: float
    product_name: str | None


class TransactionItem(BaseModel):
    """Single transaction in history."""

    id: UUID
    token: str
    product_id: str
    product_name: str
    qty: int
    status: TransactionStatus
    output_result: list[Any]
    note: str | None
    timestamp: str


class HistoryResponse(BaseModel):
    """GET/POST /v1/history response."""

    success: bool = True
    transactions: list[TransactionItem]


class ProductSummary(BaseModel):
    """Public product fields."""

    id: str
    name: str
    short_description: str | None = None
    category: str | None = None
    subcategory: str | None = None
    quantity: int | None = None


class ProductsResponse(BaseModel):
    """GET /v1/products response."""

    success: bool = True
    products: list[ProductSummary]


class ItemSummary(BaseModel):
    """Product availability."""

    id: str
    name: str
    quantity: int | None


class ItemsResponse(BaseModel):
    """GET /v1/items response."""

    success: bool = True
    products: list[ItemSummary]


# ============================================================================
# Utility Models
# ============================================================================


class CredentialLookupRequest(BaseModel):
    """POST /v1/utils/oauth2-token request body."""

    token: str = Field(..., min_length=1, max_length=255)
    email_password: str | None = None
    email_passwords: str | None = None
    remove_duplicates: bool = False
    use_master_token: bool = False

    @field_validator("token")
    @classmethod
    def strip_token(cls, v: str) -> str:
        """Strip surrounding whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("Authorization token is required")
        return v


class CredentialLookupItem(BaseModel):
    """Per-line outcome of a batched lookup."""

    email: str
    status: TransactionStatus
    result_text: str | None = None
    response: dict[str, Any] | None = None
    error_message: str | None = None


class CredentialLookupResponse(BaseModel):
    """POST /v1/utils/oauth2-token response."""

    success: bool = True
    count: int
    results: list[CredentialLookupItem]


class TotpRequest(BaseModel):
    """POST /v1/utils/totp request body."""

    secret: str = Field(..., min_length=1, max_length=1024)


class TotpResponse(BaseModel):
    """POST /v1/utils/totp response."""

    success: bool = True
    code: str
    remaining_seconds: int


class InboxRequest(BaseModel):
    """POST /v1/utils/inbox request body."""

    transaction_ids: list[str] = Field(default_factory=list)
    email_strings: list[str] = Field(default_factory=list)
    token: str | None = None


class InboxMessageItem(BaseModel):
    """One inbox message with its extracted code."""

    model_config = ConfigDict(populate_by_name=True)

    mail: str
    sender: str = Field(..., serialization_alias="from")
    time: str
    content: str
    code: str


class InboxResponse(BaseModel):
    """POST /v1/utils/inbox response."""

    success: bool = True
    message: str
    results: list[InboxMessageItem]


# ============================================================================
# Sweep Models
# ============================================================================


class RefundSweepResponse(BaseModel):
    """POST /v1/internal/refund-sweep response."""

    success: bool = True
    message: str
    configs: int
    total_processed: int
    total_refunded: int


class QuantitySyncItem(BaseModel):
    """Per-product quantity sync outcome."""

    id: str
    success: bool
    quantity: int | None = None
    error: str | None = None


class QuantitySyncResponse(BaseModel):
    """POST /v1/internal/quantity-sync response."""

    success: bool = True
    message: str
    updated_count: int
    error_count: int
    results: list[QuantitySyncItem]


class PriceSyncItem(BaseModel):
    """Per-product price sync outcome."""

    id: str
    success: bool
    value: float | None = None
    error: str | None = None


class PriceSyncResponse(BaseModel):
    """POST /v1/internal/price-sync response."""

    success: bool = True
    message: str
    updated_count: int
    error_count: int
    exchange_rate: str
    results: list[PriceSyncItem]


class RestockResponse(BaseModel):
    """POST /v1/internal/restock response."""

    success: bool = True
    message: str
    processed_configurations: int
    total_processed_transactions: int
    total_inserted_units: int
