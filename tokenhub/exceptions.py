"""
Exception Classes - Strongly typed exception hierarchy.

Every error carries the HTTP status and the `error_type` string that
routes put on the wire.
"""

from decimal import Decimal
from uuid import UUID

from tokenhub.models.domain import RefundRecordData


class MarketplaceError(Exception):
    """Base exception for all settlement errors."""

    status_code: int = 500
    error_type: str = "internal_error"


# ============================================================================
# Validation (400)
# ============================================================================


class InvalidRequestError(MarketplaceError):
    """Raised when input is missing or malformed."""

    status_code = 400
    error_type = "validation_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidCredentialFormatError(InvalidRequestError):
    """Raised when no credential line could be parsed."""

    error_type = "invalid_format"

    def __init__(self) -> None:
        super().__init__(
            "Provide credentials in format email@domain.com|password "
            "or email@domain.com:password"
        )


class BatchLimitExceededError(InvalidRequestError):
    """Raised when a batch holds more items than allowed."""

    error_type = "limit_exceeded"

    def __init__(self, limit: int, received: int) -> None:
        self.limit = limit
        self.received = received
        super().__init__(f"Maximum {limit} emails per request")


class InvalidTotpSecretError(InvalidRequestError):
    """Raised when a TOTP secret cannot be decoded."""

    error_type = "invalid_secret"


class TokenRequiredError(InvalidRequestError):
    """Raised when an operation needs a token and none was given."""

    error_type = "missing_parameters"

    def __init__(self, message: str = "Token required for email string processing") -> None:
        super().__init__(message)


# ============================================================================
# Not Found (404)
# ============================================================================


class NotFoundError(MarketplaceError):
    """Raised when a token, product or transaction does not exist."""

    status_code = 404
    error_type = "not_found"


class ProductNotFoundError(NotFoundError):
    """Raised when the product cannot be resolved by id or name."""

    error_type = "product_not_found"

    def __init__(self, product_ref: str) -> None:
        self.product_ref = product_ref
        super().__init__(f"Product not found: {product_ref}")


class InvalidTokenError(NotFoundError):
    """Raised when the token is absent from the ledger it was looked up in."""

    error_type = "invalid_token"

    def __init__(self, is_master: bool, product_id: str | None = None) -> None:
        self.is_master = is_master
        self.product_id = product_id
        if is_master:
            message = "Master token not found. Please verify your token is correct."
        elif product_id is not None:
            message = "Invalid token or token not found for this product"
        else:
            message = "Token not found"
        super().__init__(message)


class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction id is unknown."""

    error_type = "transaction_not_found"

    def __init__(self, transaction_id: UUID | str) -> None:
        self.transaction_id = transaction_id
        super().__init__("Transaction ID not found")


# ============================================================================
# Authorization (403)
# ============================================================================


class AuthorizationError(MarketplaceError):
    """Raised when a token exists but may not be spent."""

    status_code = 403
    error_type = "unauthorized_token"


class TokenLockedError(AuthorizationError):
    """Raised when the token is locked."""

    error_type = "token_locked"

    def __init__(self) -> None:
        super().__init__(
            "Token Locked: Your token has been locked and cannot be used for transactions. "
            "Please contact support to unlock your token."
        )


class TokenNotActivatedError(AuthorizationError):
    """Raised when the token is deactivated without a pending activation."""

    error_type = "token_not_activated"

    def __init__(self) -> None:
        super().__init__(
            "Token Not Activated: Your token is currently deactivated and cannot be used "
            "for transactions. Please contact support to activate your token."
        )


class ActivationPendingError(AuthorizationError):
    """Raised when the token's activation is still pending."""

    error_type = "activation_pending"

    def __init__(self) -> None:
        super().__init__("Token activation is pending. The token cannot be used yet.")


class ActivationRejectedError(AuthorizationError):
    """Raised when the token's activation was rejected."""

    error_type = "activation_rejected"

    def __init__(self) -> None:
        super().__init__("Token activation was rejected. The token cannot be used.")


# ============================================================================
# Insufficient Resource (402 / 400)
# ============================================================================


class InsufficientResourceError(MarketplaceError):
    """Raised when credits or stock do not cover the request."""

    status_code = 400
    error_type = "insufficient_resource"


class InsufficientCreditsError(InsufficientResourceError):
    """Raised when the token balance is below the required credits."""

    status_code = 402
    error_type = "insufficient_credits"

    def __init__(self, available: Decimal, required: Decimal) -> None:
        self.available = available
        self.required = required
        super().__init__(f"Insufficient credits. Available: {available}, Required: {required}")


class InsufficientStockError(InsufficientResourceError):
    """Raised when fewer unused inventory units exist than requested."""

    error_type = "insufficient_stock"

    def __init__(self, available: int, required: int) -> None:
        self.available = available
        self.required = required
        super().__init__(f"Insufficient stock. Available: {available}, Required: {required}")


# ============================================================================
# Refunds (409 / 400)
# ============================================================================


class RefundError(MarketplaceError):
    """Base class for refund request rejections."""

    status_code = 400
    error_type = "refund_error"


class RefundAlreadyRequestedError(RefundError):
    """Raised when a refund record already exists for the transaction."""

    status_code = 409
    error_type = "refund_already_requested"

    def __init__(self, existing: RefundRecordData) -> None:
        self.existing = existing
        super().__init__("Refund request already sent")


class RefundWindowExpiredError(RefundError):
    """Raised when the transaction is older than the refund window."""

    error_type = "refund_window_expired"

    def __init__(self, age_minutes: float, window_minutes: int) -> None:
        self.age_minutes = age_minutes
        self.window_minutes = window_minutes
        super().__init__("Refund request time expired")


# ============================================================================
# Activation (404 / 409)
# ============================================================================


class TokenNotEligibleForActivationError(NotFoundError):
    """Raised when no unlocked, unactivated token matches."""

    error_type = "token_not_eligible"

    def __init__(self) -> None:
        super().__init__(
            "Token not found or not eligible for activation. "
            "Token must be: activated=false, locked=false"
        )


class ActivationAlreadyExistsError(MarketplaceError):
    """Raised when the token already went through activation."""

    status_code = 409
    error_type = "activation_exists"

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__("Token activation already exists for this token")


# ============================================================================
# Persistence / Configuration (500)
# ============================================================================


class PersistenceError(MarketplaceError):
    """Raised when the data store rejects a write."""

    status_code = 500
    error_type = "persistence_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Persistence error: {message}")


class PostDeliveryLedgerError(PersistenceError):
    """Raised when goods were delivered but the credit debit could not be applied."""

    error_type = "post_delivery_ledger_error"

    def __init__(self, transaction_id: UUID, token: str, amount: Decimal) -> None:
        self.transaction_id = transaction_id
        self.token = token
        self.amount = amount
        super().__init__(
            f"Delivered transaction {transaction_id} but could not debit {amount} credits"
        )


class ServiceConfigurationError(MarketplaceError):
    """Raised when a feature is used without the configuration it needs."""

    status_code = 500
    error_type = "configuration_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Server configuration error: {message}")
