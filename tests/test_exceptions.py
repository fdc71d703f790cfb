"""
Tests for exception classes.

Covers status codes, wire error types and messages.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from tokenhub.exceptions import (
    ActivationPendingError,
    ActivationRejectedError,
    AuthorizationError,
    BatchLimitExceededError,
    InsufficientCreditsError,
    InsufficientStockError,
    InvalidRequestError,
    InvalidTokenError,
    MarketplaceError,
    NotFoundError,
    PersistenceError,
    PostDeliveryLedgerError,
    ProductNotFoundError,
    RefundWindowExpiredError,
    ServiceConfigurationError,
    TokenLockedError,
    TokenNotActivatedError,
    TransactionNotFoundError,
)


@pytest.mark.parametrize(
    "exc,status_code,error_type",
    [
        (InvalidRequestError("bad"), 400, "validation_error"),
        (BatchLimitExceededError(limit=10, received=11), 400, "limit_exceeded"),
        (ProductNotFoundError("X"), 404, "product_not_found"),
        (InvalidTokenError(is_master=False), 404, "invalid_token"),
        (TransactionNotFoundError(uuid4()), 404, "transaction_not_found"),
        (TokenLockedError(), 403, "token_locked"),
        (TokenNotActivatedError(), 403, "token_not_activated"),
        (ActivationPendingError(), 403, "activation_pending"),
        (ActivationRejectedError(), 403, "activation_rejected"),
        (InsufficientCreditsError(Decimal("1"), Decimal("2")), 402, "insufficient_credits"),
        (InsufficientStockError(available=1, required=2), 400, "insufficient_stock"),
        (RefundWindowExpiredError(61.0, 60), 400, "refund_window_expired"),
        (ServiceConfigurationError("missing url"), 500, "configuration_error"),
    ],
)
def test_status_and_error_type(exc, status_code, error_type):
    assert isinstance(exc, MarketplaceError)
    assert exc.status_code == status_code
    assert exc.error_type == error_type


class TestMessages:
    """Messages shown to callers."""

    def test_invalid_token_messages(self):
        assert "Master token not found" in str(InvalidTokenError(is_master=True))
        assert str(InvalidTokenError(is_master=False, product_id="p")) == (
            "Invalid token or token not found for this product"
        )

    def test_insufficient_credits(self):
        exc = InsufficientCreditsError(available=Decimal("1.5"), required=Decimal("4"))
        assert str(exc) == "Insufficient credits. Available: 1.5, Required: 4"
        assert exc.available == Decimal("1.5")

    def test_batch_limit(self):
        exc = BatchLimitExceededError(limit=100, received=150)
        assert str(exc) == "Maximum 100 emails per request"
        assert exc.received == 150

    def test_configuration_prefix(self):
        assert str(ServiceConfigurationError("REFUND_WORKFLOW_URL is not configured")).startswith(
            "Server configuration error: "
        )


class TestHierarchy:
    """Handlers catch families by base class."""

    def test_gates_are_authorization_errors(self):
        for cls in (TokenLockedError, TokenNotActivatedError, ActivationPendingError):
            assert issubclass(cls, AuthorizationError)

    def test_lookups_are_not_found(self):
        assert issubclass(ProductNotFoundError, NotFoundError)
        assert issubclass(TransactionNotFoundError, NotFoundError)

    def test_post_delivery_is_persistence_error(self):
        tx_id = uuid4()
        exc = PostDeliveryLedgerError(tx_id, "tok", Decimal("2"))
        assert isinstance(exc, PersistenceError)
        assert exc.status_code == 500
        assert exc.transaction_id == tx_id
        assert str(tx_id) in str(exc)
