"""
Tests for LedgerService and pricing.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.dialects import postgresql

from factories import create_master_token, create_token, make_result, queue_results
from tokenhub.exceptions import (
    ActivationPendingError,
    ActivationRejectedError,
    InsufficientCreditsError,
    InvalidTokenError,
    TokenLockedError,
    TokenNotActivatedError,
)
from tokenhub.models.domain import ResolvedToken
from tokenhub.services.ledger import LedgerService, compute_price


def compiled(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestComputePrice:
    def test_master_pays_qty_times_value(self):
        assert compute_price(3, Decimal("2.50"), is_master=True) == Decimal("7.50")

    def test_regular_pays_qty_by_default(self):
        assert compute_price(3, Decimal("2.50"), is_master=False) == Decimal("3")

    def test_regular_by_value_when_enabled(self):
        with patch("tokenhub.services.ledger.settings") as mock_settings:
            mock_settings.price_regular_tokens_by_value = True
            assert compute_price(3, Decimal("2"), is_master=False) == Decimal("6")


class TestResolveToken:
    async def test_regular_token_scoped_to_product(self, db_session):
        queue_results(db_session, make_result(scalar=create_token(credits=Decimal("4"))))

        resolved = await LedgerService(db_session).resolve_token(
            "tok-regular", use_master_token=False, product_id="prod-1"
        )

        assert resolved == ResolvedToken(
            token="tok-regular", credits=Decimal("4"), product_id="prod-1", is_master=False
        )
        stmt = db_session.execute.await_args.args[0]
        assert "tokens.product_id" in compiled(stmt)

    async def test_master_token(self, db_session):
        queue_results(db_session, make_result(scalar=create_master_token()))

        resolved = await LedgerService(db_session).resolve_token("tok-master", True)

        assert resolved.is_master is True
        assert resolved.ledger == "tokens_master"

    async def test_missing_master_token_message(self, db_session):
        with pytest.raises(InvalidTokenError, match="Master token not found"):
            await LedgerService(db_session).resolve_token("nope", True)

    async def test_missing_regular_token_for_product(self, db_session):
        with pytest.raises(InvalidTokenError, match="for this product"):
            await LedgerService(db_session).resolve_token("nope", False, product_id="prod-1")

    @pytest.mark.parametrize(
        ("token_kwargs", "error"),
        [
            ({"locked": True}, TokenLockedError),
            ({"activated": False, "activation_status": "Pending"}, ActivationPendingError),
            ({"activated": False, "activation_status": "Rejected"}, ActivationRejectedError),
            ({"activated": False, "activation_status": None}, TokenNotActivatedError),
            ({"activated": False, "activation_status": "Activated"}, TokenNotActivatedError),
            ({"activated": True, "activation_status": "Pending"}, ActivationPendingError),
            ({"activated": True, "activation_status": "Rejected"}, ActivationRejectedError),
        ],
    )
    async def test_regular_gates(self, db_session, token_kwargs, error):
        queue_results(db_session, make_result(scalar=create_token(**token_kwargs)))

        with pytest.raises(error) as exc_info:
            await LedgerService(db_session).resolve_token("tok-regular", False, "prod-1")
        assert exc_info.value.status_code == 403

    @pytest.mark.parametrize("status", [None, "Activated"])
    async def test_activated_token_passes(self, db_session, status):
        queue_results(
            db_session, make_result(scalar=create_token(activated=True, activation_status=status))
        )

        resolved = await LedgerService(db_session).resolve_token("tok-regular", False, "prod-1")

        assert resolved.credits == Decimal("10")


class TestBalanceMutations:
    def test_ensure_credits(self):
        resolved = ResolvedToken("t", Decimal("1.99"), None, True)
        with pytest.raises(InsufficientCreditsError, match="Available: 1.99, Required: 2"):
            LedgerService.ensure_credits(resolved, Decimal("2"))

    async def test_debit_is_a_conditional_update(self, db_session):
        queue_results(db_session, make_result(scalar=Decimal("6")))

        remaining = await LedgerService(db_session).debit("tok", Decimal("4"), is_master=False)

        assert remaining == Decimal("6")
        sql = compiled(db_session.execute.await_args.args[0])
        assert sql.startswith("UPDATE tokens SET credits=")
        assert "tokens.credits -" in sql
        assert "tokens.credits >=" in sql
        assert "RETURNING tokens.credits" in sql
        db_session.commit.assert_not_awaited()

    async def test_debit_miss_returns_none(self, db_session):
        queue_results(db_session, make_result(scalar=None))

        assert await LedgerService(db_session).debit("tok", Decimal("4"), is_master=True) is None
        assert "UPDATE tokens_master" in compiled(db_session.execute.await_args.args[0])

    async def test_credit_appends_note(self, db_session):
        queue_results(db_session, make_result(scalar=Decimal("9")))

        balance = await LedgerService(db_session).credit(
            "tok", Decimal("2"), is_master=False, note_entry="Refunded (abc)"
        )

        assert balance == Decimal("9")
        assert "concat_ws" in compiled(db_session.execute.await_args.args[0])


class TestGetCredits:
    async def test_regular_ledger_first(self, db_session):
        queue_results(db_session, make_result(first=(Decimal("7"), "NETFLIX")))

        assert await LedgerService(db_session).get_credits("tok") == (Decimal("7"), "NETFLIX")

    async def test_falls_back_to_master(self, db_session):
        queue_results(
            db_session, make_result(first=None), make_result(scalar=Decimal("12.50"))
        )

        assert await LedgerService(db_session).get_credits("tok") == (Decimal("12.50"), None)

    async def test_unknown_token(self, db_session):
        queue_results(db_session, make_result(first=None), make_result(scalar=None))

        with pytest.raises(InvalidTokenError):
            await LedgerService(db_session).get_credits("tok")
