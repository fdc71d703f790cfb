"""
Tests for the automatic refund sweep.
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from factories import create_transaction, make_result, queue_results
from tokenhub.db.models import RefundSweepConfig
from tokenhub.models.domain import REFUNDED_OUTPUT
from tokenhub.services.ledger import compute_price
from tokenhub.services.refund_sweep import (
    RefundSweepService,
    already_refunded,
    is_eligible,
    refunded_note,
)


def sweep_config(payloads: str = "Error, BANNED", product_ids=None) -> MagicMock:
    config = MagicMock(spec=RefundSweepConfig)
    config.id = 1
    config.payloads = payloads
    config.signatures = [p.strip().lower() for p in payloads.split(",") if p.strip()]
    config.window_hours = 24
    config.product_ids = product_ids
    config.last_checked_at = None
    return config


class TestEligibility:
    def test_signature_match_is_case_insensitive(self):
        tx = create_transaction(output_result=[{"status": "Account BANNED"}])
        assert is_eligible(tx, ["banned"])

    def test_no_signatures(self):
        assert not is_eligible(create_transaction(output_result=["error"]), [])

    def test_clean_output(self):
        assert not is_eligible(create_transaction(output_result=["user:pass"]), ["error"])

    def test_already_refunded(self):
        assert already_refunded(create_transaction(note="batch 7 Refunded"))
        assert not already_refunded(create_transaction(note=None))

    def test_refunded_note(self):
        assert refunded_note(None) == "Refunded"
        assert refunded_note("batch 7") == "batch 7 Refunded"

    def test_config_signatures_are_trimmed_and_lowered(self):
        config = RefundSweepConfig(payloads=" Error ,, Banned ", window_hours=24)
        assert config.signatures == ["error", "banned"]


class TestSweepRun:
    async def test_regular_transaction_refunds_quantity(self, db_session, fixed_datetime):
        config = sweep_config()
        tx = create_transaction(
            qty=3, output_result=["Error: dead account"], credits_charged=Decimal("3")
        )
        queue_results(
            db_session,
            make_result(rows=[1]),
            make_result(scalar=config),
            make_result(rows=[tx]),
            make_result(scalar=Decimal("13")),
        )

        with patch("tokenhub.services.refund_sweep._utc_now", return_value=fixed_datetime):
            summary = await RefundSweepService(db_session).run()

        assert summary.configs == 1
        assert summary.processed == 1
        assert summary.refunded == 1
        assert tx.output_result == [REFUNDED_OUTPUT]
        assert tx.note == "Refunded"
        assert config.last_checked_at == fixed_datetime
        db_session.commit.assert_awaited_once()

        credit_stmt = db_session.execute.await_args_list[3].args[0]
        assert credit_stmt.table.name == "tokens"

    async def test_master_transaction_refunds_credits_charged(self, db_session):
        tx = create_transaction(
            token="tok-master",
            qty=2,
            use_master_token=True,
            credits_charged=Decimal("4.50"),
            output_result=["banned"],
        )
        queue_results(
            db_session,
            make_result(rows=[1]),
            make_result(scalar=sweep_config()),
            make_result(rows=[tx]),
            make_result(scalar=Decimal("9.50")),
        )

        summary = await RefundSweepService(db_session).run()

        assert summary.refunded == 1
        credit_stmt = db_session.execute.await_args_list[3].args[0]
        assert credit_stmt.table.name == "tokens_master"

    async def test_second_pass_is_idempotent(self, db_session):
        tx = create_transaction(output_result=[REFUNDED_OUTPUT, "error"], note="Refunded")
        queue_results(
            db_session,
            make_result(rows=[1]),
            make_result(scalar=sweep_config()),
            make_result(rows=[tx]),
        )

        summary = await RefundSweepService(db_session).run()

        assert summary.processed == 1
        assert summary.refunded == 0
        assert db_session.execute.await_count == 3

    async def test_missing_token_is_skipped(self, db_session):
        tx = create_transaction(output_result=["error"])
        queue_results(
            db_session,
            make_result(rows=[1]),
            make_result(scalar=sweep_config()),
            make_result(rows=[tx]),
            make_result(scalar=None),
        )

        summary = await RefundSweepService(db_session).run()

        assert summary.refunded == 0
        assert tx.note is None
        assert tx.output_result == ["error"]

    async def test_locked_config_is_skipped(self, db_session):
        queue_results(db_session, make_result(rows=[1]), make_result(scalar=None))

        summary = await RefundSweepService(db_session).run()

        assert summary.configs == 1
        assert summary.processed == 0
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()

    @pytest.mark.parametrize("output", [["ok"], [{"user": "a", "pass": "b"}]])
    async def test_ineligible_transactions_untouched(self, db_session, output):
        tx = create_transaction(output_result=output)
        queue_results(
            db_session,
            make_result(rows=[1]),
            make_result(scalar=sweep_config()),
            make_result(rows=[tx]),
        )

        summary = await RefundSweepService(db_session).run()

        assert summary.processed == 0
        assert tx.output_result == output

    async def test_value_priced_regular_token_gets_full_charge_back(self, db_session):
        """With value pricing on, qty=2 at value 5 charged 10; the sweep returns 10."""
        with patch("tokenhub.services.ledger.settings") as mock_settings:
            mock_settings.price_regular_tokens_by_value = True
            charged = compute_price(2, Decimal("5"), is_master=False)
        tx = create_transaction(qty=2, credits_charged=charged, output_result=["error"])
        queue_results(
            db_session,
            make_result(rows=[1]),
            make_result(scalar=sweep_config()),
            make_result(rows=[tx]),
            make_result(scalar=Decimal("10")),
        )

        summary = await RefundSweepService(db_session).run()

        assert summary.refunded == 1
        credit_stmt = db_session.execute.await_args_list[3].args[0]
        assert credit_stmt.table.name == "tokens"
        assert Decimal("10") in credit_stmt.compile().params.values()
