"""
Tests for moving delivered outputs back into inventory.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from factories import create_transaction, make_result, queue_results
from tokenhub.db.models import DigitalProduct, RestockConfig
from tokenhub.services.restock import RestockService, clean_output


def restock_config(last_check_time, start_check_minutes: int = 60) -> RestockConfig:
    return RestockConfig(
        id=1,
        source_product_ids=["src-1", "src-2"],
        destination_product_id="dest-1",
        start_check_minutes=start_check_minutes,
        last_check_time=last_check_time,
    )


@pytest.mark.parametrize(
    "entry,expected",
    [
        ('["user|pass"]', "user|pass"),
        ('"user|pass"', "user|pass"),
        ("user|pass", "user|pass"),
        ("  padded  ", "padded"),
        ('[""]', ""),
        (42, "42"),
    ],
)
def test_clean_output(entry, expected):
    assert clean_output(entry) == expected


class TestRestockRun:
    async def test_outputs_become_units(self, db_session, fixed_datetime):
        config = restock_config(fixed_datetime - timedelta(hours=5))
        older = create_transaction(
            product_id="src-1",
            output_result=['["a|1"]', "b|2"],
            timestamp=fixed_datetime - timedelta(minutes=30),
        )
        newer = create_transaction(
            product_id="src-2",
            output_result=['"c|3"', ""],
            timestamp=fixed_datetime - timedelta(minutes=10),
        )
        queue_results(db_session, make_result(rows=[config]), make_result(rows=[older, newer]))

        with patch("tokenhub.services.restock._utc_now", return_value=fixed_datetime):
            summary = await RestockService(db_session).run()

        assert summary.processed_configurations == 1
        assert summary.processed_transactions == 2
        assert summary.inserted_units == 3

        units = [call.args[0] for call in db_session.add.call_args_list]
        assert all(isinstance(u, DigitalProduct) for u in units)
        assert [u.content for u in units] == ["a|1", "b|2", "c|3"]
        assert {u.product_id for u in units} == {"dest-1"}
        assert config.last_check_time == newer.timestamp
        db_session.commit.assert_awaited_once()

    async def test_threshold_is_later_of_checkpoint_and_lookback(self, db_session, fixed_datetime):
        checkpoint = fixed_datetime - timedelta(minutes=5)
        config = restock_config(checkpoint, start_check_minutes=60)
        queue_results(db_session, make_result(rows=[config]), make_result(rows=[]))

        with patch("tokenhub.services.restock._utc_now", return_value=fixed_datetime):
            await RestockService(db_session).run()

        stmt = db_session.execute.await_args_list[1].args[0]
        assert checkpoint in stmt.compile().params.values()

    async def test_no_new_transactions_leaves_checkpoint(self, db_session, fixed_datetime):
        checkpoint = fixed_datetime - timedelta(days=3)
        config = restock_config(checkpoint)
        queue_results(db_session, make_result(rows=[config]), make_result(rows=[]))

        with patch("tokenhub.services.restock._utc_now", return_value=fixed_datetime):
            summary = await RestockService(db_session).run()

        assert summary.inserted_units == 0
        assert config.last_check_time == checkpoint
        db_session.commit.assert_not_awaited()
        db_session.add.assert_not_called()
