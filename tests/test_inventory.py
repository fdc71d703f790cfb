"""
Tests for InventoryService and CatalogService.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from factories import create_product, make_result, queue_results
from tokenhub.db.models import DigitalProduct
from tokenhub.exceptions import InsufficientStockError, ProductNotFoundError
from tokenhub.services.catalog import CatalogService
from tokenhub.services.inventory import InventoryService


def unit(unit_id: int, content: str) -> MagicMock:
    row = MagicMock(spec=DigitalProduct)
    row.id = unit_id
    row.content = content
    return row


class TestClaim:
    async def test_claims_fifo_with_skip_locked(self, db_session):
        queue_results(db_session, make_result(rows=[unit(1, "a"), unit(2, "b")]), make_result())

        contents = await InventoryService(db_session).claim("prod-1", 2)

        assert contents == ["a", "b"]
        select_sql = str(
            db_session.execute.await_args_list[0].args[0].compile(dialect=postgresql.dialect())
        )
        assert "FOR UPDATE SKIP LOCKED" in select_sql
        assert "ORDER BY digital_products.created_at, digital_products.id" in select_sql
        update_sql = str(
            db_session.execute.await_args_list[1].args[0].compile(dialect=postgresql.dialect())
        )
        assert update_sql.startswith("UPDATE digital_products SET is_used=")

    async def test_short_claim_marks_nothing(self, db_session):
        queue_results(db_session, make_result(rows=[unit(1, "a")]))

        with pytest.raises(InsufficientStockError) as exc_info:
            await InventoryService(db_session).claim("prod-1", 2)

        assert exc_info.value.available == 1
        assert exc_info.value.required == 2
        assert db_session.execute.await_count == 1

    async def test_count_available(self, db_session):
        queue_results(db_session, make_result(count=4))
        assert await InventoryService(db_session).count_available("prod-1") == 4

    def test_add_units(self, db_session):
        added = InventoryService(db_session).add_units("prod-2", ["x", "y", "z"])

        assert added == 3
        rows = [call.args[0] for call in db_session.add.call_args_list]
        assert [r.content for r in rows] == ["x", "y", "z"]
        assert all(r.product_id == "prod-2" and r.is_used is False for r in rows)


class TestCatalog:
    async def test_resolve_by_name(self, db_session):
        product = create_product(name="NETFLIX")
        queue_results(db_session, make_result(scalar=product))

        assert await CatalogService(db_session).resolve(None, "NETFLIX") is product
        sql = str(db_session.execute.await_args.args[0].compile(dialect=postgresql.dialect()))
        assert "products.name" in sql

    async def test_resolve_missing(self, db_session):
        with pytest.raises(ProductNotFoundError, match="prod-x"):
            await CatalogService(db_session).resolve("prod-x", None)

    async def test_list_items_counts_digital_without_quantity(self, db_session):
        digital = create_product(product_id="d1", name="D", quantity=None)
        api = create_product(product_id="a1", name="A", product_type="api", quantity=None)
        stocked = create_product(product_id="d2", name="S", quantity=9)
        queue_results(db_session, make_result(rows=[digital, api, stocked]), make_result(count=5))

        items = await CatalogService(db_session).list_items()

        assert [(i.id, i.quantity) for i in items] == [("d1", 5), ("a1", None), ("d2", 9)]

    async def test_list_visible(self, db_session):
        queue_results(db_session, make_result(rows=[create_product(quantity=3)]))

        [summary] = await CatalogService(db_session).list_visible()

        assert summary.id == "prod-1"
        assert summary.quantity == 3
