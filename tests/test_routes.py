"""
HTTP-level tests: request parsing, status codes and the failure shape.

Services are patched at the route modules; their own behavior is covered
in the service tests.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from factories import create_product, make_result, queue_results
from tokenhub.exceptions import (
    ActivationAlreadyExistsError,
    InsufficientCreditsError,
    InvalidTokenError,
    PostDeliveryLedgerError,
    RefundAlreadyRequestedError,
)
from tokenhub.models.domain import (
    ActivationResult,
    InboxMessage,
    PriceSyncSummary,
    PriceUpdate,
    QuantitySyncSummary,
    QuantityUpdate,
    RefundRecordData,
    RefundSweepSummary,
    RestockSummary,
    SettlementResult,
)


def patched_service(path: str, method: str, **kwargs):
    """Patch a service class so that instance.<method> is an AsyncMock."""
    instance = MagicMock()
    setattr(instance, method, AsyncMock(**kwargs))
    return patch(path, return_value=instance), instance


def settlement_result(success: bool = True) -> SettlementResult:
    return SettlementResult(
        success=success,
        message="Transaction completed successfully. Remaining credits: 8",
        transaction_id=uuid4(),
        delivered_payload=["user|pass"],
        credits_charged=Decimal("2"),
        remaining_credits=Decimal("8"),
    )


class TestProcess:
    def test_get_with_query_params(self, client):
        patcher, service = patched_service(
            "tokenhub.api.routes.SettlementService", "settle", return_value=settlement_result()
        )
        with patcher:
            response = client.get(
                "/v1/process", params={"token": " tok ", "product": "TEST-PRODUCT", "qty": "2"}
            )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["delivered_payload"] == ["user|pass"]
        intent = service.settle.await_args.args[0]
        assert intent.token == "tok"
        assert intent.product_name == "TEST-PRODUCT"
        assert intent.qty == 2
        assert intent.use_master_token is False

    def test_post_json_body(self, client):
        patcher, service = patched_service(
            "tokenhub.api.routes.SettlementService", "settle", return_value=settlement_result()
        )
        with patcher:
            response = client.post(
                "/v1/process",
                json={"token": "tok", "product_id": "prod-1", "qty": 1, "use_master_token": True},
            )

        assert response.status_code == 200
        assert service.settle.await_args.args[0].use_master_token is True

    def test_failed_delivery_is_200_with_transaction_id(self, client):
        result = settlement_result(success=False)
        patcher, _ = patched_service(
            "tokenhub.api.routes.SettlementService", "settle", return_value=result
        )
        with patcher:
            response = client.post("/v1/process", json={"token": "t", "product_id": "p", "qty": 1})

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["transaction_id"] == str(result.transaction_id)

    @pytest.mark.parametrize(
        "payload",
        [
            {"product_id": "p", "qty": 1},
            {"token": "t", "qty": 1},
            {"token": "t", "product_id": "p", "qty": 0},
            {"token": "t", "product_id": "p", "qty": "many"},
        ],
    )
    def test_invalid_parameters_are_400(self, client, payload):
        response = client.post("/v1/process", json=payload)

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error_type"] == "validation_error"

    def test_non_json_body_is_400(self, client):
        response = client.post(
            "/v1/process", content=b"token=t", headers={"Content-Type": "text/plain"}
        )
        assert response.status_code == 400

    def test_insufficient_credits_is_402(self, client):
        patcher, _ = patched_service(
            "tokenhub.api.routes.SettlementService",
            "settle",
            side_effect=InsufficientCreditsError(Decimal("1"), Decimal("2")),
        )
        with patcher:
            response = client.post("/v1/process", json={"token": "t", "product_id": "p", "qty": 2})

        assert response.status_code == 402
        assert response.json() == {
            "success": False,
            "message": "Insufficient credits. Available: 1, Required: 2",
            "error_type": "insufficient_credits",
        }

    def test_unknown_token_is_404(self, client):
        patcher, _ = patched_service(
            "tokenhub.api.routes.SettlementService",
            "settle",
            side_effect=InvalidTokenError(is_master=True),
        )
        with patcher:
            response = client.post("/v1/process", json={"token": "t", "product_id": "p", "qty": 1})

        assert response.status_code == 404
        assert response.json()["error_type"] == "invalid_token"

    def test_post_delivery_ledger_error_carries_transaction_id(self, client):
        tx_id = uuid4()
        patcher, _ = patched_service(
            "tokenhub.api.routes.SettlementService",
            "settle",
            side_effect=PostDeliveryLedgerError(tx_id, "t", Decimal("2")),
        )
        with patcher:
            response = client.post("/v1/process", json={"token": "t", "product_id": "p", "qty": 2})

        assert response.status_code == 500
        assert response.json()["transaction_id"] == str(tx_id)

    def test_unexpected_error_is_hidden(self, client):
        patcher, _ = patched_service(
            "tokenhub.api.routes.SettlementService", "settle", side_effect=RuntimeError("boom")
        )
        with patcher:
            response = client.post("/v1/process", json={"token": "t", "product_id": "p", "qty": 1})

        assert response.status_code == 500
        assert response.json()["message"] == "Internal server error"


class TestRefunds:
    def test_refund_submitted(self, client, fixed_datetime):
        record = RefundRecordData(
            refund_id=uuid4(),
            transaction_id=uuid4(),
            refund_status="pending",
            response_message="Refund request processed",
            created_at=fixed_datetime,
        )
        patcher, _ = patched_service(
            "tokenhub.api.routes.RefundService", "request_refund", return_value=record
        )
        with patcher:
            response = client.post("/v1/refunds", json={"transaction_id": str(record.transaction_id)})

        assert response.status_code == 200
        data = response.json()
        assert data["refund_status"] == "pending"
        assert data["created_at"] == fixed_datetime.isoformat()

    def test_already_requested_is_409_with_refund_data(self, client, fixed_datetime):
        existing = RefundRecordData(
            refund_id=uuid4(),
            transaction_id=uuid4(),
            refund_status="approved",
            response_message="done",
            created_at=fixed_datetime,
        )
        patcher, _ = patched_service(
            "tokenhub.api.routes.RefundService",
            "request_refund",
            side_effect=RefundAlreadyRequestedError(existing),
        )
        with patcher:
            response = client.post("/v1/refunds", json={"transaction_id": str(existing.transaction_id)})

        assert response.status_code == 409
        assert response.json()["refund_data"] == {
            "refund_status": "approved",
            "response_message": "done",
            "created_at": fixed_datetime.isoformat(),
        }

    def test_bad_transaction_id_is_400(self, client):
        response = client.post("/v1/refunds", json={"transaction_id": "not-a-uuid"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "validation_error"


class TestReadSide:
    def test_credits(self, client):
        patcher, _ = patched_service(
            "tokenhub.api.routes.LedgerService",
            "get_credits",
            return_value=(Decimal("12.50"), "TEST-PRODUCT"),
        )
        with patcher:
            response = client.get("/v1/credits", params={"token": "tok"})

        assert response.json() == {"success": True, "credits": 12.5, "product_name": "TEST-PRODUCT"}

    def test_credits_requires_token(self, client):
        assert client.get("/v1/credits").status_code == 400

    def test_items_uses_catalog(self, client, db_session):
        queue_results(
            db_session,
            make_result(rows=[create_product(product_id="a", name="A", product_type="api", quantity=4)]),
        )

        response = client.get("/v1/items")

        assert response.status_code == 200
        assert response.json()["products"] == [{"id": "a", "name": "A", "quantity": 4}]


class TestUtilities:
    def test_totp(self, client):
        response = client.post(
            "/v1/utils/totp", json={"secret": "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"}
        )

        assert response.status_code == 200
        data = response.json()
        assert len(data["code"]) == 6
        assert data["code"].isdigit()
        assert 1 <= data["remaining_seconds"] <= 30

    def test_totp_invalid_secret(self, client):
        response = client.post("/v1/utils/totp", json={"secret": "!!!"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_secret"

    def test_inbox_serializes_sender_as_from(self, client):
        message = InboxMessage(
            mail="box@hotmail.com",
            sender="noreply@service.test",
            time="09:05 - 15/01/2026",
            content="Subject: x",
            code="1234",
        )
        patcher, _ = patched_service(
            "tokenhub.api.utility_routes.InboxService", "read", return_value=[message]
        )
        with patcher:
            response = client.post("/v1/utils/inbox", json={"transaction_ids": ["x"]})

        data = response.json()
        assert data["message"] == "Processed 1 emails successfully"
        assert data["results"][0]["from"] == "noreply@service.test"
        assert "sender" not in data["results"][0]

    def test_credential_lookup_requires_token(self, client):
        response = client.post("/v1/utils/oauth2-token", json={"token": "  ", "email_password": "a|b"})
        assert response.status_code == 400


class TestInternal:
    def test_refund_sweep(self, client):
        patcher, _ = patched_service(
            "tokenhub.api.internal_routes.RefundSweepService",
            "run",
            return_value=RefundSweepSummary(configs=2, processed=3, refunded=1),
        )
        with patcher:
            response = client.post("/v1/internal/refund-sweep")

        assert response.json()["total_refunded"] == 1

    def test_quantity_sync(self, client):
        summary = QuantitySyncSummary(
            updated_count=1,
            error_count=1,
            results=[
                QuantityUpdate(product_id="a", success=True, quantity=3),
                QuantityUpdate(product_id="b", success=False, error="db down"),
            ],
        )
        patcher, _ = patched_service(
            "tokenhub.api.internal_routes.QuantitySyncService", "run", return_value=summary
        )
        with patcher:
            response = client.post("/v1/internal/quantity-sync")

        data = response.json()
        assert data["updated_count"] == 1
        assert data["results"][1] == {"id": "b", "success": False, "quantity": None, "error": "db down"}

    def test_restock(self, client):
        patcher, _ = patched_service(
            "tokenhub.api.internal_routes.RestockService",
            "run",
            return_value=RestockSummary(
                processed_configurations=1, processed_transactions=4, inserted_units=6
            ),
        )
        with patcher:
            response = client.post("/v1/internal/restock")

        assert response.json()["total_inserted_units"] == 6


def test_root(client):
    assert client.get("/").json()["status"] == "running"


class TestActivation:
    def test_token_string_alias_accepted(self, client):
        patcher, service = patched_service(
            "tokenhub.api.routes.ActivationService",
            "activate",
            return_value=ActivationResult("tok", "Pending", Decimal("12.5")),
        )
        with patcher:
            response = client.post("/v1/tokens/activate", json={"token_string": " tok "})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "status": "Pending",
            "message": "Token activation created with status: Pending. Amount due: $12.5",
            "total_usd_due": 12.5,
        }
        service.activate.assert_awaited_once_with("tok", master_token=None)

    def test_existing_activation_is_409(self, client):
        patcher, _ = patched_service(
            "tokenhub.api.routes.ActivationService",
            "activate",
            side_effect=ActivationAlreadyExistsError("Pending"),
        )
        with patcher:
            response = client.post("/v1/tokens/activate", json={"token": "tok"})

        assert response.status_code == 409
        assert response.json()["error_type"] == "activation_exists"

    def test_missing_token_is_400(self, client):
        assert client.post("/v1/tokens/activate", json={}).status_code == 400


def test_price_sync_route(client):
    summary = PriceSyncSummary(
        updated_count=1,
        error_count=1,
        results=[
            PriceUpdate(product_id="a", success=True, value=Decimal("1.3168")),
            PriceUpdate(product_id="b", success=False, error="No products_quantity configuration found"),
        ],
    )
    patcher, _ = patched_service(
        "tokenhub.api.internal_routes.PriceSyncService", "run", return_value=summary
    )
    with patcher:
        response = client.post("/v1/internal/price-sync")

    data = response.json()
    assert data["updated_count"] == 1
    assert data["results"][0] == {"id": "a", "success": True, "value": 1.3168, "error": None}
