"""Tests for the inbound webhook pipeline."""

import asyncio
import json
from datetime import datetime, timezone
from urllib.parse import urlencode

import pytest

from barter_pos.integrations.signatures import hmac_sha256_base64, hmac_sha256_hex
from barter_pos.models.database import INTEGRATION_INACTIVE, PosTransaction
from barter_pos.services.webhook_gateway import (
    LOG_DUPLICATE,
    LOG_IGNORED,
    LOG_REJECTED,
    LOG_SUCCESS,
    parse_transaction_date,
)

SQUARE_TIMESTAMP = "1700000000"


def square_event(payment_id="pay-1", location_id="LOC-1", amount=10000, event_type="payment.created"):
    return {
        "merchant_id": "SQ-MERCHANT",
        "type": event_type,
        "event_id": f"evt-{payment_id}",
        "data": {
            "type": "payment",
            "id": payment_id,
            "object": {
                "payment": {
                    "id": payment_id,
                    "location_id": location_id,
                    "status": "COMPLETED",
                    "amount_money": {"amount": amount, "currency": "USD"},
                    "created_at": "2024-01-15T12:30:00Z",
                }
            },
        },
    }


def signed_square(settings, payload):
    body = json.dumps(payload).encode()
    signature = hmac_sha256_base64(
        settings.square_webhook_signature_key.encode(), SQUARE_TIMESTAMP.encode() + b"." + body
    )
    headers = {
        "X-Square-HmacSha256-Signature": signature,
        "X-Square-HmacSha256-Timestamp": SQUARE_TIMESTAMP,
    }
    return body, headers


def clover_headers(settings):
    return {"X-Clover-Verification-Token": settings.clover_webhook_verification_token}


class TestParseTransactionDate:
    """Test provider timestamp parsing."""

    def test_z_suffix(self):
        assert parse_transaction_date("2024-01-15T12:30:00Z") == datetime(
            2024, 1, 15, 12, 30, tzinfo=timezone.utc
        )

    def test_compact_offset(self):
        parsed = parse_transaction_date("2024-03-01T10:00:00+0000")
        assert parsed == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_missing_defaults_to_now(self):
        before = datetime.now(timezone.utc)
        assert parse_transaction_date(None) >= before

    def test_garbage_defaults_to_now(self):
        assert parse_transaction_date("yesterday").tzinfo is not None


class TestSquareWebhooks:
    """Test the pipeline end to end with Square payloads."""

    @pytest.mark.asyncio
    async def test_records_split_transaction(self, context, store, settings, add_integration):
        integration = add_integration("square", store_id="LOC-1")
        body, headers = signed_square(settings, square_event())

        status_code, response = await context.gateway.handle("square", body, headers)

        assert status_code == 200
        assert response["success"] is True
        transaction = store.transactions[response["transaction_id"]]
        assert transaction.pos_integration_id == integration.id
        assert transaction.merchant_id == integration.merchant_id
        assert transaction.external_transaction_id == "pay-1"
        assert transaction.total_amount == 100.0
        assert transaction.barter_amount == 30.0
        assert transaction.card_amount == 70.0
        assert transaction.location_id == "LOC-1"
        assert transaction.transaction_date == datetime(2024, 1, 15, 12, 30, tzinfo=timezone.utc)
        assert store.webhook_logs[-1].status == LOG_SUCCESS

    @pytest.mark.asyncio
    async def test_replay_is_duplicate(self, context, store, settings, add_integration):
        add_integration("square", store_id="LOC-1")
        body, headers = signed_square(settings, square_event())

        await context.gateway.handle("square", body, headers)
        status_code, response = await context.gateway.handle("square", body, headers)

        assert status_code == 200
        assert response == {"success": True, "duplicate": True}
        assert len(store.transactions) == 1
        assert store.webhook_logs[-1].status == LOG_DUPLICATE

    @pytest.mark.asyncio
    async def test_insert_conflict_is_duplicate(self, context, store, settings, add_integration, monkeypatch):
        """A row written after the existence check is caught by the insert."""
        add_integration("square", store_id="LOC-1")
        body, headers = signed_square(settings, square_event())
        await context.gateway.handle("square", body, headers)
        monkeypatch.setattr(store, "transaction_exists", lambda provider, external_id: False)

        status_code, response = await context.gateway.handle("square", body, headers)

        assert status_code == 200
        assert response == {"success": True, "duplicate": True}
        assert len(store.transactions) == 1
        assert store.webhook_logs[-1].status == LOG_DUPLICATE

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_record_once(self, context, store, settings, add_integration):
        add_integration("square", store_id="LOC-1")
        body, headers = signed_square(settings, square_event())

        results = await asyncio.gather(
            context.gateway.handle("square", body, headers),
            context.gateway.handle("square", body, headers),
        )

        assert [status_code for status_code, _ in results] == [200, 200]
        responses = [response for _, response in results]
        assert sum(1 for response in responses if response.get("duplicate")) == 1
        assert sum(1 for response in responses if "transaction_id" in response) == 1
        assert len(store.transactions) == 1

    @pytest.mark.asyncio
    async def test_invalid_signature_rejected(self, context, store, settings, add_integration):
        add_integration("square", store_id="LOC-1")
        body, headers = signed_square(settings, square_event())
        headers["X-Square-HmacSha256-Signature"] = "forged"

        status_code, response = await context.gateway.handle("square", body, headers)

        assert status_code == 400
        assert response == {"success": False, "error": "Invalid signature"}
        assert store.transactions == {}
        assert store.webhook_logs[-1].status == LOG_REJECTED
        assert store.webhook_logs[-1].signature == "forged"

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, context, store):
        status_code, response = await context.gateway.handle("paypal", b"{}", {})

        assert status_code == 400
        assert response["success"] is False
        assert "paypal" in response["error"]
        assert store.webhook_logs == []

    @pytest.mark.asyncio
    async def test_missing_provider(self, context):
        status_code, response = await context.gateway.handle(None, b"{}", {})
        assert status_code == 400
        assert response["success"] is False

    @pytest.mark.asyncio
    async def test_unknown_location(self, context, store, settings, add_integration):
        add_integration("square", store_id="LOC-1")
        body, headers = signed_square(settings, square_event(location_id="LOC-OTHER"))

        status_code, response = await context.gateway.handle("square", body, headers)

        assert status_code == 400
        assert response["error"] == "Integration not found"
        assert store.transactions == {}

    @pytest.mark.asyncio
    async def test_inactive_integration_not_matched(self, context, store, settings, add_integration):
        add_integration("square", store_id="LOC-1", status=INTEGRATION_INACTIVE)
        body, headers = signed_square(settings, square_event())

        status_code, _ = await context.gateway.handle("square", body, headers)

        assert status_code == 400
        assert store.transactions == {}

    @pytest.mark.asyncio
    async def test_unhandled_event_acknowledged(self, context, store, settings, add_integration):
        add_integration("square", store_id="LOC-1")
        body, headers = signed_square(settings, square_event(event_type="refund.created"))

        status_code, response = await context.gateway.handle("square", body, headers)

        assert status_code == 200
        assert response == {"success": True, "message": "Event type not handled"}
        assert store.transactions == {}
        assert store.webhook_logs[-1].status == LOG_IGNORED

    @pytest.mark.asyncio
    async def test_malformed_body(self, context, store, settings):
        body = b"not json"
        signature = hmac_sha256_base64(
            settings.square_webhook_signature_key.encode(), SQUARE_TIMESTAMP.encode() + b"." + body
        )
        headers = {
            "x-square-hmacsha256-signature": signature,
            "x-square-hmacsha256-timestamp": SQUARE_TIMESTAMP,
        }

        status_code, response = await context.gateway.handle("square", body, headers)

        assert status_code == 400
        assert response == {"success": False, "error": "Invalid payload"}

    @pytest.mark.asyncio
    async def test_daily_limit_clamps_barter(self, context, store, settings, add_integration):
        integration = add_integration(
            "square", store_id="LOC-1", config={"barterPercentage": 50, "dailyBarterLimit": 60}
        )
        store.insert_transaction_if_absent(
            PosTransaction(
                merchant_id=integration.merchant_id,
                pos_integration_id=integration.id,
                pos_provider="square",
                external_transaction_id="earlier",
                total_amount=100.0,
                barter_amount=50.0,
                transaction_date=datetime.now(timezone.utc),
            )
        )
        body, headers = signed_square(settings, square_event(payment_id="pay-2"))

        _, response = await context.gateway.handle("square", body, headers)

        transaction = store.transactions[response["transaction_id"]]
        assert transaction.barter_amount == 10.0
        assert transaction.card_amount == 90.0
        assert transaction.barter_percentage == 10.0

    @pytest.mark.asyncio
    async def test_default_percentage_when_unconfigured(self, context, store, settings, add_integration):
        add_integration("square", store_id="LOC-1", config={})
        body, headers = signed_square(settings, square_event())

        _, response = await context.gateway.handle("square", body, headers)

        assert store.transactions[response["transaction_id"]].barter_amount == 25.0


class TestFetchingProviders:
    """Test providers whose webhooks only reference the payment."""

    @pytest.mark.asyncio
    async def test_lightspeed_form_payload(self, context, store, settings, provider_stub, add_integration):
        add_integration(
            "lightspeed",
            store_id="mystore",
            external_merchant_id="12345",
            config={"barterPercentage": 50},
        )
        provider_stub.add(
            "GET",
            "mystore.retail.lightspeed.app/api/1.0/sale/77.json",
            (
                200,
                {
                    "Sale": {
                        "saleID": "77",
                        "total": "40.00",
                        "totalTax": "3.00",
                        "completed": True,
                        "createTime": "2024-03-01T10:00:00+0000",
                        "SaleLines": {
                            "SaleLine": {
                                "itemID": "5",
                                "unitPrice": "20",
                                "unitQuantity": "2",
                                "Item": {"description": "Widget", "customSku": "W-1", "upc": "0001"},
                            }
                        },
                    }
                },
            ),
        )
        body = urlencode({"payload": json.dumps({"accountID": "12345", "saleID": "77"})}).encode()
        signature = hmac_sha256_hex(settings.lightspeed_webhook_secret.encode(), body)
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Lightspeed-Signature": f"signature={signature},algorithm=HMAC-SHA256",
        }

        status_code, response = await context.gateway.handle("lightspeed", body, headers)

        assert status_code == 200
        transaction = store.transactions[response["transaction_id"]]
        assert transaction.total_amount == 40.0
        assert transaction.tax_amount == 3.0
        assert transaction.barter_amount == 20.0
        assert transaction.items[0].name == "Widget"
        assert transaction.items[0].quantity == 2
        assert transaction.transaction_date == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        sale_request = provider_stub.calls("/sale/77.json")[0]
        assert sale_request.headers["Authorization"] == "Bearer access-1"

    @pytest.mark.asyncio
    async def test_clover_refreshes_expired_token(self, context, store, settings, provider_stub, add_integration):
        integration = add_integration("clover", external_merchant_id="CLV-M1")
        provider_stub.add(
            "GET",
            "/v3/merchants/CLV-M1/payments/PAY-9",
            (401, {"message": "401 Unauthorized"}),
            (200, {"id": "PAY-9", "amount": 2500, "taxAmount": 200, "result": "SUCCESS"}),
        )
        provider_stub.add(
            "POST",
            "/oauth/v2/refresh",
            (200, {"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 3600}),
        )
        body = json.dumps(
            {"type": "CREATE", "objectType": "PAYMENT", "merchantId": "CLV-M1", "objectId": "PAY-9"}
        ).encode()

        status_code, response = await context.gateway.handle("clover", body, clover_headers(settings))

        assert status_code == 200
        assert store.transactions[response["transaction_id"]].total_amount == 25.0
        fetches = provider_stub.calls("/payments/PAY-9", method="GET")
        assert [r.headers["Authorization"] for r in fetches] == ["Bearer access-1", "Bearer access-2"]
        assert len(provider_stub.calls("/oauth/v2/refresh")) == 1
        refresh_body = json.loads(provider_stub.calls("/oauth/v2/refresh")[0].content)
        assert refresh_body == {"client_id": settings.clover_app_id, "refresh_token": "refresh-1"}
        rotated = store.integrations[integration.id]
        assert rotated.token_version == integration.token_version + 1
        assert context.cipher.decrypt(rotated.access_token) == "access-2"

    @pytest.mark.asyncio
    async def test_clover_duplicate_skips_fetch(self, context, store, settings, provider_stub, add_integration):
        integration = add_integration("clover", external_merchant_id="CLV-M1")
        store.insert_transaction_if_absent(
            PosTransaction(
                merchant_id=integration.merchant_id,
                pos_integration_id=integration.id,
                pos_provider="clover",
                external_transaction_id="PAY-9",
                total_amount=25.0,
            )
        )
        body = json.dumps(
            {"type": "CREATE", "objectType": "PAYMENT", "merchantId": "CLV-M1", "objectId": "PAY-9"}
        ).encode()

        _, response = await context.gateway.handle("clover", body, clover_headers(settings))

        assert response == {"success": True, "duplicate": True}
        assert provider_stub.requests == []

    @pytest.mark.asyncio
    async def test_clover_provider_outage(self, context, store, settings, provider_stub, add_integration):
        add_integration("clover", external_merchant_id="CLV-M1")
        provider_stub.add("GET", "/payments/PAY-9", (503, {"message": "unavailable"}))
        body = json.dumps(
            {"type": "CREATE", "objectType": "PAYMENT", "merchantId": "CLV-M1", "objectId": "PAY-9"}
        ).encode()

        status_code, response = await context.gateway.handle("clover", body, clover_headers(settings))

        assert status_code == 400
        assert response["success"] is False
        assert len(provider_stub.calls("/payments/PAY-9")) == settings.provider_fetch_max_attempts
        assert store.transactions == {}


class TestWebhookRoutes:
    """Test the HTTP surface."""

    def test_query_parameter_route(self, client, store, settings, add_integration):
        add_integration("square", store_id="LOC-1")
        body, headers = signed_square(settings, square_event())

        response = client.post("/webhook?provider=square", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert store.webhook_logs[-1].endpoint == "/webhook"

    def test_path_route(self, client, settings, add_integration):
        add_integration("square", store_id="LOC-1")
        body, headers = signed_square(settings, square_event())

        response = client.post("/webhook/square", content=body, headers=headers)

        assert response.status_code == 200

    def test_bad_signature_is_400(self, client, settings):
        response = client.post(
            "/webhook/shopify",
            content=b'{"id": 1}',
            headers={"X-Shopify-Hmac-Sha256": "nope", "X-Shopify-Topic": "orders/paid"},
        )
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid signature"}
