"""Tests for the Supabase-backed store, against a mocked client."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from barter_pos.models.database import PosTransaction, WebhookLog
from barter_pos.services.supabase_service import SupabaseService


@pytest.fixture
def supabase_client():
    return MagicMock()


@pytest.fixture
def service(supabase_client):
    return SupabaseService(client=supabase_client)


def transaction_row(**overrides):
    row = {
        "id": "txn-1",
        "merchant_id": "merchant-1",
        "pos_provider": "square",
        "external_transaction_id": "pay-1",
        "total_amount": 100.0,
        "barter_amount": 30.0,
    }
    row.update(overrides)
    return row


class TestTransactionInsert:
    """Test the insert-if-absent upsert."""

    def test_inserted_row_returned(self, supabase_client, service):
        upsert = supabase_client.table.return_value.upsert
        upsert.return_value.execute.return_value.data = [transaction_row()]

        saved, created = service.insert_transaction_if_absent(
            PosTransaction(
                merchant_id="merchant-1",
                pos_provider="square",
                external_transaction_id="pay-1",
                total_amount=100.0,
                transaction_date=datetime(2024, 1, 15, tzinfo=timezone.utc),
            )
        )

        assert created is True
        assert saved.id == "txn-1"
        supabase_client.table.assert_called_with("pos_transactions")
        row = upsert.call_args.args[0]
        assert "id" not in row
        assert row["transaction_date"] == "2024-01-15T00:00:00Z"
        assert upsert.call_args.kwargs == {
            "on_conflict": "pos_provider,external_transaction_id",
            "ignore_duplicates": True,
        }

    def test_conflict_returns_existing(self, supabase_client, service):
        table = supabase_client.table.return_value
        table.upsert.return_value.execute.return_value.data = []
        select = table.select.return_value.eq.return_value.eq.return_value.limit.return_value
        select.execute.return_value.data = [transaction_row(id="txn-existing")]

        saved, created = service.insert_transaction_if_absent(
            PosTransaction(
                merchant_id="merchant-1",
                pos_provider="square",
                external_transaction_id="pay-1",
                total_amount=100.0,
            )
        )

        assert created is False
        assert saved.id == "txn-existing"


class TestIntegrations:
    """Test integration queries."""

    def test_rotation_is_conditional_on_version(self, supabase_client, service):
        update = supabase_client.table.return_value.update
        first_eq = update.return_value.eq
        first_eq.return_value.eq.return_value.execute.return_value.data = []

        rotated = service.rotate_integration_tokens("int-1", 3, "enc-access", None, None)

        assert rotated is None
        first_eq.assert_called_with("id", "int-1")
        first_eq.return_value.eq.assert_called_with("token_version", 3)
        sent = update.call_args.args[0]
        assert sent["token_version"] == 4
        assert "refresh_token" not in sent
        assert isinstance(sent["updated_at"], str)

    def test_unknown_key_field_rejected(self, service):
        with pytest.raises(ValueError):
            service.find_active_integration("square", "access_token", "x")

    def test_consume_state_deletes(self, supabase_client, service):
        delete = supabase_client.table.return_value.delete
        delete.return_value.eq.return_value.execute.return_value.data = []

        assert service.consume_oauth_state("state-1") is None
        supabase_client.table.assert_called_with("oauth_states")
        delete.return_value.eq.assert_called_with("state_token", "state-1")


class TestAuditLog:
    """Test webhook audit logging."""

    def test_insert_failure_is_not_raised(self, supabase_client, service):
        supabase_client.table.return_value.insert.return_value.execute.side_effect = RuntimeError("db down")

        service.log_webhook(WebhookLog(provider="square", endpoint="/webhook", status="rejected"))

        supabase_client.table.assert_called_with("webhook_logs")


def test_requires_url_without_client():
    with pytest.raises(ValueError):
        SupabaseService()
