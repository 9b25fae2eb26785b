"""
Supabase service layer for database operations.
Handles pos_transactions, pos_integrations, oauth_states, webhook_logs and the
read-only products_with_eligibility catalog view.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import structlog
from supabase import Client, create_client

from barter_pos.config import Settings
from barter_pos.models.database import (
    INTEGRATION_ACTIVE,
    SYNC_SYNCED,
    OAuthState,
    POSIntegration,
    PosTransaction,
    WebhookLog,
)

logger = structlog.get_logger()

TRANSACTION_CONFLICT_COLUMNS = "pos_provider,external_transaction_id"
INTEGRATION_CONFLICT_COLUMNS = "merchant_id,provider"

# Integration lookup columns usable as provider merchant keys
INTEGRATION_KEY_FIELDS = ("store_id", "external_merchant_id")


class SettlementStore(ABC):
    """Persistence operations the settlement engine depends on."""

    # Transactions

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[PosTransaction]:
        pass

    @abstractmethod
    def transaction_exists(self, provider: str, external_transaction_id: str) -> bool:
        pass

    @abstractmethod
    def insert_transaction_if_absent(
        self, transaction: PosTransaction
    ) -> Tuple[Optional[PosTransaction], bool]:
        """
        Insert a transaction unless (pos_provider, external_transaction_id) already exists.

        Returns:
            (row, created). created is False when the row already existed.
        """

    @abstractmethod
    def mark_transaction_synced(
        self, transaction_id: str, external_transaction_id: str, pos_provider: str
    ) -> Optional[PosTransaction]:
        """Store the provider and provider-side id of a mirrored sale; its webhook echo then matches."""
        """Record the provider id the mirrored sale is known by, so its webhook echo is a duplicate."""

    @abstractmethod
    def get_daily_barter_total(self, integration_id: str, day: date) -> float:
        pass

    # Integrations

    @abstractmethod
    def get_integration(self, integration_id: str) -> Optional[POSIntegration]:
        pass

    @abstractmethod
    def get_merchant_integration(self, merchant_id: str, provider: str) -> Optional[POSIntegration]:
        pass

    @abstractmethod
    def find_active_integration(
        self, provider: str, key_field: str, key_value: str
    ) -> Optional[POSIntegration]:
        pass

    @abstractmethod
    def upsert_integration(self, integration: POSIntegration) -> POSIntegration:
        pass

    @abstractmethod
    def rotate_integration_tokens(
        self,
        integration_id: str,
        expected_version: int,
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> Optional[POSIntegration]:
        """
        Replace both tokens if token_version still equals expected_version.

        Returns:
            Updated integration, or None if another writer rotated first
        """

    @abstractmethod
    def set_integration_status(self, integration_id: str, status: str) -> None:
        pass

    # OAuth states

    @abstractmethod
    def create_oauth_state(self, state: OAuthState) -> OAuthState:
        pass

    @abstractmethod
    def consume_oauth_state(self, state_token: str) -> Optional[OAuthState]:
        """Delete the state row and return it; None if it did not exist."""

    # Catalog

    @abstractmethod
    def find_catalog_product(self, merchant_id: str, code: str) -> Optional[Dict[str, Any]]:
        pass

    # Audit

    @abstractmethod
    def log_webhook(self, entry: WebhookLog) -> None:
        pass


def _serialize(data: Any) -> Any:
    """
    Recursively convert datetime objects to ISO format strings.
    Also converts UUID objects to strings.
    """
    if isinstance(data, dict):
        return {k: _serialize(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_serialize(item) for item in data]
    elif isinstance(data, datetime):
        return data.isoformat()
    elif isinstance(data, UUID):
        return str(data)
    else:
        return data


class SupabaseService(SettlementStore):
    """Service for interacting with Supabase database."""

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        """
        Initialize Supabase client.

        Args:
            client: Pre-built Supabase client; built from settings when omitted
            settings: Settings used to build the client
        """
        if client is None:
            if settings is None or not settings.supabase_url:
                raise ValueError("Supabase URL and service key are required")
            client = create_client(settings.supabase_url, settings.supabase_service_key)
        self.client: Client = client

    # Transactions

    def get_transaction(self, transaction_id: str) -> Optional[PosTransaction]:
        try:
            result = (
                self.client.table("pos_transactions")
                .select("*")
                .eq("id", transaction_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("Failed to get transaction", transaction_id=transaction_id, error=str(e))
            raise
        if result.data:
            return PosTransaction(**result.data[0])
        return None

    def transaction_exists(self, provider: str, external_transaction_id: str) -> bool:
        try:
            result = (
                self.client.table("pos_transactions")
                .select("id")
                .eq("pos_provider", provider)
                .eq("external_transaction_id", external_transaction_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(
                "Duplicate check failed",
                provider=provider,
                external_transaction_id=external_transaction_id,
                error=str(e),
            )
            raise
        return bool(result.data)

    def _get_transaction_by_external_id(
        self, provider: str, external_transaction_id: str
    ) -> Optional[PosTransaction]:
        result = (
            self.client.table("pos_transactions")
            .select("*")
            .eq("pos_provider", provider)
            .eq("external_transaction_id", external_transaction_id)
            .limit(1)
            .execute()
        )
        if result.data:
            return PosTransaction(**result.data[0])
        return None

    def insert_transaction_if_absent(
        self, transaction: PosTransaction
    ) -> Tuple[Optional[PosTransaction], bool]:
        row = transaction.model_dump(mode="json", exclude_none=True, exclude={"id", "created_at"})
        try:
            # ignore_duplicates -> ON CONFLICT DO NOTHING; only inserted rows come back
            result = (
                self.client.table("pos_transactions")
                .upsert(
                    row,
                    on_conflict=TRANSACTION_CONFLICT_COLUMNS,
                    ignore_duplicates=True,
                )
                .execute()
            )
        except Exception as e:
            logger.error(
                "Failed to insert transaction",
                provider=transaction.pos_provider,
                external_transaction_id=transaction.external_transaction_id,
                error=str(e),
            )
            raise

        if result.data:
            return PosTransaction(**result.data[0]), True

        existing = self._get_transaction_by_external_id(
            transaction.pos_provider, transaction.external_transaction_id
        )
        return existing, False

    def mark_transaction_synced(
        self, transaction_id: str, external_transaction_id: str, pos_provider: str
    ) -> Optional[PosTransaction]:
        update_data = {
            "pos_provider": pos_provider,
            "external_transaction_id": external_transaction_id,
            "sync_status": SYNC_SYNCED,
            "synced_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            result = (
                self.client.table("pos_transactions")
                .update(update_data)
                .eq("id", transaction_id)
                .execute()
            )
        except Exception as e:
            logger.error(
                "Failed to mark transaction synced",
                transaction_id=transaction_id,
                error=str(e),
            )
            raise
        if result.data:
            return PosTransaction(**result.data[0])
        return None

    def get_daily_barter_total(self, integration_id: str, day: date) -> float:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        result = (
            self.client.table("pos_transactions")
            .select("barter_amount")
            .eq("pos_integration_id", integration_id)
            .gte("transaction_date", start.isoformat())
            .lt("transaction_date", end.isoformat())
            .execute()
        )
        return sum(float(row.get("barter_amount") or 0) for row in result.data or [])

    # Integrations

    def get_integration(self, integration_id: str) -> Optional[POSIntegration]:
        try:
            result = (
                self.client.table("pos_integrations")
                .select("*")
                .eq("id", integration_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("Failed to get integration", integration_id=integration_id, error=str(e))
            raise
        if result.data:
            return POSIntegration(**result.data[0])
        return None

    def get_merchant_integration(self, merchant_id: str, provider: str) -> Optional[POSIntegration]:
        result = (
            self.client.table("pos_integrations")
            .select("*")
            .eq("merchant_id", merchant_id)
            .eq("provider", provider)
            .limit(1)
            .execute()
        )
        if result.data:
            return POSIntegration(**result.data[0])
        return None

    def find_active_integration(
        self, provider: str, key_field: str, key_value: str
    ) -> Optional[POSIntegration]:
        if key_field not in INTEGRATION_KEY_FIELDS:
            raise ValueError(f"Unsupported integration key field: {key_field}")
        try:
            result = (
                self.client.table("pos_integrations")
                .select("*")
                .eq("provider", provider)
                .eq(key_field, key_value)
                .eq("status", INTEGRATION_ACTIVE)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(
                "Integration lookup failed",
                provider=provider,
                key_field=key_field,
                error=str(e),
            )
            raise
        if result.data:
            return POSIntegration(**result.data[0])
        return None

    def upsert_integration(self, integration: POSIntegration) -> POSIntegration:
        row = integration.model_dump(mode="json", exclude_none=True, exclude={"id", "created_at"})
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        try:
            result = (
                self.client.table("pos_integrations")
                .upsert(row, on_conflict=INTEGRATION_CONFLICT_COLUMNS)
                .execute()
            )
        except Exception as e:
            logger.error(
                "Failed to save integration",
                merchant_id=integration.merchant_id,
                provider=integration.provider,
                error=str(e),
            )
            raise
        if not result.data:
            raise RuntimeError("Integration upsert returned no data")
        return POSIntegration(**result.data[0])

    def rotate_integration_tokens(
        self,
        integration_id: str,
        expected_version: int,
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> Optional[POSIntegration]:
        update_data: Dict[str, Any] = {
            "access_token": access_token,
            "token_expires_at": token_expires_at,
            "token_version": expected_version + 1,
            "updated_at": datetime.now(timezone.utc),
        }
        if refresh_token:
            update_data["refresh_token"] = refresh_token
        result = (
            self.client.table("pos_integrations")
            .update(_serialize(update_data))
            .eq("id", integration_id)
            .eq("token_version", expected_version)
            .execute()
        )
        if result.data:
            return POSIntegration(**result.data[0])
        return None

    def set_integration_status(self, integration_id: str, status: str) -> None:
        try:
            self.client.table("pos_integrations").update(
                {"status": status, "updated_at": datetime.now(timezone.utc).isoformat()}
            ).eq("id", integration_id).execute()
        except Exception as e:
            logger.error(
                "Failed to update integration status",
                integration_id=integration_id,
                status=status,
                error=str(e),
            )
            raise

    # OAuth states

    def create_oauth_state(self, state: OAuthState) -> OAuthState:
        row = state.model_dump(mode="json", exclude_none=True, exclude={"id", "created_at"})
        result = self.client.table("oauth_states").insert(row).execute()
        if not result.data:
            raise RuntimeError("OAuth state insert returned no data")
        return OAuthState(**result.data[0])

    def consume_oauth_state(self, state_token: str) -> Optional[OAuthState]:
        # Delete-returning makes the state single-use even under concurrent callbacks
        result = (
            self.client.table("oauth_states")
            .delete()
            .eq("state_token", state_token)
            .execute()
        )
        if result.data:
            return OAuthState(**result.data[0])
        return None

    # Catalog

    def find_catalog_product(self, merchant_id: str, code: str) -> Optional[Dict[str, Any]]:
        result = (
            self.client.table("products_with_eligibility")
            .select(
                "id, name, sku, is_barter_eligible, barter_enabled, "
                "category_name, category_is_restricted, restriction_reason"
            )
            .eq("merchant_id", merchant_id)
            .or_(f"barcode.eq.{code},upc.eq.{code}")
            .limit(1)
            .execute()
        )
        if result.data:
            return result.data[0]
        return None

    # Audit

    def log_webhook(self, entry: WebhookLog) -> None:
        try:
            self.client.table("webhook_logs").insert(
                entry.model_dump(mode="json", exclude_none=True)
            ).execute()
        except Exception as e:
            # Audit rows never decide the webhook outcome
            logger.warning("Failed to log webhook", provider=entry.provider, error=str(e))
