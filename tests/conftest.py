"""Pytest configuration and fixtures."""

import copy
import threading
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, Generator, Optional, Tuple, Union

import httpx
import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from barter_pos.config import Settings
from barter_pos.dependencies import AppContext, build_context
from barter_pos.main import create_app
from barter_pos.models.database import (
    INTEGRATION_ACTIVE,
    SYNC_SYNCED,
    OAuthState,
    POSIntegration,
    PosTransaction,
    WebhookLog,
)
from barter_pos.routers.auth import verify_token
from barter_pos.services.supabase_service import SettlementStore

MERCHANT_ID = "merchant-1"

# Hex-encoded HMAC key, as issued by the Adyen customer area
ADYEN_HMAC_KEY = "44782DEF547AAA06C910C43932B1EB0C71FC68D9D0C057550C48EC2ACF6BA056"


class InMemoryStore(SettlementStore):
    """SettlementStore backed by dicts, with the same unique constraints as the database."""

    def __init__(self):
        self._lock = threading.Lock()
        self.transactions: dict[str, PosTransaction] = {}
        self.integrations: dict[str, POSIntegration] = {}
        self.oauth_states: dict[str, OAuthState] = {}
        self.products: list[dict[str, Any]] = []
        self.webhook_logs: list[WebhookLog] = []
        self.catalog_lookups: list[str] = []
        self.fail_catalog_lookups = False

    # Transactions

    def get_transaction(self, transaction_id: str) -> Optional[PosTransaction]:
        return self.transactions.get(transaction_id)

    def transaction_exists(self, provider: str, external_transaction_id: str) -> bool:
        return self._find_transaction(provider, external_transaction_id) is not None

    def _find_transaction(self, provider: str, external_id: str) -> Optional[PosTransaction]:
        for transaction in self.transactions.values():
            if (
                transaction.pos_provider == provider
                and transaction.external_transaction_id == external_id
            ):
                return transaction
        return None

    def insert_transaction_if_absent(
        self, transaction: PosTransaction
    ) -> Tuple[Optional[PosTransaction], bool]:
        with self._lock:
            existing = self._find_transaction(
                transaction.pos_provider, transaction.external_transaction_id
            )
            if existing is not None:
                return existing, False
            saved = transaction.model_copy(
                update={"id": str(uuid.uuid4()), "created_at": datetime.now(timezone.utc)}
            )
            self.transactions[saved.id] = saved
            return saved, True

    def mark_transaction_synced(
        self, transaction_id: str, external_transaction_id: str, pos_provider: str
    ) -> Optional[PosTransaction]:
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            return None
        updated = transaction.model_copy(
            update={
                "pos_provider": pos_provider,
                "external_transaction_id": external_transaction_id,
                "sync_status": SYNC_SYNCED,
                "synced_at": datetime.now(timezone.utc),
            }
        )
        self.transactions[transaction_id] = updated
        return updated

    def get_daily_barter_total(self, integration_id: str, day: date) -> float:
        return sum(
            transaction.barter_amount
            for transaction in self.transactions.values()
            if transaction.pos_integration_id == integration_id
            and transaction.transaction_date is not None
            and transaction.transaction_date.astimezone(timezone.utc).date() == day
        )

    # Integrations

    def get_integration(self, integration_id: str) -> Optional[POSIntegration]:
        integration = self.integrations.get(integration_id)
        return copy.deepcopy(integration) if integration else None

    def get_merchant_integration(self, merchant_id: str, provider: str) -> Optional[POSIntegration]:
        for integration in self.integrations.values():
            if integration.merchant_id == merchant_id and integration.provider == provider:
                return copy.deepcopy(integration)
        return None

    def find_active_integration(
        self, provider: str, key_field: str, key_value: str
    ) -> Optional[POSIntegration]:
        for integration in self.integrations.values():
            if (
                integration.provider == provider
                and getattr(integration, key_field) == key_value
                and integration.status == INTEGRATION_ACTIVE
            ):
                return copy.deepcopy(integration)
        return None

    def upsert_integration(self, integration: POSIntegration) -> POSIntegration:
        with self._lock:
            existing = None
            for candidate in self.integrations.values():
                if (
                    candidate.merchant_id == integration.merchant_id
                    and candidate.provider == integration.provider
                ):
                    existing = candidate
            integration_id = existing.id if existing else (integration.id or str(uuid.uuid4()))
            saved = integration.model_copy(update={"id": integration_id})
            self.integrations[integration_id] = saved
            return copy.deepcopy(saved)

    def rotate_integration_tokens(
        self,
        integration_id: str,
        expected_version: int,
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> Optional[POSIntegration]:
        with self._lock:
            current = self.integrations.get(integration_id)
            if current is None or current.token_version != expected_version:
                return None
            update: dict[str, Any] = {
                "access_token": access_token,
                "token_expires_at": token_expires_at,
                "token_version": expected_version + 1,
            }
            if refresh_token:
                update["refresh_token"] = refresh_token
            rotated = current.model_copy(update=update)
            self.integrations[integration_id] = rotated
            return copy.deepcopy(rotated)

    def set_integration_status(self, integration_id: str, status: str) -> None:
        current = self.integrations[integration_id]
        self.integrations[integration_id] = current.model_copy(update={"status": status})

    # OAuth states

    def create_oauth_state(self, state: OAuthState) -> OAuthState:
        self.oauth_states[state.state_token] = state
        return state

    def consume_oauth_state(self, state_token: str) -> Optional[OAuthState]:
        with self._lock:
            return self.oauth_states.pop(state_token, None)

    # Catalog

    def find_catalog_product(self, merchant_id: str, code: str) -> Optional[dict[str, Any]]:
        self.catalog_lookups.append(code)
        if self.fail_catalog_lookups:
            raise RuntimeError("catalog unavailable")
        for product in self.products:
            if product["merchant_id"] == merchant_id and code in (
                product.get("barcode"),
                product.get("upc"),
            ):
                return product
        return None

    # Audit

    def log_webhook(self, entry: WebhookLog) -> None:
        self.webhook_logs.append(entry)


Responder = Union[Tuple[int, Any], Callable[[httpx.Request], httpx.Response]]


class ProviderStub:
    """
    Serves canned provider responses through httpx.MockTransport.

    Routes match on method and a URL fragment. A list of responders is consumed
    in order, the last one repeating.
    """

    def __init__(self):
        self.routes: list[Tuple[str, str, list[Responder]]] = []
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url_fragment: str, *responders: Responder):
        self.routes.append((method, url_fragment, list(responders)))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, fragment, responders in self.routes:
            if request.method == method and fragment in str(request.url):
                responder = responders.pop(0) if len(responders) > 1 else responders[0]
                if callable(responder):
                    return responder(request)
                status_code, body = responder
                return httpx.Response(status_code, json=body)
        return httpx.Response(404, json={"error": f"no stub for {request.method} {request.url}"})

    def calls(self, url_fragment: str, method: Optional[str] = None) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if url_fragment in str(request.url) and (method is None or request.method == method)
        ]


@pytest.fixture
def settings() -> Settings:
    """Settings with every provider secret configured and instant retries."""
    return Settings(
        _env_file=None,
        supabase_url="https://supabase.test",
        supabase_service_key="service-key",
        app_base_url="https://api.barter.test",
        frontend_url="https://app.barter.test",
        token_encryption_key=Fernet.generate_key().decode(),
        allow_unsigned_webhooks=False,
        default_barter_percentage=25.0,
        unmatched_item_policy="eligible",
        retry_initial_delay_seconds=0.0,
        retry_backoff_multiplier=0.0,
        square_application_id="sandbox-sq0idb-app",
        square_application_secret="square-secret",
        square_webhook_signature_key="square-signature-key",
        shopify_api_key="shopify-key",
        shopify_api_secret="shopify-api-secret",
        shopify_webhook_secret="shopify-webhook-secret",
        clover_app_id="clover-app",
        clover_app_secret="clover-secret",
        clover_environment="sandbox",
        clover_webhook_verification_token="clover-verification-token",
        toast_client_id="toast-client",
        toast_client_secret="toast-secret",
        toast_webhook_secret="toast-webhook-secret",
        lightspeed_client_id="lightspeed-client",
        lightspeed_client_secret="lightspeed-secret",
        lightspeed_webhook_secret="lightspeed-webhook-secret",
        adyen_hmac_key=ADYEN_HMAC_KEY,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def context(settings: Settings, store: InMemoryStore, provider_stub: ProviderStub) -> AppContext:
    """Application context wired to the in-memory store and stubbed provider HTTP."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider_stub.handler))
    return build_context(settings, store=store, http_client=http_client)


@pytest.fixture
def add_integration(store: InMemoryStore, context: AppContext):
    """Factory creating an active integration with encrypted tokens."""

    def _add(
        provider: str,
        store_id: Optional[str] = None,
        external_merchant_id: Optional[str] = None,
        access_token: Optional[str] = "access-1",
        refresh_token: Optional[str] = "refresh-1",
        config: Optional[dict[str, Any]] = None,
        merchant_id: str = MERCHANT_ID,
        status: str = INTEGRATION_ACTIVE,
    ) -> POSIntegration:
        return store.upsert_integration(
            POSIntegration(
                merchant_id=merchant_id,
                provider=provider,
                access_token=context.cipher.encrypt(access_token),
                refresh_token=context.cipher.encrypt(refresh_token),
                store_id=store_id,
                external_merchant_id=external_merchant_id,
                status=status,
                config=config if config is not None else {"barterPercentage": 30},
            )
        )

    return _add


@pytest.fixture
def client(context: AppContext) -> Generator[TestClient, None, None]:
    """Test client over the app, authenticated as MERCHANT_ID."""
    app = create_app(context)
    app.dependency_overrides[verify_token] = lambda: {
        "user_id": MERCHANT_ID,
        "email": "merchant@example.com",
        "user": {"id": MERCHANT_ID},
    }
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
