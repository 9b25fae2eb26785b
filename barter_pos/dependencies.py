"""
Application context.
Bundles the store, provider registry, token cipher, shared HTTP client and the
services built on them, so handlers receive their collaborators explicitly.
"""

from typing import Optional

import httpx
import structlog
from fastapi import Request

from barter_pos.config import Settings
from barter_pos.integrations.registry import ProviderRegistry, build_default_registry
from barter_pos.integrations.signatures import SignatureVerifier
from barter_pos.services.checkout_eligibility import CheckoutEligibilityMatcher
from barter_pos.services.supabase_service import SettlementStore, SupabaseService
from barter_pos.services.token_encryption import TokenCipher
from barter_pos.services.token_manager import OAuthTokenManager
from barter_pos.services.transaction_sync import CheckoutService, TransactionSyncService
from barter_pos.services.webhook_gateway import WebhookGateway

logger = structlog.get_logger()


class AppContext:
    """Everything a request handler needs, created once per application."""

    def __init__(
        self,
        settings: Settings,
        store: SettlementStore,
        registry: ProviderRegistry,
        cipher: TokenCipher,
        http_client: httpx.AsyncClient,
    ):
        self.settings = settings
        self.store = store
        self.registry = registry
        self.cipher = cipher
        self.http_client = http_client

        self.verifier = SignatureVerifier(registry, allow_unsigned=settings.allow_unsigned_webhooks)
        self.token_manager = OAuthTokenManager(store, registry, cipher, http_client, settings)
        self.gateway = WebhookGateway(store, registry, self.verifier, self.token_manager, settings)
        self.sync_service = TransactionSyncService(store, registry, self.token_manager)
        self.matcher = CheckoutEligibilityMatcher(store, settings.unmatched_item_policy)
        self.checkout_service = CheckoutService(store, self.matcher, self.sync_service)

    async def aclose(self):
        await self.http_client.aclose()


def build_context(
    settings: Settings,
    store: Optional[SettlementStore] = None,
    registry: Optional[ProviderRegistry] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AppContext:
    """
    Build the application context from settings.

    Args:
        settings: Application settings
        store: Persistence backend (defaults to Supabase)
        registry: Provider registry (defaults to every supported provider)
        http_client: Outbound HTTP client (defaults to one with the configured timeout)
    """
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.provider_http_timeout_seconds)
    context = AppContext(
        settings=settings,
        store=store or SupabaseService(settings=settings),
        registry=registry or build_default_registry(settings),
        cipher=TokenCipher(settings.token_encryption_key),
        http_client=http_client,
    )
    logger.info("Application context ready", providers=context.registry.list_available())
    return context


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the application's context."""
    return request.app.state.context
