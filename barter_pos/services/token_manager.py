"""
OAuth token manager.
Owns the integration lifecycle: OAuth initiate / callback, API-key
integrations, on-demand token refresh and disconnect. It is the only component
that decrypts stored tokens.
"""

import asyncio
import secrets
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import structlog

from barter_pos.config import Settings
from barter_pos.errors import (
    AuthExpiredError,
    IntegrationInactiveError,
    IntegrationNotFoundError,
    OAuthStateError,
    ProviderAPIError,
    SettlementError,
    TokenExpiredError,
    UnsupportedProviderError,
)
from barter_pos.integrations.base import ProviderSession
from barter_pos.integrations.registry import ProviderRegistry
from barter_pos.models.database import (
    AUTH_METHOD_API_KEY,
    AUTH_METHOD_OAUTH,
    INTEGRATION_ACTIVE,
    INTEGRATION_INACTIVE,
    OAuthState,
    POSIntegration,
)
from barter_pos.services.supabase_service import SettlementStore
from barter_pos.services.token_encryption import TokenCipher

logger = structlog.get_logger()

T = TypeVar("T")


class OAuthTokenManager:
    """Connects merchants to POS providers and keeps their tokens usable."""

    def __init__(
        self,
        store: SettlementStore,
        registry: ProviderRegistry,
        cipher: TokenCipher,
        http_client: httpx.AsyncClient,
        settings: Settings,
    ):
        self.store = store
        self.registry = registry
        self.cipher = cipher
        self.http_client = http_client
        self.settings = settings
        # One refresh in flight per integration
        self._refresh_locks: dict[str, asyncio.Lock] = {}
        self._refresh_locks_lock = asyncio.Lock()

    async def _get_refresh_lock(self, integration_id: str) -> asyncio.Lock:
        async with self._refresh_locks_lock:
            if integration_id not in self._refresh_locks:
                self._refresh_locks[integration_id] = asyncio.Lock()
            return self._refresh_locks[integration_id]

    def webhook_url(self, provider: str) -> str:
        return f"{self.settings.app_base_url}/webhook?provider={provider}"

    # OAuth flow

    async def initiate(
        self, merchant_id: str, provider: str, shop_name: Optional[str] = None
    ) -> dict[str, str]:
        """
        Start an OAuth connection.

        Returns:
            {"authorizationUrl": ..., "state": ...}

        Raises:
            UnsupportedProviderError: If the provider is unknown or not OAuth based
            InvalidArgumentError: If the provider needs a shop name that is missing
        """
        adapter = self.registry.require_adapter(provider)
        if adapter.oauth_endpoints(shop_name) is None:
            raise UnsupportedProviderError(
                adapter.get_name(), f"{adapter.get_name()} does not support OAuth"
            )

        state_token = secrets.token_urlsafe(32)
        authorization_url = adapter.build_authorization_url(state_token, shop_name)
        state = OAuthState(
            merchant_id=merchant_id,
            provider=adapter.get_name(),
            state_token=state_token,
            metadata={"shop_name": shop_name} if shop_name else {},
            expires_at=datetime.now(timezone.utc)
            + timedelta(minutes=self.settings.oauth_state_ttl_minutes),
        )
        await asyncio.to_thread(self.store.create_oauth_state, state)

        logger.info("OAuth flow initiated", merchant_id=merchant_id, provider=adapter.get_name())
        return {"authorizationUrl": authorization_url, "state": state_token}

    async def handle_callback(
        self,
        code: str,
        state: str,
        shop: Optional[str] = None,
        domain_prefix: Optional[str] = None,
    ) -> POSIntegration:
        """
        Complete an OAuth connection.

        Consumes the state (single use), exchanges the code, fetches merchant
        identifiers and upserts the integration as active.

        Raises:
            OAuthStateError: If the state is unknown, already used or expired
            ProviderAPIError: If the provider rejects the exchange
        """
        oauth_state = await asyncio.to_thread(self.store.consume_oauth_state, state)
        if oauth_state is None:
            raise OAuthStateError()

        expires_at = oauth_state.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < datetime.now(timezone.utc):
            logger.warning(
                "OAuth state expired",
                merchant_id=oauth_state.merchant_id,
                provider=oauth_state.provider,
            )
            raise OAuthStateError("OAuth state expired")

        adapter = self.registry.require_adapter(oauth_state.provider)
        provider = adapter.get_name()
        shop_name = domain_prefix or oauth_state.metadata.get("shop_name") or shop

        grant = await adapter.exchange_code(self.http_client, code, shop_name)

        pending = POSIntegration(
            merchant_id=oauth_state.merchant_id,
            provider=provider,
            store_id=shop_name,
        )
        info = await adapter.fetch_merchant_info(
            ProviderSession(self.http_client, pending, grant.access_token), shop_name
        )

        existing = await asyncio.to_thread(
            self.store.get_merchant_integration, oauth_state.merchant_id, provider
        )
        config = dict(existing.config) if existing else {}
        config.setdefault("barterPercentage", self.settings.default_barter_percentage)
        config["webhookUrl"] = self.webhook_url(provider)
        if shop_name:
            config["shopName"] = shop_name
        if info.name:
            config["merchantName"] = info.name

        endpoints = adapter.oauth_endpoints(shop_name)
        integration = POSIntegration(
            merchant_id=oauth_state.merchant_id,
            provider=provider,
            auth_method=AUTH_METHOD_OAUTH,
            access_token=self.cipher.encrypt(grant.access_token),
            refresh_token=self.cipher.encrypt(grant.refresh_token),
            token_expires_at=grant.expires_at,
            token_version=existing.token_version + 1 if existing else 0,
            store_id=info.store_id or shop_name,
            external_merchant_id=info.external_merchant_id or grant.merchant_id,
            status=INTEGRATION_ACTIVE,
            config=config,
            scopes=grant.scopes or (endpoints.scopes if endpoints else []),
        )
        saved = await asyncio.to_thread(self.store.upsert_integration, integration)
        logger.info(
            "POS integration connected",
            merchant_id=saved.merchant_id,
            provider=provider,
            integration_id=saved.id,
        )

        try:
            subscribed = await adapter.subscribe_webhooks(
                ProviderSession(self.http_client, saved, grant.access_token),
                self.webhook_url(provider),
            )
            if subscribed:
                logger.info("Webhook subscription created", provider=provider, integration_id=saved.id)
        except (SettlementError, httpx.HTTPError) as e:
            # Merchant can still register the webhook manually
            logger.warning(
                "Webhook subscription failed",
                provider=provider,
                integration_id=saved.id,
                error=str(e),
            )

        return saved

    async def save_api_key_integration(
        self,
        merchant_id: str,
        provider: str,
        api_key: str,
        store_id: Optional[str] = None,
        external_merchant_id: Optional[str] = None,
        barter_percentage: Optional[float] = None,
    ) -> POSIntegration:
        """Store an API-key credential (e.g. Adyen) as an active integration."""
        adapter = self.registry.require_adapter(provider)
        provider = adapter.get_name()

        existing = await asyncio.to_thread(self.store.get_merchant_integration, merchant_id, provider)
        config = dict(existing.config) if existing else {}
        if barter_percentage is not None:
            config["barterPercentage"] = barter_percentage
        config.setdefault("barterPercentage", self.settings.default_barter_percentage)
        config["webhookUrl"] = self.webhook_url(provider)

        integration = POSIntegration(
            merchant_id=merchant_id,
            provider=provider,
            auth_method=AUTH_METHOD_API_KEY,
            access_token=self.cipher.encrypt(api_key),
            token_version=existing.token_version + 1 if existing else 0,
            store_id=store_id,
            external_merchant_id=external_merchant_id,
            status=INTEGRATION_ACTIVE,
            config=config,
        )
        saved = await asyncio.to_thread(self.store.upsert_integration, integration)
        logger.info("API key integration saved", merchant_id=merchant_id, provider=provider)
        return saved

    async def get_merchant_integration(self, merchant_id: str, integration_id: str) -> POSIntegration:
        integration = await asyncio.to_thread(self.store.get_integration, integration_id)
        if integration is None or integration.merchant_id != merchant_id:
            raise IntegrationNotFoundError()
        return integration

    async def disconnect(self, merchant_id: str, integration_id: str) -> POSIntegration:
        integration = await self.get_merchant_integration(merchant_id, integration_id)
        await asyncio.to_thread(self.store.set_integration_status, integration_id, INTEGRATION_INACTIVE)
        logger.info(
            "POS integration disconnected",
            merchant_id=merchant_id,
            provider=integration.provider,
            integration_id=integration_id,
        )
        return integration.model_copy(update={"status": INTEGRATION_INACTIVE})

    # Tokens

    def session_for(self, integration: POSIntegration) -> ProviderSession:
        """Decrypt the access token immediately before a provider call."""
        return ProviderSession(
            self.http_client, integration, self.cipher.decrypt(integration.access_token)
        )

    async def _deactivate(self, integration: POSIntegration, reason: str):
        logger.error(
            "Token refresh failed, deactivating integration",
            integration_id=integration.id,
            provider=integration.provider,
            reason=reason,
        )
        await asyncio.to_thread(self.store.set_integration_status, integration.id, INTEGRATION_INACTIVE)

    async def refresh(self, integration: POSIntegration) -> POSIntegration:
        """
        Refresh an integration's tokens.

        Concurrent callers for the same integration are serialized; a caller
        that finds the token already rotated past its view reuses it.

        Returns:
            Integration carrying the current (encrypted) tokens

        Raises:
            AuthExpiredError: If the provider rejected the refresh (integration is deactivated)
            ProviderAPIError: On transient failures (integration stays active)
        """
        seen_version = integration.token_version
        lock = await self._get_refresh_lock(integration.id)

        async with lock:
            fresh = await asyncio.to_thread(self.store.get_integration, integration.id)
            if fresh is None:
                raise IntegrationNotFoundError()
            if not fresh.is_active:
                raise AuthExpiredError(fresh.provider)
            if fresh.token_version != seen_version:
                logger.info(
                    "Token already refreshed by another caller",
                    integration_id=fresh.id,
                    token_version=fresh.token_version,
                )
                return fresh

            adapter = self.registry.require_adapter(fresh.provider)
            try:
                grant = await adapter.refresh_access_token(
                    self.http_client, fresh, self.cipher.decrypt(fresh.refresh_token)
                )
            except ProviderAPIError as e:
                if e.retryable:
                    logger.warning(
                        "Token refresh failed transiently",
                        integration_id=fresh.id,
                        provider=fresh.provider,
                        error=e.message,
                    )
                    raise
                await self._deactivate(fresh, e.message)
                raise AuthExpiredError(fresh.provider) from e
            except (UnsupportedProviderError, ValueError, KeyError) as e:
                await self._deactivate(fresh, str(e))
                raise AuthExpiredError(fresh.provider) from e

            rotated = await asyncio.to_thread(
                self.store.rotate_integration_tokens,
                fresh.id,
                fresh.token_version,
                self.cipher.encrypt(grant.access_token),
                self.cipher.encrypt(grant.refresh_token),
                grant.expires_at,
            )
            if rotated is None:
                # Another process rotated between our read and write
                latest = await asyncio.to_thread(self.store.get_integration, fresh.id)
                if latest is None:
                    raise IntegrationNotFoundError()
                return latest

            logger.info(
                "Token refreshed",
                integration_id=rotated.id,
                provider=rotated.provider,
                token_version=rotated.token_version,
            )
            return rotated

    async def execute_with_refresh(
        self,
        integration: POSIntegration,
        call: Callable[[ProviderSession], Awaitable[T]],
    ) -> T:
        """
        Run a provider call; on token expiry refresh once and retry once.

        Raises:
            IntegrationInactiveError: If the integration is not active
            AuthExpiredError: If the refresh fails or the retried call reports expiry again
        """
        if not integration.is_active:
            raise IntegrationInactiveError(integration.id or "")

        try:
            return await call(self.session_for(integration))
        except TokenExpiredError:
            logger.warning(
                "Provider reported expired token, refreshing",
                integration_id=integration.id,
                provider=integration.provider,
            )

        refreshed = await self.refresh(integration)
        try:
            return await call(self.session_for(refreshed))
        except TokenExpiredError as e:
            logger.error(
                "Provider rejected refreshed token",
                integration_id=integration.id,
                provider=integration.provider,
            )
            raise AuthExpiredError(integration.provider) from e
