"""
Base provider adapter interface.
Every POS provider implements this interface: webhook verification and
normalization (inbound), order creation (outbound) and the OAuth specifics
the token manager needs.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from barter_pos.config import Settings
from barter_pos.errors import InvalidArgumentError, UnsupportedProviderError
from barter_pos.integrations.api_client import ProviderAPIClient
from barter_pos.models.checkout import SyncRequest
from barter_pos.models.database import TRANSACTION_COMPLETED, LineItem, POSIntegration
from barter_pos.utils.retry import retry_with_backoff


class IntegrationKey:
    """Column/value pair identifying the integration that owns a webhook."""

    STORE_ID = "store_id"
    MERCHANT_ID = "external_merchant_id"

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value

    def __repr__(self) -> str:
        return f"IntegrationKey({self.field}={self.value})"


class NormalizedTransaction:
    """Provider payment event in canonical shape, before the split is applied."""

    def __init__(
        self,
        external_transaction_id: str,
        total_amount: float,
        currency: str = "USD",
        tax_amount: float = 0.0,
        tip_amount: float = 0.0,
        discount_amount: float = 0.0,
        items: list[LineItem] | None = None,
        location_id: str | None = None,
        transaction_date: datetime | str | None = None,
        status: str = TRANSACTION_COMPLETED,
    ):
        self.external_transaction_id = external_transaction_id
        self.total_amount = total_amount
        self.currency = currency or "USD"
        self.tax_amount = tax_amount
        self.tip_amount = tip_amount
        self.discount_amount = discount_amount
        self.items = items or []
        self.location_id = location_id
        self.transaction_date = transaction_date
        self.status = status


class OutboundOrderResult:
    """Provider-assigned id of a mirrored order plus provider response details."""

    def __init__(self, pos_transaction_id: str, details: dict[str, Any] | None = None):
        self.pos_transaction_id = pos_transaction_id
        self.details = details or {}


class OAuthEndpoints:
    """Provider OAuth URLs and client credentials."""

    def __init__(
        self,
        authorize_url: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        scopes: list[str],
        scope_separator: str = " ",
        form_encoded: bool = False,
        extra_authorize_params: dict[str, str] | None = None,
        supports_refresh: bool = True,
    ):
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes
        self.scope_separator = scope_separator
        self.form_encoded = form_encoded
        self.extra_authorize_params = extra_authorize_params or {}
        self.supports_refresh = supports_refresh


class MerchantInfo:
    """Identifiers fetched from the provider after the code exchange."""

    def __init__(
        self,
        store_id: str | None = None,
        external_merchant_id: str | None = None,
        name: str | None = None,
    ):
        self.store_id = store_id
        self.external_merchant_id = external_merchant_id
        self.name = name


class TokenGrant:
    """Tokens returned by a provider token endpoint."""

    def __init__(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        merchant_id: str | None = None,
        scopes: list[str] | None = None,
    ):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_at = expires_at
        self.merchant_id = merchant_id
        self.scopes = scopes or []

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "TokenGrant":
        """
        Build a grant from a token endpoint response.
        Understands expires_in (seconds), expires_at (ISO) and
        access_token_expiration (unix seconds or milliseconds).
        """
        access_token = data.get("access_token") or data.get("accessToken")
        if not access_token:
            raise ValueError("Token response did not include an access token")

        expires_at = None
        if data.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
        elif data.get("expires_at"):
            expires_at = datetime.fromisoformat(str(data["expires_at"]).replace("Z", "+00:00"))
        elif data.get("access_token_expiration"):
            ts = float(data["access_token_expiration"])
            if ts > 1e12:
                ts = ts / 1000.0
            expires_at = datetime.fromtimestamp(ts, tz=timezone.utc)

        scope = data.get("scope") or ""
        scopes = scope.replace(",", " ").split() if isinstance(scope, str) else list(scope)

        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or data.get("refreshToken"),
            expires_at=expires_at,
            merchant_id=data.get("merchant_id"),
            scopes=scopes,
        )


class ProviderSession:
    """Everything an adapter needs for one authenticated provider call."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        integration: POSIntegration,
        access_token: str | None,
    ):
        self.http_client = http_client
        self.integration = integration
        self.access_token = access_token


class BaseProviderAdapter(ABC):
    """Base class that all POS providers must implement."""

    # Header carrying the provider signature, recorded in audit logs
    signature_header: str = ""

    # True when normalize() calls the provider API with the integration token
    requires_api_fetch: bool = False

    def __init__(self, settings: Settings):
        self.settings = settings

    @abstractmethod
    def get_name(self) -> str:
        """
        Return provider name.

        Returns:
            Provider name (e.g., 'square', 'shopify')
        """
        pass

    @abstractmethod
    def get_webhook_secret(self) -> str:
        """Return the configured webhook secret, or an empty string."""
        pass

    @abstractmethod
    def verify_signature(self, raw_body: bytes, headers: dict[str, str], secret: str) -> bool:
        """
        Verify webhook signature for authenticity.

        Args:
            raw_body: Raw request body bytes
            headers: Request headers (lower-cased keys)
            secret: Provider webhook secret (never empty here)

        Returns:
            True if signature is valid, False otherwise
        """
        pass

    def parse_payload(self, raw_body: bytes) -> dict[str, Any]:
        """Parse the raw webhook body. JSON unless the provider overrides it."""
        payload = json.loads(raw_body or b"{}")
        if not isinstance(payload, dict):
            raise ValueError("Webhook payload must be a JSON object")
        return payload

    def is_handled_event(self, payload: dict[str, Any], headers: dict[str, str]) -> bool:
        """Whether the event is a payment this service settles."""
        return True

    @abstractmethod
    def extract_integration_key(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> IntegrationKey | None:
        """
        Extract the provider merchant key used to find the owning integration.

        Returns:
            IntegrationKey, or None if the payload does not carry one
        """
        pass

    @abstractmethod
    def extract_external_id(self, payload: dict[str, Any], headers: dict[str, str]) -> str | None:
        """Return the provider transaction id of the event."""
        pass

    @abstractmethod
    async def normalize(
        self,
        payload: dict[str, Any],
        headers: dict[str, str],
        session: ProviderSession,
    ) -> NormalizedTransaction:
        """
        Transform a provider payment event into a NormalizedTransaction.

        Args:
            payload: Parsed webhook payload
            headers: Request headers
            session: Provider session; access_token is set only when requires_api_fetch

        Returns:
            Normalized transaction
        """
        pass

    @abstractmethod
    async def push_order(
        self, session: ProviderSession, request: SyncRequest
    ) -> OutboundOrderResult:
        """
        Create the mirrored order/payment at the provider.

        Raises:
            TokenExpiredError: If the provider rejected the access token
            ProviderAPIError: For any other provider failure
        """
        pass

    # OAuth

    def oauth_endpoints(self, shop_name: str | None = None) -> OAuthEndpoints | None:
        """Return OAuth endpoints, or None if the provider is not connected via OAuth."""
        return None

    def redirect_uri(self) -> str:
        return f"{self.settings.app_base_url}/api/pos/oauth/callback"

    def build_authorization_url(self, state: str, shop_name: str | None = None) -> str:
        endpoints = self.oauth_endpoints(shop_name)
        if endpoints is None:
            raise UnsupportedProviderError(self.get_name(), "Provider does not support OAuth")
        params = {
            "client_id": endpoints.client_id,
            "redirect_uri": self.redirect_uri(),
            "state": state,
        }
        if endpoints.scopes:
            params["scope"] = endpoints.scope_separator.join(endpoints.scopes)
        params.update(endpoints.extra_authorize_params)
        return str(httpx.URL(endpoints.authorize_url, params=params))

    async def exchange_code(
        self, http_client: httpx.AsyncClient, code: str, shop_name: str | None = None
    ) -> TokenGrant:
        """Exchange an authorization code for tokens at the provider token endpoint."""
        endpoints = self.oauth_endpoints(shop_name)
        if endpoints is None:
            raise UnsupportedProviderError(self.get_name(), "Provider does not support OAuth")
        if not endpoints.token_url:
            raise InvalidArgumentError(f"{self.get_name()} requires the store domain to exchange the code")
        body = {
            "client_id": endpoints.client_id,
            "client_secret": endpoints.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri(),
        }
        client = ProviderAPIClient(http_client, self.get_name())
        if endpoints.form_encoded:
            data = await client.post(endpoints.token_url, data=body)
        else:
            data = await client.post(endpoints.token_url, json=body)
        return TokenGrant.from_response(data)

    async def fetch_merchant_info(
        self, session: ProviderSession, shop_name: str | None = None
    ) -> MerchantInfo:
        """Fetch merchant/location identifiers with a freshly issued token."""
        return MerchantInfo()

    async def refresh_access_token(
        self, http_client: httpx.AsyncClient, integration: POSIntegration, refresh_token: str | None
    ) -> TokenGrant:
        """
        Request new tokens using the stored refresh token.

        Raises:
            UnsupportedProviderError: If the provider has no refresh flow
            ProviderAPIError: If the provider rejects the refresh
        """
        endpoints = self.oauth_endpoints(integration.config.get("shopName") or integration.store_id)
        if endpoints is None or not endpoints.supports_refresh:
            raise UnsupportedProviderError(
                self.get_name(), f"{self.get_name()} does not support token refresh"
            )
        if not refresh_token:
            raise ValueError("No refresh token stored for integration")
        body = {
            "client_id": endpoints.client_id,
            "client_secret": endpoints.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        client = ProviderAPIClient(http_client, self.get_name())
        if endpoints.form_encoded:
            data = await client.post(endpoints.token_url, data=body)
        else:
            data = await client.post(endpoints.token_url, json=body)
        return TokenGrant.from_response(data)

    async def subscribe_webhooks(self, session: ProviderSession, webhook_url: str) -> bool:
        """
        Subscribe to payment webhooks via the provider API (if applicable).

        Returns:
            True if a subscription was created, False if not supported
        """
        return False

    async def fetch_with_retry(self, api: ProviderAPIClient, path: str, **kwargs) -> Any:
        """GET an idempotent provider resource, retrying transient failures with backoff."""
        fetch = retry_with_backoff(
            max_attempts=self.settings.provider_fetch_max_attempts,
            initial_delay=self.settings.retry_initial_delay_seconds,
            multiplier=self.settings.retry_backoff_multiplier,
        )(api.get)
        return await fetch(path, **kwargs)


def cents_to_amount(value: Any) -> float:
    """Convert an integer minor-unit amount (cents) into a decimal amount."""
    if value in (None, ""):
        return 0.0
    return int(value) / 100


def amount_to_cents(value: float) -> int:
    """Convert a decimal amount into integer cents."""
    return int(round(value * 100))


def to_float(value: Any) -> float:
    """Parse provider money strings ("12.50") and numbers; missing values are 0."""
    if value in (None, ""):
        return 0.0
    return float(value)
