"""
Clover provider adapter.
Clover webhooks only announce that a payment was created, so the payment is
fetched from the REST API with the merchant's token before it is settled.
"""

from typing import Any

import httpx
import structlog

from barter_pos.integrations.api_client import ProviderAPIClient
from barter_pos.integrations.base import (
    BaseProviderAdapter,
    IntegrationKey,
    MerchantInfo,
    NormalizedTransaction,
    OAuthEndpoints,
    OutboundOrderResult,
    ProviderSession,
    TokenGrant,
)
from barter_pos.integrations.clover.transformer import CloverTransformer
from barter_pos.integrations.signatures import signatures_match
from barter_pos.models.checkout import SyncRequest
from barter_pos.models.database import POSIntegration

logger = structlog.get_logger()

CLOVER_API_URL_SANDBOX = "https://apisandbox.dev.clover.com"
CLOVER_API_URL_PRODUCTION = "https://api.clover.com"
CLOVER_AUTHORIZE_URL_SANDBOX = "https://sandbox.dev.clover.com/oauth/v2/authorize"
CLOVER_AUTHORIZE_URL_PRODUCTION = "https://www.clover.com/oauth/v2/authorize"


class CloverAdapter(BaseProviderAdapter):
    """Adapter for Clover POS."""

    signature_header = "x-clover-verification-token"
    requires_api_fetch = True

    def get_name(self) -> str:
        return "clover"

    def get_webhook_secret(self) -> str:
        return self.settings.clover_webhook_verification_token

    @property
    def base_url(self) -> str:
        if self.settings.clover_environment == "sandbox":
            return CLOVER_API_URL_SANDBOX
        return CLOVER_API_URL_PRODUCTION

    def verify_signature(self, raw_body: bytes, headers: dict[str, str], secret: str) -> bool:
        """Clover sends the shared verification token verbatim."""
        return signatures_match(secret, headers.get(self.signature_header))

    def is_handled_event(self, payload: dict[str, Any], headers: dict[str, str]) -> bool:
        return payload.get("type") == "CREATE" and payload.get("objectType") == "PAYMENT"

    def extract_integration_key(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> IntegrationKey | None:
        merchant_id = payload.get("merchantId")
        if not merchant_id:
            return None
        return IntegrationKey(IntegrationKey.MERCHANT_ID, merchant_id)

    def extract_external_id(self, payload: dict[str, Any], headers: dict[str, str]) -> str | None:
        return payload.get("objectId")

    def _api(self, session: ProviderSession) -> ProviderAPIClient:
        return ProviderAPIClient(
            session.http_client,
            self.get_name(),
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {session.access_token}",
                "Content-Type": "application/json",
            },
        )

    def _merchant_id(self, session: ProviderSession) -> str:
        return session.integration.external_merchant_id or session.integration.store_id or ""

    async def normalize(
        self,
        payload: dict[str, Any],
        headers: dict[str, str],
        session: ProviderSession,
    ) -> NormalizedTransaction:
        merchant_id = payload["merchantId"]
        payment_id = payload["objectId"]
        payment = await self.fetch_with_retry(
            self._api(session), f"/v3/merchants/{merchant_id}/payments/{payment_id}"
        )
        logger.info("Fetched Clover payment", merchant_id=merchant_id, payment_id=payment_id)
        payment.setdefault("id", payment_id)
        return CloverTransformer.payment_to_transaction(payment)

    async def push_order(
        self, session: ProviderSession, request: SyncRequest
    ) -> OutboundOrderResult:
        """Create an atomic order, then attach the payment to it."""
        api = self._api(session)
        merchant_id = self._merchant_id(session)

        order = await api.post(
            f"/v3/merchants/{merchant_id}/atomic_order/orders",
            json=CloverTransformer.build_atomic_order(request),
        )
        order_id = order["id"]
        logger.info("Clover order created", merchant_id=merchant_id, order_id=order_id)

        payment = await api.post(
            f"/v3/merchants/{merchant_id}/orders/{order_id}/payments",
            json=CloverTransformer.build_payment(request),
        )
        # Clover payment webhooks are keyed by the payment id
        payment_id = payment.get("id")
        return OutboundOrderResult(
            pos_transaction_id=payment_id or order_id,
            details={"order_id": order_id, "payment_id": payment_id},
        )

    def oauth_endpoints(self, shop_name: str | None = None) -> OAuthEndpoints | None:
        sandbox = self.settings.clover_environment == "sandbox"
        return OAuthEndpoints(
            authorize_url=CLOVER_AUTHORIZE_URL_SANDBOX if sandbox else CLOVER_AUTHORIZE_URL_PRODUCTION,
            token_url=f"{self.base_url}/oauth/v2/token",
            client_id=self.settings.clover_app_id,
            client_secret=self.settings.clover_app_secret,
            scopes=["payments", "orders", "merchants"],
        )

    async def refresh_access_token(
        self, http_client: httpx.AsyncClient, integration: POSIntegration, refresh_token: str | None
    ) -> TokenGrant:
        """Clover refresh uses ONLY client_id and refresh_token (no client_secret)."""
        if not refresh_token:
            raise ValueError("No refresh token stored for integration")
        client = ProviderAPIClient(http_client, self.get_name(), base_url=self.base_url)
        data = await client.post(
            "/oauth/v2/refresh",
            json={"client_id": self.settings.clover_app_id, "refresh_token": refresh_token},
        )
        return TokenGrant.from_response(data)

    async def fetch_merchant_info(
        self, session: ProviderSession, shop_name: str | None = None
    ) -> MerchantInfo:
        merchant = await self._api(session).get("/v3/merchants/me")
        return MerchantInfo(
            store_id=merchant.get("id"),
            external_merchant_id=merchant.get("id"),
            name=merchant.get("name"),
        )
