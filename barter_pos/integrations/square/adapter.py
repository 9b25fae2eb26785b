"""
Square provider adapter.
Settles payment.created / payment.updated webhooks and mirrors split
transactions back as a Square order plus a cash payment.
"""

from typing import Any

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
)
from barter_pos.integrations.signatures import hmac_sha256_base64, signatures_match
from barter_pos.integrations.square.models import SquareWebhookEvent
from barter_pos.integrations.square.transformer import SquareTransformer
from barter_pos.models.checkout import SyncRequest

logger = structlog.get_logger()

SQUARE_API_VERSION = "2024-12-18"
SQUARE_PAYMENT_EVENTS = ("payment.created", "payment.updated")
SQUARE_SCOPES = [
    "MERCHANT_PROFILE_READ",
    "PAYMENTS_WRITE",
    "PAYMENTS_READ",
    "ORDERS_READ",
    "ORDERS_WRITE",
]


class SquareAdapter(BaseProviderAdapter):
    """Adapter for Square POS."""

    signature_header = "x-square-hmacsha256-signature"

    def get_name(self) -> str:
        return "square"

    def get_webhook_secret(self) -> str:
        return self.settings.square_webhook_signature_key

    @property
    def base_url(self) -> str:
        # Sandbox application ids are prefixed "sandbox-"
        if "sandbox" in self.settings.square_application_id:
            return "https://connect.squareupsandbox.com"
        return "https://connect.squareup.com"

    def verify_signature(self, raw_body: bytes, headers: dict[str, str], secret: str) -> bool:
        """HMAC-SHA256 over timestamp + "." + body, base64 encoded."""
        timestamp = headers.get("x-square-hmacsha256-timestamp")
        if not timestamp:
            logger.warning("No signature timestamp provided for Square webhook")
            return False
        message = timestamp.encode("utf-8") + b"." + raw_body
        expected = hmac_sha256_base64(secret.encode("utf-8"), message)
        return signatures_match(expected, headers.get(self.signature_header))

    def is_handled_event(self, payload: dict[str, Any], headers: dict[str, str]) -> bool:
        return payload.get("type") in SQUARE_PAYMENT_EVENTS

    def _payment(self, payload: dict[str, Any]) -> dict[str, Any]:
        return ((payload.get("data") or {}).get("object") or {}).get("payment") or {}

    def extract_integration_key(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> IntegrationKey | None:
        location_id = self._payment(payload).get("location_id")
        if not location_id:
            return None
        return IntegrationKey(IntegrationKey.STORE_ID, location_id)

    def extract_external_id(self, payload: dict[str, Any], headers: dict[str, str]) -> str | None:
        return self._payment(payload).get("id")

    async def normalize(
        self,
        payload: dict[str, Any],
        headers: dict[str, str],
        session: ProviderSession,
    ) -> NormalizedTransaction:
        event = SquareWebhookEvent(**payload)
        payment = event.get_payment()
        if payment is None:
            raise ValueError("No payment data in webhook")
        return SquareTransformer.payment_to_transaction(payment)

    def _api(self, session: ProviderSession) -> ProviderAPIClient:
        return ProviderAPIClient(
            session.http_client,
            self.get_name(),
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {session.access_token}",
                "Square-Version": SQUARE_API_VERSION,
                "Content-Type": "application/json",
            },
        )

    async def push_order(
        self, session: ProviderSession, request: SyncRequest
    ) -> OutboundOrderResult:
        """Create the order, then a single cash payment annotated with the split."""
        api = self._api(session)
        location_id = session.integration.store_id

        order_result = await api.post(
            "/v2/orders", json=SquareTransformer.build_order(request, location_id)
        )
        order_id = order_result["order"]["id"]
        logger.info("Square order created", order_id=order_id, transaction_id=request.transaction_id)

        payment_result = await api.post(
            "/v2/payments",
            json=SquareTransformer.build_payment(request, location_id, order_id),
        )
        payment_id = payment_result["payment"]["id"]
        logger.info("Square payment created", payment_id=payment_id, order_id=order_id)

        return OutboundOrderResult(
            pos_transaction_id=payment_id,
            details={"order_id": order_id, "payment_id": payment_id},
        )

    def oauth_endpoints(self, shop_name: str | None = None) -> OAuthEndpoints | None:
        return OAuthEndpoints(
            authorize_url=f"{self.base_url}/oauth2/authorize",
            token_url=f"{self.base_url}/oauth2/token",
            client_id=self.settings.square_application_id,
            client_secret=self.settings.square_application_secret,
            scopes=SQUARE_SCOPES,
            extra_authorize_params={"session": "false"},
        )

    async def fetch_merchant_info(
        self, session: ProviderSession, shop_name: str | None = None
    ) -> MerchantInfo:
        api = self._api(session)
        merchant = (await api.get("/v2/merchants/me")).get("merchant") or {}
        locations = (await api.get("/v2/locations")).get("locations") or []
        return MerchantInfo(
            store_id=locations[0]["id"] if locations else None,
            external_merchant_id=merchant.get("id"),
            name=merchant.get("business_name"),
        )
