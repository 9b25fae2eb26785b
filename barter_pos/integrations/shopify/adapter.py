"""
Shopify provider adapter.
Settles order webhooks and mirrors split transactions as Admin API orders with
separate Cash and "Barter Credits" transactions.
"""

import re
from typing import Any

import structlog

from barter_pos.errors import InvalidArgumentError
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
from barter_pos.integrations.shopify.models import ShopifyOrder
from barter_pos.integrations.shopify.transformer import ShopifyTransformer
from barter_pos.integrations.signatures import hmac_sha256_base64, signatures_match
from barter_pos.models.checkout import SyncRequest

logger = structlog.get_logger()

SHOPIFY_ORDER_TOPICS = ("orders/create", "orders/paid")
SHOPIFY_SCOPES = ["read_orders", "write_orders", "read_products"]


def normalize_shop_domain(shop: str | None) -> str | None:
    """
    Normalize a shop name or URL to "<shop>.myshopify.com".

    Examples:
        "my-store" -> "my-store.myshopify.com"
        "https://my-store.myshopify.com/admin" -> "my-store.myshopify.com"
    """
    if not shop:
        return None
    shop = shop.strip().lower()
    shop = re.sub(r"^https?://", "", shop)
    shop = re.sub(r"\.myshopify\.com.*$", "", shop)
    shop = shop.split("/")[0]
    if not shop:
        return None
    return f"{shop}.myshopify.com"


class ShopifyAdapter(BaseProviderAdapter):
    """Adapter for Shopify POS / online store orders."""

    signature_header = "x-shopify-hmac-sha256"

    def get_name(self) -> str:
        return "shopify"

    def get_webhook_secret(self) -> str:
        return self.settings.shopify_webhook_secret or self.settings.shopify_api_secret

    def verify_signature(self, raw_body: bytes, headers: dict[str, str], secret: str) -> bool:
        """HMAC-SHA256 over the raw body, base64 encoded."""
        expected = hmac_sha256_base64(secret.encode("utf-8"), raw_body)
        return signatures_match(expected, headers.get(self.signature_header))

    def is_handled_event(self, payload: dict[str, Any], headers: dict[str, str]) -> bool:
        topic = headers.get("x-shopify-topic")
        if topic:
            return topic in SHOPIFY_ORDER_TOPICS
        return "id" in payload and "total_price" in payload

    def extract_integration_key(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> IntegrationKey | None:
        shop_domain = normalize_shop_domain(headers.get("x-shopify-shop-domain"))
        if not shop_domain:
            return None
        return IntegrationKey(IntegrationKey.STORE_ID, shop_domain)

    def extract_external_id(self, payload: dict[str, Any], headers: dict[str, str]) -> str | None:
        order_id = payload.get("id")
        return str(order_id) if order_id is not None else None

    async def normalize(
        self,
        payload: dict[str, Any],
        headers: dict[str, str],
        session: ProviderSession,
    ) -> NormalizedTransaction:
        return ShopifyTransformer.order_to_transaction(ShopifyOrder(**payload))

    def _admin_url(self, shop_domain: str, path: str) -> str:
        return f"https://{shop_domain}/admin/api/{self.settings.shopify_api_version}{path}"

    def _api(self, session: ProviderSession) -> ProviderAPIClient:
        return ProviderAPIClient(
            session.http_client,
            self.get_name(),
            headers={
                "X-Shopify-Access-Token": session.access_token or "",
                "Content-Type": "application/json",
            },
        )

    def _shop_domain(self, session: ProviderSession) -> str:
        shop = normalize_shop_domain(session.integration.store_id)
        if not shop:
            raise InvalidArgumentError("Shopify integration has no shop domain")
        return shop

    async def push_order(
        self, session: ProviderSession, request: SyncRequest
    ) -> OutboundOrderResult:
        shop = self._shop_domain(session)
        result = await self._api(session).post(
            self._admin_url(shop, "/orders.json"),
            json=ShopifyTransformer.build_order(request),
        )
        order = result.get("order") or {}
        logger.info(
            "Shopify order created",
            shop=shop,
            order_id=order.get("id"),
            transaction_id=request.transaction_id,
        )
        return OutboundOrderResult(
            pos_transaction_id=str(order.get("id")),
            details={"order_id": order.get("id"), "order_number": order.get("order_number")},
        )

    def oauth_endpoints(self, shop_name: str | None = None) -> OAuthEndpoints | None:
        shop = normalize_shop_domain(shop_name)
        if not shop:
            raise InvalidArgumentError("Shop name is required for Shopify")
        return OAuthEndpoints(
            authorize_url=f"https://{shop}/admin/oauth/authorize",
            token_url=f"https://{shop}/admin/oauth/access_token",
            client_id=self.settings.shopify_api_key,
            client_secret=self.settings.shopify_api_secret,
            scopes=SHOPIFY_SCOPES,
            scope_separator=",",
            supports_refresh=False,  # Offline access tokens do not expire
        )

    async def fetch_merchant_info(
        self, session: ProviderSession, shop_name: str | None = None
    ) -> MerchantInfo:
        shop = normalize_shop_domain(shop_name)
        data = await self._api(session).get(self._admin_url(shop, "/shop.json"))
        shop_data = data.get("shop") or {}
        return MerchantInfo(
            store_id=shop,
            external_merchant_id=str(shop_data["id"]) if shop_data.get("id") else None,
            name=shop_data.get("name"),
        )

    async def subscribe_webhooks(self, session: ProviderSession, webhook_url: str) -> bool:
        shop = self._shop_domain(session)
        await self._api(session).post(
            self._admin_url(shop, "/webhooks.json"),
            json={"webhook": {"topic": "orders/create", "address": webhook_url, "format": "json"}},
        )
        logger.info("Shopify webhook registered", shop=shop, topic="orders/create")
        return True
