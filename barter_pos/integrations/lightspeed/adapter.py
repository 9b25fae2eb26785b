"""
Lightspeed Retail provider adapter.
Webhooks arrive form-encoded (payload=<json>) and only reference the sale, so
the sale is fetched from the store's API before settlement. Outbound sales
carry one cash and one barter SalePayment.
"""

import json
import re
from typing import Any
from urllib.parse import parse_qs

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
    to_float,
)
from barter_pos.integrations.signatures import hmac_sha256_hex, signatures_match
from barter_pos.models.checkout import SyncRequest
from barter_pos.models.database import TRANSACTION_COMPLETED, TRANSACTION_PENDING, LineItem

logger = structlog.get_logger()

LIGHTSPEED_AUTHORIZE_URL = "https://secure.retail.lightspeed.app/connect"
LIGHTSPEED_SALE_API_URL = "https://api.lightspeedapp.com/API/V3"
DOMAIN_PREFIX_PATTERN = re.compile(r"^[a-z0-9-]+$")


def store_base_url(domain_prefix: str | None) -> str:
    """Base URL of a Lightspeed store, e.g. https://mystore.retail.lightspeed.app"""
    prefix = (domain_prefix or "").strip().lower()
    if not DOMAIN_PREFIX_PATTERN.match(prefix):
        raise InvalidArgumentError("A valid Lightspeed store domain prefix is required")
    return f"https://{prefix}.retail.lightspeed.app"


def parse_signature_header(value: str | None) -> str | None:
    """Accept both a bare hex digest and "signature=<hex>,algorithm=HMAC-SHA256"."""
    if not value:
        return None
    if "signature=" not in value:
        return value.strip().lower()
    parts = dict(
        part.split("=", 1) for part in value.split(",") if "=" in part
    )
    parts = {k.strip(): v.strip() for k, v in parts.items()}
    if parts.get("algorithm", "HMAC-SHA256").upper() != "HMAC-SHA256":
        return None
    signature = parts.get("signature")
    return signature.lower() if signature else None


class LightspeedAdapter(BaseProviderAdapter):
    """Adapter for Lightspeed Retail (X-Series) POS."""

    signature_header = "x-lightspeed-signature"
    requires_api_fetch = True

    def get_name(self) -> str:
        return "lightspeed"

    def get_webhook_secret(self) -> str:
        return self.settings.lightspeed_webhook_secret

    def verify_signature(self, raw_body: bytes, headers: dict[str, str], secret: str) -> bool:
        """HMAC-SHA256 over the raw (form-encoded) body, hex encoded."""
        expected = hmac_sha256_hex(secret.encode("utf-8"), raw_body)
        return signatures_match(expected, parse_signature_header(headers.get(self.signature_header)))

    def parse_payload(self, raw_body: bytes) -> dict[str, Any]:
        text = (raw_body or b"").decode("utf-8")
        if text.lstrip().startswith("{"):
            payload = json.loads(text)
        else:
            form = parse_qs(text)
            payload = json.loads(form.get("payload", ["{}"])[0])
        if isinstance(payload.get("payload"), str):
            payload = json.loads(payload["payload"])
        if not isinstance(payload, dict):
            raise ValueError("Lightspeed payload must be a JSON object")
        return payload

    def is_handled_event(self, payload: dict[str, Any], headers: dict[str, str]) -> bool:
        return bool(payload.get("saleID"))

    def extract_integration_key(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> IntegrationKey | None:
        account_id = payload.get("accountID")
        if not account_id:
            return None
        return IntegrationKey(IntegrationKey.MERCHANT_ID, str(account_id))

    def extract_external_id(self, payload: dict[str, Any], headers: dict[str, str]) -> str | None:
        sale_id = payload.get("saleID")
        return str(sale_id) if sale_id else None

    def _api(self, session: ProviderSession, base_url: str = "") -> ProviderAPIClient:
        return ProviderAPIClient(
            session.http_client,
            self.get_name(),
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {session.access_token}",
                "Content-Type": "application/json",
            },
        )

    async def normalize(
        self,
        payload: dict[str, Any],
        headers: dict[str, str],
        session: ProviderSession,
    ) -> NormalizedTransaction:
        sale_id = str(payload["saleID"])
        base_url = store_base_url(session.integration.store_id)
        data = await self.fetch_with_retry(
            self._api(session, base_url), f"/api/1.0/sale/{sale_id}.json"
        )
        sale = data.get("Sale") or data
        logger.info("Fetched Lightspeed sale", sale_id=sale_id)

        lines = ((sale.get("SaleLines") or {}).get("SaleLine")) or []
        if isinstance(lines, dict):
            lines = [lines]
        items = [
            LineItem(
                name=(line.get("Item") or {}).get("description") or line.get("note") or "",
                sku=(line.get("Item") or {}).get("customSku"),
                barcode=(line.get("Item") or {}).get("upc"),
                unit_price=to_float(line.get("unitPrice")),
                quantity=to_float(line.get("unitQuantity")) or 1,
                external_id=str(line["itemID"]) if line.get("itemID") else None,
            )
            for line in lines
        ]
        return NormalizedTransaction(
            external_transaction_id=sale_id,
            total_amount=to_float(sale.get("total")),
            tax_amount=to_float(sale.get("totalTax") or sale.get("calcTax1")),
            items=items,
            transaction_date=sale.get("createTime") or sale.get("timeStamp"),
            status=TRANSACTION_COMPLETED if sale.get("completed") in (True, "true") else TRANSACTION_PENDING,
        )

    async def push_order(
        self, session: ProviderSession, request: SyncRequest
    ) -> OutboundOrderResult:
        totals = request.totals
        account_id = session.integration.external_merchant_id or session.integration.store_id
        sale_lines = [
            {
                "itemID": item.external_id,
                "unitQuantity": item.quantity,
                "unitPrice": item.unit_price,
                "note": item.name,
            }
            for item in request.items
        ]
        sale_payments: list[dict[str, Any]] = []
        if totals.total > 0:
            sale_payments.append(
                {
                    "paymentTypeID": self.settings.lightspeed_cash_payment_type_id,
                    "amount": round(totals.total, 2),
                }
            )
        if totals.barter_amount > 0:
            sale_payments.append(
                {
                    "paymentTypeID": self.settings.lightspeed_barter_payment_type_id,
                    "amount": round(totals.barter_amount, 2),
                }
            )
        body = {
            "Sale": {
                "SaleLines": {"SaleLine": sale_lines},
                "SalePayments": {"SalePayment": sale_payments},
                "tax": round(totals.tax_amount, 2),
                "completed": True,
                "note": f"Barter transaction {request.transaction_id}",
            }
        }
        result = await self._api(session, LIGHTSPEED_SALE_API_URL).post(
            f"/Account/{account_id}/Sale.json", json=body
        )
        sale_id = str((result.get("Sale") or {}).get("saleID"))
        logger.info("Lightspeed sale created", account_id=account_id, sale_id=sale_id)
        return OutboundOrderResult(pos_transaction_id=sale_id, details={"sale_id": sale_id})

    def oauth_endpoints(self, shop_name: str | None = None) -> OAuthEndpoints | None:
        # The token endpoint lives on the store domain, known only after the redirect
        token_url = f"{store_base_url(shop_name)}/api/1.0/token" if shop_name else ""
        return OAuthEndpoints(
            authorize_url=LIGHTSPEED_AUTHORIZE_URL,
            token_url=token_url,
            client_id=self.settings.lightspeed_client_id,
            client_secret=self.settings.lightspeed_client_secret,
            scopes=[],
            form_encoded=True,
            extra_authorize_params={"response_type": "code"},
        )

    async def fetch_merchant_info(
        self, session: ProviderSession, shop_name: str | None = None
    ) -> MerchantInfo:
        base_url = store_base_url(shop_name)
        account = await self._api(session, base_url).get("/api/1.0/account.json")
        account_id = account.get("accountID") or (account.get("Account") or {}).get("accountID")
        return MerchantInfo(
            store_id=shop_name.strip().lower(),
            external_merchant_id=str(account_id) if account_id else None,
            name=account.get("name"),
        )

    async def subscribe_webhooks(self, session: ProviderSession, webhook_url: str) -> bool:
        base_url = store_base_url(session.integration.store_id)
        await self._api(session, base_url).post(
            "/api/webhook.json",
            json={"topic": "sale.update", "url": webhook_url, "format": "json"},
        )
        logger.info("Lightspeed webhook registered", store=session.integration.store_id)
        return True
