"""
Adyen provider adapter.
Settles successful AUTHORISATION notifications. Adyen keeps no item ledger, so
the outbound mirror is a Checkout partial-payment order for the settled total.
Adyen integrations use an API key rather than OAuth.
"""

import binascii
from typing import Any

import structlog

from barter_pos.integrations.api_client import ProviderAPIClient
from barter_pos.integrations.base import (
    BaseProviderAdapter,
    IntegrationKey,
    NormalizedTransaction,
    OutboundOrderResult,
    ProviderSession,
    amount_to_cents,
    cents_to_amount,
)
from barter_pos.integrations.signatures import hmac_sha256_base64, signatures_match
from barter_pos.models.checkout import SyncRequest

logger = structlog.get_logger()

ADYEN_CHECKOUT_API_VERSION = "v71"


def notification_item(payload: dict[str, Any]) -> dict[str, Any]:
    """First NotificationRequestItem of an Adyen notification, or {}."""
    items = payload.get("notificationItems") or []
    if not items:
        return {}
    return items[0].get("NotificationRequestItem") or {}


def signing_string(item: dict[str, Any]) -> str:
    """
    Colon-joined fields Adyen signs:
    pspReference:originalReference:merchantAccountCode:merchantReference:
    amount.value:amount.currency:eventCode:success
    """
    amount = item.get("amount") or {}
    fields = [
        item.get("pspReference"),
        item.get("originalReference"),
        item.get("merchantAccountCode"),
        item.get("merchantReference"),
        amount.get("value"),
        amount.get("currency"),
        item.get("eventCode"),
        item.get("success"),
    ]
    return ":".join("" if value is None else str(value) for value in fields)


class AdyenAdapter(BaseProviderAdapter):
    """Adapter for Adyen terminal / online payments."""

    signature_header = "hmacsignature"

    def get_name(self) -> str:
        return "adyen"

    def get_webhook_secret(self) -> str:
        return self.settings.adyen_hmac_key

    def verify_signature(self, raw_body: bytes, headers: dict[str, str], secret: str) -> bool:
        """HMAC-SHA256 with the hex-decoded key over the signing string, base64 encoded."""
        item = notification_item(self.parse_payload(raw_body))
        if not item:
            return False
        received = headers.get(self.signature_header) or (item.get("additionalData") or {}).get(
            "hmacSignature"
        )
        try:
            key = binascii.unhexlify(secret)
        except (binascii.Error, ValueError):
            logger.error("Adyen HMAC key is not valid hex")
            return False
        expected = hmac_sha256_base64(key, signing_string(item).encode("utf-8"))
        return signatures_match(expected, received)

    def is_handled_event(self, payload: dict[str, Any], headers: dict[str, str]) -> bool:
        item = notification_item(payload)
        return item.get("eventCode") == "AUTHORISATION" and str(item.get("success")).lower() == "true"

    def extract_integration_key(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> IntegrationKey | None:
        merchant_account = notification_item(payload).get("merchantAccountCode")
        if not merchant_account:
            return None
        return IntegrationKey(IntegrationKey.MERCHANT_ID, merchant_account)

    def extract_external_id(self, payload: dict[str, Any], headers: dict[str, str]) -> str | None:
        return notification_item(payload).get("pspReference")

    async def normalize(
        self,
        payload: dict[str, Any],
        headers: dict[str, str],
        session: ProviderSession,
    ) -> NormalizedTransaction:
        item = notification_item(payload)
        amount = item.get("amount") or {}
        return NormalizedTransaction(
            external_transaction_id=item["pspReference"],
            total_amount=cents_to_amount(amount.get("value")),
            currency=amount.get("currency") or "USD",
            transaction_date=item.get("eventDate"),
        )

    async def push_order(
        self, session: ProviderSession, request: SyncRequest
    ) -> OutboundOrderResult:
        totals = request.totals
        api = ProviderAPIClient(
            session.http_client,
            self.get_name(),
            base_url=f"{self.settings.adyen_checkout_base_url}/{ADYEN_CHECKOUT_API_VERSION}",
            headers={"X-API-Key": session.access_token or "", "Content-Type": "application/json"},
        )
        body = {
            "reference": request.transaction_id,
            "merchantAccount": session.integration.external_merchant_id,
            "amount": {
                "value": amount_to_cents(totals.total + totals.barter_amount),
                "currency": request.currency,
            },
            "metadata": {
                "barterAmount": f"{totals.barter_amount:.2f}",
                "cashAmount": f"{totals.cash_amount:.2f}",
            },
        }
        result = await api.post("/orders", json=body)
        psp_reference = result.get("pspReference")
        logger.info("Adyen order created", psp_reference=psp_reference)
        return OutboundOrderResult(
            pos_transaction_id=psp_reference,
            details={
                "psp_reference": psp_reference,
                "remaining_amount": result.get("remainingAmount"),
            },
        )
