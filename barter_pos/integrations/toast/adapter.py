"""
Toast provider adapter.
Settles CHECK_CREATED / CHECK_UPDATED webhooks and mirrors split transactions
as an order whose check carries a CASH payment and an OTHER "Barter Credits"
payment. Toast uses machine-client credentials instead of OAuth.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from barter_pos.integrations.api_client import ProviderAPIClient
from barter_pos.integrations.base import (
    BaseProviderAdapter,
    IntegrationKey,
    NormalizedTransaction,
    OutboundOrderResult,
    ProviderSession,
    TokenGrant,
    to_float,
)
from barter_pos.integrations.signatures import hmac_sha256_hex, signatures_match
from barter_pos.models.checkout import SyncRequest
from barter_pos.models.database import (
    TRANSACTION_COMPLETED,
    TRANSACTION_PENDING,
    LineItem,
    POSIntegration,
)

logger = structlog.get_logger()

TOAST_CHECK_EVENTS = ("CHECK_CREATED", "CHECK_UPDATED")


class ToastAdapter(BaseProviderAdapter):
    """Adapter for Toast POS."""

    signature_header = "toast-signature"

    def get_name(self) -> str:
        return "toast"

    def get_webhook_secret(self) -> str:
        return self.settings.toast_webhook_secret

    def verify_signature(self, raw_body: bytes, headers: dict[str, str], secret: str) -> bool:
        """HMAC-SHA256 over the raw body, hex encoded."""
        expected = hmac_sha256_hex(secret.encode("utf-8"), raw_body)
        received = headers.get(self.signature_header)
        return signatures_match(expected, received.lower() if received else None)

    def is_handled_event(self, payload: dict[str, Any], headers: dict[str, str]) -> bool:
        if payload.get("eventType") not in TOAST_CHECK_EVENTS:
            return False
        check = payload.get("check") or {}
        # Empty checks carry nothing to settle
        return bool(check) and to_float(check.get("amount")) != 0

    def extract_integration_key(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> IntegrationKey | None:
        restaurant_guid = payload.get("restaurantGuid")
        if not restaurant_guid:
            return None
        return IntegrationKey(IntegrationKey.STORE_ID, restaurant_guid)

    def extract_external_id(self, payload: dict[str, Any], headers: dict[str, str]) -> str | None:
        return (payload.get("check") or {}).get("guid")

    async def normalize(
        self,
        payload: dict[str, Any],
        headers: dict[str, str],
        session: ProviderSession,
    ) -> NormalizedTransaction:
        check = payload["check"]
        items = [
            LineItem(
                name=selection.get("itemName") or selection.get("displayName") or "",
                unit_price=to_float(selection.get("price")),
                quantity=selection.get("quantity") or 1,
                external_id=(selection.get("item") or {}).get("guid") or selection.get("itemGuid"),
            )
            for selection in check.get("selections") or []
        ]
        return NormalizedTransaction(
            external_transaction_id=check["guid"],
            total_amount=to_float(check.get("amount")),
            tax_amount=to_float(check.get("taxAmount")),
            tip_amount=to_float(check.get("tipAmount")),
            discount_amount=to_float(check.get("discountAmount")),
            items=items,
            location_id=payload.get("restaurantGuid"),
            transaction_date=check.get("createdDate"),
            status=TRANSACTION_COMPLETED if check.get("closedDate") else TRANSACTION_PENDING,
        )

    def _build_order(self, request: SyncRequest) -> dict[str, Any]:
        totals = request.totals
        selections = [
            {
                "item": {"guid": item.external_id, "entityType": "MenuItem"} if item.external_id else None,
                "displayName": item.name,
                "quantity": item.quantity,
                "price": item.unit_price,
                "modifiers": [],
            }
            for item in request.items
        ]
        payments: list[dict[str, Any]] = [
            {"type": "CASH", "amount": round(totals.total, 2), "tipAmount": 0},
        ]
        if totals.barter_amount > 0:
            payments.append(
                {
                    "type": "OTHER",
                    "amount": round(totals.barter_amount, 2),
                    "tipAmount": 0,
                    "otherPayment": {"name": "Barter Credits"},
                }
            )
        return {
            "entityType": "Order",
            "externalId": request.transaction_id,
            "checks": [
                {
                    "entityType": "Check",
                    "selections": selections,
                    "taxAmount": round(totals.tax_amount, 2),
                    "payments": payments,
                }
            ],
        }

    async def push_order(
        self, session: ProviderSession, request: SyncRequest
    ) -> OutboundOrderResult:
        restaurant_guid = session.integration.store_id or ""
        api = ProviderAPIClient(
            session.http_client,
            self.get_name(),
            base_url=self.settings.toast_api_base_url,
            headers={
                "Authorization": f"Bearer {session.access_token}",
                "Toast-Restaurant-External-ID": restaurant_guid,
                "Content-Type": "application/json",
            },
        )
        result = await api.post("/orders/v2/orders", json=self._build_order(request))
        order_guid = result.get("guid")
        checks = result.get("checks") or [{}]
        check_guid = checks[0].get("guid")
        logger.info(
            "Toast order created",
            restaurant_guid=restaurant_guid,
            order_guid=order_guid,
            check_guid=check_guid,
        )
        # Toast check webhooks are keyed by the check guid
        return OutboundOrderResult(
            pos_transaction_id=check_guid or order_guid,
            details={"order_guid": order_guid, "check_guid": check_guid},
        )

    async def refresh_access_token(
        self, http_client: httpx.AsyncClient, integration: POSIntegration, refresh_token: str | None
    ) -> TokenGrant:
        """Toast has no refresh tokens; a new machine-client login issues a fresh token."""
        api = ProviderAPIClient(http_client, self.get_name(), base_url=self.settings.toast_api_base_url)
        data = await api.post(
            "/authentication/v1/authentication/login",
            json={
                "clientId": self.settings.toast_client_id,
                "clientSecret": self.settings.toast_client_secret,
                "userAccessType": "TOAST_MACHINE_CLIENT",
            },
        )
        token = data.get("token") or {}
        expires_in = token.get("expiresIn")
        return TokenGrant(
            access_token=token["accessToken"],
            expires_at=(
                datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None
            ),
        )
