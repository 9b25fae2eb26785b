"""
Webhook gateway.
Verifies, de-duplicates, normalizes and settles inbound POS payment webhooks.
Every request is answered with a (status_code, body) pair; failures never
propagate past the gateway.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from barter_pos.config import Settings
from barter_pos.errors import (
    IntegrationNotFoundError,
    SettlementError,
    SignatureInvalidError,
)
from barter_pos.integrations.base import BaseProviderAdapter, NormalizedTransaction, ProviderSession
from barter_pos.integrations.registry import ProviderRegistry
from barter_pos.integrations.signatures import SignatureVerifier
from barter_pos.models.database import POSIntegration, PosTransaction, WebhookLog
from barter_pos.models.checkout import SplitResult
from barter_pos.services.supabase_service import SettlementStore
from barter_pos.services.token_manager import OAuthTokenManager
from barter_pos.utils.split_calculator import (
    calculate_split_with_limits,
    calculate_transaction_split,
)

logger = structlog.get_logger()

LOG_SUCCESS = "success"
LOG_DUPLICATE = "duplicate"
LOG_IGNORED = "ignored"
LOG_REJECTED = "rejected"
LOG_FAILED = "failed"


def parse_transaction_date(value: Any) -> datetime:
    """Provider timestamps vary (ISO with Z, +0000 offsets, missing); default to now."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        text = value.strip().replace("Z", "+00:00")
        if len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
            text = f"{text[:-2]}:{text[-2:]}"
        try:
            parsed = datetime.fromisoformat(text)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning("Unparseable transaction date, using receive time", value=value)
    return datetime.now(timezone.utc)


class WebhookGateway:
    """Inbound webhook pipeline shared by all providers."""

    def __init__(
        self,
        store: SettlementStore,
        registry: ProviderRegistry,
        verifier: SignatureVerifier,
        token_manager: OAuthTokenManager,
        settings: Settings,
    ):
        self.store = store
        self.registry = registry
        self.verifier = verifier
        self.token_manager = token_manager
        self.settings = settings

    async def handle(
        self,
        provider: Optional[str],
        raw_body: bytes,
        headers: dict[str, str],
        endpoint: str = "/webhook",
    ) -> tuple[int, dict[str, Any]]:
        """
        Process one webhook delivery.

        Returns:
            (status_code, body): 200 {success, transaction_id} / 200 {success, duplicate}
            / 200 {success, message} for ignored events / 400 {success: false, error}
        """
        headers = {key.lower(): value for key, value in headers.items()}
        provider_name = (provider or "").strip().lower()
        context: dict[str, Any] = {"payload": None, "signature": None}

        try:
            status_code, body, log_status = await self._process(
                provider_name, raw_body, headers, context
            )
            error_message = None
        except SettlementError as e:
            logger.warning(
                "Webhook rejected",
                provider=provider_name,
                code=e.code,
                error=e.message,
            )
            status_code, body = 400, {"success": False, "error": e.message}
            log_status = LOG_REJECTED if isinstance(e, SignatureInvalidError) else LOG_FAILED
            error_message = e.message
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.warning("Malformed webhook payload", provider=provider_name, error=str(e))
            status_code, body = 400, {"success": False, "error": "Invalid payload"}
            log_status, error_message = LOG_FAILED, str(e)
        except Exception as e:
            logger.exception("Webhook processing failed", provider=provider_name, error=str(e))
            status_code, body = 400, {"success": False, "error": "Webhook processing failed"}
            log_status, error_message = LOG_FAILED, str(e)

        if self.registry.is_available(provider_name):
            await asyncio.to_thread(
                self.store.log_webhook,
                WebhookLog(
                    provider=provider_name,
                    endpoint=endpoint,
                    payload=context["payload"],
                    signature=context["signature"],
                    status=log_status,
                    error_message=error_message,
                ),
            )
        return status_code, body

    async def _process(
        self,
        provider: str,
        raw_body: bytes,
        headers: dict[str, str],
        context: dict[str, Any],
    ) -> tuple[int, dict[str, Any], str]:
        adapter = self.registry.require_adapter(provider)
        context["signature"] = headers.get(adapter.signature_header)

        if not self.verifier.verify(provider, raw_body, headers):
            raise SignatureInvalidError()

        payload = adapter.parse_payload(raw_body)
        context["payload"] = payload

        if not adapter.is_handled_event(payload, headers):
            logger.info("Ignoring unhandled webhook event", provider=provider)
            return 200, {"success": True, "message": "Event type not handled"}, LOG_IGNORED

        key = adapter.extract_integration_key(payload, headers)
        if key is None:
            raise IntegrationNotFoundError("Webhook does not identify a merchant")
        integration = await asyncio.to_thread(
            self.store.find_active_integration, provider, key.field, key.value
        )
        if integration is None:
            logger.warning("No active integration for webhook", provider=provider, key=repr(key))
            raise IntegrationNotFoundError()

        external_id = adapter.extract_external_id(payload, headers)
        if not external_id:
            raise ValueError("Webhook does not carry a transaction id")

        # Replays are answered before any provider detail fetch
        if await asyncio.to_thread(self.store.transaction_exists, provider, str(external_id)):
            logger.info(
                "Duplicate webhook ignored",
                provider=provider,
                external_transaction_id=external_id,
            )
            return 200, {"success": True, "duplicate": True}, LOG_DUPLICATE

        normalized = await self._normalize(adapter, payload, headers, integration)
        split = await self._calculate_split(integration, normalized)

        transaction = PosTransaction(
            merchant_id=integration.merchant_id,
            pos_integration_id=integration.id,
            pos_provider=provider,
            external_transaction_id=str(normalized.external_transaction_id),
            total_amount=normalized.total_amount,
            currency=normalized.currency,
            tax_amount=normalized.tax_amount,
            tip_amount=normalized.tip_amount,
            discount_amount=normalized.discount_amount,
            barter_amount=split.barter_amount,
            barter_percentage=split.barter_percentage,
            cash_amount=split.cash_amount,
            card_amount=split.card_amount,
            items=normalized.items,
            location_id=normalized.location_id or integration.store_id,
            transaction_date=parse_transaction_date(normalized.transaction_date),
            status=normalized.status,
            raw_webhook_data=payload,
            webhook_signature=context["signature"],
        )
        saved, created = await asyncio.to_thread(self.store.insert_transaction_if_absent, transaction)
        if not created:
            logger.info(
                "Concurrent duplicate webhook ignored",
                provider=provider,
                external_transaction_id=transaction.external_transaction_id,
            )
            return 200, {"success": True, "duplicate": True}, LOG_DUPLICATE

        logger.info(
            "Transaction recorded from webhook",
            provider=provider,
            transaction_id=saved.id,
            external_transaction_id=transaction.external_transaction_id,
            barter_amount=split.barter_amount,
        )
        return 200, {"success": True, "transaction_id": saved.id}, LOG_SUCCESS

    async def _normalize(
        self,
        adapter: BaseProviderAdapter,
        payload: dict[str, Any],
        headers: dict[str, str],
        integration: POSIntegration,
    ) -> NormalizedTransaction:
        if adapter.requires_api_fetch:
            return await self.token_manager.execute_with_refresh(
                integration, lambda session: adapter.normalize(payload, headers, session)
            )
        session = ProviderSession(self.token_manager.http_client, integration, None)
        return await adapter.normalize(payload, headers, session)

    async def _calculate_split(
        self, integration: POSIntegration, normalized: NormalizedTransaction
    ) -> SplitResult:
        percentage = integration.barter_percentage(self.settings.default_barter_percentage)
        daily_limit = integration.daily_barter_limit
        if daily_limit is None:
            return calculate_transaction_split(
                normalized.total_amount, percentage, normalized.tip_amount
            )

        used = await asyncio.to_thread(
            self.store.get_daily_barter_total, integration.id, datetime.now(timezone.utc).date()
        )
        split = calculate_split_with_limits(normalized.total_amount, percentage, used, daily_limit)
        if split.barter_percentage < percentage:
            logger.info(
                "Daily barter limit applied",
                integration_id=integration.id,
                daily_limit=daily_limit,
                daily_used=used,
                applied_percentage=split.barter_percentage,
            )
        return split
