"""
Outbound transaction sync.
Pushes locally settled split transactions into the merchant's POS ledger and
records locally settled checkouts.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from barter_pos.errors import (
    IntegrationInactiveError,
    IntegrationNotFoundError,
    TransactionNotFoundError,
)
from barter_pos.integrations.registry import ProviderRegistry
from barter_pos.models.checkout import (
    CheckoutRequest,
    CheckoutTransaction,
    SyncRequest,
    SyncResponse,
    SyncTotals,
)
from barter_pos.models.database import (
    SYNC_SYNCED,
    TRANSACTION_COMPLETED,
    PosTransaction,
)
from barter_pos.services.checkout_eligibility import (
    CheckoutEligibilityMatcher,
    calculate_enhanced_payment,
    ensure_valid,
    validate_payment,
)
from barter_pos.services.supabase_service import SettlementStore
from barter_pos.services.token_manager import OAuthTokenManager
from barter_pos.utils.split_calculator import calculate_custom_split, round2

logger = structlog.get_logger()

LOCAL_PROVIDER = "local"


class TransactionSyncService:
    """Mirrors settled transactions into the provider ledger."""

    def __init__(
        self,
        store: SettlementStore,
        registry: ProviderRegistry,
        token_manager: OAuthTokenManager,
    ):
        self.store = store
        self.registry = registry
        self.token_manager = token_manager

    async def sync(self, request: SyncRequest) -> SyncResponse:
        """
        Create the order at the provider and mark the local transaction synced.

        Raises:
            TransactionNotFoundError: Local transaction missing or owned by another merchant
            IntegrationNotFoundError: Integration missing or owned by another merchant
            IntegrationInactiveError: Integration disconnected
            AuthExpiredError: Token could not be refreshed
            ProviderAPIError: Provider rejected the order
        """
        transaction = await asyncio.to_thread(self.store.get_transaction, request.transaction_id)
        if transaction is None or transaction.merchant_id != request.merchant_id:
            raise TransactionNotFoundError(request.transaction_id)

        integration = await asyncio.to_thread(self.store.get_integration, request.pos_integration_id)
        if integration is None or integration.merchant_id != request.merchant_id:
            raise IntegrationNotFoundError()
        if not integration.is_active:
            raise IntegrationInactiveError(integration.id or request.pos_integration_id)

        provider = integration.provider
        if transaction.sync_status == SYNC_SYNCED:
            logger.info(
                "Transaction already synced",
                transaction_id=request.transaction_id,
                provider=provider,
            )
            return SyncResponse(
                success=True,
                pos_transaction_id=transaction.external_transaction_id,
                provider=provider,
                details={"already_synced": True},
            )

        adapter = self.registry.require_adapter(provider)
        result = await self.token_manager.execute_with_refresh(
            integration, lambda session: adapter.push_order(session, request)
        )

        await asyncio.to_thread(
            self.store.mark_transaction_synced,
            request.transaction_id,
            result.pos_transaction_id,
            provider,
        )
        logger.info(
            "Transaction synced to POS",
            transaction_id=request.transaction_id,
            provider=provider,
            pos_transaction_id=result.pos_transaction_id,
        )
        return SyncResponse(
            success=True,
            pos_transaction_id=result.pos_transaction_id,
            provider=provider,
            details=result.details,
        )


class CheckoutService:
    """Prices a cart with barter credits and records the settled checkout."""

    def __init__(
        self,
        store: SettlementStore,
        matcher: CheckoutEligibilityMatcher,
        sync_service: TransactionSyncService,
    ):
        self.store = store
        self.matcher = matcher
        self.sync_service = sync_service

    async def calculate(self, request: CheckoutRequest) -> dict[str, Any]:
        split = await asyncio.to_thread(
            self.matcher.match, CheckoutTransaction(items=request.items), request.merchant_id
        )
        payment = calculate_enhanced_payment(
            split, request.barter_percentage, request.available_credits, request.tax_rate
        )
        validation = validate_payment(payment, split)
        return {"split": split, "payment": payment, "validation": validation}

    async def settle(self, request: CheckoutRequest) -> dict[str, Any]:
        """
        Validate, record and (when an integration is given) sync a checkout.

        Raises:
            CheckoutValidationError: If the payment is invalid; nothing is recorded
        """
        calculation = await self.calculate(request)
        payment = calculation["payment"]
        ensure_valid(payment, calculation["split"])

        total_amount = round2(payment.eligible_subtotal + payment.restricted_subtotal + payment.tax_on_cash)
        barter_amount = round2(payment.barter_amount)
        cash_amount = round2(total_amount - barter_amount)
        split = calculate_custom_split(total_amount, barter_amount, cash_amount)

        pos_integration_id = request.pos_integration_id
        provider = LOCAL_PROVIDER
        if pos_integration_id:
            integration = await asyncio.to_thread(self.store.get_integration, pos_integration_id)
            if integration is None or integration.merchant_id != request.merchant_id:
                raise IntegrationNotFoundError()
            provider = integration.provider

        transaction = PosTransaction(
            merchant_id=request.merchant_id,
            pos_integration_id=pos_integration_id,
            pos_provider=provider,
            external_transaction_id=f"local-{uuid.uuid4()}",
            total_amount=total_amount,
            currency=request.currency,
            tax_amount=round2(payment.tax_on_cash),
            barter_amount=split.barter_amount,
            barter_percentage=split.barter_percentage,
            cash_amount=split.cash_amount,
            card_amount=split.card_amount,
            items=request.items,
            transaction_date=datetime.now(timezone.utc),
            status=TRANSACTION_COMPLETED,
        )
        saved, _ = await asyncio.to_thread(self.store.insert_transaction_if_absent, transaction)
        logger.info(
            "Checkout settled",
            merchant_id=request.merchant_id,
            transaction_id=saved.id,
            barter_amount=split.barter_amount,
            cash_amount=split.cash_amount,
        )

        sync_response: Optional[SyncResponse] = None
        if pos_integration_id:
            sync_response = await self.sync_service.sync(
                SyncRequest(
                    transaction_id=saved.id,
                    merchant_id=request.merchant_id,
                    pos_integration_id=pos_integration_id,
                    items=request.items,
                    totals=SyncTotals(
                        subtotal=round2(payment.eligible_subtotal + payment.restricted_subtotal),
                        cash_amount=round2(payment.total_cash_subtotal),
                        barter_amount=barter_amount,
                        tax_amount=round2(payment.tax_on_cash),
                        total=cash_amount,
                        tax_rate=request.tax_rate,
                    ),
                    customer_info=request.customer_info,
                    currency=request.currency,
                )
            )

        return {
            "transaction": saved,
            "payment": payment,
            "validation": calculation["validation"],
            "sync": sync_response,
        }
