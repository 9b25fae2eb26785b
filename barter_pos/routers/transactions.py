"""
Settlement endpoints.
Outbound sync of settled transactions into the POS and the checkout
calculate / settle flow.
"""

import structlog
from fastapi import APIRouter, Depends

from barter_pos.dependencies import AppContext, get_context
from barter_pos.errors import SettlementError, to_http_exception
from barter_pos.models.checkout import CheckoutRequest, SyncRequest, SyncResponse
from barter_pos.routers.auth import require_merchant, verify_token

logger = structlog.get_logger()

router = APIRouter(tags=["transactions"])


@router.post("/api/pos/transactions/sync", response_model=SyncResponse)
async def sync_transaction(
    body: SyncRequest,
    user: dict = Depends(verify_token),
    context: AppContext = Depends(get_context),
):
    """Mirror a settled split transaction into the merchant's POS."""
    require_merchant(user, body.merchant_id)
    try:
        return await context.sync_service.sync(body)
    except SettlementError as e:
        logger.warning(
            "Transaction sync failed",
            transaction_id=body.transaction_id,
            code=e.code,
            error=e.message,
        )
        raise to_http_exception(e) from e


@router.post("/api/checkout/calculate")
async def calculate_checkout(
    body: CheckoutRequest,
    user: dict = Depends(verify_token),
    context: AppContext = Depends(get_context),
):
    """Classify the cart and price it with barter credits, without recording anything."""
    require_merchant(user, body.merchant_id)
    try:
        return await context.checkout_service.calculate(body)
    except SettlementError as e:
        raise to_http_exception(e) from e


@router.post("/api/checkout/settle")
async def settle_checkout(
    body: CheckoutRequest,
    user: dict = Depends(verify_token),
    context: AppContext = Depends(get_context),
):
    """Validate and record a checkout, then sync it when an integration is given."""
    require_merchant(user, body.merchant_id)
    try:
        return await context.checkout_service.settle(body)
    except SettlementError as e:
        raise to_http_exception(e) from e
