"""
POS connection endpoints.
OAuth initiate / callback, manual token refresh, API-key integrations and
disconnect.
"""

from typing import Optional
from urllib.parse import urlencode

import httpx
import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from barter_pos.dependencies import AppContext, get_context
from barter_pos.errors import SettlementError, to_http_exception
from barter_pos.routers.auth import verify_token

logger = structlog.get_logger()

router = APIRouter(prefix="/api/pos", tags=["pos-integrations"])


class OAuthInitiateRequest(BaseModel):
    provider: str
    shopName: Optional[str] = None


class RefreshRequest(BaseModel):
    integration_id: str


class ApiKeyIntegrationRequest(BaseModel):
    provider: str
    api_key: str = Field(min_length=1)
    store_id: Optional[str] = None
    external_merchant_id: Optional[str] = None
    barter_percentage: Optional[float] = Field(default=None, ge=0, le=100)


def _integration_response(integration) -> dict:
    """Integration fields safe to return to the dashboard (never tokens)."""
    return {
        "id": integration.id,
        "provider": integration.provider,
        "auth_method": integration.auth_method,
        "status": integration.status,
        "store_id": integration.store_id,
        "external_merchant_id": integration.external_merchant_id,
        "token_expires_at": integration.token_expires_at,
        "config": integration.config,
    }


def _dashboard_redirect(frontend_url: str, params: dict[str, str]) -> RedirectResponse:
    url = f"{frontend_url}/merchant-dashboard?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=302)


@router.post("/oauth/initiate")
async def oauth_initiate(
    body: OAuthInitiateRequest,
    user: dict = Depends(verify_token),
    context: AppContext = Depends(get_context),
):
    """
    Start an OAuth connection for the authenticated merchant.
    Returns the provider authorization URL to redirect the browser to.
    """
    try:
        return await context.token_manager.initiate(user["user_id"], body.provider, body.shopName)
    except SettlementError as e:
        raise to_http_exception(e) from e


@router.get("/oauth/callback")
async def oauth_callback(
    code: Optional[str] = Query(None, description="Authorization code"),
    state: Optional[str] = Query(None, description="State token issued at initiate"),
    error: Optional[str] = Query(None, description="Error reported by the provider"),
    shop: Optional[str] = Query(None, description="Shopify shop domain"),
    domain_prefix: Optional[str] = Query(None, description="Lightspeed store domain prefix"),
    context: AppContext = Depends(get_context),
):
    """
    Handle the provider redirect.
    Always answers with a redirect to the merchant dashboard carrying
    oauth_success or oauth_error.
    """
    frontend_url = context.settings.frontend_url
    if error:
        logger.warning("Provider reported OAuth error", error=error)
        return _dashboard_redirect(frontend_url, {"oauth_error": error})
    if not code or not state:
        return _dashboard_redirect(frontend_url, {"oauth_error": "Missing code or state"})

    try:
        integration = await context.token_manager.handle_callback(
            code, state, shop=shop, domain_prefix=domain_prefix
        )
    except SettlementError as e:
        logger.warning("OAuth callback failed", code=e.code, error=e.message)
        return _dashboard_redirect(frontend_url, {"oauth_error": e.message})
    except (httpx.HTTPError, ValueError) as e:
        logger.error("OAuth callback failed", error=str(e))
        return _dashboard_redirect(frontend_url, {"oauth_error": "Failed to complete authorization"})

    return _dashboard_redirect(
        frontend_url, {"oauth_success": "true", "provider": integration.provider}
    )


@router.post("/oauth/refresh")
async def oauth_refresh(
    body: RefreshRequest,
    user: dict = Depends(verify_token),
    context: AppContext = Depends(get_context),
):
    """Manually refresh an integration's tokens."""
    try:
        integration = await context.token_manager.get_merchant_integration(
            user["user_id"], body.integration_id
        )
        refreshed = await context.token_manager.refresh(integration)
    except SettlementError as e:
        raise to_http_exception(e) from e
    return {"success": True, "integration": _integration_response(refreshed)}


@router.post("/integrations/api-key")
async def save_api_key_integration(
    body: ApiKeyIntegrationRequest,
    user: dict = Depends(verify_token),
    context: AppContext = Depends(get_context),
):
    """Connect a provider that authenticates with an API key (e.g. Adyen)."""
    try:
        integration = await context.token_manager.save_api_key_integration(
            user["user_id"],
            body.provider,
            body.api_key,
            store_id=body.store_id,
            external_merchant_id=body.external_merchant_id,
            barter_percentage=body.barter_percentage,
        )
    except SettlementError as e:
        raise to_http_exception(e) from e
    return {"success": True, "integration": _integration_response(integration)}


@router.post("/integrations/{integration_id}/disconnect")
async def disconnect_integration(
    integration_id: str,
    user: dict = Depends(verify_token),
    context: AppContext = Depends(get_context),
):
    """Deactivate an integration; its webhooks are rejected afterwards."""
    try:
        integration = await context.token_manager.disconnect(user["user_id"], integration_id)
    except SettlementError as e:
        raise to_http_exception(e) from e
    return {"success": True, "integration": _integration_response(integration)}
