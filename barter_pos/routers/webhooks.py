"""
FastAPI router for inbound POS payment webhooks.
One endpoint serves every provider; the provider is selected by query
parameter or path segment.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from barter_pos.dependencies import AppContext, get_context

logger = structlog.get_logger()

router = APIRouter(tags=["webhooks"])


async def _dispatch(request: Request, provider: Optional[str], context: AppContext) -> JSONResponse:
    # Raw bytes are required for signature verification
    body_bytes = await request.body()
    status_code, body = await context.gateway.handle(
        provider,
        body_bytes,
        dict(request.headers),
        endpoint=request.url.path,
    )
    return JSONResponse(status_code=status_code, content=body)


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    provider: Optional[str] = Query(None, description="square, shopify, clover, toast, lightspeed or adyen"),
    context: AppContext = Depends(get_context),
):
    """Handle a POS payment webhook; provider given as ?provider=."""
    return await _dispatch(request, provider, context)


@router.post("/webhook/{provider}")
async def receive_provider_webhook(
    provider: str,
    request: Request,
    context: AppContext = Depends(get_context),
):
    """Handle a POS payment webhook; provider given as a path segment."""
    return await _dispatch(request, provider, context)
