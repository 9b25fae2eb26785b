"""
Merchant authentication.
Verifies Supabase Auth JWTs for the merchant-facing endpoints.
"""

import httpx
import structlog
from fastapi import Depends, Header, HTTPException, status

from barter_pos.dependencies import AppContext, get_context

logger = structlog.get_logger()

AUTH_TIMEOUT_SECONDS = 10.0


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def verify_token(
    authorization: str | None = Header(None),
    context: AppContext = Depends(get_context),
) -> dict:
    """
    Verify Supabase JWT token from Authorization header.

    Args:
        authorization: Authorization header value (Bearer <token>)

    Returns:
        {"user_id", "email", "user"} for the authenticated merchant user

    Raises:
        HTTPException: If token is invalid or missing
    """
    if not authorization:
        raise _unauthorized("Authorization header is required")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization header format")
    token = parts[1]

    settings = context.settings
    try:
        response = await context.http_client.get(
            f"{settings.supabase_url}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {token}",
                "apikey": settings.supabase_service_key,
            },
            timeout=AUTH_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as http_error:
        logger.error("HTTP error during token verification", error=str(http_error))
        raise _unauthorized("Token verification failed") from http_error

    if response.status_code != 200:
        raise _unauthorized("Invalid or expired token")

    user_data = response.json()
    if not user_data or not user_data.get("id"):
        raise _unauthorized("Invalid token payload")

    return {
        "user_id": user_data["id"],
        "email": user_data.get("email"),
        "user": user_data,
    }


def require_merchant(user: dict, merchant_id: str):
    """The authenticated user acts as the merchant; reject requests for other merchants."""
    if user.get("user_id") != merchant_id:
        logger.warning(
            "Merchant mismatch on authenticated request",
            user_id=user.get("user_id"),
            merchant_id=merchant_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to act for this merchant",
        )
