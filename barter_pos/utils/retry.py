"""
Retry utility functions with exponential backoff.
Categorizes provider failures as transient (retryable) or permanent (non-retryable).
Only idempotent provider reads are wrapped; order creation is never retried here.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from barter_pos.errors import ProviderAPIError, TokenExpiredError

logger = structlog.get_logger()

T = TypeVar("T")

# Messages providers use when an access token is no longer accepted
TOKEN_EXPIRED_MARKERS = (
    "unauthorized",
    "token expired",
    "expired token",
    "invalid token",
    "invalid_token",
    "authentication failed",
)


def is_transient_status(status_code: int) -> bool:
    """5xx and 429 responses are worth retrying."""
    return status_code == 429 or 500 <= status_code < 600


def is_token_expired_response(status_code: int, message: str = "") -> bool:
    """
    Determine if a provider response signals an expired or invalid access token.

    Args:
        status_code: HTTP status returned by the provider
        message: Response body or error message

    Returns:
        True for 401, or any error message containing a known token-expiry phrase
    """
    if status_code == 401:
        return True
    if status_code < 400:
        return False
    lowered = (message or "").lower()
    return any(marker in lowered for marker in TOKEN_EXPIRED_MARKERS)


def is_transient_error(exception: BaseException) -> bool:
    """
    Determine if an exception represents a transient error that should be retried.

    Args:
        exception: The exception to check

    Returns:
        True if error is transient (retryable), False otherwise
    """
    # Expired tokens are handled by the refresh path, never by backoff
    if isinstance(exception, TokenExpiredError):
        return False

    if isinstance(exception, ProviderAPIError):
        return exception.retryable

    # Network/connection errors are transient
    if isinstance(exception, httpx.ConnectError | httpx.TimeoutException | httpx.NetworkError):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        return is_transient_status(exception.response.status_code)

    if isinstance(exception, TimeoutError):
        return True

    # Default to non-retryable for unknown errors
    return False


def retry_with_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 30.0,
):
    """
    Decorator for retrying coroutine functions with exponential backoff.
    Only retries on transient errors; the last exception is re-raised unchanged.

    Args:
        max_attempts: Maximum number of attempts (including the first)
        initial_delay: Initial delay in seconds
        multiplier: Multiplier for exponential backoff
        max_delay: Maximum delay in seconds

    Returns:
        Decorated coroutine function with retry logic
    """

    def retry_decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=multiplier, min=initial_delay, max=max_delay),
            retry=retry_if_exception(is_transient_error),
            reraise=True,
            before_sleep=_log_retry_attempt,
        )(func)

    return retry_decorator


def _log_retry_attempt(retry_state: RetryCallState):
    """Log retry attempt before sleeping."""
    if retry_state.outcome is not None:
        exception = retry_state.outcome.exception()
        logger.warning(
            "Retrying after transient error",
            attempt=retry_state.attempt_number,
            exception=str(exception),
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
        )
