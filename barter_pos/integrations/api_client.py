"""
Thin async REST client shared by the provider adapters.
Wraps the application's httpx.AsyncClient (which carries the request timeout)
and turns provider failures into ProviderAPIError / TokenExpiredError.
"""

from typing import Any

import httpx
import structlog

from barter_pos.errors import ProviderAPIError, TokenExpiredError
from barter_pos.utils.retry import is_token_expired_response, is_transient_status

logger = structlog.get_logger()


class ProviderAPIClient:
    """Async client for one provider's REST API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        provider: str,
        base_url: str = "",
        headers: dict[str, str] | None = None,
    ):
        """
        Initialize the provider API client.

        Args:
            http_client: Shared client; its timeout bounds every call
            provider: Provider name used in errors and logs
            base_url: Prefix for relative paths
            headers: Default headers (auth, API version)
        """
        self._client = http_client
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    async def request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send a request and return the decoded JSON body ({} for empty bodies).

        Raises:
            TokenExpiredError: 401, or an error body that reports an invalid/expired token
            ProviderAPIError: Network failure, timeout, or any other non-2xx status
        """
        url = self._url(path)
        headers = dict(self.headers)
        headers.update(kwargs.pop("headers", None) or {})
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("Provider API timeout", provider=self.provider, method=method, url=url)
            raise ProviderAPIError(self.provider, 0, "Request timed out", retryable=True) from e
        except httpx.RequestError as e:
            logger.error(
                "Provider API request failed",
                provider=self.provider,
                method=method,
                url=url,
                error=str(e),
            )
            raise ProviderAPIError(self.provider, 0, str(e), retryable=True) from e

        if response.status_code >= 400:
            body = response.text
            logger.error(
                "Provider API error",
                provider=self.provider,
                method=method,
                url=url,
                status_code=response.status_code,
                body=body[:500],
            )
            if is_token_expired_response(response.status_code, body):
                raise TokenExpiredError(
                    self.provider,
                    response.status_code,
                    "Access token expired or invalid",
                    body=body,
                )
            raise ProviderAPIError(
                self.provider,
                response.status_code,
                f"{method} {url} failed",
                body=body,
                retryable=is_transient_status(response.status_code),
            )

        if not response.content:
            return {}
        return response.json()

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request("POST", path, **kwargs)
