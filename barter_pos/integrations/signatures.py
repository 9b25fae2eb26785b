"""
Webhook signature verification.
HMAC helpers shared by the adapters, plus the SignatureVerifier that applies the
missing-secret policy before delegating to the provider adapter.
"""

import base64
import hashlib
import hmac

import structlog

from barter_pos.integrations.registry import ProviderRegistry

logger = structlog.get_logger()


def hmac_sha256_base64(secret: bytes, message: bytes) -> str:
    return base64.b64encode(hmac.new(secret, message, hashlib.sha256).digest()).decode("ascii")


def hmac_sha256_hex(secret: bytes, message: bytes) -> str:
    return hmac.new(secret, message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str | None) -> bool:
    """Constant-time comparison; an absent signature never matches."""
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.strip().encode("utf-8"))


class SignatureVerifier:
    """
    Verifies inbound webhooks for any registered provider.

    When a provider has no secret configured, verification fails closed unless
    allow_unsigned is set (sandbox only), in which case every accepted unsigned
    request is logged as a warning.
    """

    def __init__(self, registry: ProviderRegistry, allow_unsigned: bool = False):
        self.registry = registry
        self.allow_unsigned = allow_unsigned
        if allow_unsigned:
            logger.warning(
                "Unsigned webhooks are ALLOWED for providers without a secret; "
                "do not run with ALLOW_UNSIGNED_WEBHOOKS in production"
            )

    def verify(self, provider: str, raw_body: bytes, headers: dict[str, str]) -> bool:
        """
        Verify a webhook signature.

        Args:
            provider: Provider name
            raw_body: Raw request body bytes
            headers: Request headers (lower-cased keys)

        Returns:
            True if the webhook is authentic (or accepted by the unsigned override)

        Raises:
            UnsupportedProviderError: If no adapter is registered for provider
        """
        adapter = self.registry.require_adapter(provider)
        secret = adapter.get_webhook_secret()

        if not secret:
            if self.allow_unsigned:
                logger.warning(
                    "Accepting UNSIGNED webhook: no secret configured",
                    provider=adapter.get_name(),
                )
                return True
            logger.error(
                "Rejecting webhook: no secret configured for provider",
                provider=adapter.get_name(),
            )
            return False

        try:
            valid = adapter.verify_signature(raw_body, headers, secret)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(
                "Webhook signature could not be computed",
                provider=adapter.get_name(),
                error=str(e),
            )
            return False

        if not valid:
            logger.warning("Invalid webhook signature", provider=adapter.get_name())
        return valid
