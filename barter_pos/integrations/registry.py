"""
Provider registry: one adapter per POS provider, registered at startup and
looked up by provider name.
"""

import structlog

from barter_pos.config import Settings
from barter_pos.errors import UnsupportedProviderError
from barter_pos.integrations.base import BaseProviderAdapter

logger = structlog.get_logger()


class ProviderRegistry:
    """Registry that manages and provides access to all provider adapters."""

    def __init__(self):
        """Initialize an empty registry."""
        self._adapters: dict[str, BaseProviderAdapter] = {}

    def register(self, adapter: BaseProviderAdapter):
        """
        Register a provider adapter.

        Args:
            adapter: Provider adapter instance
        """
        name = adapter.get_name()
        if name in self._adapters:
            logger.warning("Provider already registered, replacing", provider=name)
        self._adapters[name] = adapter
        logger.info("Registered provider adapter", provider=name)

    def get_adapter(self, provider: str) -> BaseProviderAdapter | None:
        """
        Get adapter for specific provider.

        Args:
            provider: Name of the provider (e.g., 'square')

        Returns:
            Provider adapter instance, or None if not found
        """
        return self._adapters.get((provider or "").strip().lower())

    def require_adapter(self, provider: str) -> BaseProviderAdapter:
        """Like get_adapter, but raises UnsupportedProviderError when missing."""
        adapter = self.get_adapter(provider)
        if adapter is None:
            raise UnsupportedProviderError(provider or "")
        return adapter

    def list_available(self) -> list[str]:
        """
        List all registered providers.

        Returns:
            List of provider names
        """
        return list(self._adapters.keys())

    def is_available(self, provider: str) -> bool:
        return self.get_adapter(provider) is not None


def build_default_registry(settings: Settings) -> ProviderRegistry:
    """Create a registry holding every supported POS provider."""
    from barter_pos.integrations.adyen.adapter import AdyenAdapter
    from barter_pos.integrations.clover.adapter import CloverAdapter
    from barter_pos.integrations.lightspeed.adapter import LightspeedAdapter
    from barter_pos.integrations.shopify.adapter import ShopifyAdapter
    from barter_pos.integrations.square.adapter import SquareAdapter
    from barter_pos.integrations.toast.adapter import ToastAdapter

    registry = ProviderRegistry()
    for adapter_class in (
        SquareAdapter,
        ShopifyAdapter,
        CloverAdapter,
        ToastAdapter,
        LightspeedAdapter,
        AdyenAdapter,
    ):
        registry.register(adapter_class(settings))
    return registry
