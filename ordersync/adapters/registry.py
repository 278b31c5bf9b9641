"""
AdapterRegistry - Resolves the correct platform adapter for a channel.

The coordinator does not say "call the Shopify client". It says "get me
the adapter for this channel's platform" and calls fetch_orders_since()
on whatever comes back.

Adding a platform means one adapter module and one line in _LAZY below.
"""

from typing import Any, Dict, List, Optional, Type

import httpx

from ordersync.adapters.base import BasePlatformAdapter, CanonicalOrder
from ordersync.exceptions import UnsupportedPlatform

# platform name -> (module, class); imported on first use
_LAZY = {
    "shopify": ("ordersync.adapters.shopify", "ShopifyPlatformAdapter"),
    "woocommerce": ("ordersync.adapters.woocommerce", "WooCommercePlatformAdapter"),
    "custom": ("ordersync.adapters.custom", "CustomPlatformAdapter"),
}


class AdapterRegistry:
    _REGISTRY: Dict[str, Type[BasePlatformAdapter]] = {}

    @classmethod
    def register(cls, name: str, adapter_cls: Type[BasePlatformAdapter]):
        """Register a new platform adapter."""
        cls._REGISTRY[name] = adapter_cls

    @classmethod
    def _resolve(cls, platform_name: str) -> Optional[Type[BasePlatformAdapter]]:
        if platform_name not in cls._REGISTRY and platform_name in _LAZY:
            import importlib
            module_name, class_name = _LAZY[platform_name]
            module = importlib.import_module(module_name)
            cls.register(platform_name, getattr(module, class_name))
        return cls._REGISTRY.get(platform_name)

    @classmethod
    def get_adapter(
        cls,
        platform_name: Optional[str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> BasePlatformAdapter:
        """
        Return an instance of the adapter for the given platform kind.

        Raises:
            UnsupportedPlatform if the platform is not known.
        """
        name = (platform_name or "").strip().lower()
        adapter_class = cls._resolve(name)
        if adapter_class is None:
            raise UnsupportedPlatform(
                f"Platform '{platform_name}' is not supported. "
                f"Supported platforms: {', '.join(cls.supported_platforms())}"
            )
        return adapter_class(transport=transport)

    @classmethod
    def supported_platforms(cls) -> List[str]:
        """Return the list of supported platform names."""
        return sorted(set(_LAZY) | set(cls._REGISTRY))


def normalize_order(
    raw: Dict[str, Any],
    platform: str,
    credentials: Optional[Dict[str, Any]] = None,
) -> CanonicalOrder:
    """Normalize a raw payload for a platform kind without a channel in hand."""
    return AdapterRegistry.get_adapter(platform).normalize(raw, credentials)
