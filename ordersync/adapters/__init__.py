from ordersync.adapters.base import BasePlatformAdapter, CanonicalOrder, OrderLineItem
from ordersync.adapters.registry import AdapterRegistry, normalize_order

__all__ = [
    "BasePlatformAdapter",
    "CanonicalOrder",
    "OrderLineItem",
    "AdapterRegistry",
    "normalize_order",
]
