"""
SQLAlchemy models for the order sync engine.
All tables are registered on Base.metadata when this package is imported.
"""

from ordersync.models.base import Base, TenantMixin, TimestampMixin, UUIDMixin, new_id, utcnow
from ordersync.models.channel import Channel, SyncConfig, Platform, ChannelStatus, DeliveryMode
from ordersync.models.order import ChannelOrder, OrderOrigin
from ordersync.models.webhook import WebhookReceipt, ReceiptStatus
from ordersync.models.stats import DailyStat
from ordersync.models.sync_run import SyncRun, SyncRunStatus

__all__ = [
    "Base",
    "UUIDMixin",
    "TenantMixin",
    "TimestampMixin",
    "new_id",
    "utcnow",
    "Channel",
    "SyncConfig",
    "Platform",
    "ChannelStatus",
    "DeliveryMode",
    "ChannelOrder",
    "OrderOrigin",
    "WebhookReceipt",
    "ReceiptStatus",
    "DailyStat",
    "SyncRun",
    "SyncRunStatus",
]
