"""
Channel models - connected external storefronts and their sync policy.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Boolean, Integer, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ordersync.models.base import Base, TenantMixin, TimestampMixin, UUIDMixin


class Platform(str, enum.Enum):
    """Supported platform kinds."""
    SHOPIFY = "shopify"
    WOOCOMMERCE = "woocommerce"
    CUSTOM = "custom"


class ChannelStatus(str, enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class DeliveryMode(str, enum.Enum):
    """How orders reach us: pushed by platform webhooks or pulled by polling."""
    WEBHOOK = "webhook"
    POLLING = "polling"


class Channel(Base, UUIDMixin, TenantMixin, TimestampMixin):
    """
    One connected external store.
    Credentials and the webhook secret are stored encrypted (see CredentialVault).
    """
    __tablename__ = "ecommerce_channels"

    channel_id: Mapped[str] = mapped_column(String(100), nullable=False)  # tenant-chosen identifier
    platform: Mapped[str] = mapped_column(String(30), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    shop_url: Mapped[str] = mapped_column(Text, nullable=False)

    credentials_encrypted: Mapped[Optional[str]] = mapped_column(Text)
    webhook_secret_encrypted: Mapped[Optional[str]] = mapped_column(Text)

    status: Mapped[str] = mapped_column(String(30), default=ChannelStatus.CONNECTED.value)
    sync_error: Mapped[Optional[str]] = mapped_column(Text)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime)  # polling cursor

    # Relationships
    sync_config: Mapped[Optional["SyncConfig"]] = relationship(
        "SyncConfig",
        back_populates="channel",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "channel_id", name="uq_channel_tenant_channel"),
        Index("idx_ecom_channels_tenant", "tenant_id"),
    )


class SyncConfig(Base, UUIDMixin, TimestampMixin):
    """Per-channel policy controlling automated synchronization."""
    __tablename__ = "ecommerce_sync_config"

    channel_id: Mapped[str] = mapped_column(
        ForeignKey("ecommerce_channels.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    auto_sync_orders: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_sync_inventory: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_sync_products: Mapped[bool] = mapped_column(Boolean, default=False)
    sync_interval_minutes: Mapped[int] = mapped_column(Integer, default=5)
    delivery_mode: Mapped[str] = mapped_column(String(20), default=DeliveryMode.WEBHOOK.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    channel: Mapped["Channel"] = relationship("Channel", back_populates="sync_config")

    @property
    def wants_polling(self) -> bool:
        """True when this config requires a scheduled polling timer."""
        return (
            bool(self.is_active)
            and bool(self.auto_sync_orders)
            and self.delivery_mode == DeliveryMode.POLLING.value
        )
