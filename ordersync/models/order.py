"""
Order models - normalized orders imported from external channels.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, Float, ForeignKey, Index, UniqueConstraint, JSON
from sqlalchemy.orm import Mapped, mapped_column

from ordersync.models.base import Base, TenantMixin, TimestampMixin, UUIDMixin


class OrderOrigin(str, enum.Enum):
    """Which delivery path first recorded the order."""
    WEBHOOK = "webhook"
    POLLING = "polling"
    MANUAL = "manual"


class ChannelOrder(Base, UUIDMixin, TenantMixin, TimestampMixin):
    """
    Canonical order as ingested from a channel.

    (channel_id, external_order_id) is unique; that constraint is the only thing
    keeping the webhook and polling paths from recording the same order twice.
    Rows outlive their channel (channel_id is set to NULL on disconnect).
    """
    __tablename__ = "ecommerce_orders"

    channel_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("ecommerce_channels.id", ondelete="SET NULL")
    )
    channel_identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    platform: Mapped[str] = mapped_column(String(30), nullable=False)

    external_order_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_order_number: Mapped[Optional[str]] = mapped_column(String(100))

    customer_email: Mapped[Optional[str]] = mapped_column(String(255))
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50))

    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    subtotal: Mapped[float] = mapped_column(Float, default=0.0)
    tax_total: Mapped[float] = mapped_column(Float, default=0.0)
    shipping_total: Mapped[float] = mapped_column(Float, default=0.0)
    total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[Optional[str]] = mapped_column(String(10))

    status: Mapped[str] = mapped_column(String(30), default="pending")
    source: Mapped[str] = mapped_column(String(30), nullable=False)  # OrderOrigin
    external_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    raw_data: Mapped[Optional[str]] = mapped_column(Text)  # original payload, JSON text

    __table_args__ = (
        UniqueConstraint("channel_id", "external_order_id", name="uq_order_channel_external"),
        Index("idx_ecom_orders_tenant", "tenant_id", "created_at"),
        Index("idx_ecom_orders_customer", "customer_email"),
    )
