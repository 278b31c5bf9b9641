"""
Webhook receipt log - append-only audit of every inbound webhook attempt.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from ordersync.models.base import Base, UUIDMixin, utcnow


class ReceiptStatus(str, enum.Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookReceipt(Base, UUIDMixin):
    """
    One row per inbound attempt, written before verification.
    Status only ever moves received -> processed or received -> failed.
    """
    __tablename__ = "ecommerce_webhook_log"

    channel_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("ecommerce_channels.id", ondelete="SET NULL")
    )
    channel_identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=ReceiptStatus.RECEIVED.value)
    signature_valid: Mapped[Optional[bool]] = mapped_column(Boolean)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_ecom_webhook_channel", "channel_identifier", "received_at"),
    )
