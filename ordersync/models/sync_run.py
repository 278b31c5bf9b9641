"""
SyncRun - history of executed (not skipped) sync runs.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from ordersync.models.base import Base, TenantMixin, UUIDMixin, utcnow


class SyncRunStatus(str, enum.Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CHANNEL_GONE = "channel_gone"


class SyncRun(Base, UUIDMixin, TenantMixin):
    __tablename__ = "ecommerce_sync_log"

    channel_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("ecommerce_channels.id", ondelete="SET NULL")
    )
    channel_identifier: Mapped[str] = mapped_column(String(100), nullable=False)
    sync_type: Mapped[str] = mapped_column(String(30), default="orders")
    origin: Mapped[str] = mapped_column(String(20), nullable=False)  # polling | manual
    status: Mapped[str] = mapped_column(String(20), default=SyncRunStatus.STARTED.value)

    orders_fetched: Mapped[int] = mapped_column(Integer, default=0)
    orders_ingested: Mapped[int] = mapped_column(Integer, default=0)
    orders_duplicate: Mapped[int] = mapped_column(Integer, default=0)
    orders_skipped: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_ecom_sync_log_tenant", "tenant_id", "started_at"),
    )
