"""
Daily per-channel counters.
"""

from datetime import date

from sqlalchemy import String, Integer, Float, Date, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ordersync.models.base import Base, TenantMixin, TimestampMixin, UUIDMixin


class DailyStat(Base, UUIDMixin, TenantMixin, TimestampMixin):
    """Counters only ever grow; rows are merged with an additive upsert."""
    __tablename__ = "ecommerce_daily_stats"

    channel_id: Mapped[str] = mapped_column(String(100), nullable=False)  # channel identifier
    stat_date: Mapped[date] = mapped_column(Date, nullable=False)

    orders_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    orders_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    webhooks_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    inventory_syncs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sync_errors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "channel_id", "stat_date", name="uq_daily_stats_tenant_channel_date"),
    )
