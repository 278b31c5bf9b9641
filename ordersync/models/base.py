"""
Declarative base and column mixins shared by the ordersync tables.

All DateTime columns hold naive UTC; use utcnow() rather than
datetime.now() anywhere a timestamp is written.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class UUIDMixin:
    """String UUID primary key (portable across PostgreSQL and SQLite)."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)


class TenantMixin:
    """Owning tenant. Every tenant-facing query filters on this column."""

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
