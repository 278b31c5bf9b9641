"""
FastAPI dependencies shared by the routers.
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ordersync.config import get_settings
from ordersync.database import async_session_maker
from ordersync.services.channel_registry import ChannelRegistry
from ordersync.services.sync_coordinator import SyncCoordinator
from ordersync.services.webhook_log import WebhookReceiptLog


def get_session_maker():
    """Session factory for request-scoped services (overridden in tests)."""
    return async_session_maker


async def get_db(session_maker=Depends(get_session_maker)) -> AsyncSession:
    """Dependency for FastAPI routes to get database session."""
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_coordinator(request: Request) -> SyncCoordinator:
    """The process-wide coordinator created in the app lifespan."""
    return request.app.state.coordinator


def get_registry(coordinator: SyncCoordinator = Depends(get_coordinator)) -> ChannelRegistry:
    return coordinator.registry


def get_webhook_log(session_maker=Depends(get_session_maker)) -> WebhookReceiptLog:
    return WebhookReceiptLog(session_maker)


async def get_current_tenant(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
) -> str:
    """
    Tenant for the request. Authentication happens upstream; this service
    trusts the X-Tenant-ID header and falls back to DEFAULT_TENANT_ID.
    """
    tenant = (x_tenant_id or "").strip()
    return tenant or get_settings().DEFAULT_TENANT_ID
