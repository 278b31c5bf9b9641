"""
Sync API Router.

Sync policy per channel, live polling status and run history.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select

from ordersync.models import SyncRun
from ordersync.routers.channels import SyncConfigResponse
from ordersync.routers.dependencies import get_coordinator, get_current_tenant, get_registry, get_session_maker
from ordersync.services.channel_registry import ChannelRegistry
from ordersync.services.sync_coordinator import SyncCoordinator

router = APIRouter()


class SyncConfigRequest(BaseModel):
    """Request model for configuring automated sync on a channel."""
    channel_id: str
    auto_sync_orders: bool = True
    auto_sync_inventory: bool = False
    auto_sync_products: bool = False
    sync_interval_minutes: int = Field(5, ge=1)
    use_webhooks: bool = True


@router.post("/configure")
async def configure_sync(
    body: SyncConfigRequest,
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """
    Upsert the channel's sync policy and start, restart or stop its timer.

    Polling runs only when use_webhooks is false and auto_sync_orders is true.
    """
    config = await registry.upsert_sync_config(
        tenant_id,
        body.channel_id,
        auto_sync_orders=body.auto_sync_orders,
        auto_sync_inventory=body.auto_sync_inventory,
        auto_sync_products=body.auto_sync_products,
        sync_interval_minutes=body.sync_interval_minutes,
        use_webhooks=body.use_webhooks,
    )
    polling = coordinator.apply_config(config.channel_id, config)
    return {
        "channel_id": body.channel_id,
        "config": SyncConfigResponse.model_validate(config).model_dump(),
        "is_polling": polling,
        "message": (
            f"Polling every {config.sync_interval_minutes} minute(s)"
            if polling else "Orders arrive by webhook; polling is off"
        ),
    }


@router.get("/status")
async def sync_status(
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    channels = await registry.list_channels(tenant_id)
    return {
        "channels": [
            {
                "channel_id": c.channel_id,
                "platform": c.platform,
                "display_name": c.display_name,
                "status": c.status,
                "sync_error": c.sync_error,
                "last_sync_at": c.last_sync_at.isoformat() if c.last_sync_at else None,
                "config": SyncConfigResponse.model_validate(c.sync_config).model_dump() if c.sync_config else None,
                "is_polling": coordinator.is_scheduled(c.id),
                "is_running": coordinator.is_running(c.id),
            }
            for c in channels
        ],
        "today": await coordinator.stats.today_totals(tenant_id),
    }


@router.delete("/{channel_id}")
async def disable_sync(
    channel_id: str,
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """Turn automated sync off for a channel (webhooks keep working)."""
    channel = await registry.get(tenant_id, channel_id)
    coordinator.cancel(channel.id)
    await registry.deactivate_sync(tenant_id, channel_id)
    return {"channel_id": channel_id, "is_polling": False}


@router.get("/runs")
async def sync_runs(
    channel_id: Optional[str] = None,
    limit: int = Query(20, ge=1, le=200),
    tenant_id: str = Depends(get_current_tenant),
    session_maker=Depends(get_session_maker),
):
    """Recent sync runs, newest first."""
    query = select(SyncRun).where(SyncRun.tenant_id == tenant_id)
    if channel_id:
        query = query.where(SyncRun.channel_identifier == channel_id)
    async with session_maker() as session:
        runs = (await session.execute(query.order_by(SyncRun.started_at.desc()).limit(limit))).scalars().all()

    return {
        "runs": [
            {
                "id": run.id,
                "channel_id": run.channel_identifier,
                "sync_type": run.sync_type,
                "origin": run.origin,
                "status": run.status,
                "orders_fetched": run.orders_fetched,
                "orders_ingested": run.orders_ingested,
                "orders_duplicate": run.orders_duplicate,
                "orders_skipped": run.orders_skipped,
                "error": run.error_message,
                "started_at": run.started_at.isoformat() if run.started_at else None,
                "completed_at": run.completed_at.isoformat() if run.completed_at else None,
            }
            for run in runs
        ]
    }
