"""
Channels API Router.

Connect, inspect, test and disconnect external stores, trigger manual syncs
and read back ingested orders.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ordersync.config import get_settings
from ordersync.exceptions import MalformedPayload, OrderSyncError
from ordersync.models import Channel, ChannelStatus, utcnow
from ordersync.routers.dependencies import get_coordinator, get_current_tenant, get_registry
from ordersync.services.channel_registry import ChannelRegistry
from ordersync.services.sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncConfigResponse(BaseModel):
    auto_sync_orders: bool
    auto_sync_inventory: bool
    auto_sync_products: bool
    sync_interval_minutes: int
    delivery_mode: str
    is_active: bool

    class Config:
        from_attributes = True


class ChannelResponse(BaseModel):
    """Channel as shown to the tenant. Credentials are never included."""
    id: str
    channel_id: str
    platform: str
    display_name: str
    shop_url: str
    status: str
    sync_error: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    sync_config: Optional[SyncConfigResponse] = None

    class Config:
        from_attributes = True


class ConnectChannelRequest(BaseModel):
    channel_id: str = Field(..., min_length=1, max_length=100)
    platform: str
    shop_url: str = ""
    display_name: Optional[str] = None
    credentials: Dict[str, Any] = Field(default_factory=dict)
    webhook_secret: Optional[str] = None


class CustomApiConnectRequest(BaseModel):
    """Flat form for connecting a self-hosted shop's REST API."""
    channel_id: str = Field(..., min_length=1, max_length=100)
    display_name: Optional[str] = None
    api_url: str
    api_key: Optional[str] = None
    auth_type: str = "bearer"
    auth_header_name: str = "Authorization"
    api_key_param_name: str = "api_key"
    orders_endpoint: str = "/orders"
    date_param_name: str = "since"
    date_format: str = "iso"
    response_path: Optional[str] = "orders"
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    extra_params: Dict[str, Any] = Field(default_factory=dict)
    field_mapping: Dict[str, str] = Field(default_factory=dict)
    webhook_secret: Optional[str] = None


class SyncNowRequest(BaseModel):
    since_date: Optional[datetime] = None


class OrderResponse(BaseModel):
    id: str
    external_order_id: str
    external_order_number: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[Dict[str, Any]] = Field(default_factory=list)
    total: float
    currency: Optional[str] = None
    status: str
    source: str
    external_created_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def webhook_url(channel_id: str, tenant_id: str, kind: str = "orders") -> str:
    base = get_settings().PUBLIC_BASE_URL.rstrip("/")
    return f"{base}/api/webhooks/{channel_id}/{kind}?tenant_id={tenant_id}"


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _connect_response(channel: Channel, secret: str, tenant_id: str) -> dict:
    return {
        "channel": ChannelResponse.model_validate(channel).model_dump(mode="json"),
        "webhook_url": webhook_url(channel.channel_id, tenant_id),
        "inventory_webhook_url": webhook_url(channel.channel_id, tenant_id, "inventory"),
        # Shown once; only the encrypted copy is kept
        "webhook_secret": secret,
        "message": f"{channel.platform} channel '{channel.channel_id}' connected",
    }


@router.get("")
async def list_channels(
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
):
    channels = await registry.list_channels(tenant_id)
    return {"channels": [ChannelResponse.model_validate(c).model_dump(mode="json") for c in channels]}


@router.post("/connect")
async def connect_channel(
    body: ConnectChannelRequest,
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
):
    """
    Connect (or reconnect) a store.

    The response carries the webhook URL and a freshly generated webhook
    secret to paste into the platform's webhook settings.
    """
    channel, secret = await registry.connect(
        tenant_id,
        body.channel_id,
        body.platform,
        body.shop_url,
        body.credentials,
        display_name=body.display_name,
        webhook_secret=body.webhook_secret,
    )
    return _connect_response(channel, secret, tenant_id)


@router.post("/custom-api")
async def connect_custom_api(
    body: CustomApiConnectRequest,
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
):
    credentials = body.model_dump(exclude={"channel_id", "display_name", "webhook_secret"})
    channel, secret = await registry.connect(
        tenant_id,
        body.channel_id,
        "custom",
        body.api_url,
        credentials,
        display_name=body.display_name,
        webhook_secret=body.webhook_secret,
    )
    return _connect_response(channel, secret, tenant_id)


@router.get("/{channel_id}")
async def get_channel(
    channel_id: str,
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    channel = await registry.get(tenant_id, channel_id)
    return {
        "channel": ChannelResponse.model_validate(channel).model_dump(mode="json"),
        "is_polling": coordinator.is_scheduled(channel.id),
        "is_running": coordinator.is_running(channel.id),
        "order_count": await coordinator.order_store.count(channel.id),
    }


@router.delete("/{channel_id}")
async def disconnect_channel(
    channel_id: str,
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """Stop polling, then remove the channel. Already ingested orders stay."""
    await registry.disconnect(tenant_id, channel_id, coordinator)
    return {"channel_id": channel_id, "disconnected": True}


@router.post("/{channel_id}/test")
async def test_channel(
    channel_id: str,
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """
    Read-only connection check: fetch the last few days of orders and show
    up to three of them. Nothing is ingested.
    """
    settings = get_settings()
    channel = await registry.get(tenant_id, channel_id)
    days = settings.TEST_CONNECTION_LOOKBACK_DAYS

    try:
        adapter = coordinator.adapter_resolver(channel.platform)
        credentials = registry.credentials(channel)
        raw_orders = await adapter.fetch_orders_since(credentials, utcnow() - timedelta(days=days))
    except OrderSyncError as e:
        await registry.mark_status(channel.id, ChannelStatus.ERROR, e.message)
        raise

    await registry.mark_status(channel.id, ChannelStatus.CONNECTED)

    samples = []
    for raw in raw_orders:
        if len(samples) == 3:
            break
        try:
            order = adapter.normalize(raw, credentials)
        except MalformedPayload:
            continue
        samples.append({
            "external_order_id": order.external_order_id,
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "total": order.total,
            "status": order.status,
            "created_at": order.created_at.isoformat() if order.created_at else None,
        })

    return {
        "success": True,
        "message": f"Connection successful. Found {len(raw_orders)} orders in the last {days} days.",
        "orders_found": len(raw_orders),
        "sample_orders": samples,
    }


@router.post("/{channel_id}/sync-now")
async def sync_now(
    channel_id: str,
    body: Optional[SyncNowRequest] = None,
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """Run one sync immediately. 409 when a scheduled or manual run is in flight."""
    channel = await registry.get(tenant_id, channel_id)
    since = _as_naive_utc(body.since_date) if body else None
    result = await coordinator.sync_now(channel.id, since=since)
    return {"channel_id": channel_id, **result.summary()}


@router.get("/{channel_id}/orders")
async def list_channel_orders(
    channel_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_current_tenant),
    registry: ChannelRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    channel = await registry.get(tenant_id, channel_id)
    orders = await coordinator.order_store.list_for_channel(channel.id, limit=limit, offset=offset)
    return {
        "orders": [OrderResponse.model_validate(o).model_dump(mode="json") for o in orders],
        "total": await coordinator.order_store.count(channel.id),
    }
