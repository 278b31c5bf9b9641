"""
Sync API tests: policy configuration, status and run history.
"""

import pytest

from conftest import shopify_order, wait_until


@pytest.mark.asyncio
async def test_configure_webhook_mode(client, coordinator, shopify_channel):
    response = await client.post("/api/sync/configure", json={"channel_id": "shopify-main"})

    assert response.status_code == 200
    data = response.json()
    assert data["is_polling"] is False
    assert data["config"]["delivery_mode"] == "webhook"
    assert data["config"]["sync_interval_minutes"] == 5
    assert coordinator.is_scheduled(shopify_channel.id) is False


@pytest.mark.asyncio
async def test_configure_polling_starts_timer(client, coordinator, platform, order_store, shopify_channel):
    platform.orders = [shopify_order(1), shopify_order(2)]

    response = await client.post("/api/sync/configure", json={
        "channel_id": "shopify-main",
        "use_webhooks": False,
        "sync_interval_minutes": 15,
    })

    assert response.status_code == 200
    assert response.json()["is_polling"] is True
    assert response.json()["config"]["delivery_mode"] == "polling"
    await wait_until(lambda: len(platform.requests) == 1 and not coordinator.is_running(shopify_channel.id))
    assert await order_store.count(shopify_channel.id) == 2

    status = (await client.get("/api/sync/status")).json()
    entry = status["channels"][0]
    assert entry["is_polling"] is True
    assert entry["config"]["sync_interval_minutes"] == 15
    assert entry["last_sync_at"] is not None
    assert status["today"]["orders_received"] == 2


@pytest.mark.asyncio
async def test_configure_rejects_zero_interval(client, shopify_channel):
    response = await client.post("/api/sync/configure", json={
        "channel_id": "shopify-main", "sync_interval_minutes": 0,
    })
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_configure_unknown_channel(client):
    response = await client.post("/api/sync/configure", json={"channel_id": "nope"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_disable_stops_polling(client, coordinator, platform, shopify_channel):
    await client.post("/api/sync/configure", json={"channel_id": "shopify-main", "use_webhooks": False})
    await wait_until(lambda: len(platform.requests) == 1 and not coordinator.is_running(shopify_channel.id))

    response = await client.delete("/api/sync/shopify-main")

    assert response.status_code == 200
    assert response.json() == {"channel_id": "shopify-main", "is_polling": False}
    assert coordinator.is_scheduled(shopify_channel.id) is False
    status = (await client.get("/api/sync/status")).json()
    assert status["channels"][0]["config"]["is_active"] is False


@pytest.mark.asyncio
async def test_status_without_channels(client):
    response = await client.get("/api/sync/status")
    assert response.status_code == 200
    assert response.json()["channels"] == []
    assert response.json()["today"]["orders_received"] == 0


@pytest.mark.asyncio
async def test_runs_history(client, platform, registry, shopify_channel):
    platform.orders = [shopify_order(1)]
    await client.post("/api/channels/shopify-main/sync-now")
    platform.error_status = 503
    await client.post("/api/channels/shopify-main/sync-now")

    response = await client.get("/api/sync/runs", params={"channel_id": "shopify-main"})

    assert response.status_code == 200
    runs = response.json()["runs"]
    assert len(runs) == 2
    # newest first
    assert runs[0]["status"] == "failed"
    assert runs[0]["error"]
    assert runs[1]["status"] == "completed"
    assert runs[1]["origin"] == "manual"
    assert runs[1]["orders_ingested"] == 1

    other = await client.get("/api/sync/runs", headers={"X-Tenant-ID": "someone-else"})
    assert other.json()["runs"] == []
