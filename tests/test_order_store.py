"""
Tests for idempotent order ingestion.
"""

import pytest
from sqlalchemy import func, select

from ordersync.adapters.shopify import ShopifyPlatformAdapter
from ordersync.exceptions import NotFound
from ordersync.models import ChannelOrder, OrderOrigin
from ordersync.services.order_store import IngestOutcome

from conftest import TENANT, shopify_order


def _order(order_id, total="10.00"):
    return ShopifyPlatformAdapter().normalize(shopify_order(order_id, total=total))


@pytest.mark.asyncio
async def test_first_ingest_inserts(order_store, shopify_channel):
    result = await order_store.ingest(shopify_channel, _order(1), OrderOrigin.WEBHOOK)
    assert result.inserted is True
    assert result.outcome == IngestOutcome.INSERTED
    assert result.order_id is not None
    assert await order_store.count(shopify_channel.id) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("first, second", [
    (OrderOrigin.WEBHOOK, OrderOrigin.WEBHOOK),
    (OrderOrigin.WEBHOOK, OrderOrigin.POLLING),
    (OrderOrigin.POLLING, OrderOrigin.WEBHOOK),
    (OrderOrigin.MANUAL, OrderOrigin.POLLING),
])
async def test_same_order_twice_any_origin_is_one_row(order_store, shopify_channel, first, second):
    await order_store.ingest(shopify_channel, _order(7), first)
    result = await order_store.ingest(shopify_channel, _order(7), second)

    assert result.inserted is False
    assert result.outcome == IngestOutcome.DUPLICATE_IGNORED
    orders = await order_store.list_for_channel(shopify_channel.id)
    assert len(orders) == 1
    assert orders[0].source == first.value


@pytest.mark.asyncio
async def test_redelivery_storm_stores_once(order_store, shopify_channel):
    results = [await order_store.ingest(shopify_channel, _order(99), OrderOrigin.WEBHOOK) for _ in range(5)]
    assert sum(r.inserted for r in results) == 1
    assert await order_store.count(shopify_channel.id) == 1


@pytest.mark.asyncio
async def test_same_external_id_on_other_channel_is_separate(order_store, registry, shopify_channel):
    other, _ = await registry.connect(
        TENANT, "shopify-outlet", "shopify", "outlet.myshopify.com", {"access_token": "t"}
    )
    await order_store.ingest(shopify_channel, _order(5), OrderOrigin.WEBHOOK)
    result = await order_store.ingest(other, _order(5), OrderOrigin.WEBHOOK)
    assert result.inserted is True


@pytest.mark.asyncio
async def test_insert_updates_daily_stats_but_duplicate_does_not(order_store, stats, shopify_channel):
    await order_store.ingest(shopify_channel, _order(1, total="10.50"), OrderOrigin.WEBHOOK)
    await order_store.ingest(shopify_channel, _order(1, total="10.50"), OrderOrigin.POLLING)
    await order_store.ingest(shopify_channel, _order(2, total="4.50"), OrderOrigin.POLLING)

    totals = await stats.today_totals(TENANT)
    assert totals["orders_received"] == 2
    assert totals["orders_total"] == pytest.approx(15.0)


@pytest.mark.asyncio
async def test_stored_row_is_canonical(order_store, session_maker, shopify_channel):
    await order_store.ingest(shopify_channel, _order(3, total="20.00"), OrderOrigin.POLLING)
    async with session_maker() as session:
        row = (await session.execute(select(ChannelOrder))).scalar_one()

    assert row.tenant_id == TENANT
    assert row.channel_identifier == "shopify-main"
    assert row.platform == "shopify"
    assert row.external_order_id == "3"
    assert row.total == 20.0
    assert row.status == "paid"
    assert row.items == [{"name": "Widget", "sku": "W-1", "quantity": 2, "price": 5.0}]
    assert '"id": 3' in row.raw_data


@pytest.mark.asyncio
async def test_orders_survive_channel_deletion(order_store, registry, session_maker, shopify_channel):
    await order_store.ingest(shopify_channel, _order(1), OrderOrigin.WEBHOOK)
    await registry.disconnect(TENANT, "shopify-main")

    async with session_maker() as session:
        count = (await session.execute(select(func.count(ChannelOrder.id)))).scalar_one()
        row = (await session.execute(select(ChannelOrder))).scalar_one()
    assert count == 1
    assert row.channel_id is None
    assert row.channel_identifier == "shopify-main"


@pytest.mark.asyncio
async def test_ingest_for_deleted_channel_is_not_found(order_store, registry, stats, shopify_channel):
    await registry.disconnect(TENANT, "shopify-main")

    with pytest.raises(NotFound):
        await order_store.ingest(shopify_channel, _order(1), OrderOrigin.POLLING)

    assert (await stats.today_totals(TENANT))["orders_received"] == 0
