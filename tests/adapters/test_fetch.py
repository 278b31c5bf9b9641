"""
Pull API behaviour of the adapters against httpx.MockTransport.
"""

import base64
from datetime import datetime

import httpx
import pytest
from tenacity import wait_none

from ordersync.adapters.custom import CustomPlatformAdapter
from ordersync.adapters.shopify import ShopifyPlatformAdapter
from ordersync.adapters.woocommerce import WooCommercePlatformAdapter
from ordersync.exceptions import InvalidCredentials, UpstreamUnavailable

SINCE = datetime(2024, 1, 14, 12, 0, 0)


def _adapter(cls, handler):
    adapter = cls(transport=httpx.MockTransport(handler))
    adapter.rate_limit_wait = wait_none()
    return adapter


# --- Credentials ---

def test_shopify_requires_token_or_key_pair():
    adapter = ShopifyPlatformAdapter()
    with pytest.raises(InvalidCredentials):
        adapter.build_credentials("test.myshopify.com", {"api_key": "k"})
    creds = adapter.build_credentials("test.myshopify.com/", {"api_key": "k", "api_secret": "s"})
    assert creds["shop_url"] == "https://test.myshopify.com"
    assert adapter.build_credentials("https://x.myshopify.com", {"access_token": "t"})["access_token"] == "t"


def test_woocommerce_accepts_api_key_aliases():
    creds = WooCommercePlatformAdapter().build_credentials(
        "https://shop.example.com", {"api_key": "ck_1", "api_secret": "cs_1"}
    )
    assert creds["consumer_key"] == "ck_1"
    assert creds["consumer_secret"] == "cs_1"
    with pytest.raises(InvalidCredentials):
        WooCommercePlatformAdapter().build_credentials("https://shop.example.com", {"consumer_key": "ck"})


def test_custom_requires_api_url_and_known_options():
    adapter = CustomPlatformAdapter()
    with pytest.raises(InvalidCredentials):
        adapter.build_credentials("", {"api_key": "k"})
    with pytest.raises(InvalidCredentials):
        adapter.build_credentials("https://api.example.com", {"api_key": "k", "auth_type": "oauth"})
    with pytest.raises(InvalidCredentials):
        adapter.build_credentials("https://api.example.com", {"api_key": "k", "date_format": "rfc822"})
    creds = adapter.build_credentials("", {"api_url": "https://api.example.com/", "auth_type": "none"})
    assert creds["api_url"] == "https://api.example.com"
    assert creds["orders_endpoint"] == "/orders"


# --- Shopify ---

@pytest.mark.asyncio
async def test_shopify_follows_link_header_pagination():
    pages = {
        None: ([{"id": 1}, {"id": 2}], '<https://test.myshopify.com/admin/api/2024-01/orders.json?page_info=abc>; rel="next"'),
        "abc": ([{"id": 3}], None),
    }
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        orders, link = pages[request.url.params.get("page_info")]
        headers = {"Link": link} if link else {}
        return httpx.Response(200, json={"orders": orders}, headers=headers)

    adapter = _adapter(ShopifyPlatformAdapter, handler)
    creds = adapter.build_credentials("test.myshopify.com", {"access_token": "shpat_x"})
    orders = await adapter.fetch_orders_since(creds, SINCE)

    assert [o["id"] for o in orders] == [1, 2, 3]
    first = seen[0]
    assert first.headers["X-Shopify-Access-Token"] == "shpat_x"
    assert first.url.params["created_at_min"] == "2024-01-14T12:00:00Z"
    assert first.url.params["status"] == "any"
    assert first.url.params["limit"] == "250"


@pytest.mark.asyncio
async def test_shopify_basic_auth_with_key_pair():
    captured = {}

    def handler(request: httpx.Request):
        captured["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"orders": []})

    adapter = _adapter(ShopifyPlatformAdapter, handler)
    creds = adapter.build_credentials("test.myshopify.com", {"api_key": "key", "api_secret": "secret"})
    await adapter.fetch_orders_since(creds, SINCE)
    assert captured["auth"] == "Basic " + base64.b64encode(b"key:secret").decode()


@pytest.mark.asyncio
async def test_pagination_stops_at_max_pages():
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        return httpx.Response(
            200,
            json={"orders": [{"id": len(calls)}]},
            headers={"Link": '<https://test.myshopify.com/next>; rel="next"'},
        )

    adapter = _adapter(ShopifyPlatformAdapter, handler)
    adapter.max_pages = 3
    creds = adapter.build_credentials("test.myshopify.com", {"access_token": "t"})
    orders = await adapter.fetch_orders_since(creds, SINCE)
    assert len(calls) == 3
    assert len(orders) == 3


@pytest.mark.asyncio
async def test_non_2xx_raises_upstream_unavailable():
    adapter = _adapter(ShopifyPlatformAdapter, lambda request: httpx.Response(503))
    creds = adapter.build_credentials("test.myshopify.com", {"access_token": "t"})
    with pytest.raises(UpstreamUnavailable) as exc:
        await adapter.fetch_orders_since(creds, SINCE)
    assert exc.value.upstream_status == 503
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_network_error_raises_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    adapter = _adapter(ShopifyPlatformAdapter, handler)
    creds = adapter.build_credentials("test.myshopify.com", {"access_token": "t"})
    with pytest.raises(UpstreamUnavailable):
        await adapter.fetch_orders_since(creds, SINCE)


@pytest.mark.asyncio
async def test_rate_limit_is_retried_then_succeeds():
    responses = [httpx.Response(429), httpx.Response(200, json={"orders": [{"id": 1}]})]
    calls = []

    def handler(request):
        calls.append(request)
        return responses.pop(0)

    adapter = _adapter(ShopifyPlatformAdapter, handler)
    creds = adapter.build_credentials("test.myshopify.com", {"access_token": "t"})
    orders = await adapter.fetch_orders_since(creds, SINCE)
    assert len(calls) == 2
    assert orders == [{"id": 1}]


@pytest.mark.asyncio
async def test_rate_limit_gives_up_after_three_attempts():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429)

    adapter = _adapter(ShopifyPlatformAdapter, handler)
    creds = adapter.build_credentials("test.myshopify.com", {"access_token": "t"})
    with pytest.raises(UpstreamUnavailable) as exc:
        await adapter.fetch_orders_since(creds, SINCE)
    assert len(calls) == 3
    assert exc.value.upstream_status == 429


@pytest.mark.asyncio
async def test_server_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    adapter = _adapter(ShopifyPlatformAdapter, handler)
    creds = adapter.build_credentials("test.myshopify.com", {"access_token": "t"})
    with pytest.raises(UpstreamUnavailable):
        await adapter.fetch_orders_since(creds, SINCE)
    assert len(calls) == 1


# --- WooCommerce ---

@pytest.mark.asyncio
async def test_woocommerce_pages_until_total_pages():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        page = int(request.url.params["page"])
        return httpx.Response(200, json=[{"id": page * 10}], headers={"X-WP-TotalPages": "2"})

    adapter = _adapter(WooCommercePlatformAdapter, handler)
    creds = adapter.build_credentials("https://shop.example.com", {"consumer_key": "ck", "consumer_secret": "cs"})
    orders = await adapter.fetch_orders_since(creds, SINCE)

    assert [o["id"] for o in orders] == [10, 20]
    assert seen[0].url.path == "/wp-json/wc/v3/orders"
    assert seen[0].url.params["after"] == "2024-01-14T12:00:00Z"
    assert seen[0].url.params["per_page"] == "100"


# --- Custom ---

@pytest.mark.asyncio
@pytest.mark.parametrize("auth_type, check", [
    ("bearer", lambda r: r.headers["Authorization"] == "Bearer key-1"),
    ("api_key_header", lambda r: r.headers["X-Api-Key"] == "key-1"),
    ("api_key_query", lambda r: r.url.params["token"] == "key-1"),
])
async def test_custom_auth_styles(auth_type, check):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"data": {"orders": [{"id": "A"}]}})

    adapter = _adapter(CustomPlatformAdapter, handler)
    creds = adapter.build_credentials("", {
        "api_url": "https://api.example.com",
        "api_key": "key-1",
        "auth_type": auth_type,
        "auth_header_name": "X-Api-Key" if auth_type == "api_key_header" else "Authorization",
        "api_key_param_name": "token",
        "response_path": "data.orders",
    })
    orders = await adapter.fetch_orders_since(creds, SINCE)
    assert orders == [{"id": "A"}]
    assert check(seen[0])


@pytest.mark.asyncio
@pytest.mark.parametrize("date_format, expected", [
    ("iso", "2024-01-14T12:00:00Z"),
    ("unix", "1705233600"),
    ("timestamp", "1705233600000"),
])
async def test_custom_date_formats(date_format, expected):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"orders": []})

    adapter = _adapter(CustomPlatformAdapter, handler)
    creds = adapter.build_credentials("https://api.example.com", {
        "auth_type": "none",
        "date_param_name": "created_after",
        "date_format": date_format,
    })
    await adapter.fetch_orders_since(creds, SINCE)
    assert seen[0].url.params["created_after"] == expected


@pytest.mark.asyncio
async def test_custom_single_object_response_is_wrapped():
    adapter = _adapter(CustomPlatformAdapter, lambda r: httpx.Response(200, json={"orders": {"id": "only"}}))
    creds = adapter.build_credentials("https://api.example.com", {"auth_type": "none"})
    assert await adapter.fetch_orders_since(creds, SINCE) == [{"id": "only"}]
