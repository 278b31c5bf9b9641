"""
Shared fixtures: in-memory SQLite, services wired to it, and an HTTP client
for the FastAPI app.

Environment is set before anything from ordersync is imported, because
settings and the module-level engine are built at import time.
"""

import asyncio
import os

from cryptography.fernet import Fernet

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["DEBUG"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SYNC_LOCK_BACKEND"] = "local"
os.environ.setdefault("CREDENTIALS_ENCRYPTION_KEY", Fernet.generate_key().decode())

from datetime import datetime, timedelta  # noqa: E402
from typing import Dict, List  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from tenacity import wait_none  # noqa: E402

from ordersync.adapters.registry import AdapterRegistry  # noqa: E402
from ordersync.models import Base  # noqa: E402
from ordersync.services.channel_registry import ChannelRegistry  # noqa: E402
from ordersync.services.credential_vault import CredentialVault  # noqa: E402
from ordersync.services.order_store import OrderStore  # noqa: E402
from ordersync.services.run_guard import LocalRunGuard  # noqa: E402
from ordersync.services.stats import StatsAggregator  # noqa: E402
from ordersync.services.sync_coordinator import SyncCoordinator  # noqa: E402

TENANT = "11111111-1111-1111-1111-111111111111"
SHOP_URL = "https://test-store.myshopify.com"


def shopify_order(order_id, total="10.00", **extra) -> Dict:
    """Minimal Shopify order JSON."""
    order = {
        "id": order_id,
        "order_number": 1000 + int(order_id) if str(order_id).isdigit() else None,
        "email": f"buyer{order_id}@example.com",
        "customer": {"first_name": "Test", "last_name": f"Buyer{order_id}"},
        "line_items": [{"name": "Widget", "sku": "W-1", "quantity": 2, "price": "5.00"}],
        "total_price": total,
        "currency": "USD",
        "financial_status": "paid",
        "created_at": "2024-01-15T10:00:00Z",
    }
    order.update(extra)
    return order


class FakeClock:
    """Deterministic clock: each call advances by `step`."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 12, 0, 0), step: timedelta = timedelta(minutes=5)):
        self.now = start
        self.step = step
        self.calls: List[datetime] = []

    def __call__(self) -> datetime:
        value = self.now
        self.calls.append(value)
        self.now = self.now + self.step
        return value


class PlatformStub:
    """
    httpx.MockTransport handler standing in for a platform API.
    `orders` is served from any *orders* path; `error` forces a status code.
    """

    def __init__(self, orders=None):
        self.orders: List[Dict] = list(orders or [])
        self.error_status = None
        self.raise_error = None
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        if self.error_status is not None:
            return httpx.Response(self.error_status, json={"errors": "unavailable"})
        return httpx.Response(200, json={"orders": self.orders})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _fk_on(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def vault():
    return CredentialVault(Fernet.generate_key().decode())


@pytest.fixture
def registry(session_maker, vault):
    return ChannelRegistry(session_maker, vault=vault)


@pytest.fixture
def order_store(session_maker):
    return OrderStore(session_maker)


@pytest.fixture
def stats(session_maker):
    return StatsAggregator(session_maker)


@pytest.fixture
def platform():
    return PlatformStub()


def stub_resolver(stub: PlatformStub):
    """Adapter resolver whose adapters talk to `stub` and never sleep on 429."""
    def resolve(platform_name):
        adapter = AdapterRegistry.get_adapter(platform_name, transport=stub.transport)
        adapter.rate_limit_wait = wait_none()
        return adapter
    return resolve


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def coordinator(session_maker, registry, order_store, stats, platform, clock):
    coordinator = SyncCoordinator(
        session_maker,
        guard=LocalRunGuard(),
        registry=registry,
        order_store=order_store,
        stats=stats,
        adapter_resolver=stub_resolver(platform),
        clock=clock,
    )
    yield coordinator
    await coordinator.shutdown(timeout=1.0)


@pytest.fixture
async def shopify_channel(registry):
    channel, secret = await registry.connect(
        TENANT,
        "shopify-main",
        "shopify",
        SHOP_URL,
        {"access_token": "shpat_test"},
        display_name="Main Store",
        webhook_secret="s3cret",
    )
    return channel


@pytest.fixture
async def client(session_maker, coordinator):
    from ordersync.main import app
    from ordersync.routers.dependencies import get_session_maker

    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.state.coordinator = coordinator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers={"X-Tenant-ID": TENANT}) as ac:
        yield ac
    app.dependency_overrides.clear()


async def wait_until(predicate, timeout=2.0):
    """Poll an in-memory condition while background tasks make progress."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
