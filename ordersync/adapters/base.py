"""
BasePlatformAdapter - The universal interface for all order channels.

Every supported platform implements this class. The sync coordinator, the
webhook receiver and the channel registry never import a platform-specific
module. They resolve the adapter for a channel's platform kind through the
AdapterRegistry and call methods on it.

Adapters are stateless: credentials are passed into every call, so one
instance can serve any number of channels.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ordersync.config import get_settings
from ordersync.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical data models - platform neutral.
# Every adapter's normalize() returns these. No Shopify line_items, no
# WooCommerce billing blocks, just one shape the order store understands.
# ---------------------------------------------------------------------------

@dataclass
class OrderLineItem:
    name: Optional[str]
    sku: Optional[str]
    quantity: int
    price: float

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "sku": self.sku, "quantity": self.quantity, "price": self.price}


@dataclass
class CanonicalOrder:
    """An order as the order store sees it. Every adapter normalizes to this."""
    external_order_id: str              # platform-native id, no prefix
    order_number: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[OrderLineItem] = field(default_factory=list)
    subtotal: float = 0.0
    tax_total: float = 0.0
    shipping_total: float = 0.0
    total: float = 0.0
    currency: Optional[str] = None
    status: str = "pending"
    created_at: Optional[datetime] = None   # naive UTC
    raw: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Parsing helpers shared by all adapters
# ---------------------------------------------------------------------------

def parse_amount(value: Any) -> float:
    """Parse a money amount from a string or number. Garbage, NaN and inf become 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(amount) or math.isinf(amount):
        return 0.0
    return amount


def parse_quantity(value: Any) -> int:
    """Item quantity, defaulting to 1 when absent or unparsable."""
    if value is None or isinstance(value, bool):
        return 1
    try:
        quantity = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 1
    return quantity if quantity > 0 else 1


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse ISO-8601 (including a trailing 'Z') or epoch seconds/milliseconds.
    Returns naive UTC, or None for anything unparsable.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        seconds = value / 1000.0 if value > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    return None


def get_path(obj: Any, path: Optional[str]) -> Any:
    """Resolve a dotted path ('billing.email') inside nested dicts. Missing keys give None."""
    if not path:
        return None
    value = obj
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        else:
            return None
    return value


def clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_base_url(url: str) -> str:
    """Ensure a scheme and strip the trailing slash."""
    url = (url or "").strip()
    if url and not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url.rstrip("/")


def format_since(since: datetime) -> str:
    """ISO-8601 UTC with a 'Z' suffix, the format both hosted platforms accept."""
    if since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    return since.replace(microsecond=0).isoformat() + "Z"


class RateLimited(Exception):
    """Internal marker for HTTP 429, consumed by the retry loop."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"Rate limited ({response.status_code})")
        self.response = response


class BasePlatformAdapter(ABC):
    """
    Abstract base class for all order channel adapters.

    Each method is one capability the core system needs from a platform.
    The HTTP transport is injectable so tests can answer platform calls
    with httpx.MockTransport.
    """

    # 429 handling: exponential backoff, 3 attempts, then UpstreamUnavailable
    rate_limit_attempts: int = 3

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        settings = get_settings()
        self._transport = transport
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self.max_pages = settings.SYNC_MAX_PAGES
        self.rate_limit_wait = wait_exponential(multiplier=1, min=1, max=30)

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Unique identifier: 'shopify', 'woocommerce', 'custom'."""
        pass

    # --- Credentials ---

    @abstractmethod
    def build_credentials(self, base_url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate connect-time input and return the credential blob to store.

        Raises InvalidCredentials when a platform-specific secret is missing.
        The returned dict is what every later call receives as `credentials`.
        """
        pass

    # --- Pull ---

    @abstractmethod
    async def fetch_orders_since(self, credentials: Dict[str, Any], since: datetime) -> List[Dict[str, Any]]:
        """
        Fetch raw orders created at or after `since`, in platform order.

        Pagination is the adapter's job and stops after max_pages pages.
        Network errors and non-2xx answers raise UpstreamUnavailable.
        """
        pass

    # --- Normalization ---

    @abstractmethod
    def normalize(self, raw: Dict[str, Any], credentials: Optional[Dict[str, Any]] = None) -> CanonicalOrder:
        """
        Translate one raw platform order into a CanonicalOrder.

        Pure: no I/O. Raises MalformedPayload when the order id is missing.
        `credentials` carries per-channel options (custom field mappings).
        """
        pass

    # --- Webhooks ---

    def webhook_instructions(self) -> str:
        """Where the merchant configures webhook delivery for this platform."""
        return "Configure your store to POST order data to the webhook URL when orders are created."

    # --- HTTP plumbing ---

    def _client(self, **kwargs) -> httpx.AsyncClient:
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(timeout=self.timeout, **kwargs)

    async def _send(self, client: httpx.AsyncClient, url: str, **kwargs) -> httpx.Response:
        try:
            response = await client.get(url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{self.platform_name} request failed: {type(e).__name__}")
            raise UpstreamUnavailable(f"{self.platform_name} API unreachable") from e

        if response.status_code == 429:
            raise RateLimited(response)
        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(f"{self.platform_name} API returned {response.status_code}")
            raise UpstreamUnavailable(
                f"{self.platform_name} API returned HTTP {response.status_code}",
                upstream_status=response.status_code,
            )
        return response

    async def _get(self, client: httpx.AsyncClient, url: str, **kwargs) -> httpx.Response:
        """GET with 429 backoff. Other failures are not retried here."""
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(RateLimited),
                wait=self.rate_limit_wait,
                stop=stop_after_attempt(self.rate_limit_attempts),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    response = await self._send(client, url, **kwargs)
        except RateLimited as e:
            raise UpstreamUnavailable(
                f"{self.platform_name} API rate limit exceeded",
                upstream_status=e.response.status_code,
            ) from e
        return response

    @staticmethod
    def _json(response: httpx.Response, platform: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"{platform} API returned invalid JSON") from e
