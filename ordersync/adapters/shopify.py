"""
ShopifyPlatformAdapter - Shopify implementation of BasePlatformAdapter.

Consolidates all Shopify-specific order code:
  - credential validation (Admin API access token, or private-app key/secret)
  - order pull through the Admin REST API with Link-header pagination
  - normalization of Shopify order JSON

Webhook signatures (base64 HMAC-SHA256 in X-Shopify-Hmac-SHA256) are checked
by the WebhookVerifier before anything reaches this adapter.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from ordersync.adapters.base import (
    BasePlatformAdapter,
    CanonicalOrder,
    OrderLineItem,
    clean_str,
    format_since,
    get_path,
    normalize_base_url,
    parse_amount,
    parse_quantity,
    parse_timestamp,
)
from ordersync.config import get_settings
from ordersync.exceptions import InvalidCredentials, MalformedPayload


class ShopifyPlatformAdapter(BasePlatformAdapter):

    PAGE_LIMIT = 250

    @property
    def platform_name(self) -> str:
        return "shopify"

    # --- Credentials ---

    def build_credentials(self, base_url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        access_token = clean_str(payload.get("access_token"))
        api_key = clean_str(payload.get("api_key"))
        api_secret = clean_str(payload.get("api_secret"))

        if not base_url:
            raise InvalidCredentials("Shopify requires shop_url")
        if not access_token and not (api_key and api_secret):
            raise InvalidCredentials("Shopify requires api_key and api_secret (or an access_token)")

        return {
            "shop_url": normalize_base_url(base_url),
            "access_token": access_token,
            "api_key": api_key,
            "api_secret": api_secret,
            "api_version": clean_str(payload.get("api_version")) or get_settings().SHOPIFY_API_VERSION,
        }

    # --- Pull ---

    async def fetch_orders_since(self, credentials: Dict[str, Any], since: datetime) -> List[Dict[str, Any]]:
        """
        Pull orders created since `since`, following the Link header's
        rel="next" URL until the last page or max_pages.
        """
        shop_url = normalize_base_url(credentials["shop_url"])
        version = credentials.get("api_version") or get_settings().SHOPIFY_API_VERSION

        headers = {}
        auth = None
        if credentials.get("access_token"):
            headers["X-Shopify-Access-Token"] = credentials["access_token"]
        else:
            auth = httpx.BasicAuth(credentials.get("api_key") or "", credentials.get("api_secret") or "")

        url: Optional[str] = f"{shop_url}/admin/api/{version}/orders.json"
        params: Optional[Dict[str, Any]] = {
            "created_at_min": format_since(since),
            "status": "any",
            "limit": self.PAGE_LIMIT,
        }
        orders: List[Dict[str, Any]] = []
        pages = 0

        async with self._client(headers=headers, auth=auth) as client:
            while url and pages < self.max_pages:
                response = await self._get(client, url, params=params)
                data = self._json(response, self.platform_name)
                orders.extend((data or {}).get("orders", []) if isinstance(data, dict) else [])
                pages += 1

                # Shopify uses the Link header for pagination; the next URL carries page_info
                url = response.links.get("next", {}).get("url")
                params = None

        return orders

    # --- Normalization ---

    def normalize(self, raw: Dict[str, Any], credentials: Optional[Dict[str, Any]] = None) -> CanonicalOrder:
        if not isinstance(raw, dict):
            raise MalformedPayload("Order payload must be a JSON object")
        order_id = clean_str(raw.get("id"))
        if not order_id:
            raise MalformedPayload("Shopify order is missing id")

        customer = raw.get("customer") or {}
        name = " ".join(
            part for part in (clean_str(customer.get("first_name")), clean_str(customer.get("last_name"))) if part
        )
        if not name:
            name = clean_str(get_path(raw, "billing_address.name"))

        items = [
            OrderLineItem(
                name=clean_str(item.get("name") or item.get("title")),
                sku=clean_str(item.get("sku")),
                quantity=parse_quantity(item.get("quantity")),
                price=parse_amount(item.get("price")),
            )
            for item in (raw.get("line_items") or [])
            if isinstance(item, dict)
        ]

        return CanonicalOrder(
            external_order_id=order_id,
            order_number=clean_str(raw.get("order_number") or raw.get("name")),
            customer_email=clean_str(raw.get("email") or customer.get("email")),
            customer_name=name or None,
            customer_phone=clean_str(raw.get("phone") or get_path(raw, "billing_address.phone")),
            items=items,
            subtotal=parse_amount(raw.get("subtotal_price")),
            tax_total=parse_amount(raw.get("total_tax")),
            shipping_total=parse_amount(get_path(raw, "total_shipping_price_set.shop_money.amount")),
            total=parse_amount(raw.get("total_price")),
            currency=clean_str(raw.get("currency")),
            status=clean_str(raw.get("financial_status")) or "pending",
            created_at=parse_timestamp(raw.get("created_at")),
            raw=raw,
        )

    def webhook_instructions(self) -> str:
        return (
            "Shopify Admin > Settings > Notifications > Webhooks: create an 'Order creation' "
            "webhook (JSON) pointing at the orders URL. Shopify signs deliveries with "
            "X-Shopify-Hmac-SHA256."
        )
