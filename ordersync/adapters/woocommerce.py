"""
WooCommercePlatformAdapter - WooCommerce REST API v3 orders.
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
from ordersync.exceptions import InvalidCredentials, MalformedPayload


class WooCommercePlatformAdapter(BasePlatformAdapter):

    PER_PAGE = 100

    @property
    def platform_name(self) -> str:
        return "woocommerce"

    def build_credentials(self, base_url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        # api_key/api_secret are accepted as aliases for the consumer pair
        consumer_key = clean_str(payload.get("consumer_key") or payload.get("api_key"))
        consumer_secret = clean_str(payload.get("consumer_secret") or payload.get("api_secret"))

        if not base_url:
            raise InvalidCredentials("WooCommerce requires shop_url")
        if not consumer_key or not consumer_secret:
            raise InvalidCredentials("WooCommerce requires consumer_key and consumer_secret")

        return {
            "shop_url": normalize_base_url(base_url),
            "consumer_key": consumer_key,
            "consumer_secret": consumer_secret,
        }

    def _auth(self, credentials: Dict[str, Any]) -> httpx.BasicAuth:
        return httpx.BasicAuth(credentials["consumer_key"], credentials["consumer_secret"])

    async def fetch_orders_since(self, credentials: Dict[str, Any], since: datetime) -> List[Dict[str, Any]]:
        """Page through /wp-json/wc/v3/orders until X-WP-TotalPages or max_pages."""
        url = f"{normalize_base_url(credentials['shop_url'])}/wp-json/wc/v3/orders"
        orders: List[Dict[str, Any]] = []
        page = 1

        async with self._client(auth=self._auth(credentials)) as client:
            while page <= self.max_pages:
                response = await self._get(client, url, params={
                    "after": format_since(since),
                    "per_page": self.PER_PAGE,
                    "page": page,
                    "orderby": "date",
                    "order": "asc",
                })
                batch = self._json(response, self.platform_name)
                if not isinstance(batch, list) or not batch:
                    break
                orders.extend(batch)

                try:
                    total_pages = int(response.headers.get("X-WP-TotalPages", "1"))
                except ValueError:
                    total_pages = 1
                if page >= total_pages:
                    break
                page += 1

        return orders

    def normalize(self, raw: Dict[str, Any], credentials: Optional[Dict[str, Any]] = None) -> CanonicalOrder:
        if not isinstance(raw, dict):
            raise MalformedPayload("Order payload must be a JSON object")
        order_id = clean_str(raw.get("id"))
        if not order_id:
            raise MalformedPayload("WooCommerce order is missing id")

        billing = raw.get("billing") or {}
        name = " ".join(
            part for part in (clean_str(billing.get("first_name")), clean_str(billing.get("last_name"))) if part
        )

        items = [
            OrderLineItem(
                name=clean_str(item.get("name")),
                sku=clean_str(item.get("sku")),
                quantity=parse_quantity(item.get("quantity")),
                price=parse_amount(item.get("price")),
            )
            for item in (raw.get("line_items") or [])
            if isinstance(item, dict)
        ]

        # date_created_gmt is UTC without an offset; date_created is shop-local
        created_at = parse_timestamp(raw.get("date_created_gmt")) or parse_timestamp(raw.get("date_created"))

        return CanonicalOrder(
            external_order_id=order_id,
            order_number=clean_str(raw.get("number")),
            customer_email=clean_str(billing.get("email")),
            customer_name=name or None,
            customer_phone=clean_str(billing.get("phone")),
            items=items,
            subtotal=parse_amount(raw.get("subtotal") or get_path(raw, "totals.subtotal")),
            tax_total=parse_amount(raw.get("total_tax")),
            shipping_total=parse_amount(raw.get("shipping_total")),
            total=parse_amount(raw.get("total")),
            currency=clean_str(raw.get("currency")),
            status=clean_str(raw.get("status")) or "pending",
            created_at=created_at,
            raw=raw,
        )

    def webhook_instructions(self) -> str:
        return (
            "WooCommerce > Settings > Advanced > Webhooks: add an 'Order created' webhook "
            "with the orders URL as delivery URL and the channel's webhook secret as secret."
        )
