"""
CustomPlatformAdapter - generic REST shops (self-hosted websites).

Everything about the remote API is configured per channel and stored in the
credential blob: endpoint, auth style, date parameter format, where the order
list lives in the response, and a dotted-path field mapping for order and
item fields.
"""

from datetime import datetime, timezone
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

AUTH_TYPES = ("bearer", "api_key_header", "api_key_query", "basic", "none")
DATE_FORMATS = ("iso", "timestamp", "unix")

DEFAULT_FIELD_MAPPING: Dict[str, str] = {
    "id": "id",
    "order_number": "order_number",
    "email": "email",
    "customer_name": "customer_name",
    "phone": "phone",
    "total": "total",
    "subtotal": "subtotal",
    "tax": "tax",
    "shipping": "shipping",
    "currency": "currency",
    "items": "items",
    "status": "status",
    "created_at": "created_at",
    # Item fields, resolved relative to each item
    "item_name": "name",
    "item_sku": "sku",
    "item_quantity": "quantity",
    "item_price": "price",
}


class CustomPlatformAdapter(BasePlatformAdapter):

    @property
    def platform_name(self) -> str:
        return "custom"

    def build_credentials(self, base_url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        api_url = clean_str(payload.get("api_url")) or clean_str(base_url)
        if not api_url:
            raise InvalidCredentials("Custom API requires api_url")

        auth_type = (clean_str(payload.get("auth_type")) or "bearer").lower()
        if auth_type not in AUTH_TYPES:
            raise InvalidCredentials(f"auth_type must be one of: {', '.join(AUTH_TYPES)}")
        api_key = clean_str(payload.get("api_key"))
        if auth_type != "none" and not api_key:
            raise InvalidCredentials(f"Custom API auth_type '{auth_type}' requires api_key")

        date_format = (clean_str(payload.get("date_format")) or "iso").lower()
        if date_format not in DATE_FORMATS:
            raise InvalidCredentials(f"date_format must be one of: {', '.join(DATE_FORMATS)}")

        field_mapping = payload.get("field_mapping") or {}
        if not isinstance(field_mapping, dict):
            raise InvalidCredentials("field_mapping must be an object")

        endpoint = clean_str(payload.get("orders_endpoint")) or "/orders"
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"

        return {
            "api_url": normalize_base_url(api_url),
            "api_key": api_key,
            "auth_type": auth_type,
            "auth_header_name": clean_str(payload.get("auth_header_name")) or "Authorization",
            "api_key_param_name": clean_str(payload.get("api_key_param_name")) or "api_key",
            "orders_endpoint": endpoint,
            "date_param_name": clean_str(payload.get("date_param_name")) or "since",
            "date_format": date_format,
            "response_path": payload.get("response_path", "orders"),
            "extra_headers": dict(payload.get("extra_headers") or {}),
            "extra_params": dict(payload.get("extra_params") or {}),
            "field_mapping": {str(k): str(v) for k, v in field_mapping.items()},
        }

    @staticmethod
    def _since_param(since: datetime, date_format: str) -> Any:
        aware = since if since.tzinfo else since.replace(tzinfo=timezone.utc)
        if date_format == "timestamp":
            return int(aware.timestamp() * 1000)
        if date_format == "unix":
            return int(aware.timestamp())
        return format_since(since)

    async def fetch_orders_since(self, credentials: Dict[str, Any], since: datetime) -> List[Dict[str, Any]]:
        url = f"{normalize_base_url(credentials['api_url'])}{credentials.get('orders_endpoint') or '/orders'}"
        auth_type = credentials.get("auth_type") or "bearer"
        api_key = credentials.get("api_key")
        header_name = credentials.get("auth_header_name") or "Authorization"

        headers = dict(credentials.get("extra_headers") or {})
        params = dict(credentials.get("extra_params") or {})
        auth = None

        if auth_type == "bearer" and api_key:
            headers[header_name] = f"Bearer {api_key}"
        elif auth_type == "api_key_header" and api_key:
            headers[header_name] = api_key
        elif auth_type == "api_key_query" and api_key:
            params[credentials.get("api_key_param_name") or "api_key"] = api_key
        elif auth_type == "basic" and api_key:
            username, _, password = api_key.partition(":")
            auth = httpx.BasicAuth(username, password)

        params[credentials.get("date_param_name") or "since"] = self._since_param(
            since, credentials.get("date_format") or "iso"
        )

        async with self._client(auth=auth) as client:
            response = await self._get(client, url, headers=headers, params=params)
            data = self._json(response, self.platform_name)

        response_path = credentials.get("response_path")
        orders = get_path(data, response_path) if response_path else data
        if orders is None:
            return []
        if not isinstance(orders, list):
            # single order object
            return [orders]
        return orders

    def normalize(self, raw: Dict[str, Any], credentials: Optional[Dict[str, Any]] = None) -> CanonicalOrder:
        if not isinstance(raw, dict):
            raise MalformedPayload("Order payload must be a JSON object")

        mapping = dict(DEFAULT_FIELD_MAPPING)
        mapping.update((credentials or {}).get("field_mapping") or {})

        order_id = clean_str(get_path(raw, mapping["id"]))
        if not order_id:
            raise MalformedPayload("Custom order is missing id")

        raw_items = get_path(raw, mapping["items"])
        items = [
            OrderLineItem(
                name=clean_str(get_path(item, mapping["item_name"])),
                sku=clean_str(get_path(item, mapping["item_sku"])),
                quantity=parse_quantity(get_path(item, mapping["item_quantity"])),
                price=parse_amount(get_path(item, mapping["item_price"])),
            )
            for item in (raw_items if isinstance(raw_items, list) else [])
            if isinstance(item, dict)
        ]

        return CanonicalOrder(
            external_order_id=order_id,
            order_number=clean_str(get_path(raw, mapping["order_number"])) or order_id,
            customer_email=clean_str(get_path(raw, mapping["email"])),
            customer_name=clean_str(get_path(raw, mapping["customer_name"])),
            customer_phone=clean_str(get_path(raw, mapping["phone"])),
            items=items,
            subtotal=parse_amount(get_path(raw, mapping["subtotal"])),
            tax_total=parse_amount(get_path(raw, mapping["tax"])),
            shipping_total=parse_amount(get_path(raw, mapping["shipping"])),
            total=parse_amount(get_path(raw, mapping["total"])),
            currency=clean_str(get_path(raw, mapping["currency"])),
            status=clean_str(get_path(raw, mapping["status"])) or "pending",
            created_at=parse_timestamp(get_path(raw, mapping["created_at"])),
            raw=raw,
        )

    def webhook_instructions(self) -> str:
        return (
            "Configure your website to POST order JSON to the orders URL when orders are created, "
            "signing the raw body with HMAC-SHA256 (hex) in an X-Webhook-Signature header."
        )
