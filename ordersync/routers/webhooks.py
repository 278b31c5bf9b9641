"""
Webhook Router - inbound platform events.

Signatures are verified over the exact raw body before anything is parsed.
Every attempt is written to the receipt log first and closed as processed or
failed. Error messages are fixed strings; details only go to the receipt.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from ordersync.adapters.registry import AdapterRegistry
from ordersync.exceptions import (
    MalformedPayload,
    NotFound,
    OrderSyncError,
    SignatureInvalid,
    SignatureMissing,
)
from ordersync.models import Channel, OrderOrigin
from ordersync.routers.channels import webhook_url
from ordersync.routers.dependencies import get_coordinator, get_current_tenant, get_webhook_log
from ordersync.services import webhook_verifier
from ordersync.services.sync_coordinator import SyncCoordinator
from ordersync.services.webhook_log import WebhookReceiptLog

logger = logging.getLogger(__name__)

router = APIRouter()


class RegisterWebhooksRequest(BaseModel):
    platform: str
    channel_id: str
    webhook_types: List[str] = Field(default_factory=lambda: ["orders/create"])


# Raised after their receipt was already closed with a specific reason.
_CLOSED_REJECTIONS = (SignatureMissing, SignatureInvalid, MalformedPayload)


@asynccontextmanager
async def _closes_on_error(receipts: WebhookReceiptLog, receipt_id: str, channel_id: str):
    """Any other failure still leaves the receipt closed as failed."""
    try:
        yield
    except _CLOSED_REJECTIONS:
        raise
    except Exception as e:
        await receipts.mark_failed(receipt_id, "Processing error")
        if isinstance(e, OrderSyncError):
            logger.warning(f"Webhook for '{channel_id}' failed: {e.code} {e.message}")
        else:
            logger.exception(f"Webhook for '{channel_id}' failed while processing")
        raise


async def _receive(
    request: Request,
    channel_id: str,
    event_type: str,
    tenant_id: Optional[str],
    coordinator: SyncCoordinator,
    receipts: WebhookReceiptLog,
):
    """
    Shared intake: log the receipt, resolve the channel, verify the signature.
    Returns (channel, raw_body, receipt_id) for a verified delivery.
    """
    raw_body = await request.body()
    payload_text = raw_body.decode("utf-8", errors="replace")
    registry = coordinator.registry

    try:
        channel = await registry.find_for_webhook(channel_id, tenant_id)
    except NotFound:
        receipt_id = await receipts.record_received(channel_id, event_type, payload_text)
        await receipts.mark_failed(receipt_id, "Unknown channel")
        logger.warning(f"Webhook for unknown channel '{channel_id}'")
        raise

    receipt_id = await receipts.record_received(channel_id, event_type, payload_text, channel.id)

    async with _closes_on_error(receipts, receipt_id, channel_id):
        signature = webhook_verifier.extract_signature(request.headers)
        if not signature:
            await receipts.mark_failed(receipt_id, "Missing signature", signature_valid=False)
            logger.warning(f"Webhook for '{channel_id}' rejected: missing signature")
            raise SignatureMissing()

        secret = registry.webhook_secret(channel)
        if not webhook_verifier.verify(raw_body, signature, secret, channel.platform):
            await receipts.mark_failed(receipt_id, "Invalid signature", signature_valid=False)
            logger.warning(f"Webhook for '{channel_id}' rejected: invalid signature")
            raise SignatureInvalid()

    return channel, raw_body, receipt_id


@router.post("/register")
async def register_webhooks(
    body: RegisterWebhooksRequest,
    tenant_id: str = Depends(get_current_tenant),
):
    """
    Canonical webhook URLs for a channel plus where to paste them.
    Nothing is registered with the platform from here.
    """
    adapter = AdapterRegistry.get_adapter(body.platform)
    webhooks = [
        {
            "type": webhook_type,
            "url": webhook_url(body.channel_id, tenant_id, "inventory" if "inventory" in webhook_type else "orders"),
            "status": "pending_registration",
        }
        for webhook_type in body.webhook_types
    ]
    return {
        "message": f"Webhook URLs generated for {adapter.platform_name}",
        "channel_id": body.channel_id,
        "webhooks": webhooks,
        "instructions": adapter.webhook_instructions(),
    }


@router.post("/{channel_id}/orders")
async def order_webhook(
    channel_id: str,
    request: Request,
    tenant_id: Optional[str] = None,
    coordinator: SyncCoordinator = Depends(get_coordinator),
    receipts: WebhookReceiptLog = Depends(get_webhook_log),
):
    """
    Order created/updated event. A redelivered order answers 200 as well;
    the store ignores it.
    """
    channel, raw_body, receipt_id = await _receive(
        request, channel_id, "orders/create", tenant_id, coordinator, receipts
    )
    async with _closes_on_error(receipts, receipt_id, channel_id):
        await _count_webhook(coordinator, channel)

        try:
            payload = json.loads(raw_body)
            order = coordinator.adapter_resolver(channel.platform).normalize(
                payload, coordinator.registry.credentials(channel)
            )
        except ValueError:
            await receipts.mark_failed(receipt_id, "Body is not valid JSON", signature_valid=True)
            raise MalformedPayload("Malformed order payload")
        except MalformedPayload as e:
            await receipts.mark_failed(receipt_id, e.message, signature_valid=True)
            raise MalformedPayload("Malformed order payload")

        result = await coordinator.order_store.ingest(channel, order, OrderOrigin.WEBHOOK)
        await receipts.mark_processed(receipt_id)

    return {
        "status": "processed" if result.inserted else "duplicate",
        "order_id": order.external_order_id,
        "platform": channel.platform,
    }


@router.post("/{channel_id}/inventory")
async def inventory_webhook(
    channel_id: str,
    request: Request,
    tenant_id: Optional[str] = None,
    coordinator: SyncCoordinator = Depends(get_coordinator),
    receipts: WebhookReceiptLog = Depends(get_webhook_log),
):
    channel, raw_body, receipt_id = await _receive(
        request, channel_id, "inventory/update", tenant_id, coordinator, receipts
    )

    async with _closes_on_error(receipts, receipt_id, channel_id):
        try:
            payload = json.loads(raw_body) if raw_body else {}
        except ValueError:
            await receipts.mark_failed(receipt_id, "Body is not valid JSON", signature_valid=True)
            raise MalformedPayload("Malformed inventory payload")

        items = payload.get("items") if isinstance(payload, dict) else None
        await coordinator.stats.record(
            channel.tenant_id, channel.channel_id, inventory_syncs=1, webhooks_received=1
        )
        await receipts.mark_processed(receipt_id)

    return {
        "status": "processed",
        "items_updated": len(items) if isinstance(items, list) else 0,
        "platform": channel.platform,
    }


async def _count_webhook(coordinator: SyncCoordinator, channel: Channel) -> None:
    await coordinator.stats.record(channel.tenant_id, channel.channel_id, webhooks_received=1)
