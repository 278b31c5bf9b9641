"""
Channel Registry - connected stores per tenant.

Owns the Channel and SyncConfig rows: connect / reconnect, lookup,
disconnect, status bookkeeping and sync policy upserts. Credential blobs and
webhook secrets go through the CredentialVault on the way in and out.
"""

import logging
import secrets
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update

from ordersync.adapters.registry import AdapterRegistry
from ordersync.exceptions import NotFound
from ordersync.models import Channel, ChannelStatus, DeliveryMode, SyncConfig, utcnow
from ordersync.services.credential_vault import CredentialVault, get_credential_vault

logger = logging.getLogger(__name__)


def generate_webhook_secret() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(32)


class ChannelRegistry:

    def __init__(
        self,
        session_maker,
        vault: Optional[CredentialVault] = None,
        adapter_resolver: Optional[Callable] = None,
    ):
        self.session_maker = session_maker
        self.vault = vault or get_credential_vault()
        self.adapter_resolver = adapter_resolver or AdapterRegistry.get_adapter

    # --- Lookup ---

    @staticmethod
    async def _load(session, channel_db_id: str) -> Optional[Channel]:
        result = await session.execute(
            select(Channel)
            .where(Channel.id == channel_db_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, tenant_id: str, channel_id: str) -> Channel:
        """Channel by tenant and identifier. Raises NotFound."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(Channel).where(Channel.tenant_id == tenant_id, Channel.channel_id == channel_id)
            )
            channel = result.scalar_one_or_none()
        if channel is None:
            raise NotFound(f"Channel '{channel_id}' not found")
        return channel

    async def get_by_id(self, channel_db_id: str) -> Optional[Channel]:
        async with self.session_maker() as session:
            return await self._load(session, channel_db_id)

    async def list_channels(self, tenant_id: str) -> List[Channel]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Channel).where(Channel.tenant_id == tenant_id).order_by(Channel.created_at)
            )
            return list(result.scalars().all())

    async def find_for_webhook(self, channel_id: str, tenant_id: Optional[str] = None) -> Channel:
        """
        Resolve an inbound webhook's channel. The identifier is only unique per
        tenant, so without a tenant hint an identifier shared by several
        tenants is treated as unknown.
        """
        query = select(Channel).where(Channel.channel_id == channel_id)
        if tenant_id:
            query = query.where(Channel.tenant_id == tenant_id)
        async with self.session_maker() as session:
            matches = list((await session.execute(query.limit(2))).scalars().all())
        if len(matches) != 1:
            if len(matches) > 1:
                logger.warning(f"Webhook for channel '{channel_id}' is ambiguous across tenants")
            raise NotFound("Channel not found")
        return matches[0]

    # --- Secrets ---

    def credentials(self, channel: Channel) -> Dict[str, Any]:
        return self.vault.decrypt_credentials(channel.credentials_encrypted)

    def webhook_secret(self, channel: Channel) -> Optional[str]:
        return self.vault.decrypt_secret(channel.webhook_secret_encrypted)

    # --- Connect / disconnect ---

    async def connect(
        self,
        tenant_id: str,
        channel_id: str,
        platform: str,
        shop_url: str,
        credentials: Dict[str, Any],
        display_name: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ) -> Tuple[Channel, str]:
        """
        Create the channel, or re-activate an existing (tenant, channel_id).

        Reconnecting overwrites platform, credentials and URL, resets status
        to connected and clears the last error; the cursor and stats stay.
        Returns the channel and its webhook secret (shown to the caller once).
        """
        adapter = self.adapter_resolver(platform)
        blob = adapter.build_credentials(shop_url, credentials or {})
        secret = webhook_secret or generate_webhook_secret()
        stored_url = blob.get("shop_url") or blob.get("api_url") or shop_url

        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(Channel).where(Channel.tenant_id == tenant_id, Channel.channel_id == channel_id)
                )
                channel = result.scalar_one_or_none()
                if channel is None:
                    channel = Channel(tenant_id=tenant_id, channel_id=channel_id)
                    session.add(channel)
                    logger.info(f"Connecting new {adapter.platform_name} channel '{channel_id}' for tenant {tenant_id}")
                else:
                    logger.info(f"Reconnecting channel '{channel_id}' for tenant {tenant_id}")

                channel.platform = adapter.platform_name
                channel.display_name = display_name or channel.display_name or channel_id
                channel.shop_url = stored_url
                channel.credentials_encrypted = self.vault.encrypt_credentials(blob)
                channel.webhook_secret_encrypted = self.vault.encrypt_secret(secret)
                channel.status = ChannelStatus.CONNECTED.value
                channel.sync_error = None
                await session.flush()
                channel = await self._load(session, channel.id)

        return channel, secret

    async def disconnect(self, tenant_id: str, channel_id: str, coordinator=None) -> None:
        """Cancel the channel's timer, then delete it. Orders are kept."""
        channel = await self.get(tenant_id, channel_id)
        if coordinator is not None:
            coordinator.cancel(channel.id)

        async with self.session_maker() as session:
            async with session.begin():
                row = await session.get(Channel, channel.id)
                if row is not None:
                    await session.delete(row)
        logger.info(f"Channel '{channel_id}' disconnected for tenant {tenant_id}")

    # --- Status bookkeeping ---

    async def mark_status(self, channel_db_id: str, status: ChannelStatus, error: Optional[str] = None) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(
                    update(Channel)
                    .where(Channel.id == channel_db_id)
                    .values(status=status.value, sync_error=error, updated_at=utcnow())
                )

    async def advance_cursor(self, channel_db_id: str, cursor: datetime) -> None:
        """Record a successful sync: cursor forward, status connected, error cleared."""
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(
                    update(Channel)
                    .where(Channel.id == channel_db_id)
                    .values(
                        last_sync_at=cursor,
                        status=ChannelStatus.CONNECTED.value,
                        sync_error=None,
                        updated_at=utcnow(),
                    )
                )

    # --- Sync policy ---

    async def upsert_sync_config(
        self,
        tenant_id: str,
        channel_id: str,
        auto_sync_orders: bool,
        auto_sync_inventory: bool = False,
        auto_sync_products: bool = False,
        sync_interval_minutes: int = 5,
        use_webhooks: bool = True,
    ) -> SyncConfig:
        """
        Create or replace the channel's SyncConfig. Polling is selected when
        webhooks are off and order auto-sync is on.
        """
        if sync_interval_minutes < 1:
            raise ValueError("sync_interval_minutes must be at least 1")
        channel = await self.get(tenant_id, channel_id)
        mode = DeliveryMode.POLLING if (not use_webhooks and auto_sync_orders) else DeliveryMode.WEBHOOK

        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(select(SyncConfig).where(SyncConfig.channel_id == channel.id))
                config = result.scalar_one_or_none()
                if config is None:
                    config = SyncConfig(channel_id=channel.id)
                    session.add(config)
                config.auto_sync_orders = auto_sync_orders
                config.auto_sync_inventory = auto_sync_inventory
                config.auto_sync_products = auto_sync_products
                config.sync_interval_minutes = sync_interval_minutes
                config.delivery_mode = mode.value
                config.is_active = True
        return config

    async def deactivate_sync(self, tenant_id: str, channel_id: str) -> Optional[SyncConfig]:
        channel = await self.get(tenant_id, channel_id)
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(select(SyncConfig).where(SyncConfig.channel_id == channel.id))
                config = result.scalar_one_or_none()
                if config is not None:
                    config.is_active = False
        return config

    async def active_polling_configs(self) -> List[SyncConfig]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(SyncConfig).where(
                    SyncConfig.is_active.is_(True),
                    SyncConfig.auto_sync_orders.is_(True),
                    SyncConfig.delivery_mode == DeliveryMode.POLLING.value,
                )
            )
            return list(result.scalars().all())
