"""
Idempotent Order Store.

Both delivery paths (webhook push and polling pull) end here. The unique
constraint on (channel_id, external_order_id) plus INSERT ... ON CONFLICT DO
NOTHING is what guarantees one row per external order, whichever path
arrives first and however often it is retried.
"""

import enum
import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ordersync.adapters.base import CanonicalOrder
from ordersync.database import dialect_insert
from ordersync.exceptions import NotFound
from ordersync.models import Channel, ChannelOrder, OrderOrigin
from ordersync.services.stats import StatsAggregator

logger = logging.getLogger(__name__)


class IngestOutcome(str, enum.Enum):
    INSERTED = "inserted"
    DUPLICATE_IGNORED = "duplicate_ignored"


@dataclass
class IngestResult:
    inserted: bool
    outcome: IngestOutcome
    external_order_id: str
    order_id: Optional[str] = None  # our row id when inserted


class OrderStore:

    def __init__(self, session_maker):
        self.session_maker = session_maker

    async def ingest(self, channel: Channel, order: CanonicalOrder, origin: OrderOrigin) -> IngestResult:
        """
        Record `order` for `channel` at most once.

        A conflict is a successful no-op (DUPLICATE_IGNORED). On insert,
        today's orders_received/orders_total move in the same transaction.
        Raises NotFound when the channel row was deleted underneath us.
        """
        origin_value = origin.value if isinstance(origin, OrderOrigin) else str(origin)

        try:
            return await self._insert(channel, order, origin_value)
        except IntegrityError:
            if await self._channel_exists(channel.id):
                raise
            logger.info(f"Channel {channel.channel_id} was disconnected; order {order.external_order_id} dropped")
            raise NotFound("Channel not found")

    async def _channel_exists(self, channel_db_id: str) -> bool:
        async with self.session_maker() as session:
            return await session.get(Channel, channel_db_id) is not None

    async def _insert(self, channel: Channel, order: CanonicalOrder, origin_value: str) -> IngestResult:
        async with self.session_maker() as session:
            async with session.begin():
                stmt = (
                    dialect_insert(session, ChannelOrder)
                    .values(
                        tenant_id=channel.tenant_id,
                        channel_id=channel.id,
                        channel_identifier=channel.channel_id,
                        platform=channel.platform,
                        external_order_id=order.external_order_id,
                        external_order_number=order.order_number,
                        customer_email=order.customer_email,
                        customer_name=order.customer_name,
                        customer_phone=order.customer_phone,
                        items=[item.to_dict() for item in order.items],
                        subtotal=order.subtotal,
                        tax_total=order.tax_total,
                        shipping_total=order.shipping_total,
                        total=order.total,
                        currency=order.currency,
                        status=order.status or "pending",
                        source=origin_value,
                        external_created_at=order.created_at,
                        raw_data=json.dumps(order.raw, default=str),
                    )
                    .on_conflict_do_nothing(index_elements=["channel_id", "external_order_id"])
                    .returning(ChannelOrder.id)
                )
                new_id = (await session.execute(stmt)).scalar_one_or_none()

                if new_id is None:
                    logger.debug(
                        f"Order {order.external_order_id} on channel {channel.channel_id} "
                        f"already recorded ({origin_value}) - ignored"
                    )
                    return IngestResult(
                        inserted=False,
                        outcome=IngestOutcome.DUPLICATE_IGNORED,
                        external_order_id=order.external_order_id,
                    )

                await StatsAggregator.increment(
                    session,
                    channel.tenant_id,
                    channel.channel_id,
                    orders_received=1,
                    orders_total=order.total,
                )

        logger.info(f"Order {order.external_order_id} recorded for channel {channel.channel_id} via {origin_value}")
        return IngestResult(
            inserted=True,
            outcome=IngestOutcome.INSERTED,
            external_order_id=order.external_order_id,
            order_id=new_id,
        )

    async def count(self, channel_db_id: str) -> int:
        async with self.session_maker() as session:
            result = await session.execute(
                select(func.count(ChannelOrder.id)).where(ChannelOrder.channel_id == channel_db_id)
            )
            return int(result.scalar_one())

    async def list_for_channel(self, channel_db_id: str, limit: int = 50, offset: int = 0) -> List[ChannelOrder]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(ChannelOrder)
                .where(ChannelOrder.channel_id == channel_db_id)
                .order_by(ChannelOrder.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())
