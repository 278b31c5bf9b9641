"""
Stats Aggregator - per tenant/channel/day counters.

Increments are additive upserts, so concurrent writers never lose counts and
counters never go down.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import func, select

from ordersync.database import dialect_insert
from ordersync.models import DailyStat, utcnow

logger = logging.getLogger(__name__)

COUNTERS = ("orders_received", "orders_total", "webhooks_received", "inventory_syncs", "sync_errors")


def today() -> date:
    return utcnow().date()


class StatsAggregator:

    def __init__(self, session_maker):
        self.session_maker = session_maker

    @staticmethod
    async def increment(session, tenant_id: str, channel_id: str, day: Optional[date] = None, **deltas) -> None:
        """
        Add `deltas` to the counters of (tenant, channel, day) inside the
        caller's session/transaction.

        Raises ValueError for unknown counters or negative deltas.
        """
        for name, value in deltas.items():
            if name not in COUNTERS:
                raise ValueError(f"Unknown stats counter: {name}")
            if value < 0:
                raise ValueError(f"Stats counters never decrease ({name}={value})")
        if not deltas:
            return

        values = {name: 0 for name in COUNTERS}
        values["orders_total"] = 0.0
        values.update(deltas)

        stmt = dialect_insert(session, DailyStat).values(
            tenant_id=tenant_id,
            channel_id=channel_id,
            stat_date=day or today(),
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "channel_id", "stat_date"],
            set_={
                **{name: getattr(DailyStat, name) + getattr(stmt.excluded, name) for name in deltas},
                "updated_at": utcnow(),
            },
        )
        await session.execute(stmt)

    async def record(self, tenant_id: str, channel_id: str, day: Optional[date] = None, **deltas) -> None:
        """increment() in its own transaction."""
        async with self.session_maker() as session:
            async with session.begin():
                await self.increment(session, tenant_id, channel_id, day, **deltas)

    async def today_totals(self, tenant_id: str, day: Optional[date] = None) -> Dict[str, float]:
        """Counters summed across all of a tenant's channels for one day."""
        columns = [func.coalesce(func.sum(getattr(DailyStat, name)), 0).label(name) for name in COUNTERS]
        async with self.session_maker() as session:
            row = (await session.execute(
                select(*columns).where(
                    DailyStat.tenant_id == tenant_id,
                    DailyStat.stat_date == (day or today()),
                )
            )).one()

        totals = dict(row._mapping)
        return {
            name: float(totals[name]) if name == "orders_total" else int(totals[name])
            for name in COUNTERS
        }

    async def for_channel(self, tenant_id: str, channel_id: str, limit: int = 30) -> List[DailyStat]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(DailyStat)
                .where(DailyStat.tenant_id == tenant_id, DailyStat.channel_id == channel_id)
                .order_by(DailyStat.stat_date.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
