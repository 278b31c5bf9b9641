"""
Sync Coordinator - polling timers and single-flight sync runs.

Each channel is either idle or running. The run guard (keyed by the channel's
database id) is the only thing deciding that, for scheduled ticks and manual
sync-now calls alike, so the two can never overlap for one channel.

Lifecycle:
    coordinator = SyncCoordinator(async_session_maker)
    await coordinator.start()      # restore timers from active SyncConfig rows
    ...
    await coordinator.shutdown()   # stop timers, give in-flight runs a moment
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import update

from ordersync.adapters.registry import AdapterRegistry
from ordersync.config import get_settings
from ordersync.exceptions import MalformedPayload, NotFound, OrderSyncError, SyncInProgress
from ordersync.models import (
    Channel,
    ChannelStatus,
    OrderOrigin,
    SyncConfig,
    SyncRun,
    SyncRunStatus,
    utcnow,
)
from ordersync.services.channel_registry import ChannelRegistry
from ordersync.services.order_store import OrderStore
from ordersync.services.run_guard import RunGuard, build_run_guard
from ordersync.services.stats import StatsAggregator

logger = logging.getLogger(__name__)


class SyncStatus(str, enum.Enum):
    SKIPPED = "skipped"
    COMPLETED = "completed"
    FAILED = "failed"
    CHANNEL_GONE = "channel_gone"


@dataclass
class SyncResult:
    status: SyncStatus
    channel_db_id: str
    origin: str
    fetched: int = 0
    ingested: int = 0
    duplicates: int = 0
    skipped: int = 0
    skipped_reasons: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    since: Optional[datetime] = None
    run_id: Optional[str] = None
    error: Optional[Exception] = field(default=None, repr=False)

    def summary(self) -> dict:
        return {
            "status": self.status.value,
            "origin": self.origin,
            "orders_fetched": self.fetched,
            "orders_ingested": self.ingested,
            "orders_duplicate": self.duplicates,
            "orders_skipped": self.skipped,
            "skipped_reasons": self.skipped_reasons,
            "error_code": self.error_code,
            "error": self.error_message,
            "since": self.since.isoformat() if self.since else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "run_id": self.run_id,
        }


@dataclass
class _Schedule:
    interval_minutes: int
    stopped: asyncio.Event
    task: Optional[asyncio.Task] = None


class SyncCoordinator:

    def __init__(
        self,
        session_maker,
        guard: Optional[RunGuard] = None,
        registry: Optional[ChannelRegistry] = None,
        order_store: Optional[OrderStore] = None,
        stats: Optional[StatsAggregator] = None,
        adapter_resolver: Optional[Callable] = None,
        clock: Callable[[], datetime] = utcnow,
        lookback_hours: Optional[int] = None,
    ):
        self.session_maker = session_maker
        self.guard = guard or build_run_guard()
        self.registry = registry or ChannelRegistry(session_maker)
        self.order_store = order_store or OrderStore(session_maker)
        self.stats = stats or StatsAggregator(session_maker)
        self.adapter_resolver = adapter_resolver or AdapterRegistry.get_adapter
        self.clock = clock
        self.lookback = timedelta(hours=lookback_hours or get_settings().DEFAULT_SYNC_LOOKBACK_HOURS)
        self._schedules: Dict[str, _Schedule] = {}

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> int:
        """Re-create timers for every active polling config. Returns how many."""
        configs = await self.registry.active_polling_configs()
        for config in configs:
            self.schedule(config.channel_id, config.sync_interval_minutes)
        logger.info(f"Sync coordinator started with {len(configs)} polling channel(s)")
        return len(configs)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop every timer and wait up to `timeout` seconds for in-flight runs."""
        schedules = list(self._schedules.values())
        self._schedules.clear()
        for schedule in schedules:
            schedule.stopped.set()

        tasks = [s.task for s in schedules if s.task is not None and not s.task.done()]
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} sync run(s) still in flight at shutdown")

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def schedule(self, channel_db_id: str, interval_minutes: int) -> None:
        """
        Start polling a channel: one run now, then every interval_minutes.
        An existing timer for the channel is replaced, never edited.
        """
        interval_minutes = max(1, int(interval_minutes))
        self.cancel(channel_db_id)

        schedule = _Schedule(interval_minutes=interval_minutes, stopped=asyncio.Event())
        schedule.task = asyncio.create_task(
            self._poll_loop(channel_db_id, schedule),
            name=f"order-sync:{channel_db_id}",
        )
        self._schedules[channel_db_id] = schedule
        logger.info(f"Polling scheduled for channel {channel_db_id} every {interval_minutes} min")

    def cancel(self, channel_db_id: str) -> bool:
        """Stop future ticks. A run already in flight is allowed to finish."""
        schedule = self._schedules.pop(channel_db_id, None)
        if schedule is None:
            return False
        schedule.stopped.set()
        logger.info(f"Polling cancelled for channel {channel_db_id}")
        return True

    def apply_config(self, channel_db_id: str, config: Optional[SyncConfig]) -> bool:
        """Bring the timer in line with `config`. Returns True when polling."""
        if config is not None and config.wants_polling:
            self.schedule(channel_db_id, config.sync_interval_minutes)
            return True
        self.cancel(channel_db_id)
        return False

    def is_scheduled(self, channel_db_id: str) -> bool:
        return channel_db_id in self._schedules

    def is_running(self, channel_db_id: str) -> bool:
        return self.guard.is_running(channel_db_id)

    async def _poll_loop(self, channel_db_id: str, schedule: _Schedule) -> None:
        while not schedule.stopped.is_set():
            try:
                result = await self.run_sync(channel_db_id, OrderOrigin.POLLING)
            except Exception:
                # Failures inside a run are already recorded by run_sync; this is
                # bookkeeping itself failing (database down). Try again next tick.
                logger.exception(f"Scheduled sync for channel {channel_db_id} crashed")
            else:
                if result.status == SyncStatus.CHANNEL_GONE:
                    if self._schedules.get(channel_db_id) is schedule:
                        del self._schedules[channel_db_id]
                    return

            try:
                await asyncio.wait_for(schedule.stopped.wait(), timeout=schedule.interval_minutes * 60)
            except asyncio.TimeoutError:
                continue

    # =========================================================================
    # RUNS
    # =========================================================================

    async def sync_now(self, channel_db_id: str, since: Optional[datetime] = None) -> SyncResult:
        """
        Manual trigger: same algorithm and guard as scheduled runs.

        Raises SyncInProgress when a run is in flight, NotFound when the channel
        is gone, and the run's own error (UpstreamUnavailable, ...) when it failed.
        """
        result = await self.run_sync(channel_db_id, OrderOrigin.MANUAL, since=since)
        if result.status == SyncStatus.SKIPPED:
            raise SyncInProgress()
        if result.status == SyncStatus.CHANNEL_GONE:
            raise NotFound("Channel not found")
        if result.status == SyncStatus.FAILED and isinstance(result.error, OrderSyncError):
            raise result.error
        return result

    async def run_sync(
        self,
        channel_db_id: str,
        origin: OrderOrigin,
        since: Optional[datetime] = None,
    ) -> SyncResult:
        """One sync run for a channel, or SKIPPED if one is already running."""
        origin_value = origin.value if isinstance(origin, OrderOrigin) else str(origin)
        if not self.guard.try_acquire(channel_db_id):
            logger.info(f"Sync for channel {channel_db_id} skipped ({origin_value}): run already in flight")
            return SyncResult(status=SyncStatus.SKIPPED, channel_db_id=channel_db_id, origin=origin_value)
        try:
            return await self._execute(channel_db_id, origin, origin_value, since)
        finally:
            self.guard.release(channel_db_id)

    async def _execute(
        self,
        channel_db_id: str,
        origin: OrderOrigin,
        origin_value: str,
        since: Optional[datetime],
    ) -> SyncResult:
        started_at = self.clock()
        result = SyncResult(
            status=SyncStatus.COMPLETED,
            channel_db_id=channel_db_id,
            origin=origin_value,
            started_at=started_at,
        )

        channel = await self.registry.get_by_id(channel_db_id)
        if channel is None:
            logger.info(f"Channel {channel_db_id} gone - dropping sync")
            result.status = SyncStatus.CHANNEL_GONE
            return result

        result.since = since or channel.last_sync_at or (started_at - self.lookback)
        result.run_id = await self._open_run(channel, origin_value, started_at)

        try:
            adapter = self.adapter_resolver(channel.platform)
            credentials = self.registry.credentials(channel)
            raw_orders = await adapter.fetch_orders_since(credentials, result.since)
            result.fetched = len(raw_orders)
            self.guard.extend(channel_db_id)

            for raw in raw_orders:
                try:
                    order = adapter.normalize(raw, credentials)
                except MalformedPayload as e:
                    result.skipped += 1
                    result.skipped_reasons.append(e.message)
                    continue
                ingest = await self.order_store.ingest(channel, order, origin)
                if ingest.inserted:
                    result.ingested += 1
                else:
                    result.duplicates += 1
                self.guard.extend(channel_db_id)
        except Exception as e:
            if await self.registry.get_by_id(channel.id) is None:
                # disconnected mid-run: nothing to flag, nothing to count
                logger.info(f"Channel {channel.channel_id} gone during sync - dropping run")
                result.status = SyncStatus.CHANNEL_GONE
                await self._close_run(result, SyncRunStatus.CHANNEL_GONE)
                return result
            if isinstance(e, OrderSyncError):
                result.error_code = e.code
                result.error_message = e.message
                logger.warning(f"Sync failed for channel {channel.channel_id}: {e.code} {e.message}")
            else:
                result.error_code = "SYNC_FAILED"
                result.error_message = "Unexpected error during sync"
                logger.exception(f"Sync crashed for channel {channel.channel_id}")
            result.status = SyncStatus.FAILED
            result.error = e
            await self._record_failure(channel, result)
            return result

        await self.registry.advance_cursor(channel.id, started_at)
        await self._close_run(result, SyncRunStatus.COMPLETED)
        logger.info(
            f"Sync {origin_value} for channel {channel.channel_id}: fetched={result.fetched} "
            f"ingested={result.ingested} duplicates={result.duplicates} skipped={result.skipped}"
        )
        return result

    # --- Bookkeeping ---

    async def _open_run(self, channel: Channel, origin_value: str, started_at: datetime) -> str:
        run = SyncRun(
            tenant_id=channel.tenant_id,
            channel_id=channel.id,
            channel_identifier=channel.channel_id,
            sync_type="orders",
            origin=origin_value,
            status=SyncRunStatus.STARTED.value,
            started_at=started_at,
        )
        async with self.session_maker() as session:
            async with session.begin():
                session.add(run)
        return run.id

    async def _close_run(self, result: SyncResult, status: SyncRunStatus, session=None) -> None:
        stmt = (
            update(SyncRun)
            .where(SyncRun.id == result.run_id)
            .values(
                status=status.value,
                orders_fetched=result.fetched,
                orders_ingested=result.ingested,
                orders_duplicate=result.duplicates,
                orders_skipped=result.skipped,
                error_message=result.error_message,
                completed_at=utcnow(),
            )
        )
        if session is not None:
            await session.execute(stmt)
            return
        async with self.session_maker() as own_session:
            async with own_session.begin():
                await own_session.execute(stmt)

    async def _record_failure(self, channel: Channel, result: SyncResult) -> None:
        """Cursor untouched; error counted, channel flagged, run closed - one transaction."""
        async with self.session_maker() as session:
            async with session.begin():
                await StatsAggregator.increment(session, channel.tenant_id, channel.channel_id, sync_errors=1)
                await session.execute(
                    update(Channel)
                    .where(Channel.id == channel.id)
                    .values(
                        status=ChannelStatus.ERROR.value,
                        sync_error=result.error_message,
                        updated_at=utcnow(),
                    )
                )
                await self._close_run(result, SyncRunStatus.FAILED, session=session)
