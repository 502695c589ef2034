"""
Tiered Refresh Scheduler

Re-polls each tracked position at a cadence set by its risk tier:

- CRITICAL: every 10s
- DANGER: every 30s
- WARNING: every 60s
- SAFE: every 5 minutes

A fixed tick pops the positions that are due from a min-heap keyed by
next update time, fetches only the addresses that own them, recomputes
their risk and reschedules them under their new tier. A periodic full sync
picks up newly opened positions.
"""

import asyncio
import heapq
import itertools
import logging
import sqlite3
import time
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..config import RiskTier, TIER_ORDER, Config, config as default_config
from ..models import AccountState, Position, PositionTracker, position_key
from .health import (
    ACCOUNT_SOURCE,
    POSITION_STORE,
    POSITION_SYNC,
    PRICE_FEED,
    HealthMonitor,
)
from .position_fetcher import FetchResult, PositionFetcher, PriceFeedUnavailableError
from .risk import enrich, is_riskier

logger = logging.getLogger(__name__)


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


class DueQueue:
    """
    Min-heap of position keys ordered by next update time.

    Rescheduling pushes a new entry and leaves the old one in the heap;
    stale entries are skipped when popped.
    """

    def __init__(self):
        self._heap: List[Tuple[float, int, str]] = []
        self._scheduled: Dict[str, float] = {}
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._scheduled)

    def __contains__(self, key: str) -> bool:
        return key in self._scheduled

    def schedule(self, key: str, at: float):
        """Schedule key at time at, replacing any earlier schedule."""
        self._scheduled[key] = at
        heapq.heappush(self._heap, (at, next(self._counter), key))

        if len(self._heap) > 2 * len(self._scheduled) + 64:
            self._compact()

    def discard(self, key: str):
        self._scheduled.pop(key, None)

    def scheduled_at(self, key: str) -> Optional[float]:
        return self._scheduled.get(key)

    def pop_due(self, now: float) -> List[str]:
        """Remove and return every key with scheduled time <= now."""
        due = []
        while self._heap and self._heap[0][0] <= now:
            at, _, key = heapq.heappop(self._heap)
            if self._scheduled.get(key) != at:
                continue  # stale
            del self._scheduled[key]
            due.append(key)
        return due

    def next_due(self) -> Optional[float]:
        """Earliest scheduled time, or None when empty."""
        while self._heap:
            at, _, key = self._heap[0]
            if self._scheduled.get(key) == at:
                return at
            heapq.heappop(self._heap)
        return None

    def clear(self):
        self._heap.clear()
        self._scheduled.clear()

    def _compact(self):
        self._heap = [
            (at, next(self._counter), key) for key, at in self._scheduled.items()
        ]
        heapq.heapify(self._heap)


@dataclass
class TickResult:
    """What a single tick did."""
    skipped: bool = False
    failed: bool = False
    error: Optional[str] = None
    due: int = 0
    addresses: int = 0
    addresses_fetched: int = 0
    refreshed: int = 0
    closed: int = 0
    deferred: int = 0
    alerts: int = 0
    store_errors: int = 0


@dataclass
class SchedulerStats:
    """Snapshot of scheduler state for status endpoints and logging."""
    running: bool
    tracked: int
    tier_counts: Dict[str, int]
    tier_updates: Dict[str, int]
    total_updates: int
    total_errors: int
    ticks_run: int
    ticks_idle: int
    ticks_skipped: int
    full_syncs: int
    consecutive_failures: int
    started_at: Optional[float] = None
    last_tick_at: Optional[float] = None
    last_full_sync_at: Optional[float] = None
    next_due_at: Optional[float] = None
    uptime_sec: float = 0.0

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "tracked": self.tracked,
            "tier_counts": dict(self.tier_counts),
            "tier_updates": dict(self.tier_updates),
            "total_updates": self.total_updates,
            "total_errors": self.total_errors,
            "ticks_run": self.ticks_run,
            "ticks_idle": self.ticks_idle,
            "ticks_skipped": self.ticks_skipped,
            "full_syncs": self.full_syncs,
            "consecutive_failures": self.consecutive_failures,
            "started_at": _iso(self.started_at),
            "last_tick_at": _iso(self.last_tick_at),
            "last_full_sync_at": _iso(self.last_full_sync_at),
            "next_due_at": _iso(self.next_due_at),
            "uptime_sec": round(self.uptime_sec, 1),
        }


def format_uptime(seconds: float) -> str:
    """Human readable uptime, e.g. '2h 5m' or '3m 12s'."""
    seconds = int(seconds)
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {secs}s"


class TieredScheduler:
    """
    Owns one PositionTracker per (address, coin) and refreshes each one
    at the interval of its current tier.

    Trackers are only mutated from tick() and full_sync(), which never
    run concurrently.
    """

    def __init__(
        self,
        fetcher: PositionFetcher,
        health: HealthMonitor = None,
        cfg: Config = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            fetcher: PositionFetcher used for full syncs and targeted refreshes
            health: HealthMonitor receiving cycle outcomes
            cfg: Configuration (tier table, tick and sync intervals)
            clock: Returns the current time in epoch seconds
        """
        self.config = cfg or default_config
        self.fetcher = fetcher
        self.store = fetcher.store
        self.health = health or HealthMonitor(cfg=self.config, clock=clock)
        self._clock = clock

        self.trackers: Dict[str, PositionTracker] = {}
        self._queue = DueQueue()

        # Set while a tick or full sync is in progress
        self._busy = False
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._work_task: Optional[asyncio.Task] = None

        self._tier_updates: Dict[str, int] = {t.value: 0 for t in TIER_ORDER}
        self._total_updates = 0
        self._total_errors = 0
        self._ticks_run = 0
        self._ticks_idle = 0
        self._ticks_skipped = 0
        self._full_syncs = 0
        self._consecutive_failures = 0
        self._started_at: Optional[float] = None
        self._last_tick_at: Optional[float] = None
        self._last_full_sync_at: Optional[float] = None
        self._last_stats_log: float = 0.0
        self.last_error: Optional[str] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_busy(self) -> bool:
        return self._busy

    async def start(self, bootstrap: bool = True):
        """
        Run the initial full sync and start the tick loop.

        Args:
            bootstrap: Perform the initial full sync before ticking
        """
        if self._running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting tiered scheduler")
        for tier in TIER_ORDER:
            spec = self.config.tiers[tier]
            bound = "" if tier == RiskTier.SAFE else f" (distance < {spec.threshold_pct}%)"
            logger.info(f"  {tier.label}: every {spec.refresh_sec:g}s{bound}")

        self._running = True
        self._started_at = self._clock()
        self._last_stats_log = self._started_at

        if bootstrap:
            await self.bootstrap()

        self._loop_task = asyncio.create_task(self._run_loop())

    async def stop(self, drain: bool = False):
        """
        Stop issuing new fetches.

        Args:
            drain: Wait for an in-flight tick or full sync to finish
        """
        if not self._running and self._loop_task is None:
            return

        logger.info("Stopping tiered scheduler")
        self._running = False

        if self._loop_task:
            self._loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        if drain and self._work_task and not self._work_task.done():
            await self._work_task

        self.log_stats()

    async def _run_loop(self):
        """Fire a tick every tick_interval_sec without overlapping ticks."""
        while self._running:
            now = self._clock()

            if self._work_task is None or self._work_task.done():
                if self.full_sync_due(now):
                    self._work_task = asyncio.create_task(self.full_sync())
                else:
                    self._work_task = asyncio.create_task(self.tick())
            else:
                self._ticks_skipped += 1
                logger.debug("Previous tick still running, skipping")

            if now - self._last_stats_log >= self.config.stats_interval_sec:
                self.log_stats()
                self._last_stats_log = now

            await asyncio.sleep(self.config.tick_interval_sec)

    def full_sync_due(self, now: float) -> bool:
        if self._last_full_sync_at is None:
            return True
        return now - self._last_full_sync_at >= self.config.full_sync_interval_sec

    # -------------------------------------------------------------------------
    # Tracker bookkeeping
    # -------------------------------------------------------------------------

    def get_tracker(self, address: str, coin: str) -> Optional[PositionTracker]:
        return self.trackers.get(position_key(address, coin))

    def next_update_at(self, key: str) -> Optional[float]:
        """Time the key is queued for, or None if it is not queued."""
        return self._queue.scheduled_at(key)

    def _set_tracker(
        self,
        address: str,
        coin: str,
        tier: RiskTier,
        distance: Optional[float],
        now: float,
    ) -> Optional[RiskTier]:
        """
        Create or update a tracker and queue its next refresh.

        Returns:
            The tracker's previous tier (None if it was just created)
        """
        key = position_key(address, coin)
        next_update = now + self.config.refresh_interval(tier)
        tracker = self.trackers.get(key)

        if tracker is None:
            previous = None
            self.trackers[key] = PositionTracker(
                address=address,
                coin=coin,
                tier=tier,
                last_updated=now,
                next_update=next_update,
                liquidation_distance=distance,
            )
        else:
            previous = tracker.tier
            tracker.tier = tier
            tracker.last_updated = now
            tracker.next_update = next_update
            tracker.liquidation_distance = distance

        self._queue.schedule(key, next_update)
        return previous

    def _remove_tracker(self, key: str):
        self.trackers.pop(key, None)
        self._queue.discard(key)

    def _requeue_unscheduled(self, keys: Iterable[str]):
        """Put back keys that were popped but not rescheduled (next_update unchanged)."""
        for key in keys:
            tracker = self.trackers.get(key)
            if tracker is not None and key not in self._queue:
                self._queue.schedule(key, tracker.next_update)

    def _log_critical_entry(self, tracker: PositionTracker, previous: Optional[RiskTier]):
        if tracker.tier == RiskTier.CRITICAL and previous != RiskTier.CRITICAL:
            distance = tracker.liquidation_distance
            dist_str = f"{distance:.2f}%" if distance is not None else "N/A"
            logger.warning(
                f"Position became CRITICAL: {tracker.address[:10]}... {tracker.coin} "
                f"({dist_str} to liq)"
            )

    def _cycle_failed(self, component: str, error: str):
        self._total_errors += 1
        self._consecutive_failures += 1
        self.last_error = error
        self.health.record_failure(component, error)
        if component != POSITION_SYNC:
            self.health.record_failure(POSITION_SYNC, error)
        logger.error(f"Refresh cycle failed ({component}): {error}")

    def _cycle_succeeded(self):
        self._consecutive_failures = 0
        self.health.record_success(POSITION_SYNC)

    # -------------------------------------------------------------------------
    # Full sync
    # -------------------------------------------------------------------------

    async def bootstrap(self) -> Optional[FetchResult]:
        """Initial full sync establishing a tracker for every open position."""
        logger.info("Performing initial full sync...")
        result = await self.full_sync()
        if result is not None:
            logger.info(f"Initial sync complete: {len(self.trackers)} positions tracked")
            self.log_tier_distribution()
        return result

    async def full_sync(self) -> Optional[FetchResult]:
        """
        Fetch every tracked address and reconcile the tracker set.

        Returns:
            FetchResult, or None if the sync was skipped or failed
        """
        if self._busy:
            logger.debug("Sync already in progress, skipping full sync")
            self._ticks_skipped += 1
            return None

        self._busy = True
        try:
            result = await self.fetcher.fetch_all()
        except PriceFeedUnavailableError as e:
            self._cycle_failed(PRICE_FEED, str(e))
            return None
        except Exception as e:
            logger.exception(f"Full sync error: {e}")
            self._cycle_failed(POSITION_SYNC, repr(e))
            return None
        finally:
            self._busy = False

        now = self._clock()
        self._full_syncs += 1
        self._last_full_sync_at = now
        self._apply_full_sync(result, now)
        self._record_sync_health(result)
        return result

    def _apply_full_sync(self, result: FetchResult, now: float):
        """Create or re-tier trackers from a full sync and drop closed ones."""
        created = 0
        for position in result.positions:
            previous = self._set_tracker(
                position.address,
                position.coin,
                position.risk_tier,
                position.liquidation_distance,
                now,
            )
            if previous is None:
                created += 1
            self._log_critical_entry(self.trackers[position.key], previous)

        removed = 0
        for key, tracker in list(self.trackers.items()):
            untracked = tracker.address not in result.addresses
            closed = tracker.address in result.addresses_fetched and key not in result.open_keys
            if untracked or closed:
                self._remove_tracker(key)
                removed += 1

        logger.info(
            f"Full sync applied: {created} new trackers, {removed} removed, "
            f"{len(self.trackers)} tracked"
        )

    def _record_sync_health(self, result: FetchResult):
        self.health.record_success(PRICE_FEED)

        if result.addresses and not result.addresses_fetched:
            self.health.record_failure(ACCOUNT_SOURCE, "no account states returned")
        else:
            self.health.record_success(ACCOUNT_SOURCE)

        if result.failed_count:
            self.health.record_failure(POSITION_STORE, f"{result.failed_count} writes failed")
        else:
            self.health.record_success(POSITION_STORE)

        self._cycle_succeeded()

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def tick(self) -> TickResult:
        """
        Refresh every position whose next update time has passed.

        A tick with nothing due does no I/O.
        """
        if self._busy:
            self._ticks_skipped += 1
            logger.debug("Sync already in progress, skipping tick")
            return TickResult(skipped=True)

        self._busy = True
        now = self._clock()
        due_keys = self._queue.pop_due(now)
        result = TickResult(due=len(due_keys))

        try:
            if not due_keys:
                self._ticks_idle += 1
                return result

            self._ticks_run += 1
            self._last_tick_at = now
            await self._refresh(due_keys, now, result)
        except Exception as e:
            logger.exception(f"Tick error: {e}")
            result.failed = True
            result.error = repr(e)
            self._cycle_failed(POSITION_SYNC, repr(e))
        finally:
            self._requeue_unscheduled(due_keys)
            self._busy = False

        return result

    async def _refresh(self, due_keys: List[str], now: float, result: TickResult):
        by_address: Dict[str, List[PositionTracker]] = {}
        by_tier: Dict[str, int] = {t.value: 0 for t in TIER_ORDER}
        for key in due_keys:
            tracker = self.trackers.get(key)
            if tracker is None:
                continue
            by_address.setdefault(tracker.address, []).append(tracker)
            by_tier[tracker.tier.value] += 1

        result.addresses = len(by_address)
        tier_str = ", ".join(f"{name}={n}" for name, n in by_tier.items() if n)
        logger.info(
            f"Updating {len(due_keys)} positions across {len(by_address)} addresses ({tier_str})"
        )

        try:
            prices = await self.fetcher.fetch_prices()
        except PriceFeedUnavailableError as e:
            result.failed = True
            result.error = str(e)
            self._cycle_failed(PRICE_FEED, str(e))
            return
        self.health.record_success(PRICE_FEED)

        states = await self.fetcher.refresh_addresses(by_address.keys())
        result.addresses_fetched = len(states)

        if not states:
            result.failed = True
            result.error = "no account states returned"
            self._cycle_failed(ACCOUNT_SOURCE, result.error)
            return
        self.health.record_success(ACCOUNT_SOURCE)

        for address, trackers in by_address.items():
            state = states.get(address)
            if state is None:
                # Fetch failed: keep last known tier, retry next tick
                result.deferred += len(trackers)
                continue
            due_by_coin = {tracker.coin: tracker for tracker in trackers}

            # Source order, not heap order
            for raw in state.positions:
                tracker = due_by_coin.pop(raw.coin, None)
                if tracker is not None:
                    self._refresh_tracker(tracker, raw, prices, now, result)

            # Anything left is no longer open: closed or liquidated
            for tracker in due_by_coin.values():
                logger.info(f"Position closed: {tracker.address[:10]}... {tracker.coin}")
                self._remove_tracker(tracker.key)
                result.closed += 1
            if due_by_coin:
                self._delete_closed(address, state, result)

        if result.store_errors:
            self.health.record_failure(POSITION_STORE, f"{result.store_errors} writes failed")
        else:
            self.health.record_success(POSITION_STORE)
        self._cycle_succeeded()

        logger.info(
            f"Tick complete: {result.refreshed} refreshed, {result.closed} closed, "
            f"{result.deferred} deferred"
        )

    def _delete_closed(self, address: str, state: AccountState, result: TickResult):
        """Drop stored rows (and their alerts) for coins no longer open."""
        try:
            self.store.delete_stale_positions(address, state.coins)
        except sqlite3.Error as e:
            self._total_errors += 1
            result.store_errors += 1
            logger.error(f"Error cleaning closed positions for {address[:10]}...: {e}")

    def _refresh_tracker(
        self,
        tracker: PositionTracker,
        raw: Position,
        prices: Dict[str, float],
        now: float,
        result: TickResult,
    ):
        price = prices.get(tracker.coin)
        if not price:
            # Unknown price: keep the tier, try again one interval later
            tracker.next_update = now + self.config.refresh_interval(tracker.tier)
            self._queue.schedule(tracker.key, tracker.next_update)
            result.deferred += 1
            logger.debug(f"No price for {tracker.coin}, deferring {tracker.key}")
            return

        position = enrich(
            raw,
            price,
            self.config.tiers,
            now=datetime.fromtimestamp(now, timezone.utc),
        )
        previous = self._set_tracker(
            tracker.address,
            tracker.coin,
            position.risk_tier,
            position.liquidation_distance,
            now,
        )
        self._log_critical_entry(tracker, previous)

        self._tier_updates[position.risk_tier.value] += 1
        self._total_updates += 1
        result.refreshed += 1

        try:
            position_id = self.store.upsert_position(position)
            if position.risk_tier != RiskTier.SAFE and is_riskier(position.risk_tier, previous):
                self.store.create_alert(
                    position_id,
                    position.risk_tier,
                    position.liquidation_distance,
                    price,
                )
                result.alerts += 1
        except sqlite3.Error as e:
            self._total_errors += 1
            result.store_errors += 1
            logger.error(f"Error saving position {position.key}: {e}")

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def tier_counts(self) -> Dict[str, int]:
        counts = {t.value: 0 for t in TIER_ORDER}
        for tracker in self.trackers.values():
            counts[tracker.tier.value] += 1
        return counts

    def get_stats(self) -> SchedulerStats:
        now = self._clock()
        return SchedulerStats(
            running=self._running,
            tracked=len(self.trackers),
            tier_counts=self.tier_counts(),
            tier_updates=dict(self._tier_updates),
            total_updates=self._total_updates,
            total_errors=self._total_errors,
            ticks_run=self._ticks_run,
            ticks_idle=self._ticks_idle,
            ticks_skipped=self._ticks_skipped,
            full_syncs=self._full_syncs,
            consecutive_failures=self._consecutive_failures,
            started_at=self._started_at,
            last_tick_at=self._last_tick_at,
            last_full_sync_at=self._last_full_sync_at,
            next_due_at=self._queue.next_due(),
            uptime_sec=now - self._started_at if self._started_at else 0.0,
        )

    def log_tier_distribution(self):
        counts = self.tier_counts()
        total = len(self.trackers)
        logger.info("Position distribution by risk:")
        for tier in TIER_ORDER:
            n = counts[tier.value]
            pct = n / total * 100 if total else 0.0
            logger.info(f"  {tier.label}: {n} positions ({pct:.1f}%)")
        logger.info(f"  Total: {total} positions")

    def log_stats(self):
        stats = self.get_stats()
        logger.info("=" * 50)
        logger.info("Tiered scheduler statistics")
        logger.info(f"Uptime: {format_uptime(stats.uptime_sec)}")
        for tier in TIER_ORDER:
            logger.info(f"  {tier.label}: {stats.tier_updates[tier.value]} updates")
        logger.info(f"Total updates: {stats.total_updates}")
        logger.info(f"Total errors: {stats.total_errors}")
        if stats.uptime_sec > 0:
            rate = stats.total_updates / (stats.uptime_sec / 60)
            logger.info(f"Average update rate: {rate:.2f} positions/min")
        self.log_tier_distribution()
        logger.info("=" * 50)
