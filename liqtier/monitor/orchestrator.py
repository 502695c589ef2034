"""
Monitor Service Orchestrator
============================

Main monitoring service for liquidation risk.

Architecture:
- Initial full sync to build one tracker per open position
- Continuous tiered refresh based on liquidation distance:
  - Critical (<5%): every 10 seconds
  - Danger (<10%): every 30 seconds
  - Warning (<20%): every 60 seconds
  - Safe: every 5 minutes
- Periodic full sync picks up newly opened positions
- Alerts persisted whenever a position moves into a riskier tier
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from ..api import AccountStateSource, HyperliquidClient
from ..config import RiskTier, Config, config as default_config
from ..core.batch import BatchFetchExecutor
from ..core.health import PRICE_FEED, HealthMonitor
from ..core.position_fetcher import PositionFetcher
from ..core.scheduler import TieredScheduler
from ..db import PositionStore
from ..models import Position

logger = logging.getLogger(__name__)


class SourceUnavailableError(RuntimeError):
    """The price feed could not be reached at startup."""


@dataclass
class SyncResult:
    """Outcome of a manual sync."""
    success: bool
    positions_updated: int = 0
    errors: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MonitorService:
    """
    Wires the account source, position store, fetcher, health monitor and
    tiered scheduler together and owns their lifecycle.

    Every collaborator can be passed in; anything omitted is built from
    the configuration.
    """

    def __init__(
        self,
        cfg: Config = None,
        source: AccountStateSource = None,
        store: PositionStore = None,
        clock=time.time,
    ):
        self.config = cfg or default_config
        self.source = source or HyperliquidClient(cfg=self.config)
        self.store = store or PositionStore(cfg=self.config)

        self.executor = BatchFetchExecutor(self.source, cfg=self.config)
        self.fetcher = PositionFetcher(
            self.source, self.store, executor=self.executor, cfg=self.config
        )
        self.health = HealthMonitor(cfg=self.config, clock=clock)
        self.scheduler = TieredScheduler(
            self.fetcher, health=self.health, cfg=self.config, clock=clock
        )

        self._stop_event: Optional[asyncio.Event] = None
        self._signals: List[signal.Signals] = []
        self._closed = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def check_source(self) -> float:
        """
        Verify the price feed responds.

        Returns:
            Response time in seconds

        Raises:
            SourceUnavailableError: if no price snapshot could be fetched
        """
        start = time.time()
        prices = await self.source.get_all_mid_prices()
        elapsed = time.time() - start

        if not prices:
            self.health.record_failure(PRICE_FEED, "price feed unreachable at startup")
            raise SourceUnavailableError("Could not fetch prices from the account source")

        self.health.record_success(PRICE_FEED, response_time=elapsed)
        logger.info(f"Price feed OK: {len(prices)} markets ({elapsed * 1000:.0f}ms)")
        return elapsed

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                logger.debug(f"Signal handler for {sig.name} not installed")

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()

    async def run(self):
        """
        Run until stop() is called or SIGINT / SIGTERM is received.

        Raises:
            SourceUnavailableError: if the price feed is unreachable at startup
        """
        self._stop_event = asyncio.Event()
        self._install_signal_handlers()

        source_type = "low latency" if self.source.is_low_latency else "remote"
        logger.info(f"Starting liquidation monitor ({source_type} source)")
        logger.info(f"Database: {self.store.db_path}")

        try:
            await self.check_source()
            await self.scheduler.start()
            await self._stop_event.wait()
            logger.info("Shutdown requested")
        finally:
            await self.scheduler.stop(drain=True)
            self._remove_signal_handlers()
            self.health.log_summary()
            await self.close()

    def stop(self):
        """Request shutdown of a running service."""
        if self._stop_event is not None and not self._stop_event.is_set():
            logger.info("Received shutdown signal")
            self._stop_event.set()

    async def close(self):
        if self._closed:
            return
        self._closed = True
        await self.source.close()

    # -------------------------------------------------------------------------
    # Manual operations
    # -------------------------------------------------------------------------

    async def sync_now(self) -> SyncResult:
        """
        Run one full sync now, through the scheduler so trackers are
        reconciled with what the sync found.

        Skipped, not queued, while a tick or another sync is in progress.
        """
        logger.info("Manual sync requested")
        if self.scheduler.is_busy:
            logger.warning("Manual sync skipped: sync already in progress")
            return SyncResult(success=False, errors=["sync already in progress"])

        result = await self.scheduler.full_sync()
        if result is None:
            error = self.scheduler.last_error or "full sync failed"
            logger.error(f"Manual sync failed: {error}")
            return SyncResult(success=False, errors=[error])

        errors = []
        if result.failed_count:
            errors.append(f"{result.failed_count} positions failed to save")
        if result.addresses_failed:
            errors.append(f"{result.addresses_failed} addresses failed to fetch")

        return SyncResult(
            success=not errors,
            positions_updated=result.updated_count,
            errors=errors,
            timestamp=result.timestamp,
        )

    async def get_risky_positions(self, min_tier: RiskTier = RiskTier.WARNING) -> List[Position]:
        return await self.fetcher.get_risky_positions(min_tier)

    def status(self) -> dict:
        """Scheduler stats, component health and store totals."""
        store_stats = self.store.get_stats()
        last_update = self.store.get_last_update_time()
        return {
            "scheduler": self.scheduler.get_stats().to_dict(),
            "health": self.health.summary(),
            "store": {
                "entities": store_stats.total_entities,
                "positions": store_stats.total_positions,
                "alerts": store_stats.total_alerts,
                "tier_counts": store_stats.tier_counts,
                "total_notional": store_stats.total_notional,
                "last_update": last_update.isoformat() if last_update else None,
            },
        }
