"""
Position Fetcher

Runs one full-population fetch:
- Loads tracked addresses from the store
- Fetches a price snapshot and every account state
- Enriches positions with risk metrics
- Persists positions and alerts, removes closed positions
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from ..api.base import AccountStateSource
from ..config import RiskTier, Config, config as default_config
from ..db.position_store import PositionStore
from ..models import AccountState, Position, position_key
from .batch import BatchFetchExecutor
from .risk import enrich, filter_by_risk, sort_by_distance

logger = logging.getLogger(__name__)


class PriceFeedUnavailableError(RuntimeError):
    """The price snapshot could not be fetched; the cycle is aborted."""


@dataclass
class FetchResult:
    """Outcome of one fetch_all() call."""
    positions: List[Position] = field(default_factory=list)
    updated_count: int = 0
    failed_count: int = 0
    alerts_created: int = 0
    skipped_no_price: int = 0
    addresses: Set[str] = field(default_factory=set)
    addresses_fetched: Set[str] = field(default_factory=set)
    open_keys: Set[str] = field(default_factory=set)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def addresses_requested(self) -> int:
        return len(self.addresses)

    @property
    def addresses_failed(self) -> int:
        return len(self.addresses - self.addresses_fetched)


class PositionFetcher:
    """
    Fetches, enriches and persists positions for every tracked address.

    Holds no state between calls.
    """

    def __init__(
        self,
        source: AccountStateSource,
        store: PositionStore,
        executor: BatchFetchExecutor = None,
        cfg: Config = None,
    ):
        self.config = cfg or default_config
        self.source = source
        self.store = store
        self.executor = executor or BatchFetchExecutor(source, cfg=self.config)

    async def fetch_prices(self) -> Dict[str, float]:
        """
        Fetch the current price snapshot.

        Raises:
            PriceFeedUnavailableError: if the feed returned nothing
        """
        prices = await self.source.get_all_mid_prices()
        if prices is None:
            raise PriceFeedUnavailableError("Failed to fetch current prices")
        return prices

    async def refresh_addresses(self, addresses: Iterable[str]) -> Dict[str, AccountState]:
        """Targeted account state fetch for a subset of addresses."""
        return await self.executor.fetch(addresses)

    async def fetch_all(self) -> FetchResult:
        """
        Fetch and persist positions for all tracked addresses.

        Returns:
            FetchResult with enriched positions and success/failure counts

        Raises:
            PriceFeedUnavailableError: if no price snapshot is available
        """
        addresses = self.store.get_tracked_addresses()
        entity_names = self.store.get_entity_names()
        result = FetchResult(addresses=set(addresses))

        if not addresses:
            logger.warning("No tracked addresses to fetch")
            return result

        prices = await self.fetch_prices()

        def progress(done, total):
            if done == total or done % 500 == 0:
                logger.debug(f"Fetch progress: {done}/{total}")

        states = await self.executor.fetch(addresses, progress_callback=progress)

        for address, state in states.items():
            result.addresses_fetched.add(address)
            self._process_account(address, state, prices, entity_names.get(address), result)

        logger.info(
            f"Fetch complete: {result.updated_count} positions updated, "
            f"{result.failed_count} failed, {result.alerts_created} alerts, "
            f"{len(result.addresses_fetched)}/{result.addresses_requested} addresses"
        )
        return result

    async def get_risky_positions(self, min_tier: RiskTier = RiskTier.WARNING) -> List[Position]:
        """
        Fetch everything and return positions at least as risky as min_tier.

        Returns:
            Positions sorted by ascending liquidation distance
        """
        result = await self.fetch_all()
        return sort_by_distance(filter_by_risk(result.positions, min_tier))

    def _process_account(
        self,
        address: str,
        state: AccountState,
        prices: Dict[str, float],
        entity_name: Optional[str],
        result: FetchResult,
    ):
        """Enrich and persist one account's positions, then drop closed ones."""
        now = datetime.now(timezone.utc)
        open_coins: List[str] = []

        for raw in state.positions:
            open_coins.append(raw.coin)
            result.open_keys.add(position_key(address, raw.coin))

            price = prices.get(raw.coin)
            if not price:
                # Unknown price, not a real zero
                result.skipped_no_price += 1
                logger.debug(f"No price for {raw.coin}, skipping {address[:10]}...")
                continue

            position = enrich(raw, price, self.config.tiers, now=now)
            position.entity_name = entity_name
            result.positions.append(position)

            try:
                position_id = self.store.upsert_position(position)
                result.updated_count += 1

                if position.risk_tier != RiskTier.SAFE:
                    self.store.create_alert(
                        position_id,
                        position.risk_tier,
                        position.liquidation_distance,
                        price,
                    )
                    result.alerts_created += 1
            except sqlite3.Error as e:
                result.failed_count += 1
                logger.error(f"Error saving position {position.key}: {e}")

        try:
            self.store.delete_stale_positions(address, open_coins)
        except sqlite3.Error as e:
            logger.error(f"Error cleaning old positions for {address[:10]}...: {e}")
