"""
Batch Fetch Executor

Fetches account state for many addresses in batches. Batch size and delay
depend on how fast the backing source is.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from ..api.base import AccountStateSource
from ..config import BatchProfile, Config, config as default_config
from ..models import AccountState

logger = logging.getLogger(__name__)

# Log progress only for requests at least this large
PROGRESS_LOG_MIN_ADDRESSES = 50


def _dedupe(addresses: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for addr in addresses:
        if addr not in seen:
            seen.add(addr)
            result.append(addr)
    return result


class BatchFetchExecutor:
    """
    Fetches account states in sequential batches.

    Within a batch every address is fetched concurrently. A failed address
    is logged and left out of the result; it never aborts the batch.
    """

    def __init__(
        self,
        source: AccountStateSource,
        profile: BatchProfile = None,
        cfg: Config = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            source: Account state source
            profile: Batch size/delay (default chosen from source latency)
            cfg: Configuration holding the latency profiles
            sleep: Sleep coroutine used between batches
        """
        cfg = cfg or default_config
        self.source = source
        self.profile = profile or cfg.batch_profile(source.is_low_latency)
        self._sleep = sleep
        self.last_failed: List[str] = []

    async def _fetch_one(self, address: str) -> Optional[AccountState]:
        try:
            state = await self.source.get_account_state(address)
        except Exception as e:
            logger.warning(f"Error fetching account state for {address[:10]}...: {e!r}")
            return None

        if state is None:
            logger.warning(f"Account state unavailable for {address[:10]}...")
        return state

    async def fetch(
        self,
        addresses: Iterable[str],
        progress_callback: Callable[[int, int], None] = None,
    ) -> Dict[str, AccountState]:
        """
        Fetch account states for a set of addresses.

        Args:
            addresses: Wallet addresses (duplicates are fetched once)
            progress_callback: Optional callback(completed, total)

        Returns:
            Dict mapping address to AccountState, omitting failed addresses
        """
        addresses = _dedupe(addresses)
        total = len(addresses)
        batch_size = self.profile.batch_size
        results: Dict[str, AccountState] = {}
        failed: List[str] = []

        if total == 0:
            self.last_failed = []
            return results

        logger.debug(f"Fetching {total} account states in batches of {batch_size}")

        for start in range(0, total, batch_size):
            batch = addresses[start:start + batch_size]
            states = await asyncio.gather(*[self._fetch_one(addr) for addr in batch])

            for addr, state in zip(batch, states):
                if state is not None:
                    results[addr] = state
                else:
                    failed.append(addr)

            done = min(start + batch_size, total)
            if progress_callback:
                progress_callback(done, total)
            if total >= PROGRESS_LOG_MIN_ADDRESSES:
                logger.info(f"Progress: {done}/{total} accounts fetched")

            # Delay between batches, not after the last one
            if done < total and self.profile.batch_delay_sec > 0:
                await self._sleep(self.profile.batch_delay_sec)

        self.last_failed = failed
        logger.info(f"Fetched {len(results)}/{total} account states successfully")
        return results
