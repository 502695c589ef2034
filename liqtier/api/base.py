"""
Account State Source

Abstract interface for anything that can return account state and mid
prices. HyperliquidClient is the production implementation.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..models import AccountState


class AccountStateSource(ABC):
    """
    Source of account state and prices.

    Both methods return None when the data is unavailable; callers treat
    that as a soft failure.
    """

    @abstractmethod
    async def get_account_state(self, address: str) -> Optional[AccountState]:
        """Open positions and margin summary for one address."""

    @abstractmethod
    async def get_all_mid_prices(self) -> Optional[Dict[str, float]]:
        """Current mid price for every coin (unknown coins are absent)."""

    @property
    def is_low_latency(self) -> bool:
        """True when account state comes from a local node."""
        return False

    async def close(self):
        """Release any network resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
