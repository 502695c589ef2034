"""
Shared fixtures: an in-memory account state source, temp-file stores
and a controllable clock.
"""

import pytest

from liqtier.api.base import AccountStateSource
from liqtier.config import Config
from liqtier.db import PositionStore
from liqtier.models import AccountState, Position


def make_position(address, coin, size, entry_price, liquidation_price, leverage=10.0):
    return Position(
        address=address,
        coin=coin,
        entry_price=entry_price,
        size=size,
        leverage=leverage,
        liquidation_price=liquidation_price,
        margin_used=abs(size) * entry_price / leverage,
    )


class FakeSource(AccountStateSource):
    """
    In-memory account state source.

    accounts maps address -> list of positions; addresses in failing raise,
    addresses missing from accounts return None.
    """

    def __init__(self, prices=None, low_latency=False):
        self.prices = dict(prices or {})
        self.accounts = {}
        self.failing = set()
        self.prices_available = True
        self.low_latency = low_latency
        self.account_calls = []
        self.price_calls = 0
        self.closed = False

    def set_positions(self, address, *positions):
        self.accounts[address] = list(positions)

    @property
    def is_low_latency(self):
        return self.low_latency

    async def get_account_state(self, address):
        self.account_calls.append(address)
        if address in self.failing:
            raise ConnectionError(f"boom {address}")
        if address not in self.accounts:
            return None
        return AccountState(address=address, positions=list(self.accounts[address]))

    async def get_all_mid_prices(self):
        self.price_calls += 1
        if not self.prices_available:
            return None
        return dict(self.prices)

    async def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def cfg(tmp_path):
    return Config(data_dir=tmp_path)


@pytest.fixture
def store(tmp_path):
    return PositionStore(db_path=tmp_path / "positions.db")


@pytest.fixture
def source():
    return FakeSource(prices={"BTC": 100.0, "ETH": 2000.0, "SOL": 50.0})


@pytest.fixture
def clock():
    return FakeClock()
