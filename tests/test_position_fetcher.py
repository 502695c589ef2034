"""Full-population fetch and persistence."""

import sqlite3

import pytest

from liqtier.config import RiskTier
from liqtier.core.position_fetcher import PositionFetcher, PriceFeedUnavailableError

from conftest import make_position


@pytest.fixture
def fetcher(source, store, cfg):
    return PositionFetcher(source, store, cfg=cfg)


def _track(store, source, address, *positions):
    store.upsert_entity(address, f"name-{address}")
    source.set_positions(address, *positions)


class TestFetchAll:

    @pytest.mark.asyncio
    async def test_persists_enriched_positions(self, fetcher, source, store):
        _track(store, source, "0xa",
               make_position("0xa", "BTC", 10.0, 100.0, 97.0),    # 3% CRITICAL
               make_position("0xa", "ETH", -1.0, 2000.0, 3000.0)) # 50% SAFE

        result = await fetcher.fetch_all()

        assert result.updated_count == 2
        assert result.failed_count == 0
        assert result.addresses_requested == 1
        assert result.addresses_fetched == {"0xa"}
        assert result.open_keys == {"0xa:BTC", "0xa:ETH"}
        tiers = {p.coin: p.risk_tier for p in result.positions}
        assert tiers == {"BTC": RiskTier.CRITICAL, "ETH": RiskTier.SAFE}
        assert all(p.entity_name == "name-0xa" for p in result.positions)

        assert {r.key for r in store.get_positions()} == {"0xa:BTC", "0xa:ETH"}
        # Alerts only for non-SAFE positions
        assert result.alerts_created == 1
        assert len(store.get_alerts_for_position("0xa", "BTC")) == 1

    @pytest.mark.asyncio
    async def test_no_addresses(self, fetcher, source):
        result = await fetcher.fetch_all()
        assert result.positions == []
        assert source.price_calls == 0

    @pytest.mark.asyncio
    async def test_price_feed_down_raises(self, fetcher, source, store):
        _track(store, source, "0xa", make_position("0xa", "BTC", 1.0, 100.0, 80.0))
        source.prices_available = False

        with pytest.raises(PriceFeedUnavailableError):
            await fetcher.fetch_all()
        assert store.get_positions() == []

    @pytest.mark.asyncio
    async def test_failed_address_does_not_block_others(self, fetcher, source, store):
        _track(store, source, "0xa", make_position("0xa", "BTC", 1.0, 100.0, 80.0))
        _track(store, source, "0xb", make_position("0xb", "BTC", 1.0, 100.0, 80.0))
        source.failing.add("0xa")

        result = await fetcher.fetch_all()

        assert result.addresses_fetched == {"0xb"}
        assert result.addresses_failed == 1
        assert [p.address for p in result.positions] == ["0xb"]

    @pytest.mark.asyncio
    async def test_closed_position_removed_with_alerts(self, fetcher, source, store):
        _track(store, source, "0xa",
               make_position("0xa", "BTC", 1.0, 100.0, 97.0),
               make_position("0xa", "ETH", 1.0, 2000.0, 1950.0))
        await fetcher.fetch_all()
        assert len(store.get_alerts_for_position("0xa", "ETH")) == 1

        source.set_positions("0xa", make_position("0xa", "BTC", 1.0, 100.0, 97.0))
        await fetcher.fetch_all()

        assert [r.key for r in store.get_positions()] == ["0xa:BTC"]
        assert store.get_alerts_for_position("0xa", "ETH") == []
        assert len(store.get_recent_alerts()) == 2  # BTC alerted on each run

    @pytest.mark.asyncio
    async def test_failed_address_keeps_stored_rows(self, fetcher, source, store):
        _track(store, source, "0xa", make_position("0xa", "BTC", 1.0, 100.0, 80.0))
        await fetcher.fetch_all()

        source.failing.add("0xa")
        await fetcher.fetch_all()

        assert [r.key for r in store.get_positions()] == ["0xa:BTC"]

    @pytest.mark.asyncio
    async def test_missing_price_is_skipped_but_kept_open(self, fetcher, source, store):
        _track(store, source, "0xa",
               make_position("0xa", "BTC", 1.0, 100.0, 80.0),
               make_position("0xa", "DOGE", 1.0, 0.1, 0.05))

        result = await fetcher.fetch_all()

        assert result.skipped_no_price == 1
        assert "0xa:DOGE" in result.open_keys
        assert [p.coin for p in result.positions] == ["BTC"]

    @pytest.mark.asyncio
    async def test_store_error_is_counted(self, fetcher, source, store, monkeypatch):
        _track(store, source, "0xa",
               make_position("0xa", "BTC", 1.0, 100.0, 80.0),
               make_position("0xa", "ETH", 1.0, 2000.0, 1000.0))

        original = store.upsert_position

        def flaky(position):
            if position.coin == "BTC":
                raise sqlite3.OperationalError("disk I/O error")
            return original(position)

        monkeypatch.setattr(store, "upsert_position", flaky)
        result = await fetcher.fetch_all()

        assert result.failed_count == 1
        assert result.updated_count == 1

    @pytest.mark.asyncio
    async def test_get_risky_positions(self, fetcher, source, store):
        _track(store, source, "0xa",
               make_position("0xa", "BTC", 1.0, 100.0, 88.0),     # 12% WARNING
               make_position("0xa", "ETH", 1.0, 2000.0, 1950.0),  # 2.5% CRITICAL
               make_position("0xa", "SOL", 1.0, 50.0, 10.0))      # 80% SAFE

        risky = await fetcher.get_risky_positions(RiskTier.WARNING)

        assert [p.coin for p in risky] == ["ETH", "BTC"]
