"""SQLite position store."""

from datetime import datetime, timezone

import pytest

from liqtier.config import RiskTier
from liqtier.core.risk import enrich
from liqtier.db import PositionStore

from conftest import make_position


def _enriched(address, coin, liq, price=100.0):
    return enrich(
        make_position(address, coin, 1.0, 100.0, liq),
        price,
        now=datetime.now(timezone.utc),
    )


class TestEntities:

    def test_upsert_and_list(self, store):
        store.upsert_entity("0xb", "Beta")
        store.upsert_entity("0xa", "Alpha", twitter="alpha")
        store.upsert_entity("0xa", "Alpha Fund")

        assert store.get_tracked_addresses() == ["0xa", "0xb"]
        assert store.get_entity_names() == {"0xa": "Alpha Fund", "0xb": "Beta"}

    def test_remove_entity_drops_positions(self, store):
        store.upsert_entity("0xa", "Alpha")
        store.upsert_position(_enriched("0xa", "BTC", 80.0))

        assert store.remove_entity("0xa")
        assert store.get_tracked_addresses() == []
        assert store.get_positions() == []
        assert not store.remove_entity("0xa")


class TestPositions:

    def test_upsert_is_keyed_by_address_and_coin(self, store):
        first = store.upsert_position(_enriched("0xa", "BTC", 80.0))
        second = store.upsert_position(_enriched("0xa", "BTC", 97.0))

        assert first == second
        rows = store.get_positions()
        assert len(rows) == 1
        assert rows[0].risk_tier == RiskTier.CRITICAL
        assert rows[0].liquidation_price == 97.0

    def test_get_positions_sorted_and_filtered(self, store):
        store.upsert_position(_enriched("0xa", "BTC", 50.0))   # SAFE
        store.upsert_position(_enriched("0xa", "ETH", 97.0))   # CRITICAL
        store.upsert_position(_enriched("0xb", "BTC", 88.0))   # WARNING
        store.upsert_position(_enriched("0xc", "SOL", None))   # CRITICAL, undefined

        rows = store.get_positions()
        assert [r.key for r in rows] == ["0xc:SOL", "0xa:ETH", "0xb:BTC", "0xa:BTC"]

        risky = store.get_positions(min_tier=RiskTier.DANGER)
        assert {r.key for r in risky} == {"0xc:SOL", "0xa:ETH"}

    def test_delete_stale_removes_rows_and_alerts(self, store):
        keep_id = store.upsert_position(_enriched("0xa", "BTC", 97.0))
        gone_id = store.upsert_position(_enriched("0xa", "ETH", 97.0))
        other_id = store.upsert_position(_enriched("0xb", "ETH", 97.0))
        for pid in (keep_id, gone_id, other_id):
            store.create_alert(pid, RiskTier.CRITICAL, 3.0, 100.0)

        deleted = store.delete_stale_positions("0xa", ["BTC"])

        assert deleted == 1
        assert {r.key for r in store.get_positions()} == {"0xa:BTC", "0xb:ETH"}
        assert {a.position_id for a in store.get_recent_alerts()} == {keep_id, other_id}

    def test_delete_stale_with_empty_keep_removes_all_for_address(self, store):
        store.upsert_position(_enriched("0xa", "BTC", 80.0))
        store.upsert_position(_enriched("0xa", "ETH", 80.0))
        store.upsert_position(_enriched("0xb", "BTC", 80.0))

        assert store.delete_stale_positions("0xa", []) == 2
        assert [r.address for r in store.get_positions()] == ["0xb"]

    def test_last_update_time(self, store):
        assert store.get_last_update_time() is None
        store.upsert_position(_enriched("0xa", "BTC", 80.0))
        assert store.get_last_update_time() is not None


class TestAlerts:

    def test_alerts_for_position(self, store):
        pid = store.upsert_position(_enriched("0xa", "BTC", 92.0))
        store.create_alert(pid, RiskTier.DANGER, 8.0, 100.0)
        store.create_alert(pid, RiskTier.CRITICAL, 3.0, 95.0)

        alerts = store.get_alerts_for_position("0xa", "BTC")
        assert [a.alert_type for a in alerts] == [RiskTier.DANGER, RiskTier.CRITICAL]
        assert store.get_recent_alerts(limit=1)[0].alert_type == RiskTier.CRITICAL


class TestStats:

    def test_stats(self, store):
        store.upsert_entity("0xa", "Alpha")
        pid = store.upsert_position(_enriched("0xa", "BTC", 97.0))
        store.upsert_position(_enriched("0xa", "ETH", 50.0, price=2000.0))
        store.create_alert(pid, RiskTier.CRITICAL, 3.0, 100.0)

        stats = store.get_stats()
        assert stats.total_entities == 1
        assert stats.total_positions == 2
        assert stats.total_alerts == 1
        assert stats.tier_counts["critical"] == 1
        assert stats.tier_counts["safe"] == 1
        assert stats.total_notional == pytest.approx(2100.0)

    def test_db_path_from_config(self, cfg):
        store = PositionStore(cfg=cfg)
        assert store.db_path == cfg.positions_db_path
        assert store.db_path.exists()
