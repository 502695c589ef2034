"""Parsing of clearinghouseState and allMids responses."""

import pytest

from liqtier.config import RiskTier
from liqtier.models import AccountState, Position, PositionTracker, SchemaError, parse_mid_prices


def _asset(coin, szi, entry="100", liq="80", leverage=None):
    position = {
        "coin": coin,
        "szi": szi,
        "entryPx": entry,
        "liquidationPx": liq,
        "marginUsed": "100.0",
        "leverage": leverage or {"type": "cross", "value": 10},
    }
    return {"position": position, "type": "oneWay"}


class TestPositionFromApi:

    def test_parses_long(self):
        p = Position.from_api("0xa", _asset("BTC", "1.5")["position"])
        assert p.coin == "BTC"
        assert p.size == 1.5
        assert p.is_long
        assert p.side == "long"
        assert p.leverage == 10.0
        assert p.liquidation_price == 80.0
        assert p.key == "0xa:BTC"

    def test_parses_short(self):
        p = Position.from_api("0xa", _asset("ETH", "-2", liq="120")["position"])
        assert not p.is_long
        assert p.side == "short"

    def test_zero_size_is_none(self):
        assert Position.from_api("0xa", _asset("BTC", "0")["position"]) is None

    @pytest.mark.parametrize("liq", [None, "0", "-1"])
    def test_unusable_liquidation_price(self, liq):
        p = Position.from_api("0xa", _asset("BTC", "1", liq=liq)["position"])
        assert p.liquidation_price is None

    def test_isolated_leverage(self):
        p = Position.from_api("0xa", _asset("BTC", "1", leverage={"type": "isolated", "value": 3})["position"])
        assert p.leverage_type == "isolated"
        assert p.leverage == 3.0

    def test_missing_field_raises(self):
        data = _asset("BTC", "1")["position"]
        del data["entryPx"]
        with pytest.raises(SchemaError):
            Position.from_api("0xa", data)


class TestAccountStateFromApi:

    def test_parses_positions_and_margin(self):
        data = {
            "assetPositions": [_asset("BTC", "1"), _asset("ETH", "-3"), _asset("SOL", "0")],
            "marginSummary": {"accountValue": "5000", "totalMarginUsed": "200"},
            "withdrawable": "1234.5",
            "time": 1700000000000,
        }
        state = AccountState.from_api("0xa", data)
        assert state.coins == ["BTC", "ETH"]
        assert state.margin_summary.account_value == 5000.0
        assert state.withdrawable == 1234.5
        assert state.get_position("ETH").size == -3.0
        assert state.get_position("SOL") is None

    def test_skips_malformed_position(self):
        bad = {"position": {"coin": "BTC", "szi": "abc", "entryPx": "1"}}
        state = AccountState.from_api("0xa", {"assetPositions": [bad, _asset("ETH", "1")]})
        assert state.coins == ["ETH"]

    def test_empty_account(self):
        state = AccountState.from_api("0xa", {"assetPositions": []})
        assert state.positions == []

    @pytest.mark.parametrize("data", [None, [], "x", {"marginSummary": {}}])
    def test_malformed_envelope_raises(self, data):
        with pytest.raises(SchemaError):
            AccountState.from_api("0xa", data)

    @pytest.mark.parametrize("summary", ["x", ["5000"], 1])
    def test_non_object_margin_summary_raises(self, summary):
        data = {"assetPositions": [_asset("BTC", "1")], "marginSummary": summary}
        with pytest.raises(SchemaError):
            AccountState.from_api("0xa", data)


class TestParseMidPrices:

    def test_parses_and_drops_unknown(self):
        prices = parse_mid_prices({"BTC": "95000.5", "ETH": "0", "BAD": "n/a", "SOL": "-1"})
        assert prices == {"BTC": 95000.5}

    def test_non_dict_raises(self):
        with pytest.raises(SchemaError):
            parse_mid_prices(["BTC"])


class TestPositionTracker:

    def test_is_due(self):
        t = PositionTracker("0xa", "BTC", RiskTier.DANGER, last_updated=100.0, next_update=130.0)
        assert not t.is_due(129.9)
        assert t.is_due(130.0)
        assert t.key == "0xa:BTC"
        assert t.to_dict()["tier"] == "danger"
