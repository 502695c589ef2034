"""Container health check: endpoint checks and overall verdict."""

import pytest
import requests

from liqtier.config import Config
from scripts import health_check


class FakeResponse:
    def __init__(self, data, status=200):
        self.data = data
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.data


PUBLIC_URL = "https://public.test/info"
PRIVATE_URL = "http://node.test:3001/info"


@pytest.fixture
def endpoints(monkeypatch):
    """
    Fake info endpoints keyed by (url, request type); records each request.
    """
    answers = {
        (PUBLIC_URL, "allMids"): FakeResponse({"BTC": "100.0"}),
        (PRIVATE_URL, "clearinghouseState"): FakeResponse(
            {"assetPositions": [], "marginSummary": {"accountValue": "0"}}
        ),
    }
    requests_seen = []

    def fake_post(url, json=None, timeout=None):
        requests_seen.append((url, json))
        answer = answers.get((url, json["type"]))
        if answer is None:
            raise requests.ConnectionError(f"no route to {url}")
        return answer

    monkeypatch.setattr(health_check.requests, "post", fake_post)
    return answers, requests_seen


@pytest.fixture
def hc_config(monkeypatch, tmp_path):
    cfg = Config(data_dir=tmp_path, public_api_url=PUBLIC_URL, private_api_url=PRIVATE_URL)
    monkeypatch.setattr(health_check, "load_config", lambda: cfg)
    return cfg


class TestEndpointChecks:

    def test_price_feed_ok(self, endpoints):
        assert health_check.check_price_feed(PUBLIC_URL, 1.0)

    def test_price_feed_empty(self, endpoints):
        answers, _ = endpoints
        answers[(PUBLIC_URL, "allMids")] = FakeResponse({})
        assert not health_check.check_price_feed(PUBLIC_URL, 1.0)

    def test_account_source_asks_for_zero_address(self, endpoints):
        _, seen = endpoints

        assert health_check.check_account_source(PRIVATE_URL, 1.0)
        assert seen == [
            (PRIVATE_URL, {"type": "clearinghouseState", "user": "0x" + "0" * 40})
        ]

    @pytest.mark.parametrize("data", [{}, [], {"assetPositions": None}])
    def test_account_source_malformed(self, endpoints, data):
        answers, _ = endpoints
        answers[(PRIVATE_URL, "clearinghouseState")] = FakeResponse(data)
        assert not health_check.check_account_source(PRIVATE_URL, 1.0)

    def test_account_source_http_error(self, endpoints):
        answers, _ = endpoints
        answers[(PRIVATE_URL, "clearinghouseState")] = FakeResponse({}, status=500)
        assert not health_check.check_account_source(PRIVATE_URL, 1.0)


class TestCheckHealth:

    def test_healthy_when_both_endpoints_answer(self, endpoints, hc_config):
        _, seen = endpoints

        assert health_check.check_health()
        assert {(url, payload["type"]) for url, payload in seen} == {
            (PUBLIC_URL, "allMids"),
            (PRIVATE_URL, "clearinghouseState"),
        }

    def test_unhealthy_when_private_endpoint_down(self, endpoints, hc_config):
        answers, _ = endpoints
        del answers[(PRIVATE_URL, "clearinghouseState")]

        assert not health_check.check_health()

    def test_unhealthy_when_price_feed_down(self, endpoints, hc_config):
        answers, _ = endpoints
        del answers[(PUBLIC_URL, "allMids")]

        assert not health_check.check_health()
