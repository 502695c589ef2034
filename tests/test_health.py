"""Component health from consecutive failures."""

from liqtier.core.health import PRICE_FEED, POSITION_STORE, HealthMonitor, HealthStatus


class TestHealthMonitor:

    def _monitor(self):
        return HealthMonitor(degraded_after=2, down_after=4, clock=lambda: 123.0)

    def test_starts_healthy(self):
        monitor = self._monitor()
        assert monitor.overall_status() == HealthStatus.HEALTHY
        assert monitor.summary()["status"] == "healthy"

    def test_escalates_with_consecutive_failures(self):
        monitor = self._monitor()
        statuses = []
        for _ in range(4):
            monitor.record_failure(PRICE_FEED, "timeout")
            statuses.append(monitor.status(PRICE_FEED))

        assert statuses == [
            HealthStatus.HEALTHY,
            HealthStatus.DEGRADED,
            HealthStatus.DEGRADED,
            HealthStatus.DOWN,
        ]
        assert monitor.components[PRICE_FEED].last_error == "timeout"
        assert monitor.components[PRICE_FEED].last_check == 123.0

    def test_success_resets(self):
        monitor = self._monitor()
        for _ in range(4):
            monitor.record_failure(PRICE_FEED, "timeout")
        monitor.record_success(PRICE_FEED, response_time=0.05)

        health = monitor.components[PRICE_FEED]
        assert health.status == HealthStatus.HEALTHY
        assert health.consecutive_failures == 0
        assert health.last_error is None
        assert health.response_time == 0.05

    def test_overall_is_worst_component(self):
        monitor = self._monitor()
        monitor.record_failure(POSITION_STORE)
        monitor.record_failure(POSITION_STORE)

        assert monitor.overall_status() == HealthStatus.DEGRADED
        summary = monitor.summary()
        assert summary["components"][POSITION_STORE]["status"] == "degraded"
        assert summary["components"][POSITION_STORE]["last_error"] == "unknown error"

    def test_unknown_component_is_registered(self):
        monitor = self._monitor()
        monitor.record_success("custom")
        assert "custom" in monitor.components
