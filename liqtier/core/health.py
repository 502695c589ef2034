"""
Health Monitor

Tracks consecutive failures per component and turns them into a
healthy / degraded / down signal. Nothing here stops the process.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

from ..config import Config, config as default_config

logger = logging.getLogger(__name__)

PRICE_FEED = "price-feed"
ACCOUNT_SOURCE = "account-source"
POSITION_STORE = "position-store"
POSITION_SYNC = "position-sync"

DEFAULT_COMPONENTS = (PRICE_FEED, ACCOUNT_SOURCE, POSITION_STORE, POSITION_SYNC)


class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.DOWN: 2}


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    consecutive_failures: int = 0
    last_check: Optional[float] = None
    last_error: Optional[str] = None
    response_time: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "consecutive_failures": self.consecutive_failures,
            "last_check": self.last_check,
            "last_error": self.last_error,
            "response_time": self.response_time,
        }


class HealthMonitor:
    """
    Per-component health derived from consecutive failures.

    - 0 or 1 consecutive failures: HEALTHY
    - degraded_after or more: DEGRADED
    - down_after or more: DOWN
    """

    def __init__(
        self,
        components: Iterable[str] = DEFAULT_COMPONENTS,
        degraded_after: int = None,
        down_after: int = None,
        cfg: Config = None,
        clock: Callable[[], float] = time.time,
    ):
        cfg = cfg or default_config
        self.degraded_after = degraded_after or cfg.health_degraded_after
        self.down_after = down_after or cfg.health_down_after
        self._clock = clock
        self.components: Dict[str, ComponentHealth] = {
            name: ComponentHealth(name=name) for name in components
        }

    def _get(self, name: str) -> ComponentHealth:
        if name not in self.components:
            self.components[name] = ComponentHealth(name=name)
        return self.components[name]

    def record_success(self, name: str, response_time: Optional[float] = None):
        health = self._get(name)
        if health.status != HealthStatus.HEALTHY:
            logger.info(f"{name} recovered after {health.consecutive_failures} failures")
        health.status = HealthStatus.HEALTHY
        health.consecutive_failures = 0
        health.last_error = None
        health.response_time = response_time
        health.last_check = self._clock()

    def record_failure(self, name: str, error: str = None):
        health = self._get(name)
        previous = health.status
        health.consecutive_failures += 1
        health.last_error = error or "unknown error"
        health.last_check = self._clock()

        if health.consecutive_failures >= self.down_after:
            health.status = HealthStatus.DOWN
        elif health.consecutive_failures >= self.degraded_after:
            health.status = HealthStatus.DEGRADED

        if health.status != previous:
            logger.warning(
                f"{name} is now {health.status.value.upper()} "
                f"({health.consecutive_failures} consecutive failures): {health.last_error}"
            )

    def status(self, name: str) -> HealthStatus:
        return self._get(name).status

    def overall_status(self) -> HealthStatus:
        """Worst status across all components."""
        worst = HealthStatus.HEALTHY
        for health in self.components.values():
            if _SEVERITY[health.status] > _SEVERITY[worst]:
                worst = health.status
        return worst

    def summary(self) -> dict:
        return {
            "status": self.overall_status().value,
            "components": {name: h.to_dict() for name, h in self.components.items()},
        }

    def log_summary(self):
        """Log one line per component; ERROR for anything that is down."""
        for name, health in self.components.items():
            message = f"{name}: {health.status.value.upper()}"
            if health.response_time is not None:
                message += f" ({health.response_time * 1000:.0f}ms)"
            if health.last_error:
                message += f" - {health.last_error}"

            if health.status == HealthStatus.DOWN:
                logger.error(message)
            else:
                logger.info(message)
