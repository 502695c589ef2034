# Core business logic
from .risk import (
    classify_tier,
    enrich,
    filter_by_risk,
    is_riskier,
    liquidation_distance,
    sort_by_distance,
    sort_by_risk,
)
from .batch import BatchFetchExecutor
from .position_fetcher import FetchResult, PositionFetcher, PriceFeedUnavailableError
from .health import HealthMonitor, HealthStatus
from .scheduler import DueQueue, SchedulerStats, TickResult, TieredScheduler

__all__ = [
    "classify_tier",
    "enrich",
    "filter_by_risk",
    "is_riskier",
    "liquidation_distance",
    "sort_by_distance",
    "sort_by_risk",
    "BatchFetchExecutor",
    "FetchResult",
    "PositionFetcher",
    "PriceFeedUnavailableError",
    "HealthMonitor",
    "HealthStatus",
    "DueQueue",
    "SchedulerStats",
    "TickResult",
    "TieredScheduler",
]
