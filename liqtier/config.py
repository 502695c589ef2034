"""
Configuration for the Tiered Liquidation Monitor

All settings in one place for easy tuning. Values can be overridden from the
environment (or a .env file in the project root) via load_config().
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional
from pathlib import Path
import os

from dotenv import load_dotenv

_project_root = Path(__file__).parent.parent
_env_path = _project_root / ".env"


# =============================================================================
# Risk Tiers
# =============================================================================

class RiskTier(Enum):
    """Risk bucket based on distance to liquidation, most dangerous first."""
    CRITICAL = "critical"
    DANGER = "danger"
    WARNING = "warning"
    SAFE = "safe"

    @property
    def rank(self) -> int:
        """0 for CRITICAL up to 3 for SAFE."""
        return TIER_ORDER.index(self)

    @property
    def label(self) -> str:
        return self.value.upper()


TIER_ORDER: List[RiskTier] = [
    RiskTier.CRITICAL,
    RiskTier.DANGER,
    RiskTier.WARNING,
    RiskTier.SAFE,
]


@dataclass(frozen=True)
class TierSpec:
    """Distance upper bound and refresh cadence for one tier."""
    threshold_pct: float  # distance < threshold_pct falls in this tier
    refresh_sec: float


@dataclass(frozen=True)
class BatchProfile:
    """Batch size and inter-batch delay for an account state source."""
    batch_size: int
    batch_delay_sec: float


def default_tiers() -> Dict[RiskTier, TierSpec]:
    return {
        RiskTier.CRITICAL: TierSpec(threshold_pct=5.0, refresh_sec=10.0),
        RiskTier.DANGER: TierSpec(threshold_pct=10.0, refresh_sec=30.0),
        RiskTier.WARNING: TierSpec(threshold_pct=20.0, refresh_sec=60.0),
        # SAFE has no upper bound
        RiskTier.SAFE: TierSpec(threshold_pct=float("inf"), refresh_sec=300.0),
    }


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class Config:
    """All configuration settings."""

    # -------------------------------------------------------------------------
    # Tier table (distance to liquidation % -> refresh interval)
    # -------------------------------------------------------------------------
    tiers: Dict[RiskTier, TierSpec] = field(default_factory=default_tiers)

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------
    # How often the scheduler looks for due positions (seconds)
    tick_interval_sec: float = 5.0

    # Full re-sync of every tracked address (picks up newly opened positions)
    full_sync_interval_sec: float = 1800.0

    # How often to log scheduler statistics (seconds)
    stats_interval_sec: float = 60.0

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    # Private endpoint (local node) serves clearinghouse state
    private_api_url: str = "http://localhost:3001/info"
    # Public endpoint serves allMids price data
    public_api_url: str = "https://api.hyperliquid.xyz/info"

    request_timeout_sec: float = 10.0
    rate_limit_backoff_sec: float = 2.0
    max_retries: int = 3

    # Batch profiles by source latency class
    local_batch: BatchProfile = field(
        default_factory=lambda: BatchProfile(batch_size=500, batch_delay_sec=0.005)
    )
    remote_batch: BatchProfile = field(
        default_factory=lambda: BatchProfile(batch_size=10, batch_delay_sec=0.1)
    )

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------
    health_degraded_after: int = 2
    health_down_after: int = 5

    # -------------------------------------------------------------------------
    # Storage / Logging
    # -------------------------------------------------------------------------
    data_dir: Path = field(default_factory=lambda: _project_root / "data")
    db_path_override: Optional[Path] = None

    log_level: str = "INFO"
    log_file: str = "logs/monitor.log"

    @property
    def positions_db_path(self) -> Path:
        return self.db_path_override or self.data_dir / "positions.db"

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    def refresh_interval(self, tier: RiskTier) -> float:
        """Refresh interval in seconds for a tier."""
        return self.tiers[tier].refresh_sec

    def batch_profile(self, low_latency: bool) -> BatchProfile:
        return self.local_batch if low_latency else self.remote_batch

    def validate(self):
        """
        Check the tier table and scheduler timing.

        Raises:
            ValueError: if thresholds are not strictly increasing from
                CRITICAL to SAFE, a tier is missing, or the tick is not
                finer than the fastest tier interval
        """
        missing = [t for t in TIER_ORDER if t not in self.tiers]
        if missing:
            raise ValueError(f"Tier table missing: {[t.value for t in missing]}")

        thresholds = [self.tiers[t].threshold_pct for t in TIER_ORDER]
        if any(a >= b for a, b in zip(thresholds, thresholds[1:])):
            raise ValueError(f"Tier thresholds must increase CRITICAL -> SAFE: {thresholds}")
        if thresholds[0] <= 0:
            raise ValueError("CRITICAL threshold must be positive")

        fastest = min(self.tiers[t].refresh_sec for t in TIER_ORDER)
        if self.tick_interval_sec <= 0 or self.tick_interval_sec >= fastest:
            raise ValueError(
                f"tick_interval_sec ({self.tick_interval_sec}) must be > 0 and "
                f"smaller than the fastest tier interval ({fastest})"
            )

        for name, profile in (("local", self.local_batch), ("remote", self.remote_batch)):
            if profile.batch_size < 1:
                raise ValueError(f"{name} batch size must be >= 1")
            if profile.batch_delay_sec < 0:
                raise ValueError(f"{name} batch delay must be >= 0")


def _env_int(name: str) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}")


def _env_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {value!r}")


def load_config(env_file: Optional[Path] = None) -> Config:
    """
    Build a Config from defaults plus environment overrides.

    Args:
        env_file: Optional .env file (defaults to <project>/.env if present)

    Returns:
        Validated Config
    """
    env_path = env_file or _env_path
    if env_path.exists():
        load_dotenv(env_path)

    cfg = Config()

    private_url = (
        os.environ.get("HYPERLIQUID_PRIVATE_API_URL")
        or os.environ.get("HYPERLIQUID_API_URL")
    )
    if private_url:
        cfg.private_api_url = private_url
    public_url = os.environ.get("HYPERLIQUID_PUBLIC_API_URL")
    if public_url:
        cfg.public_api_url = public_url

    # Batch delays are given in milliseconds
    size = _env_int("BATCH_SIZE_LOCAL")
    delay = _env_int("BATCH_DELAY_LOCAL")
    if size is not None or delay is not None:
        cfg.local_batch = BatchProfile(
            batch_size=size if size is not None else cfg.local_batch.batch_size,
            batch_delay_sec=delay / 1000 if delay is not None else cfg.local_batch.batch_delay_sec,
        )
    size = _env_int("BATCH_SIZE_REMOTE")
    delay = _env_int("BATCH_DELAY_REMOTE")
    if size is not None or delay is not None:
        cfg.remote_batch = BatchProfile(
            batch_size=size if size is not None else cfg.remote_batch.batch_size,
            batch_delay_sec=delay / 1000 if delay is not None else cfg.remote_batch.batch_delay_sec,
        )

    tick = _env_float("TICK_INTERVAL_SEC")
    if tick is not None:
        cfg.tick_interval_sec = tick
    full_sync = _env_float("FULL_SYNC_INTERVAL_SEC")
    if full_sync is not None:
        cfg.full_sync_interval_sec = full_sync

    down_after = _env_int("HEALTH_ALERT_THRESHOLD")
    if down_after is not None:
        cfg.health_down_after = down_after

    db_path = os.environ.get("LIQTIER_DB_PATH")
    if db_path:
        cfg.db_path_override = Path(db_path)

    cfg.log_level = os.environ.get("LOG_LEVEL", cfg.log_level)
    cfg.log_file = os.environ.get("LOG_FILE", cfg.log_file)

    cfg.validate()
    return cfg


def with_tiers(cfg: Config, tiers: Dict[RiskTier, TierSpec]) -> Config:
    """Copy of cfg with a different tier table (validated)."""
    new_cfg = replace(cfg, tiers=dict(tiers))
    new_cfg.validate()
    return new_cfg


# Defaults used when a component is constructed without an explicit Config
config = Config()
