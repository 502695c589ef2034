"""
Risk Classification

Pure computation of liquidation distance, risk tier and current value/PnL
from raw position fields. No I/O.
"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..config import RiskTier, TierSpec, TIER_ORDER, config
from ..models import Position


def is_long(size: float) -> bool:
    """Positive size is long, negative is short."""
    return size > 0


def liquidation_distance(
    current_price: float,
    liquidation_price: Optional[float],
    long: bool = True,
) -> Optional[float]:
    """
    Distance to liquidation as a percentage of current price.

    Positive means safe by that percent, zero or negative means the
    liquidation price has been reached or crossed.

    Returns:
        Distance %, or None when either price is unusable
    """
    if liquidation_price is None or current_price is None or current_price <= 0:
        return None

    if long:
        # Longs are liquidated when price falls to the liquidation price
        return (current_price - liquidation_price) / current_price * 100
    # Shorts are liquidated when price rises to it
    return (liquidation_price - current_price) / current_price * 100


def classify_tier(
    distance_pct: Optional[float],
    tiers: Optional[Dict[RiskTier, TierSpec]] = None,
) -> RiskTier:
    """
    Classify a distance into a risk tier.

    Undefined or negative distance is always CRITICAL.
    """
    tiers = tiers or config.tiers

    if distance_pct is None or distance_pct < 0 or distance_pct != distance_pct:
        return RiskTier.CRITICAL

    for tier in TIER_ORDER[:-1]:
        if distance_pct < tiers[tier].threshold_pct:
            return tier
    return RiskTier.SAFE


def enrich(
    position: Position,
    current_price: float,
    tiers: Optional[Dict[RiskTier, TierSpec]] = None,
    now: Optional[datetime] = None,
) -> Position:
    """
    Return a copy of position with all derived fields recomputed.

    Args:
        position: Raw position from the account state
        current_price: Mark/mid price for the coin
        tiers: Tier table (default from config)
        now: Timestamp for last_updated (default: keep the input's)

    Returns:
        New Position; the input is not modified
    """
    long = is_long(position.size)
    abs_size = abs(position.size)

    position_value = abs_size * current_price
    entry_value = abs_size * position.entry_price
    pnl = position_value - entry_value if long else entry_value - position_value

    distance = liquidation_distance(current_price, position.liquidation_price, long)

    return replace(
        position,
        current_price=current_price,
        position_value=position_value,
        unrealized_pnl=pnl,
        liquidation_distance=distance,
        risk_tier=classify_tier(distance, tiers),
        last_updated=now if now is not None else position.last_updated,
    )


def tier_rank(tier: Optional[RiskTier]) -> int:
    """0 = CRITICAL ... 3 = SAFE. Unclassified positions rank as SAFE."""
    return (tier or RiskTier.SAFE).rank


def is_riskier(new: RiskTier, old: Optional[RiskTier]) -> bool:
    """True if new is a more dangerous tier than old."""
    return old is None or new.rank < old.rank


def _distance_sort_key(position: Position) -> float:
    # Undefined distance is treated as the most dangerous
    d = position.liquidation_distance
    return float("-inf") if d is None else d


def filter_by_risk(positions: Iterable[Position], min_tier: RiskTier) -> List[Position]:
    """Keep positions at least as risky as min_tier."""
    return [p for p in positions if tier_rank(p.risk_tier) <= min_tier.rank]


def sort_by_risk(positions: Iterable[Position]) -> List[Position]:
    """Most risky tier first, then ascending liquidation distance."""
    return sorted(positions, key=lambda p: (tier_rank(p.risk_tier), _distance_sort_key(p)))


def sort_by_distance(positions: Iterable[Position]) -> List[Position]:
    """Ascending liquidation distance (undefined first)."""
    return sorted(positions, key=_distance_sort_key)
