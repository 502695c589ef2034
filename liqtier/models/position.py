"""
Position Models
===============

Dataclasses for account state returned by the Hyperliquid API and for the
scheduler's per-position tracking records.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config import RiskTier

logger = logging.getLogger(__name__)


class SchemaError(ValueError):
    """Raised when an API response does not match the expected shape."""


def position_key(address: str, coin: str) -> str:
    """Unique key for a position (one per address + coin)."""
    return f"{address}:{coin}"


def _to_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Parse a numeric string from the API, returning default when absent."""
    if value is None or value == "":
        return default
    return float(value)


@dataclass
class Position:
    """
    A single open position.

    Raw fields come from clearinghouseState. The derived fields are only
    set by core.risk.enrich() and are recomputed on every fetch.
    """
    address: str
    coin: str
    entry_price: float
    size: float  # signed: positive = long, negative = short
    leverage: float
    liquidation_price: Optional[float]  # None if the venue reports none
    margin_used: float
    leverage_type: str = "cross"
    entity_name: Optional[str] = None

    # Derived (see core.risk.enrich)
    current_price: Optional[float] = None
    position_value: Optional[float] = None
    unrealized_pnl: Optional[float] = None
    liquidation_distance: Optional[float] = None
    risk_tier: Optional[RiskTier] = None
    last_updated: Optional[datetime] = None

    @property
    def key(self) -> str:
        return position_key(self.address, self.coin)

    @property
    def is_long(self) -> bool:
        return self.size > 0

    @property
    def side(self) -> str:
        return "long" if self.is_long else "short"

    @classmethod
    def from_api(cls, address: str, data: Dict[str, Any]) -> Optional["Position"]:
        """
        Build a Position from an assetPositions[].position entry.

        Returns:
            Position, or None for a zero-size entry

        Raises:
            SchemaError: if required fields are missing or not numeric
        """
        try:
            coin = data["coin"]
            size = float(data["szi"])
            if size == 0:
                return None

            leverage_info = data.get("leverage") or {}
            if isinstance(leverage_info, dict):
                leverage = float(leverage_info.get("value", 1.0))
                leverage_type = leverage_info.get("type", "cross")
            else:
                leverage = float(leverage_info)
                leverage_type = "cross"

            liquidation_price = _to_float(data.get("liquidationPx"))
            if liquidation_price is not None and liquidation_price <= 0:
                liquidation_price = None

            return cls(
                address=address,
                coin=coin,
                entry_price=float(data["entryPx"]),
                size=size,
                leverage=leverage,
                leverage_type=leverage_type,
                liquidation_price=liquidation_price,
                margin_used=_to_float(data.get("marginUsed"), 0.0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SchemaError(f"Malformed position for {address}: {e}") from e


@dataclass
class MarginSummary:
    """Account-level margin figures."""
    account_value: float = 0.0
    total_margin_used: float = 0.0
    total_notional_position: float = 0.0
    total_raw_usd: float = 0.0

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> "MarginSummary":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise SchemaError(f"Expected object for marginSummary, got {type(data).__name__}")
        try:
            return cls(
                account_value=_to_float(data.get("accountValue"), 0.0),
                total_margin_used=_to_float(data.get("totalMarginUsed"), 0.0),
                total_notional_position=_to_float(data.get("totalNtlPos"), 0.0),
                total_raw_usd=_to_float(data.get("totalRawUsd"), 0.0),
            )
        except (TypeError, ValueError) as e:
            raise SchemaError(f"Malformed marginSummary: {e}") from e


@dataclass
class AccountState:
    """Parsed clearinghouseState response for one address."""
    address: str
    positions: List[Position]
    margin_summary: MarginSummary = field(default_factory=MarginSummary)
    withdrawable: float = 0.0
    time: Optional[int] = None

    @property
    def coins(self) -> List[str]:
        return [p.coin for p in self.positions]

    def get_position(self, coin: str) -> Optional[Position]:
        for p in self.positions:
            if p.coin == coin:
                return p
        return None

    @classmethod
    def from_api(cls, address: str, data: Any) -> "AccountState":
        """
        Validate and parse a clearinghouseState response.

        Malformed individual positions are skipped; a malformed envelope
        raises SchemaError.
        """
        if not isinstance(data, dict):
            raise SchemaError(f"Expected object for {address}, got {type(data).__name__}")

        asset_positions = data.get("assetPositions")
        if not isinstance(asset_positions, list):
            raise SchemaError(f"Missing assetPositions for {address}")

        positions = []
        for item in asset_positions:
            pos_data = item.get("position") if isinstance(item, dict) else None
            if not pos_data:
                continue
            try:
                position = Position.from_api(address, pos_data)
            except SchemaError as e:
                logger.debug(f"Skipping position: {e}")
                continue
            if position is not None:
                positions.append(position)

        try:
            withdrawable = _to_float(data.get("withdrawable"), 0.0)
        except (TypeError, ValueError):
            withdrawable = 0.0

        return cls(
            address=address,
            positions=positions,
            margin_summary=MarginSummary.from_api(data.get("marginSummary")),
            withdrawable=withdrawable,
            time=data.get("time"),
        )


def parse_mid_prices(data: Any) -> Dict[str, float]:
    """
    Parse an allMids response ({"BTC": "95000.5", ...}).

    Missing, unparsable, zero or negative prices are dropped so that callers
    treat them as unknown.
    """
    if not isinstance(data, dict):
        raise SchemaError(f"Expected object for allMids, got {type(data).__name__}")

    prices = {}
    for coin, price_str in data.items():
        try:
            price = float(price_str)
        except (ValueError, TypeError):
            continue
        if price > 0:
            prices[coin] = price
    return prices


@dataclass
class PositionTracker:
    """Scheduler-owned refresh record for one (address, coin)."""
    address: str
    coin: str
    tier: RiskTier
    last_updated: float  # epoch seconds
    next_update: float  # epoch seconds
    liquidation_distance: Optional[float] = None

    @property
    def key(self) -> str:
        return position_key(self.address, self.coin)

    def is_due(self, now: float) -> bool:
        return self.next_update <= now

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "coin": self.coin,
            "tier": self.tier.value,
            "last_updated": datetime.fromtimestamp(self.last_updated, timezone.utc).isoformat(),
            "next_update": datetime.fromtimestamp(self.next_update, timezone.utc).isoformat(),
            "liquidation_distance": self.liquidation_distance,
        }
