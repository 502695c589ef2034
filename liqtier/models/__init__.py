"""
Shared Data Models
==================

This package contains dataclasses used across the project.
"""

from .position import (
    AccountState,
    MarginSummary,
    Position,
    PositionTracker,
    SchemaError,
    parse_mid_prices,
    position_key,
)

__all__ = [
    "AccountState",
    "MarginSummary",
    "Position",
    "PositionTracker",
    "SchemaError",
    "parse_mid_prices",
    "position_key",
]
