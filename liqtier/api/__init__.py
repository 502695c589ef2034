"""
API Package
===========

External API clients for Hyperliquid.

Components:
- base.py: AccountStateSource interface
- hyperliquid.py: HyperliquidClient (private + public endpoints)
"""

from .base import AccountStateSource
from .hyperliquid import HyperliquidClient

__all__ = [
    "AccountStateSource",
    "HyperliquidClient",
]
