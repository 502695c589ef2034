#!/usr/bin/env python3
"""
Manual position sync.

Fetches every tracked address once, persists positions and alerts, and
prints the positions at or above the requested risk tier.

Usage:
    python scripts/sync_positions.py
    python scripts/sync_positions.py --min-tier danger
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from liqtier.config import RiskTier, load_config
from liqtier.core.position_fetcher import PriceFeedUnavailableError
from liqtier.monitor import MonitorService


async def run(min_tier: RiskTier) -> int:
    service = MonitorService(cfg=load_config())
    try:
        positions = await service.get_risky_positions(min_tier)
    except PriceFeedUnavailableError as e:
        print(f"FAIL: {e}")
        return 1
    finally:
        await service.close()

    print(f"\n{len(positions)} positions at {min_tier.label} or worse\n")
    print(f"{'Address':<14} {'Coin':<8} {'Side':<6} {'Price':>12} {'Liq':>12} {'Dist':>8}  Tier")
    print("-" * 76)
    for p in positions:
        liq = f"{p.liquidation_price:.4f}" if p.liquidation_price is not None else "N/A"
        dist = f"{p.liquidation_distance:.2f}%" if p.liquidation_distance is not None else "N/A"
        print(
            f"{p.address[:12]:<14} {p.coin:<8} {p.side:<6} "
            f"{p.current_price:>12.4f} {liq:>12} {dist:>8}  {p.risk_tier.label}"
        )
    return 0


def main():
    parser = argparse.ArgumentParser(description='Sync all tracked positions once')
    parser.add_argument(
        '--min-tier',
        choices=[t.value for t in RiskTier],
        default=RiskTier.WARNING.value,
        help='Least risky tier to print (default: warning)'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    sys.exit(asyncio.run(run(RiskTier(args.min_tier))))


if __name__ == "__main__":
    main()
