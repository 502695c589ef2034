#!/usr/bin/env python3
"""
Liquidation Monitor Service - CLI Entry Point
==============================================

Runs the continuous tiered liquidation monitor.

Architecture:
    - Initial full sync of every tracked address
    - Continuous tiered refresh based on liquidation distance:
      - Critical (<5%): every 10 seconds
      - Danger (<10%): every 30 seconds
      - Warning (<20%): every 60 seconds
      - Safe: every 5 minutes
    - Periodic full sync picks up newly opened positions

Usage:
    # Start monitor
    python scripts/run_monitor.py

    # Single sync, then exit
    python scripts/run_monitor.py --once

    # Override the tick interval
    python scripts/run_monitor.py --tick 2
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from liqtier.config import TIER_ORDER, RiskTier, load_config
from liqtier.monitor import MonitorService, SourceUnavailableError


def setup_logging(log_level: str, log_file: str):
    """Configure logging for the monitor service."""
    log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = project_root / log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Create date-stamped log file (e.g., logs/monitor_2026-01-18.log)
    date_str = datetime.now().strftime("%Y-%m-%d")
    dated_log_file = log_path.parent / f"{log_path.stem}_{date_str}{log_path.suffix}"

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # File handler (date-stamped)
    file_handler = logging.FileHandler(dated_log_file)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from HTTP libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    root_logger.info(f"Logging to: {dated_log_file}")


def main():
    parser = argparse.ArgumentParser(
        description='Tiered Liquidation Monitor',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_monitor.py              # Start monitor
  python scripts/run_monitor.py --once       # One full sync, print status, exit
  python scripts/run_monitor.py --tick 2     # Look for due positions every 2s
        """
    )

    parser.add_argument(
        '--once',
        action='store_true',
        help='Run a single full sync and exit'
    )

    parser.add_argument(
        '--tick',
        type=float,
        default=None,
        help='Scheduler tick interval in seconds (default: from config)'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Log level (default: LOG_LEVEL or INFO)'
    )

    args = parser.parse_args()

    try:
        cfg = load_config()
        if args.tick is not None:
            cfg.tick_interval_sec = args.tick
            cfg.validate()
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(args.log_level or cfg.log_level, cfg.log_file)
    logger = logging.getLogger(__name__)

    print("\n" + "=" * 60)
    print("TIERED LIQUIDATION MONITOR")
    print("=" * 60)
    print("Refresh tiers:")
    for tier in TIER_ORDER:
        spec = cfg.tiers[tier]
        bound = "" if tier == RiskTier.SAFE else f"<{spec.threshold_pct:g}%"
        print(f"  - {tier.label:<8} {bound:>5}  every {spec.refresh_sec:g}s")
    print(f"Tick interval:  {cfg.tick_interval_sec:g}s")
    print(f"Full sync:      every {cfg.full_sync_interval_sec / 60:g} min")
    print(f"Private API:    {cfg.private_api_url}")
    print(f"Public API:     {cfg.public_api_url}")
    print(f"Database:       {cfg.positions_db_path}")
    print("=" * 60 + "\n")

    service = MonitorService(cfg=cfg)

    if args.once:
        async def run_once():
            try:
                return await service.sync_now()
            finally:
                await service.close()

        result = asyncio.run(run_once())
        print(json.dumps(service.status()["store"], indent=2))
        sys.exit(0 if result.success else 1)

    try:
        asyncio.run(service.run())
    except SourceUnavailableError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")

    logger.info("Monitor stopped")


if __name__ == "__main__":
    main()
