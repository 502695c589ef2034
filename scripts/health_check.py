#!/usr/bin/env python3
"""
Health check script for the tiered liquidation monitor.

Returns exit code 0 if healthy, non-zero otherwise.
Used by Docker health checks to determine container health.

Checks:
1. Database connectivity
2. Price feed and account source reachable
3. Positions updated recently (< 10 minutes)
"""

import sys
import time
from datetime import datetime, timezone
from pathlib import Path

import requests

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from liqtier.config import load_config
from liqtier.db import PositionStore

# Slowest tier refreshes every 5 minutes; allow one missed cycle
MAX_STALENESS_SEC = 600

# Any valid address works; the private endpoint answers with an empty account
ZERO_ADDRESS = "0x" + "0" * 40


def post_info(url: str, payload: dict, timeout: float):
    """
    POST an info request.

    Returns:
        (parsed JSON, elapsed ms), or (None, None) if the endpoint failed
    """
    start = time.time()
    try:
        response = requests.post(url, json=payload, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        print(f"FAIL: {url} unreachable ({payload['type']}): {e}")
        return None, None
    return data, (time.time() - start) * 1000


def check_price_feed(url: str, timeout: float) -> bool:
    """allMids must answer with at least one market."""
    data, elapsed = post_info(url, {"type": "allMids"}, timeout)
    if data is None:
        return False

    if not isinstance(data, dict) or not data:
        print(f"FAIL: {url} returned no prices")
        return False

    print(f"OK: price feed {url} ({elapsed:.0f}ms, {len(data)} markets)")
    return True


def check_account_source(url: str, timeout: float) -> bool:
    """clearinghouseState must answer with an assetPositions list."""
    payload = {"type": "clearinghouseState", "user": ZERO_ADDRESS}
    data, elapsed = post_info(url, payload, timeout)
    if data is None:
        return False

    if not isinstance(data, dict) or not isinstance(data.get("assetPositions"), list):
        print(f"FAIL: {url} returned a malformed clearinghouseState")
        return False

    print(f"OK: account source {url} ({elapsed:.0f}ms)")
    return True


def check_health() -> bool:
    """
    Perform health checks.

    Returns:
        True if healthy, False otherwise
    """
    now = datetime.now(timezone.utc)
    cfg = load_config()

    # Check 1: Database connectivity
    try:
        store = PositionStore(cfg=cfg)
        stats = store.get_stats()
    except Exception as e:
        print(f"FAIL: Database error: {e}")
        return False

    # Check 2: Price feed (public) and account source (private)
    if not check_price_feed(cfg.public_api_url, cfg.request_timeout_sec):
        return False
    if not check_account_source(cfg.private_api_url, cfg.request_timeout_sec):
        return False

    # Check 3: Positions updated recently
    if stats.total_entities == 0:
        # This is OK during initial setup
        print("WARN: No tracked addresses yet")
        return True

    last_update = store.get_last_update_time()
    if last_update is None:
        print("WARN: No positions yet (initial sync may be running)")
        return True

    time_since = (now - last_update).total_seconds()
    if time_since > MAX_STALENESS_SEC:
        print(f"FAIL: Positions not updated for {time_since:.0f}s (> {MAX_STALENESS_SEC}s)")
        return False

    counts = stats.tier_counts
    print(
        f"OK: {stats.total_positions} positions, {stats.total_entities} addresses "
        f"({counts['critical']} critical, {counts['danger']} danger)"
    )
    return True


def main():
    """Run health check and exit with appropriate code."""
    try:
        healthy = check_health()
        sys.exit(0 if healthy else 1)
    except Exception as e:
        print(f"FAIL: Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
