#!/usr/bin/env python3
"""
Manage tracked addresses.

Usage:
    python scripts/manage_entities.py list
    python scripts/manage_entities.py add 0xabc... "Some Fund" --twitter somefund
    python scripts/manage_entities.py remove 0xabc...
    python scripts/manage_entities.py import addresses.csv
    python scripts/manage_entities.py alerts --limit 20
"""

import argparse
import csv
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from liqtier.config import load_config
from liqtier.db import PositionStore


def cmd_list(store: PositionStore, args):
    names = store.get_entity_names()
    if not names:
        print("No tracked addresses")
        return
    for address in store.get_tracked_addresses():
        print(f"{address}  {names.get(address, '')}")
    print(f"\n{len(names)} addresses")


def cmd_add(store: PositionStore, args):
    store.upsert_entity(args.address, args.name, twitter=args.twitter, entity_type=args.type)
    print(f"Tracking {args.address} ({args.name})")


def cmd_remove(store: PositionStore, args):
    if store.remove_entity(args.address):
        print(f"Removed {args.address}")
    else:
        print(f"{args.address} was not tracked")


def cmd_import(store: PositionStore, args):
    """Import a CSV with address,name[,twitter,entity_type] columns."""
    count = 0
    with open(args.csv_file, newline="") as f:
        for row in csv.DictReader(f):
            address = (row.get("address") or "").strip()
            if not address:
                continue
            store.upsert_entity(
                address,
                (row.get("name") or address[:10]).strip(),
                twitter=row.get("twitter") or None,
                entity_type=row.get("entity_type") or None,
            )
            count += 1
    print(f"Imported {count} addresses")


def cmd_alerts(store: PositionStore, args):
    alerts = store.get_recent_alerts(limit=args.limit)
    if not alerts:
        print("No alerts")
        return
    for alert in alerts:
        dist = (
            f"{alert.distance_to_liquidation:.2f}%"
            if alert.distance_to_liquidation is not None else "N/A"
        )
        print(
            f"{alert.created_at}  position {alert.position_id:<6} "
            f"{alert.alert_type.label:<8} {dist:>8} @ {alert.current_price}"
        )


def main():
    parser = argparse.ArgumentParser(description='Manage tracked addresses')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('list', help='List tracked addresses')

    add = sub.add_parser('add', help='Track an address')
    add.add_argument('address')
    add.add_argument('name')
    add.add_argument('--twitter')
    add.add_argument('--type', help='Entity type (fund, trader, ...)')

    remove = sub.add_parser('remove', help='Stop tracking an address')
    remove.add_argument('address')

    imp = sub.add_parser('import', help='Import addresses from CSV')
    imp.add_argument('csv_file', type=Path)

    alerts = sub.add_parser('alerts', help='Show recent alerts')
    alerts.add_argument('--limit', type=int, default=50)

    args = parser.parse_args()
    store = PositionStore(cfg=load_config())

    commands = {
        'list': cmd_list,
        'add': cmd_add,
        'remove': cmd_remove,
        'import': cmd_import,
        'alerts': cmd_alerts,
    }
    commands[args.command](store, args)


if __name__ == "__main__":
    main()
