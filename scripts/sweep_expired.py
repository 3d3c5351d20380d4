#!/usr/bin/env python3
"""
Expiry sweep utility.

Marks every registration whose secretary period has lapsed as expired. Safe to
run from cron alongside the API: the sweep only ever writes ``is_expired=1``.
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from corpreg.core import dao, expiry, service
from corpreg.core.errors import RegistrationError
from corpreg.core.schema import utc_now


def find_lapsed(now: datetime):
    """Registrations the sweep would update, without writing anything."""
    return [record for record in dao.list_sweep_candidates() if expiry.needs_sweep(record, now)]


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Mark registrations with a lapsed secretary period as expired",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                 # Run the sweep
  %(prog)s --dry-run       # List what would be marked expired
  %(prog)s --json          # Machine-readable summary

Environment variables:
- DB_PATH=./data/registrations.db (database location)
        """
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Report lapsed registrations without updating them"
    )

    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output results as JSON instead of human-readable text"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    args = parser.parse_args(argv)
    now = utc_now()

    try:
        dao.ensure_schema()

        if args.dry_run:
            lapsed = find_lapsed(now)
            result = {
                "dry_run": True,
                "timestamp": now.isoformat(),
                "lapsed": [
                    {"id": r.id, "expireDate": r.expire_date.isoformat() if r.expire_date else None}
                    for r in lapsed
                ],
                "updated": 0,
            }
        else:
            updated = service.sweep_expired(now)
            result = {"dry_run": False, "timestamp": now.isoformat(), "updated": updated}

    except RegistrationError as e:
        print(f"Sweep failed: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result, indent=2))
    elif not args.quiet:
        if args.dry_run:
            print(f"{len(result['lapsed'])} registration(s) would be marked expired")
            for item in result["lapsed"]:
                print(f"  - {item['id']} (expired {item['expireDate']})")
        else:
            print(f"Sweep completed: {result['updated']} registration(s) marked expired")

    return 0


if __name__ == "__main__":
    sys.exit(main())
