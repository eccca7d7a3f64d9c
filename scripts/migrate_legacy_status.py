#!/usr/bin/env python3
"""
Legacy Status Migration

Rewrites pre-unification status literals (in_progress, on_hold, completed,
stopped, not_started) on activities and tasks to the unified vocabulary.

Usage:
    python scripts/migrate_legacy_status.py [--organization ORG_ID] [--dry-run]

Safe to re-run: a second full run rewrites nothing. Exits non-zero when any
pair failed.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from status_engine.legacy_migration import LEGACY_STATUS_MAPPING, run_legacy_migration  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migrate legacy activity/task status values")
    parser.add_argument(
        "--organization",
        default=None,
        help="Restrict the run to one organization id (default: all organizations)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report the rows each pair would rewrite without writing anything",
    )
    return parser.parse_args()


async def main():
    args = parse_args()

    print("\n" + "=" * 70)
    print("LEGACY STATUS MIGRATION" + (" (DRY RUN)" if args.dry_run else ""))
    print("=" * 70)
    for old_value, new_value in LEGACY_STATUS_MAPPING:
        print(f"  {old_value:<12} -> {new_value}")
    print()

    report = await run_legacy_migration(organization_id=args.organization, dry_run=args.dry_run)
    print(json.dumps(report.to_dict(), indent=2))

    sys.exit(0 if report.succeeded else 1)


if __name__ == "__main__":
    asyncio.run(main())
