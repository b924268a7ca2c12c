#!/usr/bin/env python3
"""
Run one sync job from the command line, outside the API process.

Run: python scripts/run_sync.py reports [--force]
     python scripts/run_sync.py catalog [--backfill | --from-cache] [--force]

Uses the same runner as the scheduler, so the sync ledger, failure
notifications and the circuit breakers behave exactly as in production.

Exit codes:
  0 - Job succeeded or was skipped
  1 - Job failed or ran partially
  2 - Setup failed (configuration or database connection error)
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from shortage_sync.config import settings
from shortage_sync.database import init_db
from shortage_sync.errors import ConfigurationError
from shortage_sync.models.admin_schemas import CatalogMode, JobName
from shortage_sync.scheduler import build_sync_scheduler
from shortage_sync.services.monitoring.logging import configure_structlog


def main():
    """Main sync script entry point"""
    parser = argparse.ArgumentParser(
        description="Run a medication shortage / drug catalog sync job once"
    )
    parser.add_argument(
        "job",
        choices=[job.value for job in JobName],
        help="Job to run"
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--backfill",
        action="store_true",
        help="Catalog only: full detail fetch through the disk cache (resumable)"
    )
    mode.add_argument(
        "--from-cache",
        action="store_true",
        help="Catalog only: import the disk cache without network calls"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Bypass change detection / incremental window"
    )
    args = parser.parse_args()

    if args.job == JobName.reports.value and (args.backfill or args.from_cache):
        parser.error("--backfill and --from-cache only apply to the catalog job")

    configure_structlog(json_output=False)

    try:
        session_factory = init_db()
    except ConfigurationError as e:
        print(f"ERROR: {e}. Set DATABASE_URL environment variable.")
        sys.exit(2)

    scheduler = build_sync_scheduler(session_factory, settings)

    options = {"force": args.force}
    if args.job == JobName.catalog.value:
        if args.backfill:
            options["mode"] = CatalogMode.backfill.value
        elif args.from_cache:
            options["mode"] = CatalogMode.from_cache.value
        else:
            options["mode"] = CatalogMode.incremental.value

    result = scheduler.trigger(args.job, **options)

    print("")
    print("=" * 80)
    print(f"{args.job.upper()} SYNC: {result.status.upper()} ({result.duration_seconds:.1f}s)")
    print("=" * 80)
    if result.stats:
        print(json.dumps(result.stats, indent=2, default=str))
    if result.error:
        print(f"Error: {result.error}")

    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
