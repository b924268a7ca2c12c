#!/usr/bin/env python3
"""
Audit the derived catalog status over the whole store.

Run: python scripts/audit_statuses.py [--repair] [--show 20]

Compares every catalog entry's stored current_status / has_reports with the
value derived from its event reports. With --repair, runs the set-based
recomputation and audits again.

Exit codes:
  0 - Consistent (or repaired)
  1 - Mismatches found
  2 - Audit failed (configuration or database connection error)
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy.exc import SQLAlchemyError

from shortage_sync.database import init_db
from shortage_sync.errors import ConfigurationError
from shortage_sync.services.status_derivation import find_status_mismatches, recompute_statuses


def format_report(mismatches: list, show: int) -> str:
    """
    Format mismatches as human-readable text
    """
    lines = []
    lines.append("=" * 80)
    lines.append("CATALOG STATUS AUDIT")
    lines.append("=" * 80)

    if not mismatches:
        lines.append("No mismatches found. Every current_status matches its reports.")
        lines.append("=" * 80)
        return "\n".join(lines)

    lines.append(f"Total Mismatches: {len(mismatches)}")
    lines.append("")
    lines.append(f"  {'PRODUCT':<12}{'STORED':<22}{'DERIVED':<22}{'HAS_REPORTS':<16}")
    lines.append("  " + "-" * 76)
    for item in mismatches[:show]:
        has_reports = f"{item['has_reports']} -> {item['derived_has_reports']}"
        lines.append(
            f"  {item['product_code']:<12}{item['current_status']:<22}"
            f"{item['derived_status']:<22}{has_reports:<16}"
        )
    if len(mismatches) > show:
        lines.append(f"  ... and {len(mismatches) - show} more")
    lines.append("=" * 80)
    return "\n".join(lines)


def main():
    """Main audit script entry point"""
    parser = argparse.ArgumentParser(
        description="Verify catalog current_status against event reports"
    )
    parser.add_argument(
        "--repair",
        action="store_true",
        help="Recompute statuses when mismatches are found"
    )
    parser.add_argument(
        "--show",
        type=int,
        default=20,
        help="Number of mismatches to print (default: 20)"
    )
    args = parser.parse_args()

    try:
        session_factory = init_db()
    except ConfigurationError as e:
        print(f"ERROR: {e}. Set DATABASE_URL environment variable.")
        sys.exit(2)

    session = session_factory()
    try:
        mismatches = find_status_mismatches(session)
        print(format_report(mismatches, args.show))

        if mismatches and args.repair:
            changed = recompute_statuses(session)
            print(f"\nRecomputed statuses: {changed} entries updated")
            mismatches = find_status_mismatches(session)
            print(format_report(mismatches, args.show))
    except SQLAlchemyError as e:
        print(f"ERROR: Audit failed: {e}")
        sys.exit(2)
    finally:
        session.close()

    if mismatches:
        print(f"\n✗ AUDIT FAILED: {len(mismatches)} entries disagree with their reports")
        sys.exit(1)
    print("\n✓ AUDIT PASSED: Derived statuses are consistent")
    sys.exit(0)


if __name__ == "__main__":
    main()
