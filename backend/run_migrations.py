from __future__ import annotations

import argparse
import logging
import sys

from bootstrap import (
    MIGRATION_MARKER_KEY,
    clear_bootstrap_marker,
    ensure_tables,
    has_bootstrap_marker,
    run_bootstrap_migrations,
    set_bootstrap_marker,
)
from database import SessionLocal
from reconciliation import reconcile

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create festival tables and seed the default super admin.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Seed again even if the bootstrap marker already exists.",
    )
    parser.add_argument(
        "--tables-only",
        action="store_true",
        help="Create missing tables and indexes, skip seeding and the marker.",
    )
    parser.add_argument(
        "--clear-marker",
        action="store_true",
        help=f"Remove marker `{MIGRATION_MARKER_KEY}` and exit.",
    )
    parser.add_argument(
        "--check-orphans",
        action="store_true",
        help="Report orphaned direct teams and registration rows afterwards (read only).",
    )
    return parser.parse_args()


def _report_orphans() -> None:
    db = SessionLocal()
    try:
        report = reconcile(db, apply=False)
        if not report.is_clean:
            logger.warning(
                "Run scripts/reconcile_registrations.py --apply to clean %s teams and %s rows.",
                len(report.orphan_team_ids),
                len(report.orphan_registration_ids),
            )
    finally:
        db.close()


def main() -> int:
    args = parse_args()
    ensure_tables()

    if args.clear_marker:
        removed = clear_bootstrap_marker()
        logger.info("Marker `%s` %s.", MIGRATION_MARKER_KEY, "cleared" if removed else "was already absent")
        return 0

    if args.tables_only:
        logger.info("Tables and indexes are up to date.")
    elif has_bootstrap_marker() and not args.force:
        logger.info("Marker `%s` present; seeding skipped. Use --force to reseed.", MIGRATION_MARKER_KEY)
    else:
        run_bootstrap_migrations()
        set_bootstrap_marker()
        logger.info("Bootstrap completed and marker `%s` updated.", MIGRATION_MARKER_KEY)

    if args.check_orphans:
        _report_orphans()
    return 0


if __name__ == "__main__":
    sys.exit(main())
