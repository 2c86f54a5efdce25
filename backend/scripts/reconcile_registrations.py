#!/usr/bin/env python3
"""
Sweep for registration data left half-written by an interrupted direct
registration: registered direct teams without registration rows, and active
registration rows whose team no longer exists.

Usage:
  python3 backend/scripts/reconcile_registrations.py
  python3 backend/scripts/reconcile_registrations.py --apply
"""

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

load_dotenv(ROOT / ".env")

from database import SessionLocal  # noqa: E402
from reconciliation import reconcile  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402


def run_sweep(apply: bool = False, verbose: bool = False) -> int:
    db = SessionLocal()
    try:
        report = reconcile(db, apply=apply)
        if verbose:
            for team_id in report.orphan_team_ids:
                print(f"[team] id={team_id} has no registration rows")
            for row_id in report.orphan_registration_ids:
                print(f"[registration] id={row_id} points at a missing team")
        mode = "apply" if apply else "dry-run"
        print(
            f"Sweep complete. orphan_teams={len(report.orphan_team_ids)} "
            f"orphan_registrations={len(report.orphan_registration_ids)} mode={mode}"
        )
        return 0
    except SQLAlchemyError as exc:
        db.rollback()
        print(f"Sweep failed: {exc}", file=sys.stderr)
        return 1
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Find and optionally clean up orphaned direct teams and registration rows."
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Delete orphaned teams and deactivate orphaned rows. Without this flag, runs in dry-run mode.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print every orphaned record.",
    )
    args = parser.parse_args()

    if not os.environ.get("DATABASE_URL"):
        print("DATABASE_URL is not configured in backend/.env", file=sys.stderr)
        return 1

    return run_sweep(apply=args.apply, verbose=args.verbose)


if __name__ == "__main__":
    raise SystemExit(main())
