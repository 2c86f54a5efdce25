#!/usr/bin/env python3
"""
Backfill missing study levels on users and team members from their degree.
Degrees outside the known table are reported and left untouched.

Usage:
  python3 backend/scripts/backfill_levels.py
  python3 backend/scripts/backfill_levels.py --apply
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
from education import infer_level  # noqa: E402
from models import TeamMember, User  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402


def backfill_levels(db, apply: bool = False, verbose: bool = False) -> dict:
    counts = {"scanned": 0, "updated": 0, "unknown": 0}

    for user in db.query(User).filter(User.level.is_(None), User.degree.isnot(None)).order_by(User.id.asc()).all():
        counts["scanned"] += 1
        level = infer_level(user.degree)
        if level is None:
            counts["unknown"] += 1
            print(f"[unknown] user id={user.id} degree={user.degree!r}")
            continue
        counts["updated"] += 1
        if verbose or not apply:
            print(f"[set] user id={user.id} {user.degree} -> {level.value}")
        if apply:
            user.level = level

    members = (
        db.query(TeamMember)
        .filter(TeamMember.level.is_(None), TeamMember.degree.isnot(None))
        .order_by(TeamMember.id.asc())
        .all()
    )
    for member in members:
        counts["scanned"] += 1
        level = infer_level(member.degree)
        if level is None:
            counts["unknown"] += 1
            print(f"[unknown] team member id={member.id} degree={member.degree!r}")
            continue
        counts["updated"] += 1
        if verbose or not apply:
            print(f"[set] team member id={member.id} {member.degree} -> {level.value}")
        if apply:
            member.level = level.value

    if apply:
        db.commit()
    return counts


def run_backfill(apply: bool = False, verbose: bool = False) -> int:
    db = SessionLocal()
    try:
        counts = backfill_levels(db, apply=apply, verbose=verbose)
        mode = "apply" if apply else "dry-run"
        print(
            f"Backfill complete. scanned={counts['scanned']} updated={counts['updated']} "
            f"unknown={counts['unknown']} mode={mode}"
        )
        return 0
    except SQLAlchemyError as exc:
        db.rollback()
        print(f"Backfill failed: {exc}", file=sys.stderr)
        return 1
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Infer missing study levels from degrees.")
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Write changes to database. Without this flag, runs in dry-run mode.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print per-record decision logs.",
    )
    args = parser.parse_args()

    if not os.environ.get("DATABASE_URL"):
        print("DATABASE_URL is not configured in backend/.env", file=sys.stderr)
        return 1

    return run_backfill(apply=args.apply, verbose=args.verbose)


if __name__ == "__main__":
    raise SystemExit(main())
