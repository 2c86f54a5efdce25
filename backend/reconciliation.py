import logging
from dataclasses import dataclass, field
from typing import List

from sqlalchemy import exists
from sqlalchemy.orm import Session

from models import EventRegistration, RegistrationType, Team

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    orphan_team_ids: List[int] = field(default_factory=list)
    orphan_registration_ids: List[int] = field(default_factory=list)
    applied: bool = False

    @property
    def is_clean(self) -> bool:
        return not self.orphan_team_ids and not self.orphan_registration_ids


def find_orphan_teams(db: Session) -> List[Team]:
    """Registered direct teams whose registration rows never landed."""
    has_rows = exists().where(EventRegistration.team_id == Team.id)
    return (
        db.query(Team)
        .filter(
            Team.registration_type == RegistrationType.DIRECT,
            Team.is_registered.is_(True),
            ~has_rows,
        )
        .order_by(Team.id.asc())
        .all()
    )


def find_orphan_registrations(db: Session) -> List[EventRegistration]:
    team_ids = db.query(Team.id)
    return (
        db.query(EventRegistration)
        .filter(
            EventRegistration.team_id.isnot(None),
            EventRegistration.is_active.is_(True),
            ~EventRegistration.team_id.in_(team_ids),
        )
        .order_by(EventRegistration.id.asc())
        .all()
    )


def reconcile(db: Session, apply: bool = False) -> ReconciliationReport:
    teams = find_orphan_teams(db)
    rows = find_orphan_registrations(db)
    report = ReconciliationReport(
        orphan_team_ids=[int(team.id) for team in teams],
        orphan_registration_ids=[int(row.id) for row in rows],
        applied=apply,
    )
    if report.is_clean:
        logger.info("No orphaned teams or registrations found")
        return report

    logger.warning(
        "Found %s orphaned teams and %s orphaned registration rows",
        len(report.orphan_team_ids),
        len(report.orphan_registration_ids),
    )
    if not apply:
        return report

    for team in teams:
        db.delete(team)
    # Registration rows are never deleted, only retired.
    for row in rows:
        row.is_active = False
    db.commit()
    logger.info("Reconciliation applied")
    return report
