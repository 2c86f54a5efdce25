import logging
import os
from collections import Counter
from typing import Dict, List, Optional

from sqlalchemy import or_, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from attendance_service import resolve_attendance
from database import is_postgres
from errors import DependencyFailure, event_not_found
from models import Event, EventApplication, EventRegistration, EventType, Team, TeamMember, User, UserRole
from security import ensure_event_edit_access, is_super_admin
from utils import enum_value

logger = logging.getLogger(__name__)

REGISTRATION_LIST_TIMEOUT_SECONDS = int(os.environ.get("REGISTRATION_LIST_TIMEOUT_SECONDS", 30))


def serialize_registration(row: EventRegistration, attendance_map: Optional[dict] = None, event_slug: Optional[str] = None) -> dict:
    return {
        "id": row.id,
        "event_id": row.event_id,
        "event_name": row.event_name,
        "event_type": enum_value(row.event_type),
        "team_id": row.team_id,
        "team_name": row.team_name,
        "team_member_id": row.team_member_id,
        "registrant_id": row.registrant_id,
        "registrant_email": row.registrant_email,
        "participant_name": row.participant_name,
        "participant_email": row.participant_email,
        "participant_mobile": row.participant_mobile,
        "level": row.level,
        "degree": row.degree,
        "department": row.department,
        "year": row.year,
        "gender": row.gender,
        "college_name": row.college_name,
        "college_city": row.college_city,
        "college_state": row.college_state,
        "registration_type": enum_value(row.registration_type),
        "registration_date": row.registration_date,
        "is_active": bool(row.is_active),
        "is_present": resolve_attendance(attendance_map, event_slug or "", row.is_present),
        "attendance_marked_at": row.attendance_marked_at,
    }


def _member_payload(member: TeamMember, user: Optional[User], row: Optional[EventRegistration], event_slug: str) -> dict:
    return {
        "id": member.id,
        "user_id": member.user_id,
        "registration_id": row.id if row else None,
        "name": member.name,
        "email": member.email,
        "mobile": member.mobile,
        "level": member.level,
        "degree": member.degree,
        "department": member.department,
        "year": member.year,
        "gender": member.gender,
        "role": member.role,
        "registration_type": enum_value(member.registration_type),
        "is_present": resolve_attendance(
            user.attendance if user else None,
            event_slug,
            row.is_present if row else None,
        ),
    }


def _solo_entries(db: Session, event: Event) -> List[dict]:
    rows = (
        db.query(EventApplication, User)
        .join(User, EventApplication.user_id == User.id)
        .filter(EventApplication.event_id == event.id, EventApplication.team_id.is_(None))
        .order_by(EventApplication.position.asc(), EventApplication.id.asc())
        .all()
    )
    payload = []
    for application, user in rows:
        payload.append(
            {
                "application_id": application.id,
                "user_id": user.id,
                "name": user.name,
                "email": user.email,
                "mobile": user.mobile,
                "college": user.college,
                "level": enum_value(user.level),
                "degree": user.degree,
                "department": user.department,
                "year": user.year,
                "gender": user.gender,
                "applied_at": application.applied_at,
                "is_winner": bool(application.is_winner),
                "winner_rank": application.winner_rank,
                "is_present": resolve_attendance(user.attendance, event.event_id, application.is_present),
            }
        )
    return payload


def _team_entries(db: Session, event: Event) -> List[dict]:
    teams = db.query(Team).filter(Team.event_id == event.id).order_by(Team.id.asc()).all()
    user_ids = {member.user_id for team in teams for member in team.members if member.user_id is not None}
    users = {user.id: user for user in db.query(User).filter(User.id.in_(sorted(user_ids))).all()} if user_ids else {}
    member_rows = {
        row.team_member_id: row
        for row in db.query(EventRegistration)
        .filter(EventRegistration.event_id == event.id, EventRegistration.team_member_id.isnot(None))
        .all()
    }
    payload = []
    for team in teams:
        payload.append(
            {
                "team_id": team.id,
                "team_name": team.team_name,
                "leader_user_id": team.leader_user_id,
                "registered_by_user_id": team.registered_by_user_id,
                "registration_type": enum_value(team.registration_type),
                "is_registered": bool(team.is_registered),
                "registered_at": team.registered_at,
                "is_winner": bool(team.is_winner),
                "winner_rank": team.winner_rank,
                "members": [
                    _member_payload(member, users.get(member.user_id), member_rows.get(member.id), event.event_id)
                    for member in team.members
                ],
            }
        )
    return payload


def list_event_registrations(db: Session, event_slug: str, admin: Optional[User] = None) -> Dict[str, object]:
    """Everything registered for one event, with effective attendance.

    Solo events list their applications, group events their teams and
    members. Direct solo entries that only exist as registration rows are
    listed separately.
    """
    event = db.query(Event).filter(Event.event_id == event_slug).first()
    if event is None:
        raise event_not_found(event_slug)
    if admin is not None:
        ensure_event_edit_access(admin, event)

    applications = _solo_entries(db, event) if event.event_type == EventType.SOLO else []
    teams = _team_entries(db, event) if event.event_type == EventType.GROUP else []
    direct_rows = (
        db.query(EventRegistration)
        .filter(
            EventRegistration.event_id == event.id,
            EventRegistration.team_id.is_(None),
            EventRegistration.is_active.is_(True),
        )
        .order_by(EventRegistration.registration_date.asc(), EventRegistration.id.asc())
        .all()
    )
    registrations = [serialize_registration(row, event_slug=event.event_id) for row in direct_rows]
    total = len(applications) + len(registrations) + sum(len(team["members"]) for team in teams)
    return {
        "event": {
            "id": event.id,
            "event_id": event.event_id,
            "name": event.name,
            "event_type": enum_value(event.event_type),
            "max_applications": event.max_applications,
            "winners": list(event.winners or []),
        },
        "applications": applications,
        "teams": teams,
        "registrations": registrations,
        "total_participants": total,
    }


def _college_coordinators(db: Session, college: str) -> List[User]:
    return (
        db.query(User)
        .filter(
            User.college == college,
            User.is_verified.is_(True),
            User.role != UserRole.ADMIN,
        )
        .order_by(User.id.asc())
        .all()
    )


def list_college_registrations(db: Session, user: User) -> Dict[str, object]:
    college = str(user.college or "").strip()
    empty_stats = {"total": 0, "by_gender": {}, "by_level": {}, "by_event": {}, "by_event_type": {}}
    if not college:
        return {"college": None, "coordinators": [], "solo_registrations": [], "team_registrations": [], "stats": empty_stats}

    coordinators = _college_coordinators(db, college)
    coordinator_ids = [item.id for item in coordinators]
    rows = (
        db.query(EventRegistration)
        .filter(EventRegistration.registrant_id.in_(coordinator_ids), EventRegistration.is_active.is_(True))
        .order_by(EventRegistration.registration_date.desc(), EventRegistration.id.desc())
        .all()
        if coordinator_ids
        else []
    )

    solo = []
    teams: Dict[str, dict] = {}
    for row in rows:
        item = serialize_registration(row)
        if row.team_id is None:
            solo.append(item)
            continue
        key = f"{row.team_name}-{row.event_name}"
        group = teams.setdefault(
            key,
            {
                "team_id": row.team_id,
                "team_name": row.team_name,
                "event_id": row.event_id,
                "event_name": row.event_name,
                "members": [],
            },
        )
        group["members"].append(item)

    stats = {
        "total": len(rows),
        "by_gender": dict(Counter(row.gender or "Not Specified" for row in rows)),
        "by_level": dict(Counter(row.level or "Not Specified" for row in rows)),
        "by_event": dict(Counter(row.event_name for row in rows)),
        "by_event_type": dict(Counter(enum_value(row.event_type) for row in rows)),
    }
    return {
        "college": college,
        "coordinators": [{"id": item.id, "name": item.name, "email": item.email} for item in coordinators],
        "solo_registrations": solo,
        "team_registrations": list(teams.values()),
        "stats": stats,
    }


def _apply_statement_timeout(db: Session) -> None:
    if is_postgres(db):
        timeout_ms = int(REGISTRATION_LIST_TIMEOUT_SECONDS * 1000)
        db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


def list_all_registrations(db: Session, admin: User, include_inactive: bool = False) -> Dict[str, object]:
    try:
        _apply_statement_timeout(db)
        query = db.query(EventRegistration)
        if not include_inactive:
            query = query.filter(EventRegistration.is_active.is_(True))
        if not is_super_admin(admin):
            scopes = []
            if admin.assigned_event_id is not None:
                scopes.append(Event.id == admin.assigned_event_id)
            if admin.club:
                scopes.append(Event.club_in_charge == admin.club)
            if not scopes:
                return {"registrations": [], "count": 0}
            event_ids = db.query(Event.id).filter(or_(*scopes))
            query = query.filter(EventRegistration.event_id.in_(event_ids))
        rows = query.order_by(EventRegistration.registration_date.desc(), EventRegistration.id.desc()).all()
    except OperationalError as exc:
        db.rollback()
        message = str(exc).lower()
        if "statement timeout" in message or "canceling statement" in message:
            logger.error("Registration listing exceeded %ss", REGISTRATION_LIST_TIMEOUT_SECONDS)
            raise DependencyFailure(
                "StoreTimeout",
                "Registration listing timed out",
                {"timeout_seconds": REGISTRATION_LIST_TIMEOUT_SECONDS},
            )
        logger.error("Registration listing failed: %s", exc)
        raise DependencyFailure("StoreUnavailable", "Could not load registrations")
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Registration listing failed: %s", exc)
        raise DependencyFailure("StoreUnavailable", "Could not load registrations")

    registrations = [serialize_registration(row) for row in rows]
    return {"registrations": registrations, "count": len(registrations)}
