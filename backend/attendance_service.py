import logging
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import NotFoundError, event_not_found
from models import Event, EventApplication, EventRegistration, EventType, User
from registration_service import find_user_team
from security import ensure_event_results_access
from time_utils import now_tz

logger = logging.getLogger(__name__)

USER_REF = "user"
REGISTRATION_REF = "registration"

USER_REF_KEYS = ("user_id", "userId")
REGISTRATION_REF_KEYS = ("registration_id", "registrationId")


@dataclass
class AttendanceResult:
    event_id: str
    updated_count: int = 0
    matched_count: int = 0
    unmatched_count: int = 0
    error_count: int = 0
    total_requested: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def resolve_attendance(attendance_map: Optional[dict], event_slug: str, record_is_present: Optional[bool]) -> bool:
    """Effective presence: the user's attendance map wins over the record flag."""
    if isinstance(attendance_map, dict) and event_slug in attendance_map:
        return bool(attendance_map[event_slug])
    if record_is_present is not None:
        return bool(record_is_present)
    return False


def _parse_ref(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    raw = str(value if value is not None else "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def _first_key(entry: dict, keys) -> Any:
    for key in keys:
        if entry.get(key) is not None:
            return entry[key]
    return None


def _entry_values(entry: Any) -> Tuple[Optional[str], Any, bool]:
    """Split an entry into ``(kind, raw_ref, flag)``; kind is None when ambiguous."""
    if isinstance(entry, dict):
        user_ref = _first_key(entry, USER_REF_KEYS)
        registration_ref = _first_key(entry, REGISTRATION_REF_KEYS)
        flag = entry.get("is_present", entry.get("isPresent", True))
    else:
        user_ref = getattr(entry, "user_id", None)
        registration_ref = getattr(entry, "registration_id", None)
        flag = getattr(entry, "is_present", True)

    if (user_ref is None) == (registration_ref is None):
        return None, None, bool(flag)
    if registration_ref is not None:
        return REGISTRATION_REF, registration_ref, bool(flag)
    return USER_REF, user_ref, bool(flag)


def _mark_registration_row(db: Session, event: Event, registration_id: int, flag: bool) -> Optional[bool]:
    row = (
        db.query(EventRegistration)
        .filter(EventRegistration.id == registration_id, EventRegistration.event_id == event.id)
        .first()
    )
    if row is None:
        return None
    changed = bool(row.is_present) != flag
    row.is_present = flag
    row.attendance_marked_at = now_tz()
    return changed


def _mark_user(db: Session, event: Event, user_id: int, flag: bool) -> Optional[bool]:
    if event.event_type == EventType.GROUP:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None or find_user_team(db, event, user.id) is None:
            return None
        attendance = dict(user.attendance or {})
        changed = attendance.get(event.event_id) != flag
        attendance[event.event_id] = flag
        user.attendance = attendance
        return changed

    application = (
        db.query(EventApplication)
        .filter(
            EventApplication.event_id == event.id,
            EventApplication.user_id == user_id,
            EventApplication.team_id.is_(None),
        )
        .first()
    )
    if application is None:
        return None
    changed = bool(application.is_present) != flag
    application.is_present = flag
    return changed


def _apply_attendance(db: Session, event: Event, kind: str, ref: int, flag: bool) -> Optional[bool]:
    """Write one presence flag; returns whether it changed, or None when unmatched."""
    if kind == REGISTRATION_REF:
        return _mark_registration_row(db, event, ref, flag)
    return _mark_user(db, event, ref, flag)


def _load_event(db: Session, event_slug: str, admin: Optional[User]) -> Event:
    event = db.query(Event).filter(Event.event_id == event_slug).first()
    if event is None:
        raise event_not_found(event_slug)
    if admin is not None:
        ensure_event_results_access(admin, event)
    return event


def mark_attendance(db: Session, event_slug: str, entries: Iterable[Any], admin: Optional[User] = None) -> AttendanceResult:
    """Mark presence for ``[{user_id | registration_id, is_present}]`` entries.

    ``user_id`` names an account: the solo application on solo events, the
    user's attendance map on group events (only for members of a team of the
    event). ``registration_id`` names a direct registration row. Entries with
    both keys, neither key, or a non-numeric id count as errors.
    """
    event = _load_event(db, event_slug, admin)
    entries = list(entries or [])
    result = AttendanceResult(event_id=event.event_id, total_requested=len(entries))

    for entry in entries:
        kind, raw_ref, flag = _entry_values(entry)
        ref = _parse_ref(raw_ref) if kind is not None else None
        if ref is None:
            result.error_count += 1
            continue
        try:
            changed = _apply_attendance(db, event, kind, ref, flag)
            if changed is None:
                result.unmatched_count += 1
                continue
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Attendance update failed for %s %s in event %s: %s", kind, ref, event_slug, exc)
            result.error_count += 1
            continue
        result.matched_count += 1
        if changed:
            result.updated_count += 1

    logger.info(
        "Attendance for %s: %s updated, %s matched, %s unmatched, %s errors",
        event_slug,
        result.updated_count,
        result.matched_count,
        result.unmatched_count,
        result.error_count,
    )
    return result


def mark_registration_attendance(db: Session, event_slug: str, registration_id, attended: bool, admin: Optional[User] = None) -> dict:
    event = _load_event(db, event_slug, admin)
    parsed = _parse_ref(registration_id)
    changed = _mark_registration_row(db, event, parsed, bool(attended)) if parsed is not None else None
    if changed is None:
        db.rollback()
        raise NotFoundError(
            "RegistrationNotFound",
            "Registration not found for this event",
            {"event": event_slug, "registration_id": str(registration_id)},
        )
    db.commit()
    return {"event_id": event.event_id, "registration_id": parsed, "is_present": bool(attended), "updated": changed}
