import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from education import OTHER_DEPARTMENT, infer_level, normalize_level, resolve_department
from errors import (
    ConflictError,
    DependencyFailure,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    event_not_found,
    invalid_participant,
)
from models import (
    Event,
    EventApplication,
    EventRegistration,
    EventType,
    Level,
    RegistrationType,
    Team,
    TeamMember,
    User,
)
from time_utils import has_passed, now_tz
from utils import enum_value

logger = logging.getLogger(__name__)

DEFAULT_MAX_TEAM_MEMBERS = int(os.environ.get("DEFAULT_MAX_TEAM_MEMBERS", 6))

PARTICIPANT_REQUIRED_FIELDS = ("name", "level", "degree", "dept", "year", "gender")


class RegistrationMode(str, Enum):
    SOLO = "solo"
    GROUP_CREATE = "group-create"
    GROUP_DIRECT = "group-direct"
    SOLO_DIRECT = "solo-direct"


SOLO_MODES = {RegistrationMode.SOLO, RegistrationMode.SOLO_DIRECT}
DIRECT_MODES = {RegistrationMode.GROUP_DIRECT, RegistrationMode.SOLO_DIRECT}


@dataclass
class RegistrationResult:
    mode: RegistrationMode
    event: Event
    application: Optional[EventApplication] = None
    team: Optional[Team] = None
    registrations: List[EventRegistration] = field(default_factory=list)

    @property
    def participant_count(self) -> int:
        if self.registrations:
            return len(self.registrations)
        if self.team is not None:
            return len(self.team.members)
        return 1 if self.application is not None else 0


def direct_mode_for(event: Event) -> RegistrationMode:
    if event.event_type == EventType.GROUP:
        return RegistrationMode.GROUP_DIRECT
    return RegistrationMode.SOLO_DIRECT


def get_event_by_ref(db: Session, event_ref: Union[int, str], include_closed: bool = False) -> Event:
    """Load an event by numeric id or slug.

    Inactive and archived events are treated as missing unless
    ``include_closed`` is set.
    """
    raw = str(event_ref if event_ref is not None else "").strip()
    if not raw:
        raise event_not_found(event_ref)
    event = None
    if raw.isdigit():
        event = db.query(Event).filter(Event.id == int(raw)).first()
    if event is None:
        event = db.query(Event).filter(Event.event_id == raw).first()
    if event is None:
        raise event_not_found(event_ref)
    if not include_closed and (not event.is_active or event.is_archived):
        raise event_not_found(event_ref)
    return event


def _team_ids_for_user(db: Session, event: Event, user_id: int, registered_only: bool):
    member_team_ids = db.query(TeamMember.team_id).filter(
        TeamMember.event_id == event.id,
        TeamMember.user_id == user_id,
    )
    query = db.query(Team).filter(
        Team.event_id == event.id,
        or_(Team.leader_user_id == user_id, Team.id.in_(member_team_ids)),
    )
    if registered_only:
        query = query.filter(Team.is_registered.is_(True))
    return query


def is_user_registered_for_event(db: Session, event: Event, user_id: int) -> bool:
    solo_application = (
        db.query(EventApplication.id)
        .filter(
            EventApplication.event_id == event.id,
            EventApplication.user_id == user_id,
            EventApplication.team_id.is_(None),
        )
        .first()
    )
    if solo_application:
        return True
    return _team_ids_for_user(db, event, user_id, registered_only=True).first() is not None


def find_user_team(db: Session, event: Event, user_id: int) -> Optional[Team]:
    return _team_ids_for_user(db, event, user_id, registered_only=False).first()


def count_event_capacity_usage(db: Session, event: Event) -> int:
    if event.event_type == EventType.GROUP:
        return (
            db.query(func.count(Team.id))
            .filter(Team.event_id == event.id, Team.is_registered.is_(True))
            .scalar()
            or 0
        )
    applications = (
        db.query(func.count(EventApplication.id))
        .filter(EventApplication.event_id == event.id, EventApplication.team_id.is_(None))
        .scalar()
        or 0
    )
    direct_rows = (
        db.query(func.count(EventRegistration.id))
        .filter(
            EventRegistration.event_id == event.id,
            EventRegistration.team_id.is_(None),
            EventRegistration.is_active.is_(True),
        )
        .scalar()
        or 0
    )
    return int(applications) + int(direct_rows)


def _check_event_type(event: Event, mode: RegistrationMode) -> None:
    expected = EventType.SOLO if mode in SOLO_MODES else EventType.GROUP
    if event.event_type != expected:
        raise ValidationError(
            "InvalidEventType",
            f"This endpoint is only for {expected.value} events",
            {"event": event.event_id, "event_type": enum_value(event.event_type), "mode": mode.value},
        )


def _check_capacity(db: Session, event: Event) -> None:
    if event.max_applications is None:
        return
    used = count_event_capacity_usage(db, event)
    if used >= int(event.max_applications):
        raise ConflictError(
            "EventFull",
            "Event registration is full",
            {"event": event.event_id, "max_applications": event.max_applications},
        )


def _clean_team_name(value) -> str:
    return str(value or "").strip()


def _validate_participants(participants: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    cleaned = []
    for index, participant in enumerate(participants, start=1):
        participant = dict(participant or {})
        for field_name in PARTICIPANT_REQUIRED_FIELDS:
            if not str(participant.get(field_name) or "").strip():
                raise invalid_participant(index, field_name, f"Participant {index}: {field_name} is required")
        if str(participant.get("dept")).strip() == OTHER_DEPARTMENT and not str(participant.get("custom_dept") or "").strip():
            raise invalid_participant(index, "custom_dept", f"Participant {index}: custom department is required")
        level = normalize_level(participant.get("level"))
        if level not in {item.value for item in Level}:
            raise invalid_participant(index, "level", f"Participant {index}: level must be UG, PG or PhD")
        participant["level"] = level
        cleaned.append(participant)
    return cleaned


def _check_team_size(event: Event, mode: RegistrationMode, participants: List[dict], team_name: str) -> None:
    count = len(participants)
    if mode == RegistrationMode.SOLO_DIRECT:
        if count != 1:
            raise ValidationError(
                "InvalidTeamSize",
                "Solo events take exactly one participant",
                {"count": count, "min": 1, "max": 1},
            )
        return
    if mode == RegistrationMode.GROUP_DIRECT:
        min_size = int(event.min_team_size or 1)
        max_size = int(event.max_team_size or min_size)
        if count < min_size or count > max_size:
            raise ValidationError(
                "InvalidTeamSize",
                f"Team size must be between {min_size} and {max_size} members",
                {"count": count, "min": min_size, "max": max_size},
            )
    if mode in (RegistrationMode.GROUP_DIRECT, RegistrationMode.GROUP_CREATE) and not team_name:
        raise ValidationError("MissingTeamName", "Team name is required", {"event": event.event_id})


def _commit(db: Session, conflict_code: str, conflict_message: str, context: dict) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(conflict_code, conflict_message, context)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Registration commit failed for %s: %s", context, exc)
        raise DependencyFailure("StoreUnavailable", "Could not save registration", context)


def _registration_row(event: Event, registrant: User, participant: dict, team: Optional[Team] = None, member: Optional[TeamMember] = None) -> EventRegistration:
    department = resolve_department(participant.get("dept"), participant.get("custom_dept"))
    return EventRegistration(
        event_id=event.id,
        event_name=event.name,
        event_type=event.event_type,
        team_id=team.id if team else None,
        team_name=team.team_name if team else None,
        team_member_id=member.id if member else None,
        registrant_id=registrant.id,
        registrant_email=registrant.email,
        participant_name=participant.get("name"),
        participant_email=participant.get("email"),
        participant_mobile=participant.get("mobile"),
        level=participant.get("level"),
        degree=participant.get("degree"),
        department=department,
        custom_department=participant.get("custom_dept") if participant.get("dept") == OTHER_DEPARTMENT else None,
        year=participant.get("year"),
        gender=participant.get("gender"),
        college_name=registrant.college,
        college_city=registrant.city,
        college_state=registrant.state or "Not Specified",
        registration_type=RegistrationType.DIRECT,
        is_active=True,
        is_present=False,
    )


def _register_solo(db: Session, event: Event, registrant: User) -> RegistrationResult:
    last_position = db.query(func.max(EventApplication.position)).filter(EventApplication.event_id == event.id).scalar()
    position = 0 if last_position is None else int(last_position) + 1
    application = EventApplication(event_id=event.id, user_id=registrant.id, position=position)
    db.add(application)
    _commit(
        db,
        "AlreadyRegistered",
        "You are already registered for this event",
        {"event": event.event_id, "user_id": registrant.id},
    )
    db.refresh(application)
    logger.info("User %s registered for solo event %s", registrant.id, event.event_id)
    return RegistrationResult(mode=RegistrationMode.SOLO, event=event, application=application)


def _create_group(db: Session, event: Event, registrant: User, team_name: str) -> RegistrationResult:
    team = Team(
        event_id=event.id,
        team_name=team_name,
        leader_user_id=registrant.id,
        registered_by_user_id=registrant.id,
        registration_type=RegistrationType.SELF,
        is_registered=False,
        max_members=int(event.max_team_size or DEFAULT_MAX_TEAM_MEMBERS),
    )
    team.members.append(
        TeamMember(
            event_id=event.id,
            user_id=registrant.id,
            name=registrant.name,
            email=registrant.email,
            mobile=registrant.mobile,
            level=enum_value(registrant.level),
            degree=registrant.degree,
            department=registrant.department,
            year=registrant.year,
            gender=registrant.gender,
            role="leader",
            registration_type=RegistrationType.SELF,
        )
    )
    db.add(team)
    _commit(
        db,
        "AlreadyInTeam",
        "You are already part of a team for this event",
        {"event": event.event_id, "user_id": registrant.id},
    )
    db.refresh(team)
    logger.info("User %s created team %s for event %s", registrant.id, team.id, event.event_id)
    return RegistrationResult(mode=RegistrationMode.GROUP_CREATE, event=event, team=team)


def _discard_orphan_team(db: Session, team_id: int) -> None:
    try:
        orphan = db.query(Team).filter(Team.id == team_id).first()
        if orphan is not None:
            db.delete(orphan)
            db.commit()
            logger.warning("Removed team %s after its registration rows failed to save", team_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Team %s left without registration rows; reconcile sweep will report it: %s", team_id, exc)


def _register_group_direct(db: Session, event: Event, registrant: User, team_name: str, participants: List[dict]) -> RegistrationResult:
    team = Team(
        event_id=event.id,
        team_name=team_name,
        leader_user_id=None,
        registered_by_user_id=registrant.id,
        registration_type=RegistrationType.DIRECT,
        is_registered=True,
        registered_at=now_tz(),
        max_members=int(event.max_team_size or DEFAULT_MAX_TEAM_MEMBERS),
    )
    for index, participant in enumerate(participants):
        team.members.append(
            TeamMember(
                event_id=event.id,
                user_id=None,
                name=participant.get("name"),
                email=participant.get("email"),
                mobile=participant.get("mobile"),
                level=participant.get("level"),
                degree=participant.get("degree"),
                department=resolve_department(participant.get("dept"), participant.get("custom_dept")),
                year=participant.get("year"),
                gender=participant.get("gender"),
                role="leader" if index == 0 else "member",
                registration_type=RegistrationType.DIRECT,
            )
        )
    db.add(team)
    _commit(
        db,
        "AlreadyInTeam",
        "Team could not be registered",
        {"event": event.event_id, "team_name": team_name},
    )
    db.refresh(team)
    team_id = int(team.id)

    rows = [
        _registration_row(event, registrant, participant, team=team, member=member)
        for member, participant in zip(team.members, participants)
    ]
    try:
        db.add_all(rows)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Registration rows for team %s failed to save: %s", team_id, exc)
        _discard_orphan_team(db, team_id)
        raise DependencyFailure(
            "StoreUnavailable",
            "Could not save participant registrations",
            {"event": event.event_id, "team_id": team_id},
        )
    for row in rows:
        db.refresh(row)
    logger.info(
        "User %s registered team %s (%s members) for event %s",
        registrant.id,
        team_id,
        len(rows),
        event.event_id,
    )
    return RegistrationResult(mode=RegistrationMode.GROUP_DIRECT, event=event, team=team, registrations=rows)


def _register_solo_direct(db: Session, event: Event, registrant: User, participant: dict) -> RegistrationResult:
    row = _registration_row(event, registrant, participant)
    db.add(row)
    _commit(
        db,
        "AlreadyRegistered",
        "Participant is already registered",
        {"event": event.event_id},
    )
    db.refresh(row)
    logger.info("User %s registered a participant for solo event %s", registrant.id, event.event_id)
    return RegistrationResult(mode=RegistrationMode.SOLO_DIRECT, event=event, registrations=[row])


def register_participant(
    db: Session,
    event_ref: Union[int, str],
    registrant: User,
    mode: Union[RegistrationMode, str],
    payload: Optional[dict] = None,
) -> RegistrationResult:
    """Validate and commit one enrollment.

    Checks run in a fixed order and the first failure wins: event lookup and
    type, deadline, registrant duplicates, team membership (group-create),
    capacity, team size and name, then per-participant fields.
    """
    mode = RegistrationMode(mode)
    payload = payload or {}
    team_name = _clean_team_name(payload.get("team_name"))
    participants = list(payload.get("participants") or [])

    event = get_event_by_ref(db, event_ref)
    _check_event_type(event, mode)

    if has_passed(event.application_deadline):
        raise ConflictError(
            "DeadlineExpired",
            "Application deadline has passed",
            {"event": event.event_id},
        )

    if is_user_registered_for_event(db, event, registrant.id):
        raise ConflictError(
            "AlreadyRegistered",
            "You are already registered for this event",
            {"event": event.event_id, "user_id": registrant.id},
        )

    if mode == RegistrationMode.GROUP_CREATE and find_user_team(db, event, registrant.id) is not None:
        raise ConflictError(
            "AlreadyInTeam",
            "You are already part of a team for this event",
            {"event": event.event_id, "user_id": registrant.id},
        )

    _check_capacity(db, event)
    _check_team_size(event, mode, participants, team_name)

    if mode in DIRECT_MODES:
        participants = _validate_participants(participants)

    if mode == RegistrationMode.SOLO:
        return _register_solo(db, event, registrant)
    if mode == RegistrationMode.GROUP_CREATE:
        return _create_group(db, event, registrant, team_name)
    if mode == RegistrationMode.GROUP_DIRECT:
        return _register_group_direct(db, event, registrant, team_name, participants)
    return _register_solo_direct(db, event, registrant, participants[0])


REGISTRATION_FIELD_TO_MEMBER = {
    "participant_name": "name",
    "participant_email": "email",
    "participant_mobile": "mobile",
    "level": "level",
    "degree": "degree",
    "department": "department",
    "year": "year",
    "gender": "gender",
}
MEMBER_FIELD_TO_REGISTRATION = {value: key for key, value in REGISTRATION_FIELD_TO_MEMBER.items()}


def _clean_changes(changes: dict, allowed) -> dict:
    cleaned = {}
    for key, value in (changes or {}).items():
        if key not in allowed or value is None:
            continue
        if key == "level":
            value = normalize_level(enum_value(value))
        cleaned[key] = value
    if "degree" in cleaned and "level" not in cleaned:
        inferred = infer_level(cleaned["degree"])
        if inferred is not None:
            cleaned["level"] = inferred.value
    return cleaned


def update_direct_registration(db: Session, registration_id: int, user: User, changes: dict) -> EventRegistration:
    row = db.query(EventRegistration).filter(EventRegistration.id == registration_id).first()
    if row is None:
        raise NotFoundError("RegistrationNotFound", "Registration not found", {"registration_id": registration_id})
    if row.registrant_id != user.id:
        raise ForbiddenError(
            "Forbidden",
            "You can only update registrations you submitted",
            {"registration_id": registration_id},
        )

    updates = _clean_changes(changes, REGISTRATION_FIELD_TO_MEMBER)
    for key, value in updates.items():
        setattr(row, key, value)

    if row.team_member_id is not None:
        member = db.query(TeamMember).filter(TeamMember.id == row.team_member_id).first()
        if member is not None:
            for key, value in updates.items():
                setattr(member, REGISTRATION_FIELD_TO_MEMBER[key], value)

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Could not update registration %s: %s", registration_id, exc)
        raise DependencyFailure("StoreUnavailable", "Could not update registration", {"registration_id": registration_id})
    db.refresh(row)
    return row


def update_team_member(db: Session, team_id: int, member_id: int, user: User, changes: dict) -> TeamMember:
    team = db.query(Team).filter(Team.id == team_id).first()
    if team is None:
        raise NotFoundError("TeamNotFound", "Team not found", {"team_id": team_id})
    if user.id not in {team.registered_by_user_id, team.leader_user_id}:
        raise ForbiddenError("Forbidden", "You can only update teams you registered", {"team_id": team_id})

    member = next((item for item in team.members if item.id == member_id), None)
    if member is None:
        raise NotFoundError(
            "RegistrationNotFound",
            "Team member not found",
            {"team_id": team_id, "member_id": member_id},
        )

    updates = _clean_changes(changes, MEMBER_FIELD_TO_REGISTRATION)
    for key, value in updates.items():
        setattr(member, key, value)

    rows = (
        db.query(EventRegistration)
        .filter(EventRegistration.team_id == team.id, EventRegistration.team_member_id == member.id)
        .all()
    )
    for row in rows:
        for key, value in updates.items():
            setattr(row, MEMBER_FIELD_TO_REGISTRATION[key], value)

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Could not update member %s of team %s: %s", member_id, team_id, exc)
        raise DependencyFailure("StoreUnavailable", "Could not update team member", {"team_id": team_id})
    db.refresh(member)
    return member
