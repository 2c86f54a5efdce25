from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from attendance_service import mark_attendance, mark_registration_attendance
from database import get_db
from errors import ForbiddenError, ValidationError, event_not_found
from models import Event, EventApplication, EventRegistration, EventType, Team, TeamMember, User
from registration_queries import list_all_registrations, list_event_registrations
from registration_service import count_event_capacity_usage
from schemas import (
    AttendanceResultResponse,
    AttendanceUpdateRequest,
    EventArchiveUpdate,
    EventCreate,
    EventResponse,
    EventUpdate,
    RegistrationAttendanceUpdate,
    WinnersResponse,
    WinnersUpdateRequest,
)
from security import ensure_event_edit_access, is_super_admin, require_admin
from utils import log_admin_action, next_event_slug
from winners_service import set_winners

router = APIRouter()

GROUP_TEAM_SIZE_DEFAULTS = (2, 6)
SOLO_TEAM_SIZE_DEFAULTS = (1, 1)
REQUIRED_EVENT_FIELDS = ("name", "min_team_size", "max_team_size", "is_active")


def _get_event_or_404(db: Session, slug: str) -> Event:
    event = db.query(Event).filter(Event.event_id == slug).first()
    if not event:
        raise event_not_found(slug)
    return event


def _event_response(db: Session, event: Event) -> EventResponse:
    response = EventResponse.model_validate(event)
    return response.model_copy(update={"application_count": count_event_capacity_usage(db, event)})


def _validate_team_sizes(min_size: int, max_size: int) -> None:
    if min_size > max_size:
        raise ValidationError(
            "InvalidTeamSize",
            "min_team_size cannot exceed max_team_size",
            {"min": min_size, "max": max_size},
        )


def _log_event_admin_action(db: Session, admin: User, event_slug: str, action: str, method: str, path: str, meta: Optional[dict] = None):
    payload = {"event": event_slug}
    payload.update(meta or {})
    log_admin_action(db, admin, action, method=method, path=path, meta=payload)


@router.post("/admin/events", response_model=EventResponse)
def create_event(
    payload: EventCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if is_super_admin(admin):
        club = payload.club_in_charge
    else:
        if not admin.club:
            raise ForbiddenError("Forbidden", "Club admins must belong to a club to create events")
        club = admin.club

    event_type = EventType(payload.event_type.value)
    default_min, default_max = GROUP_TEAM_SIZE_DEFAULTS if event_type == EventType.GROUP else SOLO_TEAM_SIZE_DEFAULTS
    if event_type == EventType.GROUP:
        min_size = payload.min_team_size or default_min
        max_size = payload.max_team_size or default_max
    else:
        min_size, max_size = default_min, default_max
    _validate_team_sizes(min_size, max_size)

    event = Event(
        event_id=next_event_slug(db, payload.name),
        name=payload.name.strip(),
        event_type=event_type,
        club_in_charge=club,
        description=payload.description,
        venue=payload.venue,
        event_date=payload.event_date,
        min_team_size=min_size,
        max_team_size=max_size,
        max_applications=payload.max_applications,
        application_deadline=payload.application_deadline,
        winners=[],
        is_active=True,
        is_archived=False,
        created_by_user_id=admin.id,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    _log_event_admin_action(
        db,
        admin,
        event.event_id,
        "create_event",
        method="POST",
        path="/api/admin/events",
        meta={"event_pk": event.id},
    )
    return _event_response(db, event)


@router.put("/admin/events/{slug}", response_model=EventResponse)
def update_event(
    slug: str,
    payload: EventUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    event = _get_event_or_404(db, slug)
    ensure_event_edit_access(admin, event)
    updates = payload.model_dump(exclude_unset=True)
    if "club_in_charge" in updates and not is_super_admin(admin):
        raise ForbiddenError("Forbidden", "Only a super admin can move an event to another club", {"event": slug})
    for field in REQUIRED_EVENT_FIELDS:
        if field in updates and updates[field] is None:
            raise ValidationError("InvalidEventField", f"{field} cannot be null", {"field": field})
    if "name" in updates:
        updates["name"] = updates["name"].strip()
        if not updates["name"]:
            raise ValidationError("InvalidEventField", "name cannot be blank", {"field": "name"})

    if event.event_type == EventType.GROUP:
        min_size = updates.get("min_team_size") or event.min_team_size
        max_size = updates.get("max_team_size") or event.max_team_size
        _validate_team_sizes(min_size, max_size)
    else:
        updates.pop("min_team_size", None)
        updates.pop("max_team_size", None)

    for field, value in updates.items():
        setattr(event, field, value)

    db.commit()
    db.refresh(event)
    _log_event_admin_action(
        db,
        admin,
        slug,
        "update_event",
        method="PUT",
        path=f"/api/admin/events/{slug}",
        meta={"fields": sorted(updates.keys())},
    )
    return _event_response(db, event)


@router.put("/admin/events/{slug}/archive", response_model=EventResponse)
def archive_event(
    slug: str,
    payload: EventArchiveUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    event = _get_event_or_404(db, slug)
    ensure_event_edit_access(admin, event)
    event.is_archived = payload.is_archived
    db.commit()
    db.refresh(event)
    _log_event_admin_action(
        db,
        admin,
        slug,
        "archive_event" if payload.is_archived else "unarchive_event",
        method="PUT",
        path=f"/api/admin/events/{slug}/archive",
    )
    return _event_response(db, event)


@router.delete("/admin/events/{slug}")
def delete_event(
    slug: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    event = _get_event_or_404(db, slug)
    ensure_event_edit_access(admin, event)
    event_pk = int(event.id)

    db.query(EventRegistration).filter(EventRegistration.event_id == event_pk).delete(synchronize_session=False)
    db.query(TeamMember).filter(TeamMember.event_id == event_pk).delete(synchronize_session=False)
    db.query(EventApplication).filter(EventApplication.event_id == event_pk).delete(synchronize_session=False)
    db.query(Team).filter(Team.event_id == event_pk).delete(synchronize_session=False)
    db.query(User).filter(User.assigned_event_id == event_pk).update(
        {User.assigned_event_id: None},
        synchronize_session=False,
    )
    db.delete(event)
    db.commit()

    _log_event_admin_action(
        db,
        admin,
        slug,
        "delete_event",
        method="DELETE",
        path=f"/api/admin/events/{slug}",
        meta={"event_pk": event_pk},
    )
    return {"message": "Event deleted"}


@router.put("/admin/events/{slug}/winners", response_model=WinnersResponse)
def update_event_winners(
    slug: str,
    payload: WinnersUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    result = set_winners(db, slug, payload.winners, admin=admin)
    _log_event_admin_action(
        db,
        admin,
        slug,
        "update_event_winners",
        method="PUT",
        path=f"/api/admin/events/{slug}/winners",
        meta={"count": len(result.winners)},
    )
    return WinnersResponse(
        event_id=result.event.event_id,
        name=result.event.name,
        winners=result.winners,
        winners_updated_at=result.event.winners_updated_at,
    )


@router.put("/admin/events/{slug}/attendance", response_model=AttendanceResultResponse)
def update_event_attendance(
    slug: str,
    payload: AttendanceUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    result = mark_attendance(db, slug, payload.attendance, admin=admin)
    _log_event_admin_action(
        db,
        admin,
        slug,
        "update_event_attendance",
        method="PUT",
        path=f"/api/admin/events/{slug}/attendance",
        meta={"updated": result.updated_count, "requested": result.total_requested},
    )
    return AttendanceResultResponse(**result.to_dict())


@router.put("/admin/events/{slug}/registrations/{registration_id}/attendance")
def update_registration_attendance(
    slug: str,
    registration_id: str,
    payload: RegistrationAttendanceUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    result = mark_registration_attendance(db, slug, registration_id, payload.attended, admin=admin)
    _log_event_admin_action(
        db,
        admin,
        slug,
        "update_registration_attendance",
        method="PUT",
        path=f"/api/admin/events/{slug}/registrations/{registration_id}/attendance",
        meta={"registration_id": registration_id, "attended": payload.attended},
    )
    return result


@router.get("/admin/events/{slug}/registrations")
def event_registrations(
    slug: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_event_registrations(db, slug, admin=admin)


@router.get("/admin/registrations")
def all_registrations(
    include_inactive: bool = Query(False),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_all_registrations(db, admin, include_inactive=include_inactive)
