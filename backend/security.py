from typing import Optional
from fastapi import Depends

from auth import get_current_user
from errors import ForbiddenError
from models import Event, User, UserRole


def is_admin(user: Optional[User]) -> bool:
    return bool(user and user.role == UserRole.ADMIN)


def is_super_admin(user: Optional[User]) -> bool:
    return bool(is_admin(user) and user.is_super_admin)


def can_manage_event_results(user: Optional[User], event: Event) -> bool:
    if is_super_admin(user):
        return True
    if not is_admin(user):
        return False
    return user.assigned_event_id is not None and int(user.assigned_event_id) == int(event.id)


def can_edit_event(user: Optional[User], event: Event) -> bool:
    if is_super_admin(user):
        return True
    if not is_admin(user):
        return False
    if user.assigned_event_id is not None and int(user.assigned_event_id) == int(event.id):
        return True
    return bool(user.club) and user.club == event.club_in_charge


def ensure_event_results_access(user: Optional[User], event: Event) -> None:
    if not can_manage_event_results(user, event):
        raise ForbiddenError(
            "Forbidden",
            "Only the assigned event admin or a super admin can update this event",
            {"event": event.event_id},
        )


def ensure_event_edit_access(user: Optional[User], event: Event) -> None:
    if not can_edit_event(user, event):
        raise ForbiddenError(
            "Forbidden",
            "Access denied: You can only manage events from your club",
            {"event": event.event_id},
        )


def require_user(user: User = Depends(get_current_user)) -> User:
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not is_admin(user):
        raise ForbiddenError("Forbidden", "Admin access required")
    return user
