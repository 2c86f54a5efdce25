import logging
import re
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import AdminLog, Event, User

logger = logging.getLogger(__name__)


def log_admin_action(db: Session, admin: Optional[User], action: str, method: Optional[str] = None, path: Optional[str] = None, meta: Optional[dict] = None):
    try:
        db.add(AdminLog(
            admin_id=admin.id if admin else None,
            admin_email=admin.email if admin else "",
            admin_name=admin.name if admin else "",
            action=action,
            method=method,
            path=path,
            meta=meta
        ))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Could not write admin log for %s: %s", action, exc)


def _slugify(value: str) -> str:
    cleaned = re.sub(r"[^a-z0-9\s]", "", str(value or "").strip().lower())
    cleaned = re.sub(r"\s+", "-", cleaned).strip("-")
    return cleaned[:110] if cleaned else "event"


def next_event_slug(db: Session, name: str) -> str:
    base = _slugify(name)
    slug = base
    counter = 1
    while db.query(Event).filter(Event.event_id == slug).first():
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def enum_value(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)
