from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from database import Base, engine, get_db
from models import SystemConfig, User, UserRole

logger = logging.getLogger(__name__)

MIGRATION_MARKER_KEY = "migration:festival_bootstrap:v1"


def has_bootstrap_marker() -> bool:
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        return marker is not None
    finally:
        db.close()


def set_bootstrap_marker() -> None:
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        value = datetime.now(timezone.utc).isoformat()
        if marker:
            marker.value = value
        else:
            db.add(SystemConfig(key=MIGRATION_MARKER_KEY, value=value))
        db.commit()
    finally:
        db.close()


def clear_bootstrap_marker() -> bool:
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        if not marker:
            return False
        db.delete(marker)
        db.commit()
        return True
    finally:
        db.close()


def ensure_default_superadmin(db: Session) -> None:
    email = str(os.environ.get("DEFAULT_SUPERADMIN_EMAIL") or "").strip().lower()
    if not email:
        logger.info("DEFAULT_SUPERADMIN_EMAIL not set; skipping super admin seed.")
        return
    user = db.query(User).filter(User.email == email).first()
    if not user:
        user = User(email=email, name="Super Admin")
        db.add(user)
    user.role = UserRole.ADMIN
    user.is_super_admin = True
    user.is_verified = True
    db.commit()
    logger.info("Super admin ensured for %s", email)


def ensure_tables() -> None:
    Base.metadata.create_all(bind=engine)


def run_bootstrap_migrations() -> None:
    ensure_tables()
    db = next(get_db())
    try:
        ensure_default_superadmin(db)
    finally:
        db.close()
