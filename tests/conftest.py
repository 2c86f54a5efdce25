from itertools import count
from pathlib import Path
import os
import sys

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_TIMEZONE"] = "UTC"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-0123456789-abcdefghijklmnop")

import pytest

from database import Base, SessionLocal, engine
from models import Event, EventType, Level, User, UserRole


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db):
    sequence = count(1)

    def _make(**overrides):
        n = next(sequence)
        values = {
            "email": f"user{n}@citycollege.edu",
            "name": f"User {n}",
            "role": UserRole.USER,
            "is_verified": True,
            "level": Level.UG,
            "degree": "BTech",
            "department": "Computer Science",
            "year": "2",
            "gender": "Female",
            "mobile": "9000000000",
            "college": "City College",
            "city": "Chennai",
            "state": "Tamil Nadu",
        }
        values.update(overrides)
        user = User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_event(db):
    sequence = count(1)

    def _make(**overrides):
        n = next(sequence)
        event_type = overrides.get("event_type", EventType.SOLO)
        values = {
            "event_id": f"event-{n}",
            "name": f"Event {n}",
            "event_type": event_type,
            "club_in_charge": "Coding Club",
            "min_team_size": 2 if event_type == EventType.GROUP else 1,
            "max_team_size": 6 if event_type == EventType.GROUP else 1,
            "winners": [],
        }
        values.update(overrides)
        event = Event(**values)
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    return _make


@pytest.fixture
def participant():
    def _make(name="Asha", **overrides):
        values = {
            "name": name,
            "email": f"{name.lower()}@example.com",
            "mobile": "9876543210",
            "level": "UG",
            "degree": "BSc",
            "dept": "Physics",
            "custom_dept": None,
            "year": "3",
            "gender": "Female",
        }
        values.update(overrides)
        return values

    return _make
