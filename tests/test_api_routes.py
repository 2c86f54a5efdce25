from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from database import get_db
from models import AdminLog, Event, EventType, UserRole
from server import app


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_solo_registration_and_conflict_body(client, make_user, make_event):
    event = make_event()
    user = make_user()

    response = client.post("/api/registrations/solo", json={"eventId": event.event_id}, headers=_auth(user))
    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "solo"
    assert body["application"]["user_id"] == user.id

    response = client.post("/api/registrations/solo", json={"event_id": event.event_id}, headers=_auth(user))
    assert response.status_code == 409
    assert response.json() == {
        "kind": "Conflict",
        "code": "AlreadyRegistered",
        "message": "You are already registered for this event",
        "context": {"event": event.event_id, "user_id": user.id},
    }


def test_direct_route_picks_mode_from_event_type(client, make_user, make_event, participant):
    event = make_event(event_type=EventType.GROUP)
    payload = {
        "eventId": event.event_id,
        "teamName": "Alpha",
        "participants": [participant("Asha"), participant("Ravi", dept="Other", custom_dept="Robotics")],
    }

    response = client.post("/api/registrations/direct", json=payload, headers=_auth(make_user()))

    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "group-direct"
    assert body["participant_count"] == 2
    assert len(body["team"]["members"]) == 2
    assert body["registrations"][1]["department"] == "Robotics"


def test_invalid_participant_is_400(client, make_user, make_event, participant):
    event = make_event()
    payload = {"eventId": event.event_id, "participants": [participant("Asha", gender=None)]}

    response = client.post("/api/registrations/direct", json=payload, headers=_auth(make_user()))

    assert response.status_code == 400
    assert response.json()["code"] == "InvalidParticipant"
    assert response.json()["context"] == {"index": 1, "field": "gender"}


def test_unknown_event_is_404(client, make_user):
    response = client.post("/api/registrations/solo", json={"eventId": "ghost"}, headers=_auth(make_user()))
    assert response.status_code == 404
    assert response.json()["kind"] == "NotFound"


def test_admin_creates_event_with_slug_and_defaults(client, db, make_user):
    admin = make_user(role=UserRole.ADMIN, club="Coding Club")
    payload = {"name": "Code Sprint!", "event_type": "group"}

    first = client.post("/api/admin/events", json=payload, headers=_auth(admin))
    second = client.post("/api/admin/events", json=payload, headers=_auth(admin))

    assert first.status_code == 200
    assert first.json()["event_id"] == "code-sprint"
    assert second.json()["event_id"] == "code-sprint-1"
    assert first.json()["min_team_size"] == 2
    assert first.json()["max_team_size"] == 6
    assert first.json()["club_in_charge"] == "Coding Club"
    assert db.query(AdminLog).filter(AdminLog.action == "create_event").count() == 2


def test_club_admin_without_club_cannot_create_event(client, make_user):
    admin = make_user(role=UserRole.ADMIN, club=None)
    response = client.post("/api/admin/events", json={"name": "Quiz"}, headers=_auth(admin))
    assert response.status_code == 403


def test_regular_user_cannot_set_winners(client, make_user, make_event):
    event = make_event()
    response = client.put(
        f"/api/admin/events/{event.event_id}/winners",
        json={"winners": []},
        headers=_auth(make_user()),
    )
    assert response.status_code == 403
    assert response.json()["kind"] == "Forbidden"


def test_winners_and_attendance_routes(client, make_user, make_event):
    event = make_event()
    admin = make_user(role=UserRole.ADMIN, is_super_admin=True)
    user = make_user()
    client.post("/api/registrations/solo", json={"eventId": event.event_id}, headers=_auth(user))

    response = client.put(
        f"/api/admin/events/{event.event_id}/winners",
        json={"winners": [{"userId": user.id}]},
        headers=_auth(admin),
    )
    assert response.status_code == 200
    assert response.json()["winners"] == [{"rank": 1, "userId": user.id}]

    response = client.put(
        f"/api/admin/events/{event.event_id}/attendance",
        json={"attendance": [{"userId": user.id, "isPresent": True}, {"userId": "x"}]},
        headers=_auth(admin),
    )
    assert response.status_code == 200
    assert response.json()["matched_count"] == 1
    assert response.json()["error_count"] == 1

    response = client.get(f"/api/admin/events/{event.event_id}/registrations", headers=_auth(admin))
    assert response.status_code == 200
    assert response.json()["applications"][0]["is_present"] is True


def test_archived_event_rejects_registration(client, db, make_user, make_event):
    event = make_event()
    admin = make_user(role=UserRole.ADMIN, club="Coding Club")

    response = client.put(f"/api/admin/events/{event.event_id}/archive", json={"is_archived": True}, headers=_auth(admin))
    assert response.status_code == 200
    assert response.json()["is_archived"] is True

    response = client.post("/api/registrations/solo", json={"eventId": event.event_id}, headers=_auth(make_user()))
    assert response.status_code == 404


def test_delete_event(client, db, make_user, make_event):
    event = make_event()
    slug = event.event_id
    admin = make_user(role=UserRole.ADMIN, is_super_admin=True)

    response = client.delete(f"/api/admin/events/{slug}", headers=_auth(admin))

    assert response.status_code == 200
    assert db.query(Event).filter(Event.event_id == slug).first() is None


def test_expired_deadline_is_a_conflict(client, make_user, make_event):
    event = make_event(application_deadline=datetime.now(timezone.utc) - timedelta(hours=1))

    response = client.post("/api/registrations/solo", json={"eventId": event.event_id}, headers=_auth(make_user()))

    assert response.status_code == 409
    assert response.json()["kind"] == "Conflict"
    assert response.json()["code"] == "DeadlineExpired"


@pytest.mark.parametrize("field", ["name", "min_team_size", "max_team_size", "is_active"])
def test_event_update_rejects_null_required_field(client, db, make_user, make_event, field):
    event = make_event(event_type=EventType.GROUP)
    admin = make_user(role=UserRole.ADMIN, is_super_admin=True)

    response = client.put(f"/api/admin/events/{event.event_id}", json={field: None}, headers=_auth(admin))

    assert response.status_code == 400
    assert response.json()["kind"] == "ValidationError"
    assert response.json()["code"] == "InvalidEventField"
    assert response.json()["context"] == {"field": field}
    db.expire_all()
    assert db.get(Event, event.id).name == event.name


def test_event_update_trims_name(client, db, make_user, make_event):
    event = make_event()
    admin = make_user(role=UserRole.ADMIN, is_super_admin=True)

    response = client.put(f"/api/admin/events/{event.event_id}", json={"name": "  Code Sprint  "}, headers=_auth(admin))

    assert response.status_code == 200
    assert response.json()["name"] == "Code Sprint"


def test_registration_attendance_route_marks_row(client, make_user, make_event, participant):
    event = make_event()
    admin = make_user(role=UserRole.ADMIN, is_super_admin=True)
    response = client.post(
        "/api/registrations/direct",
        json={"eventId": event.event_id, "participants": [participant("Asha")]},
        headers=_auth(make_user()),
    )
    row_id = response.json()["registrations"][0]["id"]

    response = client.put(
        f"/api/admin/events/{event.event_id}/registrations/{row_id}/attendance",
        json={"attended": True},
        headers=_auth(admin),
    )

    assert response.status_code == 200
    assert response.json()["registration_id"] == row_id
    assert response.json()["is_present"] is True
