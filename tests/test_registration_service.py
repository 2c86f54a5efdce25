from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

import registration_service
from errors import ConflictError, DependencyFailure, ForbiddenError, NotFoundError, ValidationError
from models import EventApplication, EventRegistration, EventType, Team, TeamMember
from reconciliation import reconcile
from registration_service import (
    RegistrationMode,
    count_event_capacity_usage,
    register_participant,
    update_direct_registration,
    update_team_member,
)


def test_solo_registration_creates_one_teamless_application(db, make_user, make_event):
    event = make_event()
    user = make_user()

    result = register_participant(db, event.event_id, user, RegistrationMode.SOLO)

    assert result.application is not None
    applications = db.query(EventApplication).filter(EventApplication.event_id == event.id).all()
    assert len(applications) == 1
    assert applications[0].user_id == user.id
    assert applications[0].team_id is None

    with pytest.raises(ConflictError) as exc:
        register_participant(db, event.event_id, user, RegistrationMode.SOLO)
    assert exc.value.code == "AlreadyRegistered"
    assert db.query(EventApplication).count() == 1


def test_event_can_be_referenced_by_numeric_id(db, make_user, make_event):
    event = make_event()
    result = register_participant(db, str(event.id), make_user(), "solo")
    assert result.event.id == event.id


def test_missing_and_archived_events_are_not_found(db, make_user, make_event):
    user = make_user()
    with pytest.raises(NotFoundError) as exc:
        register_participant(db, "no-such-event", user, RegistrationMode.SOLO)
    assert exc.value.code == "EventNotFound"

    archived = make_event(is_archived=True)
    with pytest.raises(NotFoundError):
        register_participant(db, archived.event_id, user, RegistrationMode.SOLO)

    inactive = make_event(is_active=False)
    with pytest.raises(NotFoundError):
        register_participant(db, inactive.event_id, user, RegistrationMode.SOLO)


def test_mode_must_match_event_type(db, make_user, make_event):
    group_event = make_event(event_type=EventType.GROUP)
    with pytest.raises(ValidationError) as exc:
        register_participant(db, group_event.event_id, make_user(), RegistrationMode.SOLO)
    assert exc.value.code == "InvalidEventType"


def test_deadline_passed_is_rejected(db, make_user, make_event):
    event = make_event(application_deadline=datetime.now(timezone.utc) - timedelta(days=1))
    with pytest.raises(ConflictError) as exc:
        register_participant(db, event.event_id, make_user(), RegistrationMode.SOLO)
    assert exc.value.code == "DeadlineExpired"
    assert exc.value.kind == "Conflict"
    assert exc.value.status_code == 409


def test_future_deadline_allows_registration(db, make_user, make_event):
    event = make_event(application_deadline=datetime.now(timezone.utc) + timedelta(days=1))
    result = register_participant(db, event.event_id, make_user(), RegistrationMode.SOLO)
    assert result.application is not None


def test_solo_capacity(db, make_user, make_event):
    event = make_event(max_applications=1)
    register_participant(db, event.event_id, make_user(), RegistrationMode.SOLO)

    with pytest.raises(ConflictError) as exc:
        register_participant(db, event.event_id, make_user(), RegistrationMode.SOLO)
    assert exc.value.code == "EventFull"


def test_group_capacity_counts_only_registered_teams(db, make_user, make_event, participant):
    event = make_event(event_type=EventType.GROUP, max_applications=1)

    register_participant(db, event.event_id, make_user(), RegistrationMode.GROUP_CREATE, {"team_name": "Drafts"})
    assert count_event_capacity_usage(db, event) == 0

    register_participant(
        db,
        event.event_id,
        make_user(),
        RegistrationMode.GROUP_DIRECT,
        {"team_name": "Alpha", "participants": [participant("Asha"), participant("Ravi")]},
    )
    assert count_event_capacity_usage(db, event) == 1

    with pytest.raises(ConflictError) as exc:
        register_participant(
            db,
            event.event_id,
            make_user(),
            RegistrationMode.GROUP_DIRECT,
            {"team_name": "Beta", "participants": [participant("Meena"), participant("Kiran")]},
        )
    assert exc.value.code == "EventFull"


def test_group_create_builds_draft_team_with_leader(db, make_user, make_event):
    event = make_event(event_type=EventType.GROUP)
    user = make_user()

    result = register_participant(db, event.event_id, user, RegistrationMode.GROUP_CREATE, {"team_name": " Rockets "})

    team = result.team
    assert team.team_name == "Rockets"
    assert team.is_registered is False
    assert team.leader_user_id == user.id
    assert [member.user_id for member in team.members] == [user.id]
    assert team.members[0].role == "leader"


def test_group_create_twice_is_already_in_team(db, make_user, make_event):
    event = make_event(event_type=EventType.GROUP)
    user = make_user()
    register_participant(db, event.event_id, user, RegistrationMode.GROUP_CREATE, {"team_name": "One"})

    with pytest.raises(ConflictError) as exc:
        register_participant(db, event.event_id, user, RegistrationMode.GROUP_CREATE, {"team_name": "Two"})
    assert exc.value.code == "AlreadyInTeam"


def test_group_create_requires_team_name(db, make_user, make_event):
    event = make_event(event_type=EventType.GROUP)
    with pytest.raises(ValidationError) as exc:
        register_participant(db, event.event_id, make_user(), RegistrationMode.GROUP_CREATE, {"team_name": "   "})
    assert exc.value.code == "MissingTeamName"


def test_member_of_registered_team_is_already_registered(db, make_user, make_event):
    event = make_event(event_type=EventType.GROUP)
    user = make_user()
    result = register_participant(db, event.event_id, user, RegistrationMode.GROUP_CREATE, {"team_name": "One"})
    result.team.is_registered = True
    db.commit()

    with pytest.raises(ConflictError) as exc:
        register_participant(db, event.event_id, user, RegistrationMode.GROUP_CREATE, {"team_name": "Two"})
    assert exc.value.code == "AlreadyRegistered"


def test_group_direct_three_participants(db, make_user, make_event, participant):
    event = make_event(event_type=EventType.GROUP, min_team_size=2, max_team_size=4)
    coordinator = make_user()

    result = register_participant(
        db,
        event.event_id,
        coordinator,
        RegistrationMode.GROUP_DIRECT,
        {
            "team_name": "Trio",
            "participants": [participant("Asha"), participant("Ravi"), participant("Meena")],
        },
    )

    teams = db.query(Team).filter(Team.event_id == event.id).all()
    assert len(teams) == 1
    team = teams[0]
    assert team.is_registered is True
    assert team.leader_user_id is None
    assert team.registered_by_user_id == coordinator.id
    assert len(team.members) == 3

    rows = db.query(EventRegistration).filter(EventRegistration.event_id == event.id).all()
    assert len(rows) == 3
    assert {row.team_id for row in rows} == {team.id}
    assert {row.team_member_id for row in rows} == {member.id for member in team.members}
    assert all(row.college_name == "City College" for row in rows)
    assert db.query(EventApplication).filter(EventApplication.event_id == event.id).count() == 0
    assert result.participant_count == 3


def test_coordinator_can_register_several_direct_teams(db, make_user, make_event, participant):
    event = make_event(event_type=EventType.GROUP)
    coordinator = make_user()
    for name in ("Alpha", "Beta"):
        register_participant(
            db,
            event.event_id,
            coordinator,
            RegistrationMode.GROUP_DIRECT,
            {"team_name": name, "participants": [participant("Asha"), participant("Ravi")]},
        )
    assert db.query(Team).filter(Team.event_id == event.id).count() == 2


def test_group_direct_team_size_and_name(db, make_user, make_event, participant):
    event = make_event(event_type=EventType.GROUP, min_team_size=2, max_team_size=3)
    user = make_user()

    with pytest.raises(ValidationError) as exc:
        register_participant(
            db, event.event_id, user, RegistrationMode.GROUP_DIRECT,
            {"team_name": "Solo", "participants": [participant()]},
        )
    assert exc.value.code == "InvalidTeamSize"
    assert exc.value.context == {"count": 1, "min": 2, "max": 3}

    with pytest.raises(ValidationError) as exc:
        register_participant(
            db, event.event_id, user, RegistrationMode.GROUP_DIRECT,
            {"team_name": "", "participants": [participant("A"), participant("B")]},
        )
    assert exc.value.code == "MissingTeamName"


def test_invalid_participant_reports_index_and_field(db, make_user, make_event, participant):
    event = make_event(event_type=EventType.GROUP)
    user = make_user()

    with pytest.raises(ValidationError) as exc:
        register_participant(
            db, event.event_id, user, RegistrationMode.GROUP_DIRECT,
            {"team_name": "Alpha", "participants": [participant("Asha"), participant("Ravi", degree="")]},
        )
    assert exc.value.code == "InvalidParticipant"
    assert exc.value.context == {"index": 2, "field": "degree"}

    with pytest.raises(ValidationError) as exc:
        register_participant(
            db, event.event_id, user, RegistrationMode.GROUP_DIRECT,
            {"team_name": "Alpha", "participants": [participant("Asha", dept="Other"), participant("Ravi")]},
        )
    assert exc.value.context == {"index": 1, "field": "custom_dept"}
    assert db.query(Team).count() == 0


def test_other_department_stores_custom_value(db, make_user, make_event, participant):
    event = make_event()
    result = register_participant(
        db, event.event_id, make_user(), RegistrationMode.SOLO_DIRECT,
        {"participants": [participant("Asha", dept="Other", custom_dept="Marine Biology")]},
    )
    row = result.registrations[0]
    assert row.department == "Marine Biology"
    assert row.custom_department == "Marine Biology"


def test_solo_direct_writes_only_a_registration_row(db, make_user, make_event, participant):
    event = make_event(max_applications=2)
    result = register_participant(
        db, event.event_id, make_user(), RegistrationMode.SOLO_DIRECT,
        {"participants": [participant("Asha")]},
    )

    assert len(result.registrations) == 1
    assert result.registrations[0].team_id is None
    assert db.query(EventApplication).filter(EventApplication.event_id == event.id).count() == 0
    assert count_event_capacity_usage(db, event) == 1

    register_participant(db, event.event_id, make_user(), RegistrationMode.SOLO)
    with pytest.raises(ConflictError) as exc:
        register_participant(db, event.event_id, make_user(), RegistrationMode.SOLO)
    assert exc.value.code == "EventFull"


def test_solo_direct_needs_exactly_one_participant(db, make_user, make_event, participant):
    event = make_event()
    with pytest.raises(ValidationError) as exc:
        register_participant(
            db, event.event_id, make_user(), RegistrationMode.SOLO_DIRECT,
            {"participants": [participant("Asha"), participant("Ravi")]},
        )
    assert exc.value.code == "InvalidTeamSize"


def test_storage_uniqueness_catches_racing_solo_registration(db, make_user, make_event, monkeypatch):
    event = make_event()
    user = make_user()
    register_participant(db, event.event_id, user, RegistrationMode.SOLO)

    monkeypatch.setattr(registration_service, "is_user_registered_for_event", lambda *args: False)
    with pytest.raises(ConflictError) as exc:
        register_participant(db, event.event_id, user, RegistrationMode.SOLO)
    assert exc.value.code == "AlreadyRegistered"
    assert db.query(EventApplication).count() == 1


def test_update_direct_registration_only_by_registrant(db, make_user, make_event, participant):
    event = make_event(event_type=EventType.GROUP)
    coordinator = make_user()
    result = register_participant(
        db, event.event_id, coordinator, RegistrationMode.GROUP_DIRECT,
        {"team_name": "Alpha", "participants": [participant("Asha"), participant("Ravi")]},
    )
    row = result.registrations[0]

    with pytest.raises(ForbiddenError):
        update_direct_registration(db, row.id, make_user(), {"participant_name": "Mallory"})

    updated = update_direct_registration(db, row.id, coordinator, {"participant_name": "Asha K", "degree": "MCA"})
    assert updated.participant_name == "Asha K"
    assert updated.level == "PG"
    member = db.query(TeamMember).filter(TeamMember.id == row.team_member_id).one()
    assert member.name == "Asha K"
    assert member.degree == "MCA"


def test_update_team_member_syncs_registration_row(db, make_user, make_event, participant):
    event = make_event(event_type=EventType.GROUP)
    coordinator = make_user()
    result = register_participant(
        db, event.event_id, coordinator, RegistrationMode.GROUP_DIRECT,
        {"team_name": "Alpha", "participants": [participant("Asha"), participant("Ravi")]},
    )
    team = result.team
    member = team.members[1]

    with pytest.raises(ForbiddenError):
        update_team_member(db, team.id, member.id, make_user(), {"name": "Nope"})
    with pytest.raises(NotFoundError):
        update_team_member(db, 999, member.id, coordinator, {"name": "Nope"})

    update_team_member(db, team.id, member.id, coordinator, {"name": "Ravi S", "year": "4"})
    row = db.query(EventRegistration).filter(EventRegistration.team_member_id == member.id).one()
    assert row.participant_name == "Ravi S"
    assert row.year == "4"


def _fail_commits(db, monkeypatch, failing_calls):
    real_commit = db.commit
    calls = []

    def commit():
        calls.append(1)
        if len(calls) in failing_calls:
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
        return real_commit()

    monkeypatch.setattr(db, "commit", commit)


def test_group_direct_rows_failure_removes_team(db, make_user, make_event, participant, monkeypatch):
    event = make_event(event_type=EventType.GROUP)
    coordinator = make_user()
    _fail_commits(db, monkeypatch, failing_calls={2})

    with pytest.raises(DependencyFailure) as exc:
        register_participant(
            db, event.event_id, coordinator, RegistrationMode.GROUP_DIRECT,
            {"team_name": "Duo", "participants": [participant("Asha"), participant("Ravi")]},
        )

    assert exc.value.code == "StoreUnavailable"
    assert exc.value.status_code == 503
    monkeypatch.undo()
    assert db.query(Team).filter(Team.event_id == event.id).count() == 0
    assert db.query(TeamMember).filter(TeamMember.event_id == event.id).count() == 0
    assert db.query(EventRegistration).filter(EventRegistration.event_id == event.id).count() == 0


def test_failed_team_cleanup_is_left_for_reconciliation(db, make_user, make_event, participant, monkeypatch):
    event = make_event(event_type=EventType.GROUP)
    coordinator = make_user()
    _fail_commits(db, monkeypatch, failing_calls={2, 3})

    with pytest.raises(DependencyFailure) as exc:
        register_participant(
            db, event.event_id, coordinator, RegistrationMode.GROUP_DIRECT,
            {"team_name": "Duo", "participants": [participant("Asha"), participant("Ravi")]},
        )

    monkeypatch.undo()
    team_id = exc.value.context["team_id"]
    assert db.get(Team, team_id) is not None
    assert db.query(EventRegistration).filter(EventRegistration.event_id == event.id).count() == 0

    report = reconcile(db)
    assert report.orphan_team_ids == [team_id]
    assert report.applied is False


def test_solo_positions_stay_unique_after_an_application_is_removed(db, make_user, make_event):
    event = make_event()
    users = [make_user() for _ in range(3)]
    for user in users:
        register_participant(db, event.event_id, user, RegistrationMode.SOLO)
    db.delete(db.query(EventApplication).filter(EventApplication.user_id == users[1].id).one())
    db.commit()

    latecomer = make_user()
    result = register_participant(db, event.event_id, latecomer, RegistrationMode.SOLO)

    positions = [app.position for app in db.query(EventApplication).filter(EventApplication.event_id == event.id)]
    assert sorted(positions) == [0, 2, 3]
    assert result.application.position == 3
