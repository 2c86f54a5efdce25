from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models import User
from registration_queries import list_college_registrations
from registration_service import (
    RegistrationMode,
    RegistrationResult,
    direct_mode_for,
    get_event_by_ref,
    register_participant,
    update_direct_registration,
    update_team_member,
)
from schemas import (
    ApplicationResponse,
    DirectRegistrationRequest,
    DirectRegistrationUpdate,
    GroupRegistrationRequest,
    RegistrationResultResponse,
    RegistrationRowResponse,
    SoloRegistrationRequest,
    TeamMemberResponse,
    TeamMemberUpdate,
    TeamResponse,
)
from security import require_user

router = APIRouter()

RESULT_MESSAGES = {
    RegistrationMode.SOLO: "Successfully registered for event",
    RegistrationMode.GROUP_CREATE: "Team created successfully",
    RegistrationMode.GROUP_DIRECT: "Team registered successfully",
    RegistrationMode.SOLO_DIRECT: "Participant registered successfully",
}


def _result_response(result: RegistrationResult) -> RegistrationResultResponse:
    return RegistrationResultResponse(
        mode=result.mode.value,
        message=RESULT_MESSAGES[result.mode],
        event_id=result.event.event_id,
        event_name=result.event.name,
        event_type=result.event.event_type.value,
        participant_count=result.participant_count,
        application=ApplicationResponse.model_validate(result.application) if result.application else None,
        team=TeamResponse.model_validate(result.team) if result.team else None,
        registrations=[RegistrationRowResponse.model_validate(row) for row in result.registrations],
    )


@router.post("/registrations/solo", response_model=RegistrationResultResponse)
def register_solo(
    payload: SoloRegistrationRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    result = register_participant(db, payload.event_id, user, RegistrationMode.SOLO)
    return _result_response(result)


@router.post("/registrations/group", response_model=RegistrationResultResponse)
def register_group(
    payload: GroupRegistrationRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    result = register_participant(
        db,
        payload.event_id,
        user,
        RegistrationMode.GROUP_CREATE,
        {"team_name": payload.team_name},
    )
    return _result_response(result)


@router.post("/registrations/direct", response_model=RegistrationResultResponse)
def register_direct(
    payload: DirectRegistrationRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    event = get_event_by_ref(db, payload.event_id)
    result = register_participant(
        db,
        payload.event_id,
        user,
        direct_mode_for(event),
        {
            "team_name": payload.team_name,
            "participants": [participant.model_dump() for participant in payload.participants],
        },
    )
    return _result_response(result)


@router.get("/registrations/college")
def college_registrations(
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return list_college_registrations(db, user)


@router.put("/registrations/{registration_id}", response_model=RegistrationRowResponse)
def correct_registration(
    registration_id: int,
    payload: DirectRegistrationUpdate,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    row = update_direct_registration(db, registration_id, user, payload.model_dump(exclude_unset=True))
    return RegistrationRowResponse.model_validate(row)


@router.put("/registrations/team/{team_id}/member/{member_id}", response_model=TeamMemberResponse)
def correct_team_member(
    team_id: int,
    member_id: int,
    payload: TeamMemberUpdate,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    member = update_team_member(db, team_id, member_id, user, payload.model_dump(exclude_unset=True))
    return TeamMemberResponse.model_validate(member)
