from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any, Union
from enum import Enum
from datetime import datetime


class EventTypeEnum(str, Enum):
    SOLO = "solo"
    GROUP = "group"


class LevelEnum(str, Enum):
    UG = "UG"
    PG = "PG"
    PHD = "PhD"


class RegistrationModeEnum(str, Enum):
    SOLO = "solo"
    GROUP_CREATE = "group-create"
    GROUP_DIRECT = "group-direct"
    SOLO_DIRECT = "solo-direct"


def _strip_optional(value):
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _enum_to_value(value):
    return value.value if isinstance(value, Enum) else value


class ParticipantIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    level: Optional[str] = None
    degree: Optional[str] = None
    dept: Optional[str] = Field(None, validation_alias=AliasChoices("dept", "department"))
    custom_dept: Optional[str] = Field(None, validation_alias=AliasChoices("custom_dept", "customDept"))
    year: Optional[str] = None
    gender: Optional[str] = None

    @field_validator("name", "email", "mobile", "level", "degree", "dept", "custom_dept", "year", "gender", mode="before")
    @classmethod
    def strip_fields(cls, value):
        return _strip_optional(value)


class SoloRegistrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: Union[int, str] = Field(..., validation_alias=AliasChoices("event_id", "eventId"))


class GroupRegistrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: Union[int, str] = Field(..., validation_alias=AliasChoices("event_id", "eventId"))
    team_name: Optional[str] = Field(None, max_length=255, validation_alias=AliasChoices("team_name", "teamName"))


class DirectRegistrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: Union[int, str] = Field(..., validation_alias=AliasChoices("event_id", "eventId"))
    team_name: Optional[str] = Field(None, max_length=255, validation_alias=AliasChoices("team_name", "teamName"))
    participants: List[ParticipantIn] = Field(default_factory=list)


class ApplicationResponse(BaseModel):
    id: int
    user_id: int
    team_id: Optional[int] = None
    applied_at: Optional[datetime] = None
    is_winner: bool = False
    is_present: bool = False
    winner_rank: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class TeamMemberResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    level: Optional[str] = None
    degree: Optional[str] = None
    department: Optional[str] = None
    year: Optional[str] = None
    gender: Optional[str] = None
    role: str
    joined_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TeamResponse(BaseModel):
    id: int
    event_id: int
    team_name: str
    leader_user_id: Optional[int] = None
    registered_by_user_id: Optional[int] = None
    is_registered: bool
    registered_at: Optional[datetime] = None
    max_members: int
    is_winner: bool = False
    winner_rank: Optional[int] = None
    members: List[TeamMemberResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class RegistrationRowResponse(BaseModel):
    id: int
    event_id: int
    event_name: str
    event_type: EventTypeEnum
    team_id: Optional[int] = None
    team_name: Optional[str] = None
    registrant_id: Optional[int] = None
    participant_name: str
    participant_email: Optional[str] = None
    participant_mobile: Optional[str] = None
    level: Optional[str] = None
    degree: Optional[str] = None
    department: Optional[str] = None
    year: Optional[str] = None
    gender: Optional[str] = None
    college_name: Optional[str] = None
    registration_date: Optional[datetime] = None
    is_active: bool = True
    is_present: bool = False

    model_config = ConfigDict(from_attributes=True)

    @field_validator("event_type", mode="before")
    @classmethod
    def unwrap_event_type(cls, value):
        return _enum_to_value(value)


class RegistrationResultResponse(BaseModel):
    mode: RegistrationModeEnum
    message: str
    event_id: str
    event_name: str
    event_type: EventTypeEnum
    participant_count: int = 0
    application: Optional[ApplicationResponse] = None
    team: Optional[TeamResponse] = None
    registrations: List[RegistrationRowResponse] = Field(default_factory=list)


class DirectRegistrationUpdate(BaseModel):
    participant_name: Optional[str] = None
    participant_email: Optional[str] = None
    participant_mobile: Optional[str] = None
    level: Optional[LevelEnum] = None
    degree: Optional[str] = None
    department: Optional[str] = None
    year: Optional[str] = None
    gender: Optional[str] = None


class TeamMemberUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    level: Optional[LevelEnum] = None
    degree: Optional[str] = None
    department: Optional[str] = None
    year: Optional[str] = None
    gender: Optional[str] = None


class WinnersUpdateRequest(BaseModel):
    winners: List[Dict[str, Any]] = Field(default_factory=list)


class WinnersResponse(BaseModel):
    event_id: str
    name: str
    winners: List[Dict[str, Any]] = Field(default_factory=list)
    winners_updated_at: Optional[datetime] = None


class AttendanceEntryIn(BaseModel):
    user_id: Optional[Union[int, str]] = Field(None, validation_alias=AliasChoices("user_id", "userId"))
    registration_id: Optional[Union[int, str]] = Field(
        None, validation_alias=AliasChoices("registration_id", "registrationId")
    )
    is_present: bool = Field(True, validation_alias=AliasChoices("is_present", "isPresent"))


class AttendanceUpdateRequest(BaseModel):
    attendance: List[AttendanceEntryIn] = Field(default_factory=list)


class AttendanceResultResponse(BaseModel):
    event_id: str
    updated_count: int = 0
    matched_count: int = 0
    unmatched_count: int = 0
    error_count: int = 0
    total_requested: int = 0


class RegistrationAttendanceUpdate(BaseModel):
    attended: bool


class EventCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    event_type: EventTypeEnum = EventTypeEnum.SOLO
    club_in_charge: Optional[str] = None
    description: Optional[str] = None
    venue: Optional[str] = None
    event_date: Optional[datetime] = None
    min_team_size: Optional[int] = Field(None, ge=1, le=100)
    max_team_size: Optional[int] = Field(None, ge=1, le=100)
    max_applications: Optional[int] = Field(None, ge=1)
    application_deadline: Optional[datetime] = None


class EventUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    club_in_charge: Optional[str] = None
    description: Optional[str] = None
    venue: Optional[str] = None
    event_date: Optional[datetime] = None
    min_team_size: Optional[int] = Field(None, ge=1, le=100)
    max_team_size: Optional[int] = Field(None, ge=1, le=100)
    max_applications: Optional[int] = Field(None, ge=1)
    application_deadline: Optional[datetime] = None
    is_active: Optional[bool] = None


class EventArchiveUpdate(BaseModel):
    is_archived: bool = True


class EventResponse(BaseModel):
    id: int
    event_id: str
    name: str
    event_type: EventTypeEnum
    club_in_charge: Optional[str] = None
    description: Optional[str] = None
    venue: Optional[str] = None
    event_date: Optional[datetime] = None
    min_team_size: int
    max_team_size: int
    max_applications: Optional[int] = None
    application_deadline: Optional[datetime] = None
    winners: List[Dict[str, Any]] = Field(default_factory=list)
    winners_updated_at: Optional[datetime] = None
    is_active: bool = True
    is_archived: bool = False
    application_count: int = 0

    model_config = ConfigDict(from_attributes=True)

    @field_validator("winners", mode="before")
    @classmethod
    def default_winners(cls, value):
        return value or []

    @field_validator("event_type", mode="before")
    @classmethod
    def unwrap_event_type(cls, value):
        return _enum_to_value(value)
