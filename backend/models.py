from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SQLEnum, ForeignKey, Text, JSON, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base
import enum


class EventType(enum.Enum):
    SOLO = "solo"
    GROUP = "group"


class UserRole(enum.Enum):
    USER = "user"
    ADMIN = "admin"


class Level(enum.Enum):
    UG = "UG"
    PG = "PG"
    PHD = "PhD"


class RegistrationType(enum.Enum):
    SELF = "self"
    DIRECT = "direct"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)
    is_super_admin = Column(Boolean, default=False, nullable=False)
    club = Column(String(150), nullable=True)
    assigned_event_id = Column(Integer, ForeignKey("events.id", ondelete="SET NULL"), nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    level = Column(SQLEnum(Level), nullable=True)
    degree = Column(String(50), nullable=True)
    department = Column(String(150), nullable=True)
    year = Column(String(20), nullable=True)
    gender = Column(String(20), nullable=True)
    mobile = Column(String(20), nullable=True)
    college = Column(String(255), nullable=True, index=True)
    city = Column(String(120), nullable=True)
    state = Column(String(120), nullable=True)
    attendance = Column(JSON, nullable=True)  # {"<event slug>": true}
    is_winner = Column(Boolean, default=False, nullable=False)
    invite_token = Column(String(128), nullable=True, index=True)
    invite_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(120), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    event_type = Column(SQLEnum(EventType), default=EventType.SOLO, nullable=False)
    club_in_charge = Column(String(150), nullable=True)
    description = Column(Text, nullable=True)
    venue = Column(String(255), nullable=True)
    event_date = Column(DateTime(timezone=True), nullable=True)
    min_team_size = Column(Integer, default=1, nullable=False)
    max_team_size = Column(Integer, default=1, nullable=False)
    max_applications = Column(Integer, nullable=True)
    application_deadline = Column(DateTime(timezone=True), nullable=True)
    winners = Column(JSON, nullable=True)  # [{"rank": 1, "teamId": 3, "teamName": "..."}]
    winners_updated_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    created_by_user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    applications = relationship(
        "EventApplication",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventApplication.position",
    )


class EventApplication(Base):
    __tablename__ = "event_applications"
    __table_args__ = (
        Index(
            "uq_event_applications_solo_user",
            "event_id",
            "user_id",
            unique=True,
            sqlite_where=text("team_id IS NULL"),
            postgresql_where=text("team_id IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
    position = Column(Integer, default=0, nullable=False)
    applied_at = Column(DateTime(timezone=True), server_default=func.now())
    is_winner = Column(Boolean, default=False, nullable=False)
    is_present = Column(Boolean, default=False, nullable=False)
    winner_rank = Column(Integer, nullable=True)

    event = relationship("Event", back_populates="applications")


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (
        Index(
            "uq_teams_event_leader",
            "event_id",
            "leader_user_id",
            unique=True,
            sqlite_where=text("leader_user_id IS NOT NULL"),
            postgresql_where=text("leader_user_id IS NOT NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    team_name = Column(String(255), nullable=False)
    leader_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    registered_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    registration_type = Column(SQLEnum(RegistrationType), default=RegistrationType.SELF, nullable=False)
    is_registered = Column(Boolean, default=False, nullable=False)
    registered_at = Column(DateTime(timezone=True), nullable=True)
    max_members = Column(Integer, default=6, nullable=False)
    is_winner = Column(Boolean, default=False, nullable=False)
    winner_rank = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    members = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.id",
    )


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (
        Index(
            "uq_team_members_event_user",
            "event_id",
            "user_id",
            unique=True,
            sqlite_where=text("user_id IS NOT NULL"),
            postgresql_where=text("user_id IS NOT NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    mobile = Column(String(20), nullable=True)
    level = Column(String(10), nullable=True)
    degree = Column(String(50), nullable=True)
    department = Column(String(150), nullable=True)
    year = Column(String(20), nullable=True)
    gender = Column(String(20), nullable=True)
    role = Column(String(20), default="member", nullable=False)  # "leader" | "member"
    registration_type = Column(SQLEnum(RegistrationType), default=RegistrationType.SELF, nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    team = relationship("Team", back_populates="members")


class EventRegistration(Base):
    __tablename__ = "event_registrations"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    event_name = Column(String(255), nullable=False)
    event_type = Column(SQLEnum(EventType), nullable=False)
    team_id = Column(Integer, nullable=True, index=True)  # no FK: rows outlive their team
    team_name = Column(String(255), nullable=True)
    team_member_id = Column(Integer, nullable=True)
    registrant_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    registrant_email = Column(String(255), nullable=True)
    participant_name = Column(String(255), nullable=False)
    participant_email = Column(String(255), nullable=True)
    participant_mobile = Column(String(20), nullable=True)
    level = Column(String(10), nullable=True)
    degree = Column(String(50), nullable=True)
    department = Column(String(150), nullable=True)
    custom_department = Column(String(150), nullable=True)
    year = Column(String(20), nullable=True)
    gender = Column(String(20), nullable=True)
    college_name = Column(String(255), nullable=True, index=True)
    college_city = Column(String(120), nullable=True)
    college_state = Column(String(120), default="Not Specified", nullable=True)
    registration_type = Column(SQLEnum(RegistrationType), default=RegistrationType.DIRECT, nullable=False)
    registration_date = Column(DateTime(timezone=True), server_default=func.now())
    is_active = Column(Boolean, default=True, nullable=False)
    is_present = Column(Boolean, default=False, nullable=False)
    attendance_marked_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class AdminLog(Base):
    __tablename__ = "admin_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(Integer, nullable=True)
    admin_email = Column(String(255), nullable=False)
    admin_name = Column(String(255), nullable=False)
    action = Column(String(255), nullable=False)
    method = Column(String(10), nullable=True)
    path = Column(String(255), nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SystemConfig(Base):
    __tablename__ = "system_config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(String(500), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
