import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import DependencyFailure, ValidationError, event_not_found
from models import Event, EventApplication, EventRegistration, Team, User
from security import ensure_event_results_access
from time_utils import now_tz

logger = logging.getLogger(__name__)

TEAM_KEYS = ("teamId", "team_id", "groupId", "group_id")
TEAM_NAME_KEYS = ("teamName", "team_name", "groupName", "group_name")
USER_KEYS = ("userId", "user_id")
REGISTRATION_KEYS = ("registrationId", "registration_id")
RANK_KEYS = ("rank", "winnerRank", "winner_rank", "position")


@dataclass
class WinnersResult:
    event: Event
    winners: List[Dict[str, Any]] = field(default_factory=list)


def _first_present(entry: dict, keys):
    for key in keys:
        value = entry.get(key)
        if value is not None and str(value).strip() != "":
            return value
    return None


def _as_int(value, index: int, field_name: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(
            "InvalidWinner",
            f"Winner {index}: {field_name} must be a number",
            {"index": index, "field": field_name},
        )


def normalize_winners(winner_list: Optional[List[dict]]) -> List[Dict[str, Any]]:
    """Normalise loose winner entries into ``{rank, teamId|userId|registrationId, teamName?}``.

    Team entries may use the group aliases. A missing rank falls back to the
    entry's position in the submitted list. The result is stably sorted by
    rank so tied ranks keep their submission order.
    """
    normalized = []
    for index, raw_entry in enumerate(winner_list or [], start=1):
        entry = dict(raw_entry or {})
        rank_value = _first_present(entry, RANK_KEYS)
        rank = _as_int(rank_value, index, "rank") if rank_value is not None else index

        team_ref = _first_present(entry, TEAM_KEYS)
        user_ref = _first_present(entry, USER_KEYS)
        registration_ref = _first_present(entry, REGISTRATION_KEYS)
        if team_ref is not None:
            item = {"rank": rank, "teamId": _as_int(team_ref, index, "teamId")}
            team_name = _first_present(entry, TEAM_NAME_KEYS)
            if team_name is not None:
                item["teamName"] = str(team_name).strip()
        elif user_ref is not None and registration_ref is not None:
            raise ValidationError(
                "InvalidWinner",
                f"Winner {index}: give either a user id or a registration id, not both",
                {"index": index},
            )
        elif user_ref is not None:
            item = {"rank": rank, "userId": _as_int(user_ref, index, "userId")}
        elif registration_ref is not None:
            item = {"rank": rank, "registrationId": _as_int(registration_ref, index, "registrationId")}
        else:
            raise ValidationError(
                "InvalidWinner",
                f"Winner {index}: a team, user or registration id is required",
                {"index": index},
            )
        normalized.append(item)
    return sorted(normalized, key=lambda item: item["rank"])


def _propagate_team(db: Session, event: Event, winner: dict) -> bool:
    team = db.query(Team).filter(Team.id == winner["teamId"], Team.event_id == event.id).first()
    if team is None:
        logger.warning("Winner team %s not found for event %s", winner["teamId"], event.event_id)
        return False
    team.is_winner = True
    team.winner_rank = winner["rank"]

    user_ids = {member.user_id for member in team.members if member.user_id is not None}
    if team.leader_user_id is not None:
        user_ids.add(team.leader_user_id)
    if user_ids:
        db.query(User).filter(User.id.in_(sorted(user_ids))).update({User.is_winner: True}, synchronize_session=False)
    db.commit()
    return True


def _propagate_individual(db: Session, event: Event, winner: dict) -> bool:
    user = db.query(User).filter(User.id == winner["userId"]).first()
    if user is None:
        logger.warning("Winner user %s not found for event %s", winner["userId"], event.event_id)
        return False

    user.is_winner = True
    application = (
        db.query(EventApplication)
        .filter(
            EventApplication.event_id == event.id,
            EventApplication.user_id == user.id,
            EventApplication.team_id.is_(None),
        )
        .first()
    )
    if application is not None:
        application.is_winner = True
        application.winner_rank = winner["rank"]
    db.commit()
    return True


def _check_registration_winner(db: Session, event: Event, winner: dict) -> bool:
    # Direct entrants have no account to flag.
    row = (
        db.query(EventRegistration.id)
        .filter(EventRegistration.id == winner["registrationId"], EventRegistration.event_id == event.id)
        .first()
    )
    if row is None:
        logger.warning("Winner registration %s not found for event %s", winner["registrationId"], event.event_id)
        return False
    return True


def _reset_non_winners(db: Session, event: Event, winners: List[dict]) -> None:
    team_ids = {item["teamId"] for item in winners if "teamId" in item}
    user_ids = {item["userId"] for item in winners if "userId" in item}

    team_query = db.query(Team).filter(Team.event_id == event.id)
    if team_ids:
        team_query = team_query.filter(~Team.id.in_(sorted(team_ids)))
    team_query.update({Team.is_winner: False, Team.winner_rank: None}, synchronize_session=False)

    application_query = db.query(EventApplication).filter(
        EventApplication.event_id == event.id,
        EventApplication.team_id.is_(None),
    )
    if user_ids:
        application_query = application_query.filter(~EventApplication.user_id.in_(sorted(user_ids)))
    application_query.update(
        {EventApplication.is_winner: False, EventApplication.winner_rank: None},
        synchronize_session=False,
    )
    db.commit()


def set_winners(db: Session, event_slug: str, winner_list: Optional[List[dict]], admin: Optional[User] = None) -> WinnersResult:
    event = db.query(Event).filter(Event.event_id == event_slug).first()
    if event is None:
        raise event_not_found(event_slug)
    if admin is not None:
        ensure_event_results_access(admin, event)

    winners = normalize_winners(winner_list)

    event.winners = winners
    event.winners_updated_at = now_tz()
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Could not save winners for event %s: %s", event_slug, exc)
        raise DependencyFailure("StoreUnavailable", "Could not save winners", {"event": event_slug})
    db.refresh(event)

    failures = 0
    for winner in winners:
        try:
            if "teamId" in winner:
                applied = _propagate_team(db, event, winner)
            elif "userId" in winner:
                applied = _propagate_individual(db, event, winner)
            else:
                applied = _check_registration_winner(db, event, winner)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Winner propagation failed for %s in event %s: %s", winner, event_slug, exc)
            applied = False
        if not applied:
            failures += 1

    try:
        _reset_non_winners(db, event, winners)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Could not reset non-winners for event %s: %s", event_slug, exc)

    if failures:
        logger.warning("Winners saved for event %s with %s propagation failures", event_slug, failures)
    else:
        logger.info("Winners saved for event %s (%s entries)", event_slug, len(winners))
    return WinnersResult(event=event, winners=list(event.winners or []))
