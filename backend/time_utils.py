import os
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo


def app_timezone() -> ZoneInfo:
    return ZoneInfo(os.environ.get("APP_TIMEZONE", "UTC"))


def now_tz() -> datetime:
    return datetime.now(app_timezone())


def ensure_timezone(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach the app timezone to naive values (SQLite drops offsets)."""
    if dt is None:
        return None
    tz = app_timezone()
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def has_passed(deadline: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if deadline is None:
        return False
    current = ensure_timezone(now) or now_tz()
    return current > ensure_timezone(deadline)
