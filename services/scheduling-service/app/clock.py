from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from .config import GARAGE_TIMEZONE
from .slots import slot_to_minutes

GARAGE_TZ = ZoneInfo(GARAGE_TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(now: datetime) -> datetime:
    return as_utc(now).astimezone(GARAGE_TZ)


def local_today(now: datetime) -> date:
    return to_local(now).date()


def slot_start(d: date, time_slot: str) -> datetime:
    """Appointment start as an aware UTC datetime."""
    minutes = slot_to_minutes(time_slot)
    local = datetime.combine(d, time(minutes // 60, minutes % 60), tzinfo=GARAGE_TZ)
    return local.astimezone(timezone.utc)
