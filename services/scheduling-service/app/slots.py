"""
Pure slot arithmetic and the day-level availability merge.

Nothing in this module touches storage: callers load the weekly schedule,
the date's exception, holiday data, blocks and bookings into a ``DayContext``
and ``resolve_day`` turns them into the bookable slot list.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime

from dateutil import parser

from .errors import FatalInvariantViolation, ValidationError

SATURDAY = 6

_SLOT_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def slot_to_minutes(value: str) -> int:
    m = _SLOT_RE.match(value or "")
    if not m:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    return int(m.group(1)) * 60 + int(m.group(2))


def minutes_to_slot(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return parser.isoparse(value).date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")


def day_of_week(d: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (d.weekday() + 1) % 7


def generate_slots(open_time: str, close_time: str, duration_minutes: int) -> list[str]:
    if duration_minutes <= 0:
        raise ValidationError("slot_duration_minutes must be positive")
    start = slot_to_minutes(open_time)
    end = slot_to_minutes(close_time)
    return [minutes_to_slot(t) for t in range(start, end, duration_minutes)]


def next_full_hour(now_local: datetime) -> int:
    """Minutes since midnight of the first full hour strictly after now."""
    return (now_local.hour + 1) * 60


@dataclass(frozen=True)
class DaySchedule:
    is_open: bool
    open_time: str
    close_time: str
    slot_duration_minutes: int


@dataclass(frozen=True)
class DateException:
    is_closed: bool
    open_time: str | None = None
    close_time: str | None = None
    reason: str | None = None


@dataclass
class DayContext:
    weekly: DaySchedule | None
    exception: DateException | None = None
    is_public_holiday: bool = False
    holiday_override: bool | None = None  # True = stay open, False = explicitly closed, None = no override
    saturday_cutoff_time: str | None = None
    blocked_slots: set[str] = field(default_factory=set)
    booked_slots: list[str] = field(default_factory=list)

    @property
    def opted_back_in(self) -> bool:
        return self.is_public_holiday and self.holiday_override is True


def effective_hours(ctx: DayContext) -> DaySchedule | None:
    """
    Resolve the hours that apply to the date, or None when the garage is shut.
    """
    exc = ctx.exception

    if exc is not None and exc.is_closed:
        if not ctx.opted_back_in:
            return None
        # holiday re-opening falls back to the plain weekday schedule
        exc = None
    elif ctx.is_public_holiday and not ctx.opted_back_in:
        return None

    weekly = ctx.weekly
    if weekly is None or not weekly.is_open:
        return None

    if exc is not None and exc.open_time and exc.close_time:
        return DaySchedule(
            is_open=True,
            open_time=exc.open_time,
            close_time=exc.close_time,
            slot_duration_minutes=weekly.slot_duration_minutes,
        )
    return weekly


def candidate_slots(d: date, ctx: DayContext) -> list[str]:
    """Every slot the schedule offers on the date, before blocks, bookings and the clock."""
    hours = effective_hours(ctx)
    if hours is None:
        return []

    slots = generate_slots(hours.open_time, hours.close_time, hours.slot_duration_minutes)

    if day_of_week(d) == SATURDAY and ctx.saturday_cutoff_time:
        cutoff = slot_to_minutes(ctx.saturday_cutoff_time)
        slots = [s for s in slots if slot_to_minutes(s) < cutoff]

    return slots


def resolve_day(d: date, ctx: DayContext, now_local: datetime) -> list[str]:
    today = now_local.date()
    if d < today:
        return []

    booked = ctx.booked_slots
    if len(set(booked)) != len(booked):
        raise FatalInvariantViolation(f"More than one live booking for a slot on {d.isoformat()}")

    taken = ctx.blocked_slots | set(booked)
    slots = [s for s in candidate_slots(d, ctx) if s not in taken]

    if d == today:
        earliest = next_full_hour(now_local)
        slots = [s for s in slots if slot_to_minutes(s) >= earliest]

    return sorted(slots, key=slot_to_minutes)
