from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import to_local, utcnow
from .config import MAX_AVAILABILITY_RANGE_DAYS
from .errors import NotFoundError, ValidationError
from .holidays import HolidayCalendar, holiday_calendar
from .models import (
    LIVE_BOOKING_STATUSES,
    Booking,
    Garage,
    HolidayOverride,
    ScheduleException,
    TimeSlotBlock,
)
from .schedule_cache import get_weekly_schedule
from .slots import DateException, DayContext, day_of_week, parse_date, resolve_day


async def get_garage(db: AsyncSession, garage_id: str) -> Garage:
    res = await db.execute(select(Garage).where(Garage.garage_id == garage_id))
    garage = res.scalar_one_or_none()
    if not garage:
        raise NotFoundError("Garage not found")
    return garage


def _days(start: date, end: date):
    d = start
    while d <= end:
        yield d
        d += timedelta(days=1)


async def load_day_contexts(
    db: AsyncSession,
    garage: Garage,
    start: date,
    end: date,
    calendar: HolidayCalendar | None = None,
) -> dict[date, DayContext]:
    """
    Load every store once for the window and split the rows per day.
    Bookings are always read from the database, never from cache.
    """
    calendar = calendar or holiday_calendar
    garage_id = garage.garage_id

    weekly = await get_weekly_schedule(db, garage_id)

    res = await db.execute(
        select(ScheduleException).where(
            ScheduleException.garage_id == garage_id,
            ScheduleException.date >= start,
            ScheduleException.date <= end,
        )
    )
    exceptions = {
        row.date: DateException(
            is_closed=row.is_closed,
            open_time=row.open_time,
            close_time=row.close_time,
            reason=row.reason,
        )
        for row in res.scalars().all()
    }

    res = await db.execute(
        select(HolidayOverride.date, HolidayOverride.is_available).where(
            HolidayOverride.garage_id == garage_id,
            HolidayOverride.date >= start,
            HolidayOverride.date <= end,
        )
    )
    overrides = {d: is_available for d, is_available in res.all()}

    res = await db.execute(
        select(TimeSlotBlock.date, TimeSlotBlock.time_slot).where(
            TimeSlotBlock.garage_id == garage_id,
            TimeSlotBlock.date >= start,
            TimeSlotBlock.date <= end,
        )
    )
    blocks: dict[date, set[str]] = {}
    for d, slot in res.all():
        blocks.setdefault(d, set()).add(slot)

    res = await db.execute(
        select(Booking.date, Booking.time_slot).where(
            Booking.garage_id == garage_id,
            Booking.date >= start,
            Booking.date <= end,
            Booking.status.in_(LIVE_BOOKING_STATUSES),
        )
    )
    booked: dict[date, list[str]] = {}
    for d, slot in res.all():
        booked.setdefault(d, []).append(slot)

    holidays = await calendar.holiday_dates(start, end, garage.holiday_region)

    return {
        d: DayContext(
            weekly=weekly.get(day_of_week(d)),
            exception=exceptions.get(d),
            is_public_holiday=d in holidays,
            holiday_override=overrides.get(d),
            saturday_cutoff_time=garage.saturday_cutoff_time,
            blocked_slots=blocks.get(d, set()),
            booked_slots=booked.get(d, []),
        )
        for d in _days(start, end)
    }


async def get_available_slots(
    db: AsyncSession,
    garage_id: str,
    day,
    now: datetime | None = None,
    calendar: HolidayCalendar | None = None,
) -> list[str]:
    d = parse_date(day)
    now_local = to_local(now or utcnow())

    garage = await get_garage(db, garage_id)
    contexts = await load_day_contexts(db, garage, d, d, calendar)
    return resolve_day(d, contexts[d], now_local)


async def get_availability_range(
    db: AsyncSession,
    garage_id: str,
    start,
    end,
    now: datetime | None = None,
    calendar: HolidayCalendar | None = None,
) -> list[dict]:
    s = parse_date(start)
    e = parse_date(end)
    if e < s:
        raise ValidationError("end must not be before start")
    if (e - s).days + 1 > MAX_AVAILABILITY_RANGE_DAYS:
        raise ValidationError(f"Range may span at most {MAX_AVAILABILITY_RANGE_DAYS} days")

    now_local = to_local(now or utcnow())

    garage = await get_garage(db, garage_id)
    contexts = await load_day_contexts(db, garage, s, e, calendar)
    return [
        {"date": d, "available_slots": resolve_day(d, ctx, now_local)}
        for d, ctx in contexts.items()
    ]
