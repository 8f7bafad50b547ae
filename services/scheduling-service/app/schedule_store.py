import uuid
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import get_garage
from .config import DEFAULT_HOLIDAY_REGION, MAX_AVAILABILITY_RANGE_DAYS
from .errors import ConflictError, ValidationError
from .holidays import REGIONS
from .models import Garage, HolidayOverride, ScheduleException, TimeSlotBlock, WeeklySchedule
from .rabbitmq import publisher
from .schedule_cache import invalidate_schedule
from .slots import day_of_week, generate_slots, parse_date, slot_to_minutes

MIN_SLOT_MINUTES = 5
MAX_SLOT_MINUTES = 240

DEFAULT_WEEK = [
    # (day_of_week, is_open, open_time, close_time)
    (1, True, "09:00", "17:00"),
    (2, True, "09:00", "17:00"),
    (3, True, "09:00", "17:00"),
    (4, True, "09:00", "17:00"),
    (5, True, "09:00", "17:00"),
    (6, True, "09:00", "13:00"),
    (0, False, "09:00", "17:00"),
]
DEFAULT_SLOT_MINUTES = 30


async def _availability_updated(garage_id: str, **data):
    await publisher.publish_event("availability.updated", {"garage_id": garage_id, **data})


def _check_hours(open_time: str, close_time: str):
    if slot_to_minutes(open_time) >= slot_to_minutes(close_time):
        raise ValidationError("open_time must be before close_time")


def _check_window(start: date, end: date):
    if end < start:
        raise ValidationError("end must not be before start")
    if (end - start).days + 1 > MAX_AVAILABILITY_RANGE_DAYS:
        raise ValidationError(f"Range may span at most {MAX_AVAILABILITY_RANGE_DAYS} days")


# ---- Garage ----

async def create_garage(
    db: AsyncSession,
    name: str,
    owner_id: str | None = None,
    mot_price: Decimal = Decimal("0"),
    saturday_cutoff_time: str | None = None,
    holiday_region: str = DEFAULT_HOLIDAY_REGION,
    is_active: bool = True,
) -> Garage:
    if not (name or "").strip():
        raise ValidationError("name is required")
    if saturday_cutoff_time is not None:
        slot_to_minutes(saturday_cutoff_time)
    if holiday_region not in REGIONS:
        raise ValidationError(f"Invalid region '{holiday_region}'. Allowed: {list(REGIONS)}")

    garage = Garage(
        garage_id=str(uuid.uuid4()),
        owner_id=owner_id,
        name=name.strip(),
        mot_price=mot_price,
        saturday_cutoff_time=saturday_cutoff_time,
        holiday_region=holiday_region,
        is_active=is_active,
    )
    db.add(garage)

    for dow, is_open, open_time, close_time in DEFAULT_WEEK:
        db.add(WeeklySchedule(
            garage_id=garage.garage_id,
            day_of_week=dow,
            is_open=is_open,
            open_time=open_time,
            close_time=close_time,
            slot_duration_minutes=DEFAULT_SLOT_MINUTES,
        ))

    await db.commit()
    return garage


_UNSET = object()


async def update_garage_policy(
    db: AsyncSession,
    garage_id: str,
    saturday_cutoff_time=_UNSET,
    is_active: bool | None = None,
    mot_price: Decimal | None = None,
) -> Garage:
    garage = await get_garage(db, garage_id)

    if saturday_cutoff_time is not _UNSET:
        if saturday_cutoff_time is not None:
            slot_to_minutes(saturday_cutoff_time)
        garage.saturday_cutoff_time = saturday_cutoff_time
    if is_active is not None:
        garage.is_active = is_active
    if mot_price is not None:
        garage.mot_price = mot_price

    await db.commit()
    await _availability_updated(garage_id)
    return garage


# ---- Weekly schedule ----

async def list_weekly_schedule(db: AsyncSession, garage_id: str) -> list[WeeklySchedule]:
    await get_garage(db, garage_id)
    res = await db.execute(
        select(WeeklySchedule)
        .where(WeeklySchedule.garage_id == garage_id)
        .order_by(WeeklySchedule.day_of_week)
    )
    return list(res.scalars().all())


async def set_weekly_schedule(
    db: AsyncSession,
    garage_id: str,
    day: int,
    is_open: bool,
    open_time: str,
    close_time: str,
    slot_duration_minutes: int,
) -> WeeklySchedule:
    """
    Upsert the (garage, weekday) row. Repeating the call with the same arguments is a no-op.
    """
    if day not in range(7):
        raise ValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
    _check_hours(open_time, close_time)
    if not MIN_SLOT_MINUTES <= slot_duration_minutes <= MAX_SLOT_MINUTES:
        raise ValidationError(
            f"slot_duration_minutes must be between {MIN_SLOT_MINUTES} and {MAX_SLOT_MINUTES}"
        )

    await get_garage(db, garage_id)

    res = await db.execute(
        select(WeeklySchedule).where(
            WeeklySchedule.garage_id == garage_id,
            WeeklySchedule.day_of_week == day,
        )
    )
    row = res.scalar_one_or_none()
    if row is None:
        row = WeeklySchedule(garage_id=garage_id, day_of_week=day)
        db.add(row)

    row.is_open = is_open
    row.open_time = open_time
    row.close_time = close_time
    row.slot_duration_minutes = slot_duration_minutes

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Schedule was updated concurrently, retry")

    await invalidate_schedule(garage_id)
    await _availability_updated(garage_id, day_of_week=day)
    return row


# ---- Exceptions ----

async def set_exception(
    db: AsyncSession,
    garage_id: str,
    day,
    is_closed: bool,
    reason: str | None = None,
    open_time: str | None = None,
    close_time: str | None = None,
) -> ScheduleException:
    d = parse_date(day)
    if (open_time is None) != (close_time is None):
        raise ValidationError("open_time and close_time must be given together")
    if open_time is not None:
        if is_closed:
            raise ValidationError("special hours only apply to an open day")
        _check_hours(open_time, close_time)

    await get_garage(db, garage_id)

    res = await db.execute(
        select(ScheduleException).where(
            ScheduleException.garage_id == garage_id,
            ScheduleException.date == d,
        )
    )
    row = res.scalar_one_or_none()
    if row is None:
        row = ScheduleException(garage_id=garage_id, date=d)
        db.add(row)

    row.is_closed = is_closed
    row.reason = reason
    row.open_time = open_time
    row.close_time = close_time

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Exception was updated concurrently, retry")

    await _availability_updated(garage_id, date=d)
    return row


async def remove_exception(db: AsyncSession, garage_id: str, day) -> bool:
    d = parse_date(day)
    await get_garage(db, garage_id)

    res = await db.execute(
        delete(ScheduleException).where(
            ScheduleException.garage_id == garage_id,
            ScheduleException.date == d,
        )
    )
    await db.commit()

    removed = res.rowcount > 0
    if removed:
        await _availability_updated(garage_id, date=d)
    return removed


async def list_exceptions(db: AsyncSession, garage_id: str, start, end) -> list[ScheduleException]:
    s, e = parse_date(start), parse_date(end)
    _check_window(s, e)
    await get_garage(db, garage_id)

    res = await db.execute(
        select(ScheduleException)
        .where(
            ScheduleException.garage_id == garage_id,
            ScheduleException.date >= s,
            ScheduleException.date <= e,
        )
        .order_by(ScheduleException.date)
    )
    return list(res.scalars().all())


# ---- Slot blocks ----

async def set_time_slot_block(
    db: AsyncSession,
    garage_id: str,
    day,
    time_slot: str,
    blocked: bool,
    reason: str | None = None,
) -> bool:
    """
    Block or unblock one slot. Returns False when the slot was already in the requested state.
    """
    d = parse_date(day)
    slot_to_minutes(time_slot)
    await get_garage(db, garage_id)

    res = await db.execute(
        select(TimeSlotBlock).where(
            TimeSlotBlock.garage_id == garage_id,
            TimeSlotBlock.date == d,
            TimeSlotBlock.time_slot == time_slot,
        )
    )
    existing = res.scalar_one_or_none()

    if blocked:
        if existing:
            return False
        db.add(TimeSlotBlock(
            garage_id=garage_id,
            date=d,
            time_slot=time_slot,
            reason=reason or "Blocked by garage",
        ))
        try:
            await db.commit()
        except IntegrityError:
            # a concurrent block of the same slot won; the slot ends up blocked either way
            await db.rollback()
            return False
    else:
        if not existing:
            return False
        await db.delete(existing)
        await db.commit()

    await _availability_updated(garage_id, date=d)
    return True


async def bulk_set_blocks(
    db: AsyncSession,
    garage_id: str,
    start,
    end,
    blocked: bool,
    time_slots: list[str] | None = None,
    reason: str | None = None,
) -> int:
    """
    Block or unblock slots for every open weekday in a date range.
    Without explicit time_slots, every slot of that weekday's schedule is used.
    """
    s, e = parse_date(start), parse_date(end)
    _check_window(s, e)
    for slot in time_slots or []:
        slot_to_minutes(slot)

    await get_garage(db, garage_id)

    res = await db.execute(select(WeeklySchedule).where(WeeklySchedule.garage_id == garage_id))
    weekly = {row.day_of_week: row for row in res.scalars().all()}

    res = await db.execute(
        select(TimeSlotBlock).where(
            TimeSlotBlock.garage_id == garage_id,
            TimeSlotBlock.date >= s,
            TimeSlotBlock.date <= e,
        )
    )
    existing = {(b.date, b.time_slot): b for b in res.scalars().all()}

    changed = 0
    d = s
    while d <= e:
        schedule = weekly.get(day_of_week(d))
        if schedule and schedule.is_open:
            slots = time_slots or generate_slots(
                schedule.open_time, schedule.close_time, schedule.slot_duration_minutes
            )
            for slot in slots:
                current = existing.get((d, slot))
                if blocked and current is None:
                    db.add(TimeSlotBlock(
                        garage_id=garage_id,
                        date=d,
                        time_slot=slot,
                        reason=reason or "Blocked via availability manager",
                    ))
                    changed += 1
                elif not blocked and current is not None:
                    await db.delete(current)
                    changed += 1
        d += timedelta(days=1)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Blocks were updated concurrently, retry")

    if changed:
        await _availability_updated(garage_id, start=s, end=e)
    return changed


async def list_blocks(db: AsyncSession, garage_id: str, start, end) -> list[TimeSlotBlock]:
    s, e = parse_date(start), parse_date(end)
    _check_window(s, e)
    await get_garage(db, garage_id)

    res = await db.execute(
        select(TimeSlotBlock)
        .where(
            TimeSlotBlock.garage_id == garage_id,
            TimeSlotBlock.date >= s,
            TimeSlotBlock.date <= e,
        )
        .order_by(TimeSlotBlock.date, TimeSlotBlock.time_slot)
    )
    return list(res.scalars().all())


# ---- Holiday overrides ----

async def set_holiday_override(db: AsyncSession, garage_id: str, day, is_available: bool) -> HolidayOverride:
    d = parse_date(day)
    await get_garage(db, garage_id)

    res = await db.execute(
        select(HolidayOverride).where(
            HolidayOverride.garage_id == garage_id,
            HolidayOverride.date == d,
        )
    )
    row = res.scalar_one_or_none()
    if row is None:
        row = HolidayOverride(garage_id=garage_id, date=d)
        db.add(row)
    row.is_available = is_available

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Holiday override was updated concurrently, retry")

    await _availability_updated(garage_id, date=d)
    return row
