from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from . import lifecycle, reservations, schedule_store
from .availability import get_availability_range, get_available_slots, get_garage
from .config import DEFAULT_HOLIDAY_REGION
from .db import SessionLocal
from .dispatcher import dispatch_due
from .errors import NotFoundError
from .holidays import HolidayCalendar, holiday_calendar
from .notifier import Notifier, notifier
from .rbac import acting_role, get_current_user, require_role, verify_cron_secret
from .schemas import (
    BlockResponse,
    BookingResponse,
    BulkBlockRequest,
    BulkBlockResponse,
    CreateBookingRequest,
    CreateGarageRequest,
    DayAvailabilityResponse,
    DispatchResponse,
    ExceptionResponse,
    GarageResponse,
    HolidayOverrideResponse,
    HolidaysResponse,
    RangeAvailabilityResponse,
    ScheduledActionResponse,
    SetBlockRequest,
    SetBlockResponse,
    SetExceptionRequest,
    SetHolidayOverrideRequest,
    SetWeeklyScheduleRequest,
    TransitionRequest,
    UpdateGaragePolicyRequest,
    WeeklyScheduleResponse,
)
from .slots import parse_date

router = APIRouter()

GARAGE_ADMINS = ["garage_owner", "admin"]
BOOKERS = ["customer", "admin"]


async def get_db():
    async with SessionLocal() as session:
        yield session


def get_calendar() -> HolidayCalendar:
    return holiday_calendar


def get_notifier() -> Notifier:
    return notifier


async def _check_garage_owner(db: AsyncSession, garage_id: str, user: dict):
    garage = await get_garage(db, garage_id)
    if garage.owner_id != user["sub"]:
        raise HTTPException(status_code=403, detail="Access forbidden for this garage")


async def _manage_garage(db: AsyncSession, garage_id: str, user: dict):
    require_role(user, GARAGE_ADMINS)
    # admins manage every garage, owners only their own
    if acting_role(user) == "garage_owner":
        await _check_garage_owner(db, garage_id, user)


# ================= GARAGES =================

@router.post("/garages", response_model=GarageResponse, status_code=201, tags=["Garages"])
async def create_garage(
    data: CreateGarageRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, GARAGE_ADMINS)
    payload = data.model_dump()
    if acting_role(user) == "garage_owner":
        payload["owner_id"] = user["sub"]
    return await schedule_store.create_garage(db, **payload)


@router.get("/garages/{garage_id}", response_model=GarageResponse, tags=["Garages"])
async def read_garage(garage_id: str, db: AsyncSession = Depends(get_db)):
    return await get_garage(db, garage_id)


@router.put("/garages/{garage_id}/policy", response_model=GarageResponse, tags=["Garages"])
async def update_garage_policy(
    garage_id: str,
    data: UpdateGaragePolicyRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _manage_garage(db, garage_id, user)
    changes = data.model_dump(exclude_unset=True)
    return await schedule_store.update_garage_policy(db, garage_id, **changes)


# ================= AVAILABILITY =================

@router.get("/garages/{garage_id}/availability", response_model=DayAvailabilityResponse, tags=["Availability"])
async def availability_for_day(
    garage_id: str,
    day: str = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
    calendar: HolidayCalendar = Depends(get_calendar),
):
    d = parse_date(day)
    slots = await get_available_slots(db, garage_id, d, calendar=calendar)
    return {"garage_id": garage_id, "date": d, "available_slots": slots}


@router.get(
    "/garages/{garage_id}/availability/range",
    response_model=RangeAvailabilityResponse,
    tags=["Availability"],
)
async def availability_for_range(
    garage_id: str,
    start: str,
    end: str,
    db: AsyncSession = Depends(get_db),
    calendar: HolidayCalendar = Depends(get_calendar),
):
    s, e = parse_date(start), parse_date(end)
    days = await get_availability_range(db, garage_id, s, e, calendar=calendar)
    return {"garage_id": garage_id, "start": s, "end": e, "days": days}


@router.get("/holidays", response_model=HolidaysResponse, tags=["Availability"])
async def list_holidays(
    year: int,
    region: str = DEFAULT_HOLIDAY_REGION,
    calendar: HolidayCalendar = Depends(get_calendar),
):
    events = await calendar.holidays_for(year, region)
    return {"year": year, "region": region, "dates": sorted(parse_date(ev["date"]) for ev in events)}


# ================= SCHEDULE =================

@router.get("/garages/{garage_id}/schedule", response_model=list[WeeklyScheduleResponse], tags=["Schedule"])
async def read_weekly_schedule(garage_id: str, db: AsyncSession = Depends(get_db)):
    return await schedule_store.list_weekly_schedule(db, garage_id)


@router.put(
    "/garages/{garage_id}/schedule/{day_of_week}",
    response_model=WeeklyScheduleResponse,
    tags=["Schedule"],
)
async def set_weekly_schedule(
    garage_id: str,
    day_of_week: int,
    data: SetWeeklyScheduleRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _manage_garage(db, garage_id, user)
    return await schedule_store.set_weekly_schedule(
        db,
        garage_id,
        day_of_week,
        is_open=data.is_open,
        open_time=data.open_time,
        close_time=data.close_time,
        slot_duration_minutes=data.slot_duration_minutes,
    )


@router.get("/garages/{garage_id}/exceptions", response_model=list[ExceptionResponse], tags=["Schedule"])
async def list_exceptions(garage_id: str, start: str, end: str, db: AsyncSession = Depends(get_db)):
    return await schedule_store.list_exceptions(db, garage_id, start, end)


@router.put("/garages/{garage_id}/exceptions/{day}", response_model=ExceptionResponse, tags=["Schedule"])
async def set_exception(
    garage_id: str,
    day: str,
    data: SetExceptionRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _manage_garage(db, garage_id, user)
    return await schedule_store.set_exception(db, garage_id, day, **data.model_dump())


@router.delete("/garages/{garage_id}/exceptions/{day}", status_code=204, tags=["Schedule"])
async def remove_exception(
    garage_id: str,
    day: str,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _manage_garage(db, garage_id, user)
    if not await schedule_store.remove_exception(db, garage_id, day):
        raise NotFoundError("Exception not found")
    return Response(status_code=204)


@router.get("/garages/{garage_id}/blocks", response_model=list[BlockResponse], tags=["Schedule"])
async def list_blocks(garage_id: str, start: str, end: str, db: AsyncSession = Depends(get_db)):
    return await schedule_store.list_blocks(db, garage_id, start, end)


@router.put("/garages/{garage_id}/blocks", response_model=SetBlockResponse, tags=["Schedule"])
async def set_block(
    garage_id: str,
    data: SetBlockRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _manage_garage(db, garage_id, user)
    changed = await schedule_store.set_time_slot_block(
        db, garage_id, data.date, data.time_slot, data.blocked, reason=data.reason
    )
    return {"changed": changed}


@router.post("/garages/{garage_id}/blocks/bulk", response_model=BulkBlockResponse, tags=["Schedule"])
async def bulk_blocks(
    garage_id: str,
    data: BulkBlockRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _manage_garage(db, garage_id, user)
    changed = await schedule_store.bulk_set_blocks(
        db,
        garage_id,
        data.start,
        data.end,
        data.blocked,
        time_slots=data.time_slots,
        reason=data.reason,
    )
    return {"changed": changed}


@router.put(
    "/garages/{garage_id}/holiday-overrides/{day}",
    response_model=HolidayOverrideResponse,
    tags=["Schedule"],
)
async def set_holiday_override(
    garage_id: str,
    day: str,
    data: SetHolidayOverrideRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _manage_garage(db, garage_id, user)
    return await schedule_store.set_holiday_override(db, garage_id, day, data.is_available)


# ================= BOOKINGS =================

@router.post("/bookings", response_model=BookingResponse, status_code=201, tags=["Bookings"])
async def create_booking(
    data: CreateBookingRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    calendar: HolidayCalendar = Depends(get_calendar),
):
    require_role(user, BOOKERS)

    customer_id = data.customer_id or user["sub"]
    if acting_role(user) == "customer" and customer_id != user["sub"]:
        raise HTTPException(status_code=403, detail="Customers may only book for themselves")

    return await reservations.reserve_slot(
        db,
        data.garage_id,
        data.date,
        data.time_slot,
        customer_id=customer_id,
        vehicle_id=data.vehicle_id,
        notes=data.notes,
        calendar=calendar,
    )


async def _visible_booking(db: AsyncSession, booking_id: str, user: dict):
    booking = await reservations.get_booking(db, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    if acting_role(user) == "customer" and booking.customer_id != user["sub"]:
        raise HTTPException(status_code=403, detail="Access forbidden for this booking")
    if acting_role(user) == "garage_owner":
        await _check_garage_owner(db, booking.garage_id, user)
    return booking


@router.get("/bookings/{booking_id}", response_model=BookingResponse, tags=["Bookings"])
async def read_booking(booking_id: str, user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await _visible_booking(db, booking_id, user)


@router.get(
    "/bookings/{booking_id}/actions",
    response_model=list[ScheduledActionResponse],
    tags=["Bookings"],
)
async def read_booking_actions(booking_id: str, user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    require_role(user, GARAGE_ADMINS)
    await _visible_booking(db, booking_id, user)
    return await lifecycle.list_actions(db, booking_id)


@router.post("/bookings/{booking_id}/status", response_model=BookingResponse, tags=["Bookings"])
async def change_booking_status(
    booking_id: str,
    data: TransitionRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    await _visible_booking(db, booking_id, user)
    # the transition opens its own transaction
    await db.rollback()

    return await lifecycle.transition_booking_status(
        db,
        booking_id,
        data.status,
        actor_role=acting_role(user),
        actor_id=user["sub"],
        reason=data.reason,
        notifier=notifier,
    )


@router.delete("/bookings/{booking_id}", status_code=204, tags=["Bookings"])
async def delete_booking(booking_id: str, user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    await lifecycle.delete_booking(db, booking_id, actor_role=acting_role(user))
    return Response(status_code=204)


# ================= INTERNAL =================

@router.post(
    "/internal/dispatch",
    response_model=DispatchResponse,
    dependencies=[Depends(verify_cron_secret)],
    tags=["System"],
)
async def run_dispatch(notifier: Notifier = Depends(get_notifier)):
    report = await dispatch_due(notifier=notifier)
    return report.as_dict()
