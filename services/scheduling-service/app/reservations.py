import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import get_garage, load_day_contexts
from .clock import to_local, utcnow
from .errors import ConflictError, ValidationError
from .holidays import HolidayCalendar
from .models import PENDING, Booking
from .rabbitmq import publisher
from .slots import candidate_slots, parse_date, resolve_day, slot_to_minutes

SLOT_TAKEN = "Time slot is no longer available"


def _require(value: str | None, name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{name} is required")
    return value


async def reserve_slot(
    db: AsyncSession,
    garage_id: str,
    day,
    time_slot: str,
    customer_id: str,
    vehicle_id: str,
    notes: str | None = None,
    now: datetime | None = None,
    calendar: HolidayCalendar | None = None,
) -> Booking:
    """
    Claim one slot. The availability shown earlier is only a hint: the slot is
    re-validated here, and the partial unique index on live bookings decides races.
    First writer wins; the loser gets ConflictError and must re-query availability.
    """
    d = parse_date(day)
    slot_to_minutes(time_slot)
    customer_id = _require(customer_id, "customer_id")
    vehicle_id = _require(vehicle_id, "vehicle_id")
    now_local = to_local(now or utcnow())

    if d < now_local.date():
        raise ValidationError("Cannot book a date in the past")

    booking_id = str(uuid.uuid4())

    async with db.begin():
        garage = await get_garage(db, garage_id)
        if not garage.is_active:
            raise ValidationError("Garage is not accepting bookings")

        ctx = (await load_day_contexts(db, garage, d, d, calendar))[d]

        if time_slot not in candidate_slots(d, ctx):
            raise ValidationError(f"{time_slot} is not a bookable slot on {d.isoformat()}")
        if time_slot not in resolve_day(d, ctx, now_local):
            raise ConflictError(SLOT_TAKEN)

        booking = Booking(
            booking_id=booking_id,
            garage_id=garage.garage_id,
            vehicle_id=vehicle_id,
            customer_id=customer_id,
            date=d,
            time_slot=time_slot,
            status=PENDING,
            total_price=garage.mot_price,
            payment_status="PENDING",
            notes=notes,
        )
        db.add(booking)
        try:
            await db.flush()
        except IntegrityError:
            raise ConflictError(SLOT_TAKEN)

    await publisher.publish_event(
        "booking.requested",
        {
            "booking_id": booking.booking_id,
            "garage_id": booking.garage_id,
            "customer_id": booking.customer_id,
            "vehicle_id": booking.vehicle_id,
            "date": booking.date,
            "time_slot": booking.time_slot,
        },
    )
    return booking


async def get_booking(db: AsyncSession, booking_id: str) -> Booking | None:
    res = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
    return res.scalar_one_or_none()