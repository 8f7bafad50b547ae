from datetime import datetime

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import local_today, slot_start, utcnow
from .config import SERVICE_NAME
from .errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PermanentNotificationError,
    TransientDependencyError,
    ValidationError,
)
from .models import (
    ACTION_CANCELLED,
    ACTION_PENDING,
    ACTION_SENT,
    BOOKING_STATUSES,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    NO_SHOW,
    PENDING,
    REMINDER_1_DAY,
    REMINDER_1_MONTH,
    REMINDER_1_WEEK,
    Booking,
    NotificationLog,
    ScheduledAction,
)
from .notifier import (
    BOOKING_APPROVED,
    BOOKING_CANCELLED,
    BOOKING_COMPLETED_FOLLOWUP,
    Notifier,
    notifier as default_notifier,
)
from .rabbitmq import publisher

ROLE_CUSTOMER = "customer"
ROLE_GARAGE_OWNER = "garage_owner"
ROLE_ADMIN = "admin"
ROLES = (ROLE_CUSTOMER, ROLE_GARAGE_OWNER, ROLE_ADMIN)

TRANSITIONS = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {COMPLETED, CANCELLED, NO_SHOW},
}

REMINDER_OFFSETS = (
    (REMINDER_1_MONTH, relativedelta(months=1)),
    (REMINDER_1_WEEK, relativedelta(weeks=1)),
    (REMINDER_1_DAY, relativedelta(days=1)),
)

TRANSITION_NOTIFICATIONS = {
    CONFIRMED: BOOKING_APPROVED,
    CANCELLED: BOOKING_CANCELLED,
    COMPLETED: BOOKING_COMPLETED_FOLLOWUP,
}


def reminder_times(booking: Booking, now: datetime) -> list[tuple[str, datetime]]:
    """Reminder triggers still in the future; past ones are never scheduled."""
    start = slot_start(booking.date, booking.time_slot)
    return [
        (kind, start - offset)
        for kind, offset in REMINDER_OFFSETS
        if start - offset > now
    ]


async def schedule_reminders(db: AsyncSession, booking: Booking, now: datetime) -> list[ScheduledAction]:
    """
    Upsert one PENDING action per reminder kind. The (booking, kind) key keeps
    this idempotent; an action already SENT is left alone.
    """
    res = await db.execute(select(ScheduledAction).where(ScheduledAction.booking_id == booking.booking_id))
    existing = {a.kind: a for a in res.scalars().all()}

    actions = []
    for kind, when in reminder_times(booking, now):
        action = existing.get(kind)
        if action is None:
            action = ScheduledAction(booking_id=booking.booking_id, kind=kind)
            db.add(action)
        elif action.status == ACTION_SENT:
            continue

        action.scheduled_for = when
        action.status = ACTION_PENDING
        action.retry_count = 0
        action.last_error = None
        action.locked_until = None
        actions.append(action)

    await db.flush()
    return actions


async def cancel_reminders(db: AsyncSession, booking_id: str) -> int:
    res = await db.execute(
        update(ScheduledAction)
        .where(
            ScheduledAction.booking_id == booking_id,
            ScheduledAction.status == ACTION_PENDING,
        )
        .values(status=ACTION_CANCELLED, locked_until=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


def _check_actor(booking: Booking, new_status: str, actor_role: str, actor_id: str | None, today):
    if actor_role not in ROLES:
        raise ForbiddenError(f"Unknown role '{actor_role}'")

    if actor_role != ROLE_CUSTOMER:
        return

    if new_status != CANCELLED:
        raise ForbiddenError("Customers may only cancel a booking")
    if actor_id is not None and actor_id != booking.customer_id:
        raise ForbiddenError("Booking does not belong to this customer")
    if booking.date < today:
        raise InvalidTransitionError("Cannot cancel a past booking")


async def _log_notification(db: AsyncSession, booking: Booking, kind: str, error: str | None):
    db.add(NotificationLog(
        booking_id=booking.booking_id,
        recipient=booking.customer_id,
        kind=kind,
        status="FAILED" if error else "SENT",
        error=error,
    ))
    await db.commit()


async def fire_and_log(db: AsyncSession, notifier: Notifier, booking: Booking, kind: str, extra: dict | None = None):
    """
    One-shot notification at transition time. Failures are logged, never raised.
    """
    payload = {
        "booking_id": booking.booking_id,
        "garage_id": booking.garage_id,
        "vehicle_id": booking.vehicle_id,
        "date": booking.date.isoformat(),
        "time_slot": booking.time_slot,
        **(extra or {}),
    }
    error = None
    try:
        await notifier.send_notification(booking.customer_id, kind, payload)
    except (TransientDependencyError, PermanentNotificationError) as e:
        error = e.detail
        print(f"[{SERVICE_NAME}] {kind} notification failed for booking {booking.booking_id}: {e}")

    await _log_notification(db, booking, kind, error)


async def transition_booking_status(
    db: AsyncSession,
    booking_id: str,
    new_status: str,
    actor_role: str,
    actor_id: str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> Booking:
    """
    The only entry point that moves a booking between statuses; reminder
    scheduling and cancellation happen in the same transaction.
    """
    if new_status not in BOOKING_STATUSES:
        raise ValidationError(f"Invalid status '{new_status}'")
    now = now or utcnow()

    async with db.begin():
        res = await db.execute(
            select(Booking).where(Booking.booking_id == booking_id).with_for_update()
        )
        booking = res.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking not found")

        _check_actor(booking, new_status, actor_role, actor_id, local_today(now))

        previous = booking.status
        if new_status not in TRANSITIONS.get(previous, set()):
            raise InvalidTransitionError(f"Cannot move booking from {previous} to {new_status}")

        booking.status = new_status

        if new_status == CONFIRMED:
            await schedule_reminders(db, booking, now)
        if previous == CONFIRMED:
            cancelled = await cancel_reminders(db, booking.booking_id)
            if cancelled:
                print(f"[{SERVICE_NAME}] cancelled {cancelled} reminder(s) for booking {booking.booking_id}")

    await publisher.publish_event(
        "booking.status_changed",
        {
            "booking_id": booking.booking_id,
            "garage_id": booking.garage_id,
            "previous_status": previous,
            "status": new_status,
            "actor_role": actor_role,
        },
    )

    kind = TRANSITION_NOTIFICATIONS.get(new_status)
    if kind:
        extra = {"reason": reason} if reason else None
        await fire_and_log(db, notifier or default_notifier, booking, kind, extra)

    return booking


async def delete_booking(db: AsyncSession, booking_id: str, actor_role: str) -> None:
    if actor_role != ROLE_ADMIN:
        raise ForbiddenError("Only admins may delete bookings")

    async with db.begin():
        res = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
        booking = res.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking not found")

        await cancel_reminders(db, booking_id)
        await db.delete(booking)

    await publisher.publish_event("booking.deleted", {"booking_id": booking_id, "garage_id": booking.garage_id})


async def list_actions(db: AsyncSession, booking_id: str) -> list[ScheduledAction]:
    res = await db.execute(
        select(ScheduledAction)
        .where(ScheduledAction.booking_id == booking_id)
        .order_by(ScheduledAction.scheduled_for)
    )
    return list(res.scalars().all())
