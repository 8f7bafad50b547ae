import asyncio
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select, update

from app import dispatcher
from app.dispatcher import LOCK_KEY, dispatch_due
from app.errors import PermanentNotificationError, TransientDependencyError
from app.lifecycle import transition_booking_status
from app.models import (
    ACTION_CANCELLED,
    ACTION_FAILED,
    ACTION_PENDING,
    ACTION_SENT,
    Booking,
    ScheduledAction,
)
from app.reservations import reserve_slot

from helpers import NOW, FakeNotifier, StaticHolidayCalendar

# the one-day reminder for a 09:00 appointment on Monday 7 January fires at 09:00 on the 6th
APPOINTMENT = date(2030, 1, 7)
DUE = datetime(2030, 1, 6, 9, 0, tzinfo=timezone.utc)


async def _confirmed_booking(session_factory, garage_id, slot="09:00"):
    async with session_factory() as db:
        booking = await reserve_slot(
            db, garage_id, APPOINTMENT, slot,
            customer_id="cust-1", vehicle_id="veh-1",
            now=NOW, calendar=StaticHolidayCalendar(),
        )
    async with session_factory() as db:
        await transition_booking_status(
            db, booking.booking_id, "CONFIRMED", actor_role="garage_owner", now=NOW, notifier=FakeNotifier()
        )
    return booking.booking_id


async def _action(session_factory, booking_id):
    async with session_factory() as db:
        res = await db.execute(select(ScheduledAction).where(ScheduledAction.booking_id == booking_id))
        return res.scalar_one()


async def test_nothing_due_yet(session_factory, garage):
    await _confirmed_booking(session_factory, garage.garage_id)
    notifier = FakeNotifier()

    report = await dispatch_due(session_factory, notifier, now=DUE - timedelta(hours=1))

    assert report.as_dict() == {"sent": 0, "retried": 0, "failed": 0, "cancelled": 0, "skipped": 0}
    assert notifier.sent == []


async def test_due_reminder_is_sent_once(session_factory, garage):
    booking_id = await _confirmed_booking(session_factory, garage.garage_id)
    notifier = FakeNotifier()

    report = await dispatch_due(session_factory, notifier, now=DUE)

    assert report.sent == 1
    recipient, kind, payload = notifier.sent[0]
    assert recipient == "cust-1"
    assert kind == "BOOKING_REMINDER_1_DAY"
    assert payload["booking_id"] == booking_id
    assert payload["time_slot"] == "09:00"

    action = await _action(session_factory, booking_id)
    assert action.status == ACTION_SENT
    assert action.sent_at is not None

    again = await dispatch_due(session_factory, notifier, now=DUE + timedelta(days=1))
    assert again.sent == 0
    assert len(notifier.sent) == 1


async def test_lookahead_picks_up_reminders_about_to_fall_due(session_factory, garage):
    await _confirmed_booking(session_factory, garage.garage_id)
    notifier = FakeNotifier()

    report = await dispatch_due(session_factory, notifier, now=DUE - timedelta(seconds=30))

    assert report.sent == 1


async def test_transient_failures_back_off_then_fail(session_factory, garage):
    booking_id = await _confirmed_booking(session_factory, garage.garage_id)
    notifier = FakeNotifier(errors=[TransientDependencyError("Timeout calling notification service")] * 3)

    first = await dispatch_due(session_factory, notifier, now=DUE)
    assert first.retried == 1
    action = await _action(session_factory, booking_id)
    assert action.status == ACTION_PENDING
    assert action.retry_count == 1
    assert action.last_error == "Timeout calling notification service"

    # still inside the backoff window
    assert (await dispatch_due(session_factory, notifier, now=DUE + timedelta(minutes=1))).skipped == 0
    assert len(notifier.errors) == 2

    second = await dispatch_due(session_factory, notifier, now=DUE + timedelta(minutes=6))
    assert second.retried == 1
    assert (await _action(session_factory, booking_id)).retry_count == 2

    # linear backoff: the second wait is twice the first
    assert (await dispatch_due(session_factory, notifier, now=DUE + timedelta(minutes=11))).as_dict()["retried"] == 0

    third = await dispatch_due(session_factory, notifier, now=DUE + timedelta(minutes=20))
    assert third.failed == 1
    action = await _action(session_factory, booking_id)
    assert action.status == ACTION_FAILED
    assert action.retry_count == 3

    assert (await dispatch_due(session_factory, notifier, now=DUE + timedelta(days=1))).failed == 0
    assert notifier.sent == []


async def test_transient_failure_then_success(session_factory, garage):
    booking_id = await _confirmed_booking(session_factory, garage.garage_id)
    notifier = FakeNotifier(errors=[TransientDependencyError("Notification service returned 503: down")])

    await dispatch_due(session_factory, notifier, now=DUE)
    report = await dispatch_due(session_factory, notifier, now=DUE + timedelta(minutes=10))

    assert report.sent == 1
    action = await _action(session_factory, booking_id)
    assert action.status == ACTION_SENT
    assert action.retry_count == 1


async def test_permanent_failure_is_not_retried(session_factory, garage):
    booking_id = await _confirmed_booking(session_factory, garage.garage_id)
    notifier = FakeNotifier(errors=[PermanentNotificationError("Notification rejected with 422: bad recipient")])

    report = await dispatch_due(session_factory, notifier, now=DUE)

    assert report.failed == 1
    action = await _action(session_factory, booking_id)
    assert action.status == ACTION_FAILED
    assert action.retry_count == 0


async def test_reminder_for_unconfirmed_booking_is_cancelled(session_factory, garage):
    booking_id = await _confirmed_booking(session_factory, garage.garage_id)
    # the status moved without going through the lifecycle
    async with session_factory() as db:
        await db.execute(update(Booking).where(Booking.booking_id == booking_id).values(status="COMPLETED"))
        await db.commit()
    notifier = FakeNotifier()

    report = await dispatch_due(session_factory, notifier, now=DUE)

    assert report.cancelled == 1
    assert notifier.sent == []
    assert (await _action(session_factory, booking_id)).status == ACTION_CANCELLED


async def test_leased_action_is_not_claimed_twice(session_factory, garage):
    booking_id = await _confirmed_booking(session_factory, garage.garage_id)
    async with session_factory() as db:
        await db.execute(
            update(ScheduledAction)
            .where(ScheduledAction.booking_id == booking_id)
            .values(locked_until=DUE + timedelta(minutes=2))
        )
        await db.commit()
    notifier = FakeNotifier()

    assert (await dispatch_due(session_factory, notifier, now=DUE)).sent == 0
    assert (await dispatch_due(session_factory, notifier, now=DUE + timedelta(minutes=3))).sent == 1


async def test_concurrent_passes_send_once(session_factory, garage):
    await _confirmed_booking(session_factory, garage.garage_id)
    notifier = FakeNotifier()

    reports = await asyncio.gather(*[dispatch_due(session_factory, notifier, now=DUE) for _ in range(3)])

    assert sum(r.sent for r in reports) == 1
    assert len(notifier.sent) == 1


async def test_redis_lock_held_elsewhere_skips_the_pass(session_factory, garage, fake_redis):
    await _confirmed_booking(session_factory, garage.garage_id)
    await fake_redis.set(LOCK_KEY, "another-worker", ex=60)
    notifier = FakeNotifier()

    report = await dispatch_due(session_factory, notifier, now=DUE)

    assert report.sent == 0
    assert notifier.sent == []
    assert await fake_redis.get(LOCK_KEY) == "another-worker"


async def test_redis_lock_is_released_after_a_pass(session_factory, garage, fake_redis):
    await _confirmed_booking(session_factory, garage.garage_id)

    await dispatch_due(session_factory, FakeNotifier(), now=DUE)

    assert await fake_redis.get(LOCK_KEY) is None
    assert not dispatcher._pass_lock.locked()
