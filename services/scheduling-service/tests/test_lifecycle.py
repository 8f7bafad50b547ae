from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.dispatcher import dispatch_due
from app.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PermanentNotificationError,
    ValidationError,
)
from app.lifecycle import (
    TRANSITIONS,
    delete_booking,
    list_actions,
    reminder_times,
    transition_booking_status,
)
from app.models import (
    ACTION_CANCELLED,
    ACTION_PENDING,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    NO_SHOW,
    Booking,
    NotificationLog,
    ScheduledAction,
)
from app.reservations import get_booking, reserve_slot

from helpers import NOW, FakeNotifier, StaticHolidayCalendar

# Monday, 40 days after NOW
FAR_MONDAY = date(2030, 2, 11)


async def _book(session_factory, garage_id, day=FAR_MONDAY, slot="09:00", customer="cust-1"):
    async with session_factory() as db:
        booking = await reserve_slot(
            db, garage_id, day, slot,
            customer_id=customer, vehicle_id="veh-1",
            now=NOW, calendar=StaticHolidayCalendar(),
        )
    return booking.booking_id


async def _transition(session_factory, booking_id, status, role="garage_owner", notifier=None, now=NOW, **kwargs):
    async with session_factory() as db:
        return await transition_booking_status(
            db, booking_id, status, actor_role=role, now=now, notifier=notifier or FakeNotifier(), **kwargs
        )


async def _actions(session_factory, booking_id):
    async with session_factory() as db:
        return await list_actions(db, booking_id)


async def _logs(session_factory, booking_id):
    async with session_factory() as db:
        res = await db.execute(select(NotificationLog).where(NotificationLog.booking_id == booking_id))
        return list(res.scalars().all())


async def test_confirming_schedules_three_reminders(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)
    notifier = FakeNotifier()

    booking = await _transition(session_factory, booking_id, CONFIRMED, notifier=notifier)

    assert booking.status == CONFIRMED
    actions = await _actions(session_factory, booking_id)
    assert [a.kind for a in actions] == ["REMINDER_1_MONTH", "REMINDER_1_WEEK", "REMINDER_1_DAY"]
    assert all(a.status == ACTION_PENDING and a.retry_count == 0 for a in actions)

    # 09:00 on 11 Feb in London is 09:00 UTC
    due = [a.scheduled_for.replace(tzinfo=None) for a in actions]
    assert due == [datetime(2030, 1, 11, 9), datetime(2030, 2, 4, 9), datetime(2030, 2, 10, 9)]

    assert [kind for _, kind, _ in notifier.sent] == ["BOOKING_APPROVED"]
    logs = await _logs(session_factory, booking_id)
    assert [(log.kind, log.status) for log in logs] == [("BOOKING_APPROVED", "SENT")]


async def test_cancelling_cancels_every_pending_reminder(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)
    await _transition(session_factory, booking_id, CONFIRMED)

    await _transition(session_factory, booking_id, CANCELLED, reason="Car sold")

    actions = await _actions(session_factory, booking_id)
    assert len(actions) == 3
    assert {a.status for a in actions} == {ACTION_CANCELLED}

    # none of them is ever dispatched, even once due
    notifier = FakeNotifier()
    report = await dispatch_due(session_factory, notifier, now=datetime(2030, 2, 11, tzinfo=timezone.utc))
    assert report.sent == 0
    assert notifier.sent == []


async def test_only_future_reminders_are_created(session_factory, garage):
    near_monday = date(2030, 1, 7)
    booking_id = await _book(session_factory, garage.garage_id, day=near_monday)

    await _transition(session_factory, booking_id, CONFIRMED)

    actions = await _actions(session_factory, booking_id)
    assert [a.kind for a in actions] == ["REMINDER_1_DAY"]


async def test_reminder_times_skip_the_past():
    booking = Booking(date=date(2030, 1, 3), time_slot="10:00")
    assert reminder_times(booking, NOW) == [
        ("REMINDER_1_DAY", datetime(2030, 1, 2, 10, tzinfo=timezone.utc)),
    ]


def test_transition_table():
    assert TRANSITIONS == {
        "PENDING": {CONFIRMED, CANCELLED},
        CONFIRMED: {COMPLETED, CANCELLED, NO_SHOW},
    }


@pytest.mark.parametrize("terminal", [COMPLETED, NO_SHOW])
async def test_leaving_confirmed_cancels_reminders(session_factory, garage, terminal):
    booking_id = await _book(session_factory, garage.garage_id)
    await _transition(session_factory, booking_id, CONFIRMED)

    await _transition(session_factory, booking_id, terminal)

    assert {a.status for a in await _actions(session_factory, booking_id)} == {ACTION_CANCELLED}


async def test_completion_sends_follow_up(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)
    await _transition(session_factory, booking_id, CONFIRMED)
    notifier = FakeNotifier()

    await _transition(session_factory, booking_id, COMPLETED, notifier=notifier)

    assert [kind for _, kind, _ in notifier.sent] == ["BOOKING_COMPLETED_FOLLOWUP"]


async def test_failed_notification_does_not_fail_the_transition(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)
    notifier = FakeNotifier(errors=[PermanentNotificationError("Notification rejected with 422")])

    booking = await _transition(session_factory, booking_id, CONFIRMED, notifier=notifier)

    assert booking.status == CONFIRMED
    logs = await _logs(session_factory, booking_id)
    assert [(log.kind, log.status, log.error) for log in logs] == [
        ("BOOKING_APPROVED", "FAILED", "Notification rejected with 422"),
    ]


@pytest.mark.parametrize(
    "path",
    [
        [CONFIRMED, CONFIRMED],
        [COMPLETED],
        [NO_SHOW],
        [CANCELLED, CONFIRMED],
        [CONFIRMED, COMPLETED, CANCELLED],
    ],
)
async def test_disallowed_transitions(session_factory, garage, path):
    booking_id = await _book(session_factory, garage.garage_id)
    *allowed, rejected = path
    for status in allowed:
        await _transition(session_factory, booking_id, status)

    with pytest.raises(InvalidTransitionError):
        await _transition(session_factory, booking_id, rejected)


async def test_unknown_status_and_booking(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)
    with pytest.raises(ValidationError):
        await _transition(session_factory, booking_id, "ARCHIVED")
    with pytest.raises(NotFoundError):
        await _transition(session_factory, "missing", CONFIRMED)


async def test_customer_may_only_cancel_own_booking(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)

    with pytest.raises(ForbiddenError):
        await _transition(session_factory, booking_id, CONFIRMED, role="customer", actor_id="cust-1")
    with pytest.raises(ForbiddenError):
        await _transition(session_factory, booking_id, CANCELLED, role="customer", actor_id="cust-2")

    booking = await _transition(session_factory, booking_id, CANCELLED, role="customer", actor_id="cust-1")
    assert booking.status == CANCELLED


async def test_customer_cannot_cancel_a_past_booking(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)
    later = datetime(2030, 2, 12, 9, tzinfo=timezone.utc)

    with pytest.raises(InvalidTransitionError):
        await _transition(session_factory, booking_id, CANCELLED, role="customer", actor_id="cust-1", now=later)


async def test_unknown_role_is_forbidden(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)
    with pytest.raises(ForbiddenError):
        await _transition(session_factory, booking_id, CONFIRMED, role="mechanic")


async def test_admin_delete_cancels_reminders(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)
    await _transition(session_factory, booking_id, CONFIRMED)

    async with session_factory() as db:
        with pytest.raises(ForbiddenError):
            await delete_booking(db, booking_id, actor_role="garage_owner")

    async with session_factory() as db:
        await delete_booking(db, booking_id, actor_role="admin")

    async with session_factory() as db:
        assert await get_booking(db, booking_id) is None
        res = await db.execute(select(ScheduledAction.status).where(ScheduledAction.booking_id == booking_id))
        assert set(res.scalars().all()) == {ACTION_CANCELLED}

    async with session_factory() as db:
        with pytest.raises(NotFoundError):
            await delete_booking(db, booking_id, actor_role="admin")


async def test_deleted_booking_frees_the_slot(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id)
    async with session_factory() as db:
        await delete_booking(db, booking_id, actor_role="admin")

    other = await _book(session_factory, garage.garage_id, customer="cust-2")
    assert other != booking_id


async def test_reminder_is_rescheduled_relative_to_appointment(session_factory, garage):
    booking_id = await _book(session_factory, garage.garage_id, slot="14:30")
    await _transition(session_factory, booking_id, CONFIRMED)

    actions = await _actions(session_factory, booking_id)
    day_before = [a for a in actions if a.kind == "REMINDER_1_DAY"][0]
    assert day_before.scheduled_for.replace(tzinfo=None) == datetime(2030, 2, 11, 14, 30) - timedelta(days=1)
