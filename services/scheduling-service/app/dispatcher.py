"""
Reminder dispatch.

One pass picks up every PENDING action that is due (or about to be), claims
each row with a conditional update, re-checks the booking and hands the
reminder to the notification service. Every row is settled in its own
transaction so an interrupted pass loses at most the row in flight, and its
lease simply expires.
"""
import asyncio
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update

from .clock import as_utc, utcnow
from .config import (
    DISPATCH_BATCH_SIZE,
    DISPATCH_LEASE_SECONDS,
    DISPATCH_LOOKAHEAD_SECONDS,
    DISPATCH_MAX_RETRIES,
    DISPATCH_RETRY_DELAY_SECONDS,
    SERVICE_NAME,
)
from .db import SessionLocal
from .errors import PermanentNotificationError, TransientDependencyError
from .models import (
    ACTION_CANCELLED,
    ACTION_FAILED,
    ACTION_PENDING,
    ACTION_SENT,
    CONFIRMED,
    Booking,
    ScheduledAction,
)
from .notifier import REMINDER_KINDS, Notifier, notifier as default_notifier
from .redis_client import get_redis

LOCK_KEY = "lock:reminder-dispatch"

_pass_lock = asyncio.Lock()


@dataclass
class DispatchReport:
    sent: int = 0
    retried: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class _Claim:
    action_id: int
    kind: str
    retry_count: int
    recipient: str
    payload: dict


async def _acquire_lock(token: str) -> bool:
    redis_client = get_redis()
    if redis_client is None:
        return True
    return bool(await redis_client.set(LOCK_KEY, token, nx=True, ex=DISPATCH_LEASE_SECONDS))


async def _release_lock(token: str) -> None:
    redis_client = get_redis()
    if redis_client is None:
        return
    if await redis_client.get(LOCK_KEY) == token:
        await redis_client.delete(LOCK_KEY)


def _lease_free(now: datetime):
    return or_(ScheduledAction.locked_until.is_(None), ScheduledAction.locked_until <= now)


async def _due_action_ids(session_factory, now: datetime) -> list[int]:
    horizon = now + timedelta(seconds=DISPATCH_LOOKAHEAD_SECONDS)
    async with session_factory() as db:
        res = await db.execute(
            select(ScheduledAction.id)
            .where(
                ScheduledAction.status == ACTION_PENDING,
                ScheduledAction.scheduled_for <= horizon,
                _lease_free(now),
            )
            .order_by(ScheduledAction.scheduled_for)
            .limit(DISPATCH_BATCH_SIZE)
        )
        return list(res.scalars().all())


async def _claim(session_factory, action_id: int, now: datetime, report: DispatchReport) -> _Claim | None:
    async with session_factory() as db:
        async with db.begin():
            res = await db.execute(
                update(ScheduledAction)
                .where(
                    ScheduledAction.id == action_id,
                    ScheduledAction.status == ACTION_PENDING,
                    _lease_free(now),
                )
                .values(locked_until=now + timedelta(seconds=DISPATCH_LEASE_SECONDS), updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                report.skipped += 1
                return None

            action = (await db.execute(
                select(ScheduledAction).where(ScheduledAction.id == action_id)
            )).scalar_one()
            booking = (await db.execute(
                select(Booking).where(Booking.booking_id == action.booking_id)
            )).scalar_one_or_none()

            if booking is None or booking.status != CONFIRMED:
                action.status = ACTION_CANCELLED
                action.locked_until = None
                report.cancelled += 1
                return None

            return _Claim(
                action_id=action.id,
                kind=action.kind,
                retry_count=action.retry_count,
                recipient=booking.customer_id,
                payload={
                    "booking_id": booking.booking_id,
                    "garage_id": booking.garage_id,
                    "vehicle_id": booking.vehicle_id,
                    "date": booking.date.isoformat(),
                    "time_slot": booking.time_slot,
                },
            )


async def _settle(session_factory, action_id: int, values: dict) -> bool:
    async with session_factory() as db:
        async with db.begin():
            res = await db.execute(
                update(ScheduledAction)
                .where(ScheduledAction.id == action_id, ScheduledAction.status == ACTION_PENDING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return res.rowcount == 1


async def _process(session_factory, notifier: Notifier, action_id: int, now: datetime, report: DispatchReport):
    claim = await _claim(session_factory, action_id, now, report)
    if claim is None:
        return

    try:
        await notifier.send_notification(claim.recipient, REMINDER_KINDS[claim.kind], claim.payload)
    except PermanentNotificationError as e:
        await _settle(session_factory, action_id, {
            "status": ACTION_FAILED,
            "last_error": e.detail,
            "locked_until": None,
            "updated_at": now,
        })
        report.failed += 1
        print(f"[{SERVICE_NAME}] reminder {action_id} rejected: {e}")
        return
    except TransientDependencyError as e:
        attempts = claim.retry_count + 1
        if attempts >= DISPATCH_MAX_RETRIES:
            values = {"status": ACTION_FAILED, "locked_until": None}
            report.failed += 1
        else:
            backoff = timedelta(seconds=DISPATCH_RETRY_DELAY_SECONDS * attempts)
            values = {"locked_until": now + backoff}
            report.retried += 1
        values.update(retry_count=attempts, last_error=e.detail, updated_at=now)
        await _settle(session_factory, action_id, values)
        print(f"[{SERVICE_NAME}] reminder {action_id} attempt {attempts} failed: {e}")
        return

    if await _settle(session_factory, action_id, {
        "status": ACTION_SENT,
        "sent_at": now,
        "locked_until": None,
        "updated_at": now,
    }):
        report.sent += 1
    else:
        # cancelled while the message was in flight
        report.skipped += 1


async def dispatch_due(
    session_factory=SessionLocal,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> DispatchReport:
    """
    Run one dispatch pass. Only one pass runs at a time, per process and
    (with Redis) across processes; a pass that finds the lock taken does nothing.
    """
    report = DispatchReport()
    if _pass_lock.locked():
        return report

    notifier = notifier or default_notifier
    now = as_utc(now or utcnow())

    async with _pass_lock:
        token = str(uuid.uuid4())
        if not await _acquire_lock(token):
            return report
        try:
            for action_id in await _due_action_ids(session_factory, now):
                await _process(session_factory, notifier, action_id, now, report)
        finally:
            await _release_lock(token)

    if report != DispatchReport():
        print(f"[{SERVICE_NAME}] dispatch pass: {report.as_dict()}")
    return report
