from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)

from .db import Base

# Booking statuses
PENDING = "PENDING"
CONFIRMED = "CONFIRMED"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"
NO_SHOW = "NO_SHOW"

BOOKING_STATUSES = (PENDING, CONFIRMED, COMPLETED, CANCELLED, NO_SHOW)
LIVE_BOOKING_STATUSES = (PENDING, CONFIRMED, COMPLETED)

# ScheduledAction kinds and statuses
REMINDER_1_MONTH = "REMINDER_1_MONTH"
REMINDER_1_WEEK = "REMINDER_1_WEEK"
REMINDER_1_DAY = "REMINDER_1_DAY"

ACTION_KINDS = (REMINDER_1_MONTH, REMINDER_1_WEEK, REMINDER_1_DAY)

ACTION_PENDING = "PENDING"
ACTION_SENT = "SENT"
ACTION_CANCELLED = "CANCELLED"
ACTION_FAILED = "FAILED"


def _utcnow():
    return datetime.now(timezone.utc)


_LIVE_SLOT_PREDICATE = text("status IN ('PENDING', 'CONFIRMED', 'COMPLETED')")


class Garage(Base):
    __tablename__ = "garages"

    id = Column(Integer, primary_key=True)
    garage_id = Column(String, unique=True, nullable=False, index=True)
    owner_id = Column(String, nullable=True, index=True)  # garage_owner sub; NULL means admin-managed only

    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    mot_price = Column(Numeric(10, 2), nullable=False, default=0)

    saturday_cutoff_time = Column(String(5), nullable=True)  # "HH:MM" or NULL for no cutoff
    holiday_region = Column(String, nullable=False, default="england-and-wales")

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class WeeklySchedule(Base):
    __tablename__ = "weekly_schedules"
    __table_args__ = (
        UniqueConstraint("garage_id", "day_of_week", name="uq_weekly_schedules_garage_day"),
    )

    id = Column(Integer, primary_key=True)
    garage_id = Column(String, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday

    is_open = Column(Boolean, nullable=False, default=True)
    open_time = Column(String(5), nullable=False)
    close_time = Column(String(5), nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False, default=30)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class ScheduleException(Base):
    __tablename__ = "schedule_exceptions"
    __table_args__ = (
        UniqueConstraint("garage_id", "date", name="uq_schedule_exceptions_garage_date"),
    )

    id = Column(Integer, primary_key=True)
    garage_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)

    is_closed = Column(Boolean, nullable=False, default=True)
    reason = Column(String, nullable=True)

    # special opening hours for this date; only read when is_closed is false
    open_time = Column(String(5), nullable=True)
    close_time = Column(String(5), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class HolidayOverride(Base):
    __tablename__ = "holiday_overrides"
    __table_args__ = (
        UniqueConstraint("garage_id", "date", name="uq_holiday_overrides_garage_date"),
    )

    id = Column(Integer, primary_key=True)
    garage_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class TimeSlotBlock(Base):
    __tablename__ = "time_slot_blocks"
    __table_args__ = (
        UniqueConstraint("garage_id", "date", "time_slot", name="uq_time_slot_blocks_garage_date_slot"),
    )

    id = Column(Integer, primary_key=True)
    garage_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    time_slot = Column(String(5), nullable=False)
    reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_garage_date", "garage_id", "date"),
        # at most one live booking per slot; the storage layer is the final authority
        Index(
            "uq_bookings_live_slot",
            "garage_id",
            "date",
            "time_slot",
            unique=True,
            postgresql_where=_LIVE_SLOT_PREDICATE,
            sqlite_where=_LIVE_SLOT_PREDICATE,
        ),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, unique=True, nullable=False, index=True)

    garage_id = Column(String, nullable=False)
    vehicle_id = Column(String, nullable=False)
    customer_id = Column(String, nullable=False, index=True)

    date = Column(Date, nullable=False)
    time_slot = Column(String(5), nullable=False)

    status = Column(String, nullable=False, index=True)  # PENDING/CONFIRMED/COMPLETED/CANCELLED/NO_SHOW
    total_price = Column(Numeric(10, 2), nullable=False, default=0)
    payment_status = Column(String, nullable=False, default="PENDING")
    notes = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class ScheduledAction(Base):
    __tablename__ = "scheduled_actions"
    __table_args__ = (
        UniqueConstraint("booking_id", "kind", name="uq_scheduled_actions_booking_kind"),
        Index("ix_scheduled_actions_status_due", "status", "scheduled_for"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)  # REMINDER_1_MONTH/REMINDER_1_WEEK/REMINDER_1_DAY

    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False)  # PENDING/SENT/CANCELLED/FAILED
    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(String, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    # claim lease for an in-flight dispatch, and the backoff horizon after a failed attempt
    locked_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class NotificationLog(Base):
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, nullable=False, index=True)
    recipient = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    status = Column(String, nullable=False)  # SENT/FAILED
    error = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
