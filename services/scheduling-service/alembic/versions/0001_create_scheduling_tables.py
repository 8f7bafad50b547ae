from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

LIVE_SLOT_PREDICATE = sa.text("status IN ('PENDING', 'CONFIRMED', 'COMPLETED')")


def upgrade():
    op.create_table(
        "garages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("garage_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("mot_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("saturday_cutoff_time", sa.String(length=5), nullable=True),
        sa.Column("holiday_region", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_garages_garage_id", "garages", ["garage_id"], unique=True)
    op.create_index("ix_garages_owner_id", "garages", ["owner_id"], unique=False)

    op.create_table(
        "weekly_schedules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("garage_id", sa.String(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("is_open", sa.Boolean(), nullable=False),
        sa.Column("open_time", sa.String(length=5), nullable=False),
        sa.Column("close_time", sa.String(length=5), nullable=False),
        sa.Column("slot_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("garage_id", "day_of_week", name="uq_weekly_schedules_garage_day"),
    )
    op.create_index("ix_weekly_schedules_garage_id", "weekly_schedules", ["garage_id"], unique=False)

    op.create_table(
        "schedule_exceptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("garage_id", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_closed", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("open_time", sa.String(length=5), nullable=True),
        sa.Column("close_time", sa.String(length=5), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("garage_id", "date", name="uq_schedule_exceptions_garage_date"),
    )
    op.create_index("ix_schedule_exceptions_garage_id", "schedule_exceptions", ["garage_id"], unique=False)

    op.create_table(
        "holiday_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("garage_id", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("garage_id", "date", name="uq_holiday_overrides_garage_date"),
    )
    op.create_index("ix_holiday_overrides_garage_id", "holiday_overrides", ["garage_id"], unique=False)

    op.create_table(
        "time_slot_blocks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("garage_id", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time_slot", sa.String(length=5), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("garage_id", "date", "time_slot", name="uq_time_slot_blocks_garage_date_slot"),
    )
    op.create_index("ix_time_slot_blocks_garage_id", "time_slot_blocks", ["garage_id"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("garage_id", sa.String(), nullable=False),
        sa.Column("vehicle_id", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time_slot", sa.String(length=5), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_status", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bookings_booking_id", "bookings", ["booking_id"], unique=True)
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_garage_date", "bookings", ["garage_id", "date"], unique=False)
    op.create_index(
        "uq_bookings_live_slot",
        "bookings",
        ["garage_id", "date", "time_slot"],
        unique=True,
        postgresql_where=LIVE_SLOT_PREDICATE,
        sqlite_where=LIVE_SLOT_PREDICATE,
    )

    op.create_table(
        "scheduled_actions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("booking_id", "kind", name="uq_scheduled_actions_booking_kind"),
    )
    op.create_index("ix_scheduled_actions_booking_id", "scheduled_actions", ["booking_id"], unique=False)
    op.create_index("ix_scheduled_actions_status_due", "scheduled_actions", ["status", "scheduled_for"], unique=False)

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("recipient", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notification_logs_booking_id", "notification_logs", ["booking_id"], unique=False)


def downgrade():
    op.drop_index("ix_notification_logs_booking_id", table_name="notification_logs")
    op.drop_table("notification_logs")

    op.drop_index("ix_scheduled_actions_status_due", table_name="scheduled_actions")
    op.drop_index("ix_scheduled_actions_booking_id", table_name="scheduled_actions")
    op.drop_table("scheduled_actions")

    op.drop_index("uq_bookings_live_slot", table_name="bookings")
    op.drop_index("ix_bookings_garage_date", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_customer_id", table_name="bookings")
    op.drop_index("ix_bookings_booking_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_time_slot_blocks_garage_id", table_name="time_slot_blocks")
    op.drop_table("time_slot_blocks")

    op.drop_index("ix_holiday_overrides_garage_id", table_name="holiday_overrides")
    op.drop_table("holiday_overrides")

    op.drop_index("ix_schedule_exceptions_garage_id", table_name="schedule_exceptions")
    op.drop_table("schedule_exceptions")

    op.drop_index("ix_weekly_schedules_garage_id", table_name="weekly_schedules")
    op.drop_table("weekly_schedules")

    op.drop_index("ix_garages_owner_id", table_name="garages")
    op.drop_index("ix_garages_garage_id", table_name="garages")
    op.drop_table("garages")
