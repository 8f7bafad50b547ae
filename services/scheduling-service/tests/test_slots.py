from datetime import date, datetime

import pytest

from app.errors import FatalInvariantViolation, ValidationError
from app.slots import (
    DateException,
    DayContext,
    DaySchedule,
    candidate_slots,
    day_of_week,
    generate_slots,
    next_full_hour,
    parse_date,
    resolve_day,
    slot_to_minutes,
)

from helpers import MONDAY, SATURDAY, SUNDAY

WEEKDAY = DaySchedule(is_open=True, open_time="09:00", close_time="17:00", slot_duration_minutes=60)
EARLY = datetime(2030, 1, 2, 9, 0)


def test_generate_slots_stops_before_close():
    assert generate_slots("09:00", "17:00", 60) == [
        "09:00", "10:00", "11:00", "12:00", "13:00", "14:00", "15:00", "16:00",
    ]
    # a slot must start strictly before close; it may run past it
    assert generate_slots("09:00", "10:45", 30) == ["09:00", "09:30", "10:00", "10:30"]


def test_generate_slots_rejects_bad_input():
    with pytest.raises(ValidationError):
        generate_slots("9am", "17:00", 30)
    with pytest.raises(ValidationError):
        generate_slots("09:00", "17:00", 0)


def test_slot_to_minutes_validates_format():
    assert slot_to_minutes("00:00") == 0
    assert slot_to_minutes("23:59") == 23 * 60 + 59
    for bad in ("24:00", "9:00", "12:60", "", None):
        with pytest.raises(ValidationError):
            slot_to_minutes(bad)


def test_day_of_week_counts_from_sunday():
    assert day_of_week(SUNDAY) == 0
    assert day_of_week(MONDAY) == 1
    assert day_of_week(SATURDAY) == 6


def test_parse_date():
    assert parse_date("2030-01-14") == MONDAY
    assert parse_date(MONDAY) == MONDAY
    assert parse_date(datetime(2030, 1, 14, 15, 30)) == MONDAY
    with pytest.raises(ValidationError):
        parse_date("14/01/2030")


@pytest.mark.parametrize(
    "hour, minute, expected",
    [(10, 7, "11:00"), (10, 0, "11:00"), (8, 59, "09:00"), (0, 0, "01:00")],
)
def test_next_full_hour(hour, minute, expected):
    assert next_full_hour(datetime(2030, 1, 14, hour, minute)) == slot_to_minutes(expected)


def test_open_weekday_yields_every_slot():
    assert resolve_day(MONDAY, DayContext(weekly=WEEKDAY), EARLY) == generate_slots("09:00", "17:00", 60)


def test_blocks_and_bookings_are_removed():
    ctx = DayContext(weekly=WEEKDAY, blocked_slots={"09:00"}, booked_slots=["11:00"])
    slots = resolve_day(MONDAY, ctx, EARLY)
    assert "09:00" not in slots
    assert "11:00" not in slots
    assert len(slots) == 6


def test_closing_exception_wins_over_everything():
    ctx = DayContext(weekly=WEEKDAY, exception=DateException(is_closed=True, reason="Staff training"))
    assert resolve_day(MONDAY, ctx, EARLY) == []


def test_special_hours_replace_weekday_hours():
    ctx = DayContext(weekly=WEEKDAY, exception=DateException(is_closed=False, open_time="12:00", close_time="14:00"))
    assert resolve_day(MONDAY, ctx, EARLY) == ["12:00", "13:00"]


def test_closed_weekday_or_missing_schedule():
    closed = DaySchedule(is_open=False, open_time="09:00", close_time="17:00", slot_duration_minutes=60)
    assert resolve_day(SUNDAY, DayContext(weekly=closed), EARLY) == []
    assert resolve_day(SUNDAY, DayContext(weekly=None), EARLY) == []


def test_public_holiday_closes_unless_overridden():
    assert resolve_day(MONDAY, DayContext(weekly=WEEKDAY, is_public_holiday=True), EARLY) == []
    assert resolve_day(
        MONDAY, DayContext(weekly=WEEKDAY, is_public_holiday=True, holiday_override=False), EARLY
    ) == []

    reopened = DayContext(weekly=WEEKDAY, is_public_holiday=True, holiday_override=True)
    assert len(resolve_day(MONDAY, reopened, EARLY)) == 8


def test_holiday_override_reopens_a_closing_exception():
    ctx = DayContext(
        weekly=WEEKDAY,
        exception=DateException(is_closed=True, reason="Bank holiday"),
        is_public_holiday=True,
        holiday_override=True,
    )
    assert resolve_day(MONDAY, ctx, EARLY) == generate_slots("09:00", "17:00", 60)


def test_override_on_an_ordinary_day_does_not_reopen_a_closure():
    ctx = DayContext(weekly=WEEKDAY, exception=DateException(is_closed=True), holiday_override=True)
    assert resolve_day(MONDAY, ctx, EARLY) == []


def test_saturday_cutoff_only_applies_on_saturday():
    ctx = DayContext(weekly=WEEKDAY, saturday_cutoff_time="13:00")
    assert resolve_day(SATURDAY, ctx, EARLY) == ["09:00", "10:00", "11:00", "12:00"]
    assert len(resolve_day(MONDAY, ctx, EARLY)) == 8


def test_candidate_slots_ignore_blocks_and_bookings():
    ctx = DayContext(weekly=WEEKDAY, blocked_slots={"09:00"}, booked_slots=["10:00"])
    assert "09:00" in candidate_slots(MONDAY, ctx)
    assert "10:00" in candidate_slots(MONDAY, ctx)


def test_today_starts_at_next_full_hour():
    now = datetime(2030, 1, 14, 10, 7)
    slots = resolve_day(MONDAY, DayContext(weekly=WEEKDAY), now)
    assert slots[0] == "11:00"
    assert "09:00" not in slots and "10:00" not in slots


def test_past_dates_have_no_slots():
    assert resolve_day(date(2030, 1, 13), DayContext(weekly=WEEKDAY), datetime(2030, 1, 14, 8, 0)) == []


def test_duplicate_live_bookings_are_an_invariant_violation():
    ctx = DayContext(weekly=WEEKDAY, booked_slots=["11:00", "11:00"])
    with pytest.raises(FatalInvariantViolation):
        resolve_day(MONDAY, ctx, EARLY)
