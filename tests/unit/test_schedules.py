"""
Unit tests for next-run computation (interval and cron).
"""
from datetime import datetime, timezone

import pytest

from mediaportal.jobs.schedules import (
    compute_next_run,
    is_cron_schedule,
    is_interval_schedule,
    validate_schedule,
    _translate_day_of_week,
)
from mediaportal.lib.errors import InvalidScheduleError


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# 2026-10-18 is a Sunday
SUNDAY_NOON = utc(2026, 10, 18, 12, 0, 0)


@pytest.mark.unit
@pytest.mark.parametrize("schedule", ["", "interval", "@interval", "  Interval "])
def test_interval_markers(schedule):
    assert is_interval_schedule(schedule)
    assert not is_cron_schedule(schedule)


@pytest.mark.unit
def test_interval_is_exact_offset():
    assert compute_next_run("", 3600, utc(2026, 10, 18, 10, 0, 0)) == utc(2026, 10, 18, 11, 0, 0)


@pytest.mark.unit
def test_interval_requires_positive_seconds():
    with pytest.raises(InvalidScheduleError):
        compute_next_run("", 0, SUNDAY_NOON)


@pytest.mark.unit
def test_naive_reference_is_treated_as_utc():
    assert compute_next_run("", 60, datetime(2026, 10, 18, 12, 0, 0)) == utc(2026, 10, 18, 12, 1, 0)


@pytest.mark.unit
def test_cron_five_fields():
    assert compute_next_run("*/5 * * * *", None, utc(2026, 10, 18, 10, 2, 30), tz="UTC") == utc(2026, 10, 18, 10, 5, 0)


@pytest.mark.unit
def test_cron_is_strictly_after_reference():
    assert compute_next_run("*/5 * * * *", None, utc(2026, 10, 18, 10, 5, 0), tz="UTC") == utc(2026, 10, 18, 10, 10, 0)


@pytest.mark.unit
def test_cron_six_fields_has_seconds_first():
    assert compute_next_run("30 0 * * * *", None, utc(2026, 10, 18, 10, 0, 0), tz="UTC") == utc(2026, 10, 18, 10, 0, 30)


@pytest.mark.unit
def test_cron_monday_uses_crontab_numbering():
    assert compute_next_run("0 9 * * 1", None, SUNDAY_NOON, tz="UTC") == utc(2026, 10, 19, 9, 0, 0)


@pytest.mark.unit
@pytest.mark.parametrize("dow", ["0", "7", "sun"])
def test_cron_sunday_spellings(dow):
    assert compute_next_run(f"0 9 * * {dow}", None, SUNDAY_NOON, tz="UTC") == utc(2026, 10, 25, 9, 0, 0)


@pytest.mark.unit
def test_cron_day_of_month_or_day_of_week():
    # 13th of the month OR Friday; Tuesday the 13th comes first
    assert compute_next_run("0 0 13 * 5", None, utc(2026, 10, 10, 12, 0, 0), tz="UTC") == utc(2026, 10, 13, 0, 0, 0)
    # After the 13th, the next Friday wins
    assert compute_next_run("0 0 13 * 5", None, utc(2026, 10, 13, 12, 0, 0), tz="UTC") == utc(2026, 10, 16, 0, 0, 0)


@pytest.mark.unit
def test_cron_macro():
    assert compute_next_run("@daily", None, SUNDAY_NOON, tz="UTC") == utc(2026, 10, 19, 0, 0, 0)


@pytest.mark.unit
def test_cron_evaluated_in_timezone():
    # 09:00 New York (EDT, UTC-4) is 13:00 UTC
    assert compute_next_run("0 9 * * *", None, SUNDAY_NOON, tz="America/New_York") == utc(2026, 10, 18, 13, 0, 0)


@pytest.mark.unit
@pytest.mark.parametrize("schedule", ["61 * * * *", "* * *", "not a cron", "0 0 * * 8", "0 0 * * 5-2"])
def test_invalid_cron_raises(schedule):
    with pytest.raises(InvalidScheduleError) as exc_info:
        compute_next_run(schedule, 3600, SUNDAY_NOON)
    assert exc_info.value.schedule == schedule


@pytest.mark.unit
def test_validate_schedule_accepts_valid_cron():
    validate_schedule("0 3 * * *", None)


@pytest.mark.unit
@pytest.mark.parametrize("field,expected", [
    ("*", "*"),
    ("1-5", "mon,tue,wed,thu,fri"),
    ("0,6", "sat,sun"),
    ("5-7", "fri,sat,sun"),
    ("*/2", "tue,thu,sat,sun"),
])
def test_translate_day_of_week(field, expected):
    assert _translate_day_of_week(field, field) == expected
