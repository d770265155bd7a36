"""
Schedule resolution for jobs.

A schedule is either the interval marker (empty string, "interval" or
"@interval"), in which case `interval_seconds` is the cadence, or a cron
expression: 5 fields (minute hour day month day-of-week) or 6 fields with
seconds first. Cron matching is delegated to APScheduler's CronTrigger with
crontab conventions kept intact (0 and 7 are Sunday, day-of-month and
day-of-week are OR-ed when both are restricted).
"""
from datetime import datetime, timedelta, timezone, tzinfo
from typing import List, Optional, Union

from apscheduler.triggers.cron import CronTrigger

from mediaportal.lib.errors import InvalidScheduleError
from mediaportal.lib.settings import settings


INTERVAL_MARKERS = ("", "interval", "@interval")

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

# Crontab numbering: 0 = Sunday
_DOW_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

TimezoneLike = Union[str, tzinfo, None]


def is_interval_schedule(schedule: Optional[str]) -> bool:
    return (schedule or "").strip().lower() in INTERVAL_MARKERS


def is_cron_schedule(schedule: Optional[str]) -> bool:
    """True when the schedule is a cron expression rather than the interval marker."""
    return not is_interval_schedule(schedule)


def _dow_value(token: str, schedule: str) -> int:
    token = token.lower()
    if token in _DOW_NAMES:
        return _DOW_NAMES.index(token)
    if token.isdigit() and 0 <= int(token) <= 7:
        return int(token) % 7
    raise InvalidScheduleError(schedule, f"invalid day-of-week '{token}'")


def _translate_day_of_week(field: str, schedule: str) -> str:
    """
    Convert a crontab day-of-week field into APScheduler's name form.

    APScheduler numbers weekdays from Monday, so numeric crontab values and
    ranges are expanded to explicit day names.
    """
    if field in ("*", "?"):
        return "*"

    days = set()
    for part in field.split(","):
        base, _, step_text = part.partition("/")
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidScheduleError(schedule, f"invalid day-of-week step '{part}'")
            step = int(step_text)

        if base in ("*", "?"):
            start, end = 0, 6
        elif "-" in base:
            low, _, high = base.partition("-")
            start, end = _dow_value(low, schedule), _dow_value(high, schedule)
            if low == "7":
                start = 7
            if high == "7":
                end = 7
            if end < start:
                raise InvalidScheduleError(schedule, f"invalid day-of-week range '{base}'")
        else:
            start = _dow_value(base, schedule)
            end = 6 if step_text else start

        days.update(value % 7 for value in range(start, end + 1, step))

    # Monday-first order reads naturally in APScheduler's repr
    ordered = sorted(days, key=lambda d: (d + 6) % 7)
    return ",".join(_DOW_NAMES[d] for d in ordered)


def _split_fields(schedule: str) -> List[str]:
    expression = MACROS.get(schedule.strip().lower(), schedule)
    fields = expression.split()
    if len(fields) == 5:
        return ["0"] + fields
    if len(fields) == 6:
        return fields
    raise InvalidScheduleError(schedule, f"expected 5 or 6 fields, got {len(fields)}")


def _resolve_timezone(tz: TimezoneLike) -> Union[str, tzinfo]:
    return tz if tz is not None else settings.jobs_timezone


def build_triggers(schedule: str, tz: TimezoneLike = None, start: Optional[datetime] = None) -> List[CronTrigger]:
    """
    Build the CronTrigger(s) for a cron expression.

    Two triggers are returned when both day fields are restricted, since
    crontab fires when either matches.

    Raises:
        InvalidScheduleError: If any field is malformed
    """
    second, minute, hour, day, month, dow = _split_fields(schedule)
    day_of_week = _translate_day_of_week(dow, schedule)
    day = "*" if day == "?" else day
    timezone_ = _resolve_timezone(tz)

    variants = [(day, day_of_week)]
    if day != "*" and day_of_week != "*":
        variants = [(day, "*"), ("*", day_of_week)]

    triggers = []
    for day_field, dow_field in variants:
        try:
            triggers.append(CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day_field,
                month=month,
                day_of_week=dow_field,
                timezone=timezone_,
                start_date=start,
            ))
        except (ValueError, TypeError, LookupError) as e:
            raise InvalidScheduleError(schedule, str(e)) from e
    return triggers


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_next_run(
    schedule: Optional[str],
    interval_seconds: Optional[int],
    from_: Optional[datetime] = None,
    tz: TimezoneLike = None,
) -> datetime:
    """
    Compute the next run strictly after `from_`.

    Args:
        schedule: Cron expression or interval marker
        interval_seconds: Cadence for interval schedules
        from_: Reference time (defaults to now; naive values are UTC)
        tz: Timezone cron fields are evaluated in (defaults to settings.jobs_timezone)

    Returns:
        Aware UTC datetime

    Raises:
        InvalidScheduleError: If the schedule is malformed or can never fire
    """
    reference = _as_utc(from_) if from_ is not None else datetime.now(timezone.utc)

    if is_interval_schedule(schedule):
        if not interval_seconds or interval_seconds <= 0:
            raise InvalidScheduleError(schedule or "interval", "interval_seconds must be a positive integer")
        return reference + timedelta(seconds=interval_seconds)

    candidates = []
    for trigger in build_triggers(schedule, tz, start=reference):
        # CronTrigger returns the first match >= its argument
        fire_time = trigger.get_next_fire_time(None, reference + timedelta(microseconds=1))
        if fire_time is not None:
            candidates.append(_as_utc(fire_time))

    if not candidates:
        raise InvalidScheduleError(schedule, "expression never fires")
    return min(candidates)


def validate_schedule(schedule: Optional[str], interval_seconds: Optional[int]) -> None:
    """Raise InvalidScheduleError unless the schedule can produce a next run."""
    compute_next_run(schedule, interval_seconds)
