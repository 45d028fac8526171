"""Cron expression building and schedule-input parsing.

Expressions use the standard 5-field crontab grammar::

    minute hour day-of-month month day-of-week

with Sunday = 0 in the day-of-week field.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from guildbell.core.cron.errors import ValidationError

if TYPE_CHECKING:
    from guildbell.core.cron.types import ReminderJob

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

_DAY_MAP = {
    "sunday": 0, "sun": 0,
    "monday": 1, "mon": 1,
    "tuesday": 2, "tue": 2, "tues": 2,
    "wednesday": 3, "wed": 3,
    "thursday": 4, "thu": 4, "thur": 4, "thurs": 4,
    "friday": 5, "fri": 5,
    "saturday": 6, "sat": 6,
}

_DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# APScheduler names for crontab day numbers (0 and 7 are both Sunday).
_APS_DAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ValidationError(f"Invalid {name}: {value}. Must be between {low}-{high}.")


def build_daily(minute: int, hour: int) -> str:
    _check_range("minute", minute, 0, 59)
    _check_range("hour", hour, 0, 23)
    return f"{minute} {hour} * * *"


def build_weekly(minute: int, hour: int, day_of_week: int) -> str:
    """Every week on ``day_of_week`` (0=Sunday … 6=Saturday) at hour:minute.

    >>> build_weekly(0, 12, 1)
    '0 12 * * 1'
    """
    _check_range("minute", minute, 0, 59)
    _check_range("hour", hour, 0, 23)
    _check_range("day_of_week", day_of_week, 0, 6)
    expression = f"{minute} {hour} * * {day_of_week}"
    logger.debug(f"Built cron expression {expression!r}")
    return expression


def build_monthly(minute: int, hour: int, day_of_month: int) -> str:
    """Every month on ``day_of_month``.

    Days 29-31 are accepted for every month; months lacking the day are
    simply skipped by the trigger.
    """
    _check_range("minute", minute, 0, 59)
    _check_range("hour", hour, 0, 23)
    _check_range("day_of_month", day_of_month, 1, 31)
    return f"{minute} {hour} {day_of_month} * *"


def build_yearly(minute: int, hour: int, day_of_month: int, month: int) -> str:
    _check_range("minute", minute, 0, 59)
    _check_range("hour", hour, 0, 23)
    _check_range("day_of_month", day_of_month, 1, 31)
    _check_range("month", month, 1, 12)
    return f"{minute} {hour} {day_of_month} {month} *"


def build_for_reminder(job: ReminderJob) -> str | None:
    """Cron expression for a recurring reminder, None for one-shot jobs."""
    cadence = job.cadence.value
    if cadence == "daily":
        return build_daily(job.minute, job.hour)
    if cadence == "weekly":
        return build_weekly(job.minute, job.hour, job.day_of_week)
    if cadence == "monthly":
        return build_monthly(job.minute, job.hour, job.day_of_month)
    if cadence == "yearly":
        return build_yearly(job.minute, job.hour, job.day_of_month, job.month)
    return None


def parse_time_string(time_string: str) -> tuple[int, int]:
    """Parse ``"HH:MM"`` or ``"H:MM"`` into ``(hour, minute)``."""
    match = _TIME_RE.match(time_string.strip()) if isinstance(time_string, str) else None
    if not match:
        raise ValidationError(
            f'Invalid time format: "{time_string}". Expected HH:MM (e.g. "14:30" or "9:00").'
        )
    hour, minute = int(match.group(1)), int(match.group(2))
    _check_range("hour", hour, 0, 23)
    _check_range("minute", minute, 0, 59)
    return hour, minute


def parse_day_name(day_name: str) -> int:
    """Day name or abbreviation (case-insensitive) to 0=Sunday … 6=Saturday."""
    day = _DAY_MAP.get(day_name.strip().lower()) if isinstance(day_name, str) else None
    if day is None:
        raise ValidationError(
            f'Invalid day name: "{day_name}". Expected a day like "Monday", "mon" or "Friday".'
        )
    return day


def format_day_name(day_of_week: int) -> str:
    _check_range("day_of_week", day_of_week, 0, 6)
    return _DAY_NAMES[day_of_week]


def is_valid_timezone(timezone: str) -> bool:
    """True if the zoneinfo database knows ``timezone``."""
    if not isinstance(timezone, str) or not timezone.strip():
        return False
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def get_zone(timezone: str) -> ZoneInfo:
    """Resolve an IANA name, raising ValidationError for unknown zones."""
    if not is_valid_timezone(timezone):
        raise ValidationError(f"Invalid timezone: {timezone!r}")
    return ZoneInfo(timezone)


def crontab_trigger(expression: str, timezone: str) -> CronTrigger:
    """Build an APScheduler CronTrigger from a standard crontab expression.

    APScheduler numbers weekdays from Monday, so numeric day-of-week values
    are rewritten to day names before the trigger is built.
    """
    fields = expression.split() if isinstance(expression, str) else []
    if len(fields) != 5:
        raise ValidationError(f"Invalid cron expression {expression!r}: expected 5 fields")
    minute, hour, day, month, day_of_week = fields
    zone = get_zone(timezone)
    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_translate_day_of_week(day_of_week),
            timezone=zone,
        )
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid cron expression {expression!r}: {e}") from e


def _translate_day_of_week(field: str) -> str:
    if field == "*":
        return field
    days: list[int] = []
    for part in field.split(","):
        base, _, step_text = part.partition("/")
        step = int(step_text) if step_text.isdigit() else 1
        if step_text and not step_text.isdigit():
            raise ValueError(f"bad step in day-of-week field: {part!r}")
        if base == "*":
            start, end = 0, 6
        elif "-" in base:
            low, _, high = base.partition("-")
            start, end = _dow_number(low), _dow_number(high)
        else:
            start = _dow_number(base)
            end = 6 if step_text else start
        if start > end:
            raise ValueError(f"day-of-week range out of order: {part!r}")
        days.extend(range(start, end + 1, step))
    names: list[str] = []
    for d in days:
        name = _APS_DAYS[d]
        if name not in names:
            names.append(name)
    return ",".join(names)


def _dow_number(token: str) -> int:
    token = token.strip().lower()
    if token.isdigit():
        value = int(token)
        if not 0 <= value <= 7:
            raise ValueError(f"day-of-week out of range: {token}")
        return value
    if token in _DAY_MAP:
        return _DAY_MAP[token]
    raise ValueError(f"unknown day-of-week: {token!r}")
