"""Event-window and next-occurrence arithmetic.

All arithmetic is civil (wall-clock) time in the target zone: aware
datetimes carry their ZoneInfo, ``+ timedelta(days=n)`` moves the calendar
date and the zone database supplies the UTC offset, so DST transitions never
shift the local hour.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, NamedTuple

from loguru import logger

from guildbell.core.cron.expressions import get_zone

if TYPE_CHECKING:
    from guildbell.core.cron.types import ReminderJob

_MONDAY = 0  # datetime.weekday()


class EventWindow(NamedTuple):
    start: datetime
    end: datetime


def _localize(now: datetime | None, timezone: str) -> datetime:
    zone = get_zone(timezone)
    if now is None:
        return datetime.now(zone)
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return now.astimezone(zone)


def next_monday_noon(timezone: str, now: datetime | None = None) -> datetime:
    """Today at 12:00 if it is Monday and not yet past noon, else next Monday 12:00."""
    local = _localize(now, timezone)
    target = local.replace(hour=12, minute=0, second=0, microsecond=0)
    weekday = local.weekday()
    if weekday == _MONDAY:
        if local <= target:
            return target
        return target + timedelta(days=7)
    return target + timedelta(days=(7 - weekday) % 7)


def following_monday_end(start: datetime, timezone: str) -> datetime:
    """``start`` + 7 civil days, at 11:59 local."""
    local = start.astimezone(get_zone(timezone))
    return (local + timedelta(days=7)).replace(hour=11, minute=59, second=0, microsecond=0)


def event_window(timezone: str, now: datetime | None = None) -> EventWindow:
    """Monday 12:00 → following Monday 11:59, both in ``timezone``."""
    start = next_monday_noon(timezone, now=now)
    end = following_monday_end(start, timezone)
    logger.debug(f"Event window for {timezone}: {start.isoformat()} → {end.isoformat()}")
    return EventWindow(start, end)


def next_weekly_occurrence(
    day_of_week: int,
    hour: int,
    minute: int,
    timezone: str,
    now: datetime | None = None,
) -> datetime:
    """Next ``day_of_week`` (0=Sunday) at hour:minute strictly after now."""
    local = _localize(now, timezone)
    candidate = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    today = (local.weekday() + 1) % 7
    if today == day_of_week and candidate > local:
        return candidate
    days = (day_of_week - today) % 7 or 7
    return candidate + timedelta(days=days)


def next_trigger_for(
    job: ReminderJob, timezone: str, now: datetime | None = None
) -> datetime | None:
    """Next civil occurrence of a reminder after ``now``.

    Monthly and yearly cadences skip months/years that lack the day, the same
    way the cron trigger does. Returns None when no date ever matches
    (e.g. February 30th).
    """
    local = _localize(now, timezone)
    cadence = job.cadence.value
    if cadence == "once":
        return job.next_trigger_at
    if cadence == "daily":
        candidate = local.replace(hour=job.hour, minute=job.minute, second=0, microsecond=0)
        return candidate if candidate > local else candidate + timedelta(days=1)
    if cadence == "weekly":
        return next_weekly_occurrence(job.day_of_week, job.hour, job.minute, timezone, now=local)

    zone = local.tzinfo
    if cadence == "monthly":
        year, month = local.year, local.month
        for _ in range(48):
            candidate = _civil(year, month, job.day_of_month, job.hour, job.minute, zone)
            if candidate is not None and candidate > local:
                return candidate
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        return None
    if cadence == "yearly":
        for year in range(local.year, local.year + 9):
            candidate = _civil(year, job.month, job.day_of_month, job.hour, job.minute, zone)
            if candidate is not None and candidate > local:
                return candidate
        return None
    raise ValueError(f"Unknown cadence: {cadence}")


def _civil(year, month, day, hour, minute, zone) -> datetime | None:
    try:
        return datetime(year, month, day, hour, minute, tzinfo=zone)
    except ValueError:
        return None
