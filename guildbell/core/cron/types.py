"""Scheduling types — reminder jobs, announcement configs and the store contract."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, Field, model_validator

from guildbell.core.cron.windows import next_weekly_occurrence

DEFAULT_TIMEZONE = "America/Los_Angeles"

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class Cadence(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ReminderJob(BaseModel):
    """One user's scheduled notification — mirrors the SQLite reminders table."""

    id: str
    tenant_id: str
    channel_id: str
    user_id: str
    message: str
    cadence: Cadence = Cadence.ONCE
    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)
    day_of_week: int | None = Field(default=None, ge=0, le=6)  # 0 = Sunday
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    month: int | None = Field(default=None, ge=1, le=12)
    next_trigger_at: datetime | None = None
    timezone: str | None = None  # None = scheduler default
    firing_started_at: datetime | None = None

    @model_validator(mode="after")
    def _check_cadence_fields(self) -> ReminderJob:
        expected = {
            Cadence.ONCE: set(),
            Cadence.DAILY: set(),
            Cadence.WEEKLY: {"day_of_week"},
            Cadence.MONTHLY: {"day_of_month"},
            Cadence.YEARLY: {"day_of_month", "month"},
        }[self.cadence]
        present = {
            name
            for name in ("day_of_week", "day_of_month", "month")
            if getattr(self, name) is not None
        }
        if present != expected:
            raise ValueError(
                f"{self.cadence.value} reminder expects fields {sorted(expected)}, "
                f"got {sorted(present)}"
            )
        if self.cadence is Cadence.ONCE and self.next_trigger_at is None:
            raise ValueError("once reminder requires next_trigger_at")
        return self

    @property
    def key(self) -> str:
        return f"reminder:{self.id}"

    @property
    def time_of_day(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    @property
    def is_recurring(self) -> bool:
        return self.cadence is not Cadence.ONCE


class AnnouncementConfig(BaseModel):
    """Weekly local-events broadcast settings for one guild."""

    tenant_id: str
    channel_id: str
    location: str
    user_id: str = ""
    schedule_day: int = Field(default=1, ge=0, le=6)  # Monday
    schedule_hour: int = Field(default=12, ge=0, le=23)
    schedule_minute: int = Field(default=0, ge=0, le=59)
    timezone: str = DEFAULT_TIMEZONE
    is_enabled: bool = True
    last_announced_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"events:{self.tenant_id}"

    def describe_schedule(self) -> str:
        """Human-readable schedule, e.g. ``Mondays at 12:00 PM (America/Los_Angeles)``."""
        day = DAY_NAMES[self.schedule_day]
        hour = self.schedule_hour % 12 or 12
        ampm = "AM" if self.schedule_hour < 12 else "PM"
        return f"{day}s at {hour}:{self.schedule_minute:02d} {ampm} ({self.timezone})"

    def next_run_time(self, now: datetime | None = None) -> datetime:
        """Next civil occurrence of the configured slot in the guild's timezone."""
        return next_weekly_occurrence(
            self.schedule_day, self.schedule_hour, self.schedule_minute,
            self.timezone, now=now,
        )


class LocalEvent(BaseModel):
    """A single discovered local event."""

    title: str
    description: str = ""
    start: datetime
    end: datetime | None = None
    location: str = ""
    url: str | None = None
    source: str = ""


class Store(Protocol):
    """Narrow persistence contract consumed by the Scheduler."""

    def load_active_reminders(self) -> list[ReminderJob]: ...

    def load_enabled_announcement_configs(self) -> list[AnnouncementConfig]: ...

    def get_reminder(self, reminder_id: str) -> ReminderJob | None: ...

    def get_announcement_config(self, tenant_id: str) -> AnnouncementConfig | None: ...

    def delete_reminder(self, reminder_id: str, tenant_id: str) -> bool: ...

    def mark_firing(self, reminder_id: str, started_at: datetime) -> None: ...

    def mark_announced(self, tenant_id: str, announced_at: datetime) -> None: ...

    def advance_recurrence(self, reminder_id: str) -> ReminderJob | None: ...
