"""Cron scheduling — APScheduler bridge for reminders and event announcements."""

from guildbell.core.cron.errors import (
    DiscoveryError,
    GuildbellError,
    NotifyError,
    StaleJobError,
    StoreError,
    ValidationError,
)
from guildbell.core.cron.registry import APSchedulerTimer, JobRegistry, ScheduledHandle
from guildbell.core.cron.scheduler import Scheduler
from guildbell.core.cron.types import AnnouncementConfig, Cadence, LocalEvent, ReminderJob

__all__ = [
    "APSchedulerTimer",
    "AnnouncementConfig",
    "Cadence",
    "DiscoveryError",
    "GuildbellError",
    "JobRegistry",
    "LocalEvent",
    "NotifyError",
    "ReminderJob",
    "ScheduledHandle",
    "Scheduler",
    "StaleJobError",
    "StoreError",
    "ValidationError",
]
