"""Scheduler — store-backed reminder and announcement scheduling.

The store is the source of truth. The scheduler only holds timer handles
(via JobRegistry); every firing re-reads its row so edits made after
registration are honoured.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from guildbell.core.cron.errors import DiscoveryError, StaleJobError, StoreError
from guildbell.core.cron.expressions import build_for_reminder, build_weekly
from guildbell.core.cron.registry import (
    APSchedulerTimer,
    JobRegistry,
    ScheduledHandle,
    Timer,
    new_job_id,
)
from guildbell.core.cron.types import (
    DEFAULT_TIMEZONE,
    AnnouncementConfig,
    Cadence,
    ReminderJob,
    Store,
)
from guildbell.core.cron.windows import event_window

if TYPE_CHECKING:
    from guildbell.core.channels.base import Notifier
    from guildbell.core.config.schema import Config
    from guildbell.core.events.service import EventDiscovery


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def reminder_text(job: ReminderJob) -> str:
    return f"<@{job.user_id}> ⏰ Reminder: **{job.message}**"


def fingerprint(item: ReminderJob | AnnouncementConfig) -> str:
    """Serialized form of the fields that decide how ``item`` is armed."""
    if isinstance(item, ReminderJob):
        exclude = {"firing_started_at"}
        if item.is_recurring:
            exclude.add("next_trigger_at")
    else:
        exclude = {"last_announced_at"}
    return item.model_dump_json(exclude=exclude)


class Scheduler:
    """Bridge between the reminder/announcement store and the timer.

    Job keys are ``reminder:<id>`` and ``events:<tenant_id>``. Each key has
    at most one live registration; registering again replaces it.
    """

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        events: EventDiscovery | None = None,
        timer: Timer | None = None,
        default_timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] | None = None,
        sync_interval_s: int = 60,
    ):
        self.store = store
        self.notifier = notifier
        self.events = events
        self.default_timezone = default_timezone
        self._timer = timer or APSchedulerTimer()
        self._jobs = JobRegistry()
        self._clock = clock or _utcnow
        self.sync_interval_s = sync_interval_s
        self._fingerprints: dict[str, str] = {}
        self._sync_handle: ScheduledHandle | None = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: Store,
        notifier: Notifier,
        events: EventDiscovery | None = None,
    ) -> Scheduler:
        return cls(
            store,
            notifier,
            events=events,
            timer=APSchedulerTimer(misfire_grace_s=config.scheduler.misfire_grace_s),
            default_timezone=config.scheduler.default_timezone,
            sync_interval_s=config.scheduler.sync_interval_s,
        )

    # ── Lifecycle ────────────────────────────────────────────

    async def initialize(self) -> dict[str, int]:
        """Load active reminders and enabled announcement configs, then start the timer.

        One bad job never stops the others from loading.
        """
        summary = {"reminders": 0, "announcements": 0, "redelivered": 0, "stale": 0, "failed": 0}

        try:
            reminders = self.store.load_active_reminders()
        except Exception as e:
            logger.error(f"Failed to load reminders: {e}")
            reminders = []

        for job in reminders:
            try:
                if job.cadence is Cadence.ONCE and job.firing_started_at is not None:
                    # Crashed between firing and delete: deliver again (at-least-once).
                    logger.warning(
                        f"Reminder {job.id} (tenant={job.tenant_id}) was mid-delivery "
                        f"at {job.firing_started_at.isoformat()}, redelivering"
                    )
                    await self._fire_once(job.id)
                    summary["redelivered"] += 1
                    continue
                self.schedule_reminder(job)
                summary["reminders"] += 1
            except StaleJobError as e:
                logger.warning(f"Skipping stale reminder (tenant={job.tenant_id}): {e}")
                summary["stale"] += 1
            except Exception as e:
                logger.error(
                    f"Failed to schedule reminder {job.id} "
                    f"(tenant={job.tenant_id}, cadence={job.cadence.value}): {e}"
                )
                summary["failed"] += 1

        try:
            configs = self.store.load_enabled_announcement_configs()
        except Exception as e:
            logger.error(f"Failed to load announcement configs: {e}")
            configs = []

        for config in configs:
            try:
                self.schedule_announcement(config)
                summary["announcements"] += 1
            except Exception as e:
                logger.error(f"Failed to schedule announcements for tenant={config.tenant_id}: {e}")
                summary["failed"] += 1

        if self.sync_interval_s > 0:
            self._sync_handle = self._timer.arm_interval(
                "sync", timedelta(seconds=self.sync_interval_s), self.sync
            )
        self._timer.start()
        logger.info(
            f"Scheduler started with {summary['reminders']} reminders, "
            f"{summary['announcements']} announcements "
            f"({summary['stale']} stale, {summary['failed']} failed)"
        )
        return summary

    async def shutdown(self) -> None:
        if self._sync_handle is not None:
            self._sync_handle.cancel()
            self._sync_handle = None
        self._jobs.stop_all()
        self._fingerprints.clear()
        self._timer.shutdown()
        logger.info("Scheduler stopped")

    async def sync(self) -> dict[str, int]:
        """Reconcile registrations with the store.

        Rows written by another process (the CLI) are armed, rows deleted or
        disabled there are unscheduled, and rows whose schedule did not change
        keep their timers. Runs every ``sync_interval_s`` once initialized.
        """
        summary = {"added": 0, "updated": 0, "removed": 0, "stale": 0, "failed": 0}
        try:
            reminders = self.store.load_active_reminders()
            configs = self.store.load_enabled_announcement_configs()
        except Exception as e:
            logger.error(f"Store sync skipped, rows could not be loaded: {e}")
            return summary

        desired: set[str] = set()
        for job in reminders:
            desired.add(job.key)
            known = self._fingerprints.get(job.key)
            if known == fingerprint(job):
                continue
            if known is None and job.firing_started_at is not None:
                continue  # redelivered by the next initialize
            try:
                self.schedule_reminder(job)
                summary["updated" if known else "added"] += 1
            except StaleJobError as e:
                logger.warning(f"Skipping stale reminder (tenant={job.tenant_id}): {e}")
                summary["stale"] += 1
            except Exception as e:
                logger.error(f"Failed to sync reminder {job.id} (tenant={job.tenant_id}): {e}")
                self._fingerprints[job.key] = fingerprint(job)
                summary["failed"] += 1

        for config in configs:
            desired.add(config.key)
            known = self._fingerprints.get(config.key)
            if known == fingerprint(config):
                continue
            try:
                self.schedule_announcement(config)
                summary["updated" if known else "added"] += 1
            except Exception as e:
                logger.error(f"Failed to sync announcements for tenant={config.tenant_id}: {e}")
                self._fingerprints[config.key] = fingerprint(config)
                summary["failed"] += 1

        for key in [k for k in self._fingerprints if k not in desired]:
            kind, _, ident = key.partition(":")
            if kind == "reminder":
                removed = self.remove_reminder(ident)
            else:
                removed = self.remove_event_config(ident)
            if removed:
                summary["removed"] += 1

        changes = summary["added"] + summary["updated"] + summary["removed"]
        if changes or summary["failed"]:
            logger.info(
                f"Store sync: {summary['added']} added, {summary['updated']} updated, "
                f"{summary['removed']} removed, {summary['failed']} failed"
            )
        return summary

    # ── Reminders ────────────────────────────────────────────

    def schedule_reminder(self, job: ReminderJob) -> None:
        """Register ``job`` according to its cadence.

        Raises StaleJobError (after dropping the row) when a one-time job's
        trigger time has already passed.
        """
        if job.cadence is Cadence.ONCE:
            self._schedule_once(job)
            return

        expression = build_for_reminder(job)
        tz = job.timezone or self.default_timezone
        handle = self._timer.arm_cron(job.key, expression, tz, self._fire_recurring, job.id)
        self._jobs.register(job.key, handle)
        self._fingerprints[job.key] = fingerprint(job)
        logger.info(
            f"Reminder scheduled: {job.id} (tenant={job.tenant_id}, "
            f"cadence={job.cadence.value}, cron={expression!r}, tz={tz})"
        )

    def _schedule_once(self, job: ReminderJob) -> None:
        trigger_at = _aware(job.next_trigger_at)
        delay = trigger_at - self._clock()
        if delay.total_seconds() <= 0:
            self._jobs.remove(job.key)
            self._fingerprints.pop(job.key, None)
            self._drop_stale(job)
            raise StaleJobError(job.id, trigger_at.isoformat())

        job_id = new_job_id(job.key)
        handle = self._timer.arm(job.key, delay, self._fire_once, job.id, job_id, job_id=job_id)
        self._jobs.register(job.key, handle)
        self._fingerprints[job.key] = fingerprint(job)
        logger.info(
            f"One-time reminder scheduled: {job.id} (tenant={job.tenant_id}) "
            f"at {trigger_at.isoformat()} (in {int(delay.total_seconds())}s)"
        )

    def _drop_stale(self, job: ReminderJob) -> None:
        try:
            self.store.delete_reminder(job.id, job.tenant_id)
        except StoreError as e:
            logger.error(f"Failed to drop stale reminder {job.id}: {e}")

    def add_reminder(self, reminder_id: str) -> bool:
        """Fetch one reminder and schedule it. Returns True if it is now registered.

        ValidationError propagates to the caller.
        """
        try:
            job = self.store.get_reminder(reminder_id)
        except StoreError as e:
            logger.error(f"Failed to load reminder {reminder_id}: {e}")
            return False
        if job is None:
            logger.warning(f"Reminder {reminder_id} not found, nothing to schedule")
            return False
        try:
            self.schedule_reminder(job)
        except StaleJobError as e:
            logger.warning(f"Not scheduling reminder (tenant={job.tenant_id}): {e}")
            return False
        return True

    def remove_reminder(self, reminder_id: str) -> bool:
        key = f"reminder:{reminder_id}"
        self._fingerprints.pop(key, None)
        removed = self._jobs.remove(key)
        if removed:
            logger.info(f"Reminder unscheduled: {reminder_id}")
        return removed

    async def _fire_once(self, reminder_id: str, job_id: str | None = None) -> None:
        key = f"reminder:{reminder_id}"
        try:
            job = self.store.get_reminder(reminder_id)
            if job is None:
                logger.info(f"One-time reminder {reminder_id} no longer exists, skipping")
                return
            self.store.mark_firing(job.id, self._clock())
            await self.notifier.send(job.channel_id, reminder_text(job))
            self.store.delete_reminder(job.id, job.tenant_id)
            logger.info(f"One-time reminder {job.id} delivered to {job.channel_id} and deleted")
        except Exception as e:
            logger.error(f"One-time reminder {reminder_id} failed: {e}")
        finally:
            if job_id is not None:
                self._jobs.release(key, job_id)

    async def _fire_recurring(self, reminder_id: str) -> None:
        try:
            job = self.store.get_reminder(reminder_id)
            if job is None:
                logger.warning(f"Reminder {reminder_id} no longer exists, unscheduling")
                self.remove_reminder(reminder_id)
                return
            await self.notifier.send(job.channel_id, reminder_text(job))
            self.store.advance_recurrence(job.id)
            logger.info(
                f"Reminder {job.id} delivered (tenant={job.tenant_id}, cadence={job.cadence.value})"
            )
        except Exception as e:
            logger.error(f"Reminder {reminder_id} failed: {e}")

    # ── Announcements ────────────────────────────────────────

    def schedule_announcement(self, config: AnnouncementConfig) -> None:
        expression = build_weekly(
            config.schedule_minute, config.schedule_hour, config.schedule_day
        )
        handle = self._timer.arm_cron(
            config.key, expression, config.timezone, self._fire_announcement, config.tenant_id
        )
        self._jobs.register(config.key, handle)
        self._fingerprints[config.key] = fingerprint(config)
        logger.info(
            f"Event announcements scheduled for tenant={config.tenant_id}: "
            f"{expression!r} ({config.timezone})"
        )

    def upsert_event_config(self, tenant_id: str) -> bool:
        """Re-read a guild's config and (re)register it, or unregister it if disabled.

        Returns True if an announcement job is registered afterwards.
        """
        try:
            config = self.store.get_announcement_config(tenant_id)
        except StoreError as e:
            logger.error(f"Failed to load announcement config for tenant={tenant_id}: {e}")
            return False
        if config is None or not config.is_enabled:
            self.remove_event_config(tenant_id)
            logger.info(f"Announcements inactive for tenant={tenant_id}")
            return False
        self.schedule_announcement(config)
        return True

    def remove_event_config(self, tenant_id: str) -> bool:
        key = f"events:{tenant_id}"
        self._fingerprints.pop(key, None)
        removed = self._jobs.remove(key)
        if removed:
            logger.info(f"Event announcements unscheduled for tenant={tenant_id}")
        return removed

    async def run_announcement_now(self, tenant_id: str) -> bool:
        """Announce immediately, outside the weekly schedule. Errors propagate."""
        config = self.store.get_announcement_config(tenant_id)
        if config is None:
            return False
        await self._announce(config)
        return True

    async def _fire_announcement(self, tenant_id: str) -> None:
        try:
            config = self.store.get_announcement_config(tenant_id)
            if config is None or not config.is_enabled:
                logger.info(f"Announcement for tenant={tenant_id} skipped (missing or disabled)")
                return
            await self._announce(config)
        except Exception as e:
            logger.error(f"Event announcement failed for tenant={tenant_id}: {e}")

    async def _announce(self, config: AnnouncementConfig) -> None:
        if self.events is None:
            raise DiscoveryError("No event discovery configured")
        window = event_window(config.timezone, now=self._clock())
        events = await self.events.discover(config.location, window.start, window.end)
        payload: Any = self.events.format(events, config.location)
        await self.notifier.send(config.channel_id, payload)
        self.store.mark_announced(config.tenant_id, self._clock())
        logger.info(
            f"Announced {len(events)} event(s) for tenant={config.tenant_id} "
            f"to channel {config.channel_id}"
        )

    # ── Inspection ───────────────────────────────────────────

    def is_scheduled(self, key: str) -> bool:
        return key in self._jobs

    def scheduled_keys(self) -> list[str]:
        return self._jobs.keys()

    def next_run_time(self, key: str) -> datetime | None:
        handle = self._jobs.get(key)
        return handle.next_run_time if handle else None
