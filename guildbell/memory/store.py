"""SQLite store for guildbell — reminders and per-guild event announcement configs.

Two tables:
    reminders, event_configs

Rows are the source of truth; the scheduler only keeps timer handles.
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pydantic
from loguru import logger

from guildbell.core.cron.errors import StoreError, ValidationError
from guildbell.core.cron.expressions import is_valid_timezone
from guildbell.core.cron.types import (
    DEFAULT_TIMEZONE,
    AnnouncementConfig,
    Cadence,
    ReminderJob,
)
from guildbell.core.cron.windows import next_trigger_for


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class ReminderStore:
    """SQLite reminders + event configs — single source of truth."""

    def __init__(self, db_path: str = "data/guildbell.db", default_timezone: str = DEFAULT_TIMEZONE):
        self.db_path = db_path
        self.default_timezone = default_timezone
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"ReminderStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            self._migrate(conn)
            conn.commit()

    def _migrate(self, conn) -> None:
        """Add columns missing in existing databases."""
        cols = {row[1] for row in conn.execute("PRAGMA table_info(reminders)").fetchall()}
        for col, ddl in [
            ("timezone", "TEXT"),
            ("firing_started_at", "TEXT"),
            ("day_of_month", "INTEGER"),
            ("month", "INTEGER"),
        ]:
            if col not in cols:
                conn.execute(f"ALTER TABLE reminders ADD COLUMN {col} {ddl}")

    # ════════════════════════════════════════════════════════════
    # REMINDERS
    # ════════════════════════════════════════════════════════════

    def add_reminder(
        self,
        tenant_id: str,
        channel_id: str,
        user_id: str,
        message: str,
        cadence: Cadence | str,
        hour: int,
        minute: int,
        day_of_week: int | None = None,
        day_of_month: int | None = None,
        month: int | None = None,
        next_trigger_at: datetime | None = None,
        timezone: str | None = None,
        reminder_id: str | None = None,
    ) -> ReminderJob:
        """Validate and insert a reminder. Recurring jobs get their first trigger computed."""
        if timezone is not None and not is_valid_timezone(timezone):
            raise ValidationError(f"Invalid timezone: {timezone!r}")
        try:
            job = ReminderJob(
                id=reminder_id or str(uuid.uuid4())[:8],
                tenant_id=tenant_id,
                channel_id=channel_id,
                user_id=user_id,
                message=message,
                cadence=cadence,
                hour=hour,
                minute=minute,
                day_of_week=day_of_week,
                day_of_month=day_of_month,
                month=month,
                next_trigger_at=next_trigger_at,
                timezone=timezone,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(str(e)) from e

        if job.is_recurring and job.next_trigger_at is None:
            job.next_trigger_at = next_trigger_for(job, job.timezone or self.default_timezone)

        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO reminders
                   (id, tenant_id, channel_id, user_id, message, cadence, hour, minute,
                    day_of_week, day_of_month, month, next_trigger_at, timezone)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    job.id, job.tenant_id, job.channel_id, job.user_id, job.message,
                    job.cadence.value, job.hour, job.minute, job.day_of_week,
                    job.day_of_month, job.month, _iso(job.next_trigger_at), job.timezone,
                ),
            )
            conn.commit()
        logger.info(f"Reminder stored: {job.id} (tenant={tenant_id}, cadence={job.cadence.value})")
        return job

    def load_active_reminders(self) -> list[ReminderJob]:
        """All active reminders, soonest first. Unreadable rows are logged and skipped."""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM reminders WHERE active = 1 ORDER BY next_trigger_at"
            ).fetchall()
        return self._rows_to_jobs(rows)

    def list_reminders(self, tenant_id: str | None = None) -> list[ReminderJob]:
        if tenant_id is None:
            return self.load_active_reminders()
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM reminders WHERE active = 1 AND tenant_id = ?
                   ORDER BY next_trigger_at""",
                (tenant_id,),
            ).fetchall()
        return self._rows_to_jobs(rows)

    def get_reminder(self, reminder_id: str) -> ReminderJob | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ? AND active = 1", (reminder_id,)
            ).fetchone()
        if row is None:
            return None
        return _row_to_job(row)

    def delete_reminder(self, reminder_id: str, tenant_id: str) -> bool:
        """Deactivate a reminder. Scoped by tenant so guilds cannot touch each other's rows."""
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE reminders SET active = 0
                   WHERE id = ? AND tenant_id = ? AND active = 1""",
                (reminder_id, tenant_id),
            )
            conn.commit()
        return cur.rowcount > 0

    def mark_firing(self, reminder_id: str, started_at: datetime) -> None:
        """Record that a one-time reminder is being delivered right now."""
        with self._get_conn() as conn:
            conn.execute(
                "UPDATE reminders SET firing_started_at = ? WHERE id = ?",
                (_iso(started_at), reminder_id),
            )
            conn.commit()

    def advance_recurrence(self, reminder_id: str) -> ReminderJob | None:
        """Move ``next_trigger_at`` to the following occurrence.

        One-time reminders are deactivated instead. Returns the updated job,
        or None if it is missing or inactive.
        """
        job = self.get_reminder(reminder_id)
        if job is None:
            return None
        with self._get_conn() as conn:
            if job.cadence is Cadence.ONCE:
                conn.execute("UPDATE reminders SET active = 0 WHERE id = ?", (reminder_id,))
                conn.commit()
                return None
            job.next_trigger_at = next_trigger_for(job, job.timezone or self.default_timezone)
            conn.execute(
                "UPDATE reminders SET next_trigger_at = ? WHERE id = ?",
                (_iso(job.next_trigger_at), reminder_id),
            )
            conn.commit()
        return job

    def _rows_to_jobs(self, rows) -> list[ReminderJob]:
        jobs = []
        for row in rows:
            try:
                jobs.append(_row_to_job(row))
            except pydantic.ValidationError as e:
                logger.error(f"Skipping unreadable reminder row {row['id']}: {e}")
        return jobs

    # ════════════════════════════════════════════════════════════
    # EVENT CONFIGS
    # ════════════════════════════════════════════════════════════

    def upsert_announcement_config(
        self,
        tenant_id: str,
        channel_id: str,
        location: str,
        user_id: str = "",
        schedule_day: int | None = None,
        schedule_hour: int | None = None,
        schedule_minute: int | None = None,
        timezone: str | None = None,
        is_enabled: bool | None = None,
    ) -> AnnouncementConfig:
        """Create a guild's config, or update it keeping unspecified fields."""
        existing = self.get_announcement_config(tenant_id)
        base: dict[str, Any] = existing.model_dump() if existing else {}
        fields = {
            "schedule_day": schedule_day,
            "schedule_hour": schedule_hour,
            "schedule_minute": schedule_minute,
            "timezone": timezone,
            "is_enabled": is_enabled,
        }
        base.update({k: v for k, v in fields.items() if v is not None})
        base.update(tenant_id=tenant_id, channel_id=channel_id, location=location, user_id=user_id)

        if not is_valid_timezone(base.get("timezone", DEFAULT_TIMEZONE)):
            raise ValidationError(f"Invalid timezone: {base['timezone']!r}")
        try:
            config = AnnouncementConfig(**base)
        except pydantic.ValidationError as e:
            raise ValidationError(str(e)) from e

        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO event_configs
                   (tenant_id, user_id, channel_id, location, schedule_day, schedule_hour,
                    schedule_minute, timezone, is_enabled, last_announced_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(tenant_id) DO UPDATE SET
                       user_id = excluded.user_id,
                       channel_id = excluded.channel_id,
                       location = excluded.location,
                       schedule_day = excluded.schedule_day,
                       schedule_hour = excluded.schedule_hour,
                       schedule_minute = excluded.schedule_minute,
                       timezone = excluded.timezone,
                       is_enabled = excluded.is_enabled,
                       updated_at = CURRENT_TIMESTAMP""",
                (
                    config.tenant_id, config.user_id, config.channel_id, config.location,
                    config.schedule_day, config.schedule_hour, config.schedule_minute,
                    config.timezone, int(config.is_enabled), _iso(config.last_announced_at),
                ),
            )
            conn.commit()
        logger.info(f"Event config saved for tenant={tenant_id}: {config.describe_schedule()}")
        return config

    def get_announcement_config(self, tenant_id: str) -> AnnouncementConfig | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM event_configs WHERE tenant_id = ?", (tenant_id,)
            ).fetchone()
        return _row_to_config(row) if row else None

    def load_enabled_announcement_configs(self) -> list[AnnouncementConfig]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM event_configs WHERE is_enabled = 1 ORDER BY tenant_id"
            ).fetchall()
        return self._rows_to_configs(rows)

    def list_announcement_configs(self) -> list[AnnouncementConfig]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT * FROM event_configs ORDER BY tenant_id").fetchall()
        return self._rows_to_configs(rows)

    def set_announcement_enabled(self, tenant_id: str, enabled: bool) -> AnnouncementConfig | None:
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE event_configs SET is_enabled = ?, updated_at = CURRENT_TIMESTAMP
                   WHERE tenant_id = ?""",
                (int(enabled), tenant_id),
            )
            conn.commit()
        if cur.rowcount == 0:
            return None
        return self.get_announcement_config(tenant_id)

    def remove_announcement_config(self, tenant_id: str) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM event_configs WHERE tenant_id = ?", (tenant_id,))
            conn.commit()
        return cur.rowcount > 0

    def mark_announced(self, tenant_id: str, announced_at: datetime) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE event_configs
                   SET last_announced_at = ?, updated_at = CURRENT_TIMESTAMP
                   WHERE tenant_id = ?""",
                (_iso(announced_at), tenant_id),
            )
            conn.commit()

    def _rows_to_configs(self, rows) -> list[AnnouncementConfig]:
        configs = []
        for row in rows:
            try:
                configs.append(_row_to_config(row))
            except pydantic.ValidationError as e:
                logger.error(f"Skipping unreadable event config for tenant={row['tenant_id']}: {e}")
        return configs


def _row_to_job(row: sqlite3.Row) -> ReminderJob:
    return ReminderJob(
        id=row["id"],
        tenant_id=row["tenant_id"],
        channel_id=row["channel_id"],
        user_id=row["user_id"],
        message=row["message"],
        cadence=row["cadence"],
        hour=row["hour"],
        minute=row["minute"],
        day_of_week=row["day_of_week"],
        day_of_month=row["day_of_month"],
        month=row["month"],
        next_trigger_at=row["next_trigger_at"],
        timezone=row["timezone"],
        firing_started_at=row["firing_started_at"],
    )


def _row_to_config(row: sqlite3.Row) -> AnnouncementConfig:
    return AnnouncementConfig(
        tenant_id=row["tenant_id"],
        user_id=row["user_id"] or "",
        channel_id=row["channel_id"],
        location=row["location"],
        schedule_day=row["schedule_day"],
        schedule_hour=row["schedule_hour"],
        schedule_minute=row["schedule_minute"],
        timezone=row["timezone"],
        is_enabled=bool(row["is_enabled"]),
        last_announced_at=row["last_announced_at"],
    )


_SCHEMA = """
-- 1. Reminders (once / daily / weekly / monthly / yearly)
CREATE TABLE IF NOT EXISTS reminders (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    message TEXT NOT NULL,
    cadence TEXT NOT NULL DEFAULT 'once',
    hour INTEGER NOT NULL,
    minute INTEGER NOT NULL,
    day_of_week INTEGER,
    day_of_month INTEGER,
    month INTEGER,
    next_trigger_at TEXT,
    timezone TEXT,
    firing_started_at TEXT,
    active INTEGER DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_reminders_tenant
    ON reminders(tenant_id, active);

-- 2. Event announcement configs (one per guild)
CREATE TABLE IF NOT EXISTS event_configs (
    tenant_id TEXT PRIMARY KEY,
    user_id TEXT,
    channel_id TEXT NOT NULL,
    location TEXT NOT NULL,
    schedule_day INTEGER DEFAULT 1,
    schedule_hour INTEGER DEFAULT 12,
    schedule_minute INTEGER DEFAULT 0,
    timezone TEXT DEFAULT 'America/Los_Angeles',
    is_enabled INTEGER DEFAULT 1,
    last_announced_at TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""
