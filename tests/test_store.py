"""Tests for guildbell.memory.store — SQLite reminders and event configs."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from guildbell.core.cron.errors import StoreError, ValidationError
from guildbell.core.cron.types import Cadence
from guildbell.memory.store import ReminderStore

FUTURE = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return ReminderStore(str(tmp_path / "test.db"))


def _add(store, **overrides):
    fields = dict(
        tenant_id="g1", channel_id="c1", user_id="u1", message="Stand-up",
        cadence="once", hour=9, minute=0, next_trigger_at=FUTURE,
    )
    fields.update(overrides)
    return store.add_reminder(**fields)


# ── Reminders ─────────────────────────────────────────────


def test_add_and_get_once(store):
    job = _add(store)
    loaded = store.get_reminder(job.id)
    assert loaded is not None
    assert loaded.cadence is Cadence.ONCE
    assert loaded.next_trigger_at == FUTURE
    assert loaded.firing_started_at is None


def test_naive_trigger_stored_as_utc(store):
    job = _add(store, next_trigger_at=datetime(2030, 1, 1, 9, 0))
    loaded = store.get_reminder(job.id)
    assert loaded.next_trigger_at.tzinfo is not None
    assert loaded.next_trigger_at == FUTURE


def test_add_recurring_computes_next_trigger(store):
    job = _add(store, cadence="weekly", day_of_week=1, next_trigger_at=None, timezone="Europe/Istanbul")
    assert job.next_trigger_at is not None
    assert job.next_trigger_at > datetime.now(timezone.utc)
    assert store.get_reminder(job.id).timezone == "Europe/Istanbul"


@pytest.mark.parametrize(
    "overrides",
    [
        {"cadence": "weekly", "next_trigger_at": None},
        {"cadence": "hourly"},
        {"cadence": "once", "next_trigger_at": None},
        {"hour": 24},
        {"timezone": "Mars/Olympus_Mons"},
    ],
)
def test_add_invalid_reminder(store, overrides):
    with pytest.raises(ValidationError):
        _add(store, **overrides)
    assert store.load_active_reminders() == []


def test_delete_is_tenant_scoped(store):
    job = _add(store)
    assert store.delete_reminder(job.id, "other-guild") is False
    assert store.delete_reminder(job.id, "g1") is True
    assert store.delete_reminder(job.id, "g1") is False
    assert store.get_reminder(job.id) is None


def test_load_active_ordered_and_filtered(store):
    later = _add(store, next_trigger_at=FUTURE + timedelta(days=1), reminder_id="later")
    sooner = _add(store, reminder_id="sooner")
    gone = _add(store, reminder_id="gone")
    store.delete_reminder(gone.id, "g1")

    assert [j.id for j in store.load_active_reminders()] == [sooner.id, later.id]


def test_list_reminders_by_tenant(store):
    _add(store, reminder_id="a")
    _add(store, reminder_id="b", tenant_id="g2")
    assert [j.id for j in store.list_reminders("g2")] == ["b"]
    assert len(store.list_reminders()) == 2


def test_mark_firing(store):
    job = _add(store)
    started = datetime(2029, 12, 31, 23, 0, tzinfo=timezone.utc)
    store.mark_firing(job.id, started)
    assert store.get_reminder(job.id).firing_started_at == started


def test_advance_once_deactivates(store):
    job = _add(store)
    assert store.advance_recurrence(job.id) is None
    assert store.get_reminder(job.id) is None


def test_advance_daily_moves_forward(store):
    job = _add(store, cadence="daily", next_trigger_at=datetime(2020, 1, 1, tzinfo=timezone.utc))
    advanced = store.advance_recurrence(job.id)
    assert advanced.next_trigger_at > datetime.now(timezone.utc)
    assert store.get_reminder(job.id).next_trigger_at == advanced.next_trigger_at


def test_advance_missing(store):
    assert store.advance_recurrence("nope") is None


def test_unreadable_row_is_skipped(store):
    _add(store, reminder_id="ok")
    with store._get_conn() as conn:
        conn.execute(
            """INSERT INTO reminders (id, tenant_id, channel_id, user_id, message, cadence, hour, minute)
               VALUES ('broken', 'g1', 'c1', 'u1', 'x', 'weekly', 9, 0)"""
        )
        conn.commit()
    assert [j.id for j in store.load_active_reminders()] == ["ok"]


def test_migrates_old_reminders_table(tmp_path):
    path = tmp_path / "old.db"
    conn = sqlite3.connect(path)
    conn.execute(
        """CREATE TABLE reminders (
            id TEXT PRIMARY KEY, tenant_id TEXT NOT NULL, channel_id TEXT NOT NULL,
            user_id TEXT NOT NULL, message TEXT NOT NULL, cadence TEXT NOT NULL DEFAULT 'once',
            hour INTEGER NOT NULL, minute INTEGER NOT NULL, day_of_week INTEGER,
            next_trigger_at TEXT, active INTEGER DEFAULT 1,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"""
    )
    conn.commit()
    conn.close()

    store = ReminderStore(str(path))
    job = _add(store, cadence="monthly", day_of_month=15, next_trigger_at=None, timezone="UTC")
    assert store.get_reminder(job.id).day_of_month == 15


def test_unopenable_database_raises_store_error(tmp_path):
    with pytest.raises(StoreError):
        ReminderStore(str(tmp_path))


# ── Event configs ─────────────────────────────────────────


def test_upsert_config_defaults(store):
    cfg = store.upsert_announcement_config("g1", "c9", "Seattle, WA", user_id="u1")
    assert (cfg.schedule_day, cfg.schedule_hour, cfg.schedule_minute) == (1, 12, 0)
    assert cfg.timezone == "America/Los_Angeles"
    assert cfg.is_enabled
    assert store.get_announcement_config("g1") == cfg


def test_upsert_config_keeps_unspecified_fields(store):
    store.upsert_announcement_config("g1", "c9", "Seattle, WA", schedule_day=5, timezone="UTC")
    cfg = store.upsert_announcement_config("g1", "c10", "Portland, OR")
    assert cfg.schedule_day == 5
    assert cfg.timezone == "UTC"
    assert cfg.channel_id == "c10"
    assert cfg.location == "Portland, OR"
    assert len(store.list_announcement_configs()) == 1


@pytest.mark.parametrize("overrides", [{"timezone": "Nowhere/Zone"}, {"schedule_hour": 24}, {"schedule_day": 7}])
def test_upsert_config_invalid_keeps_old(store, overrides):
    store.upsert_announcement_config("g1", "c9", "Seattle, WA")
    with pytest.raises(ValidationError):
        store.upsert_announcement_config("g1", "c9", "Seattle, WA", **overrides)
    cfg = store.get_announcement_config("g1")
    assert (cfg.schedule_hour, cfg.timezone) == (12, "America/Los_Angeles")


def test_enable_disable(store):
    store.upsert_announcement_config("g1", "c9", "Seattle, WA")
    store.upsert_announcement_config("g2", "c8", "Austin, TX")

    assert store.set_announcement_enabled("g1", False).is_enabled is False
    assert [c.tenant_id for c in store.load_enabled_announcement_configs()] == ["g2"]
    assert store.set_announcement_enabled("g1", True).is_enabled is True
    assert store.set_announcement_enabled("nobody", True) is None


def test_mark_announced(store):
    store.upsert_announcement_config("g1", "c9", "Seattle, WA")
    when = datetime(2026, 3, 9, 20, 0, tzinfo=timezone.utc)
    store.mark_announced("g1", when)
    assert store.get_announcement_config("g1").last_announced_at == when


def test_upsert_preserves_last_announced(store):
    store.upsert_announcement_config("g1", "c9", "Seattle, WA")
    when = datetime(2026, 3, 9, 20, 0, tzinfo=timezone.utc)
    store.mark_announced("g1", when)
    store.upsert_announcement_config("g1", "c9", "Seattle, WA", schedule_hour=9)
    assert store.get_announcement_config("g1").last_announced_at == when


def test_remove_config(store):
    store.upsert_announcement_config("g1", "c9", "Seattle, WA")
    assert store.remove_announcement_config("g1") is True
    assert store.remove_announcement_config("g1") is False
    assert store.get_announcement_config("g1") is None


def _insert_raw_config(store, tenant_id, schedule_day):
    with store._get_conn() as conn:
        conn.execute(
            """INSERT INTO event_configs (tenant_id, channel_id, location, schedule_day)
               VALUES (?, 'c1', 'Seattle, WA', ?)""",
            (tenant_id, schedule_day),
        )
        conn.commit()


def test_unreadable_config_row_is_skipped(store):
    store.upsert_announcement_config("g1", "c9", "Seattle, WA")
    _insert_raw_config(store, "g-bad", 9)

    assert [c.tenant_id for c in store.load_enabled_announcement_configs()] == ["g1"]
    assert [c.tenant_id for c in store.list_announcement_configs()] == ["g1"]
