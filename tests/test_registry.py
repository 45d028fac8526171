"""Tests for guildbell.core.cron.registry — handles, registry and APScheduler timer."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from apscheduler.jobstores.base import JobLookupError

from guildbell.core.cron.registry import APSchedulerTimer, JobRegistry, ScheduledHandle, new_job_id


def _handle(key="reminder:r1", job_id=None):
    stop = MagicMock()
    return ScheduledHandle(key, job_id or new_job_id(key), stop), stop


# ── ScheduledHandle ───────────────────────────────────────


def test_new_job_id_is_unique_per_arming():
    a, b = new_job_id("events:g1"), new_job_id("events:g1")
    assert a != b
    assert a.startswith("events:g1#")


def test_cancel_is_idempotent():
    handle, stop = _handle()
    handle.cancel()
    handle.cancel()
    assert handle.cancelled
    stop.assert_called_once()


def test_cancel_swallows_missing_job():
    stop = MagicMock(side_effect=JobLookupError("gone"))
    handle = ScheduledHandle("reminder:r1", "reminder:r1#x", stop)
    handle.cancel()
    assert handle.cancelled


def test_cancelled_handle_has_no_next_run():
    job = MagicMock(next_run_time="soon")
    handle = ScheduledHandle("k", "k#1", MagicMock(), job=job)
    assert handle.next_run_time == "soon"
    handle.cancel()
    assert handle.next_run_time is None


# ── JobRegistry ───────────────────────────────────────────


def test_register_replaces_and_cancels_previous_once():
    reg = JobRegistry()
    first, first_stop = _handle()
    second, second_stop = _handle()

    reg.register("reminder:r1", first)
    reg.register("reminder:r1", second)

    first_stop.assert_called_once()
    second_stop.assert_not_called()
    assert reg.get("reminder:r1") is second
    assert len(reg) == 1


def test_register_same_handle_twice_keeps_it_live():
    reg = JobRegistry()
    handle, stop = _handle()
    reg.register("reminder:r1", handle)
    reg.register("reminder:r1", handle)
    stop.assert_not_called()


def test_remove_unknown_key_is_noop():
    reg = JobRegistry()
    assert reg.remove("events:nope") is False


def test_remove_cancels():
    reg = JobRegistry()
    handle, stop = _handle()
    reg.register("reminder:r1", handle)
    assert reg.remove("reminder:r1") is True
    stop.assert_called_once()
    assert "reminder:r1" not in reg


def test_release_only_matching_job_id():
    reg = JobRegistry()
    old, _ = _handle()
    new, new_stop = _handle()
    reg.register("reminder:r1", old)
    reg.register("reminder:r1", new)

    assert reg.release("reminder:r1", old.job_id) is False
    assert reg.get("reminder:r1") is new

    assert reg.release("reminder:r1", new.job_id) is True
    assert "reminder:r1" not in reg
    new_stop.assert_not_called()


def test_stop_all():
    reg = JobRegistry()
    a, a_stop = _handle("reminder:a")
    b, b_stop = _handle("events:b")
    reg.register(a.key, a)
    reg.register(b.key, b)

    assert reg.keys() == ["events:b", "reminder:a"]
    reg.stop_all()

    a_stop.assert_called_once()
    b_stop.assert_called_once()
    assert len(reg) == 0


# ── APSchedulerTimer ──────────────────────────────────────


async def _noop(*args):
    return None


@pytest.mark.asyncio
async def test_timer_arm_cron_adds_named_job():
    timer = APSchedulerTimer()
    timer.start()
    try:
        handle = timer.arm_cron("events:g1", "0 12 * * 1", "America/Los_Angeles", _noop, "g1")

        jobs = timer._scheduler.get_jobs()
        assert [j.id for j in jobs] == [handle.job_id]
        assert jobs[0].name == "events:g1"
        assert jobs[0].args == ("g1",)
        assert handle.next_run_time is not None
        assert handle.next_run_time.weekday() == 0

        handle.cancel()
        assert timer._scheduler.get_jobs() == []
    finally:
        timer.shutdown()


@pytest.mark.asyncio
async def test_timer_arm_interval():
    timer = APSchedulerTimer()
    timer.start()
    try:
        handle = timer.arm_interval("sync", timedelta(seconds=60), _noop)
        job = timer._scheduler.get_job(handle.job_id)
        assert job.name == "sync"
        assert job.trigger.interval == timedelta(seconds=60)

        handle.cancel()
        assert timer._scheduler.get_jobs() == []
    finally:
        timer.shutdown()


@pytest.mark.asyncio
async def test_timer_job_defaults():
    timer = APSchedulerTimer(misfire_grace_s=60)
    timer.start()
    try:
        handle = timer.arm("reminder:r1", timedelta(hours=1), _noop, "r1")
        job = timer._scheduler.get_job(handle.job_id)
        assert job is not None
        assert job.coalesce is True
        assert job.max_instances == 1
        assert job.misfire_grace_time == 60
    finally:
        timer.shutdown()


@pytest.mark.asyncio
async def test_timer_fires_one_shot():
    fired = asyncio.Event()
    seen = []

    async def callback(reminder_id):
        seen.append(reminder_id)
        fired.set()

    timer = APSchedulerTimer()
    timer.start()
    try:
        timer.arm("reminder:r1", timedelta(milliseconds=50), callback, "r1")
        await asyncio.wait_for(fired.wait(), timeout=5)
    finally:
        timer.shutdown()
    assert seen == ["r1"]
