"""JobRegistry — live timer handles keyed by job key, plus the Timer capability."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from guildbell.core.cron.expressions import crontab_trigger


def new_job_id(key: str) -> str:
    """Unique timer id for one arming of ``key``."""
    return f"{key}#{uuid.uuid4().hex[:8]}"


class ScheduledHandle:
    """A cancellable registration. ``cancel()`` is idempotent."""

    def __init__(self, key: str, job_id: str, stop: Callable[[], None], job: Any = None):
        self.key = key
        self.job_id = job_id
        self._stop = stop
        self._job = job
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def next_run_time(self) -> datetime | None:
        if self._cancelled:
            return None
        return getattr(self._job, "next_run_time", None)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        try:
            self._stop()
        except JobLookupError:
            pass  # already fired (one-shot) or removed

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "live"
        return f"ScheduledHandle({self.job_id!r}, {state})"


class JobRegistry:
    """Job key → handle. At most one live handle per key."""

    def __init__(self) -> None:
        self._handles: dict[str, ScheduledHandle] = {}

    def register(self, key: str, handle: ScheduledHandle) -> None:
        previous = self._handles.get(key)
        if previous is not None and previous is not handle:
            previous.cancel()
            logger.debug(f"Replaced registration for {key}")
        self._handles[key] = handle

    def remove(self, key: str) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def release(self, key: str, job_id: str) -> bool:
        """Forget ``key`` without cancelling, only if ``job_id`` is still the live one."""
        handle = self._handles.get(key)
        if handle is None or handle.job_id != job_id:
            return False
        del self._handles[key]
        return True

    def get(self, key: str) -> ScheduledHandle | None:
        return self._handles.get(key)

    def keys(self) -> list[str]:
        return sorted(self._handles)

    def stop_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        count = len(self._handles)
        self._handles.clear()
        logger.info(f"JobRegistry stopped {count} job(s)")

    def __contains__(self, key: object) -> bool:
        return key in self._handles

    def __len__(self) -> int:
        return len(self._handles)


class Timer(Protocol):
    """Arms one-shot, cron and interval callbacks, returning cancellable handles."""

    def arm(
        self, key: str, delay: timedelta, callback: Callable, *args: Any,
        job_id: str | None = None,
    ) -> ScheduledHandle: ...

    def arm_cron(
        self, key: str, expression: str, tz: str, callback: Callable, *args: Any,
        job_id: str | None = None,
    ) -> ScheduledHandle: ...

    def arm_interval(
        self, key: str, interval: timedelta, callback: Callable, *args: Any,
        job_id: str | None = None,
    ) -> ScheduledHandle: ...

    def start(self) -> None: ...

    def shutdown(self) -> None: ...


class APSchedulerTimer:
    """Timer backed by APScheduler's AsyncIOScheduler.

    ``coalesce`` folds a backlog of missed runs into one, and
    ``max_instances=1`` keeps runs of the same job from overlapping.
    """

    def __init__(self, misfire_grace_s: int = 300, scheduler: AsyncIOScheduler | None = None):
        self._scheduler = scheduler or AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": misfire_grace_s,
            }
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def arm(self, key, delay, callback, *args, job_id=None) -> ScheduledHandle:
        run_date = datetime.now(timezone.utc) + delay
        return self._add(key, DateTrigger(run_date=run_date), callback, args, job_id)

    def arm_cron(self, key, expression, tz, callback, *args, job_id=None) -> ScheduledHandle:
        return self._add(key, crontab_trigger(expression, tz), callback, args, job_id)

    def arm_interval(self, key, interval, callback, *args, job_id=None) -> ScheduledHandle:
        trigger = IntervalTrigger(seconds=interval.total_seconds())
        return self._add(key, trigger, callback, args, job_id)

    def _add(self, key, trigger, callback, args, job_id) -> ScheduledHandle:
        job_id = job_id or new_job_id(key)
        job = self._scheduler.add_job(
            callback, trigger=trigger, id=job_id, name=key, args=list(args),
        )
        return ScheduledHandle(key, job_id, job.remove, job=job)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
