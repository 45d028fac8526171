"""Scheduling error taxonomy."""

from __future__ import annotations


class GuildbellError(Exception):
    """Base class for all guildbell errors."""


class ValidationError(GuildbellError, ValueError):
    """Bad minute/hour/day/timezone input. Caller's fault, never retried."""


class StoreError(GuildbellError):
    """Persistence failure. The current cycle is abandoned."""


class NotifyError(GuildbellError):
    """Channel unreachable or permission denied. The job stays scheduled."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DiscoveryError(GuildbellError):
    """Event discovery provider failed."""


class StaleJobError(GuildbellError):
    """One-time job whose trigger time had already passed at load time."""

    def __init__(self, job_id: str, trigger_at):
        super().__init__(f"Reminder {job_id} trigger time {trigger_at} has already passed")
        self.job_id = job_id
        self.trigger_at = trigger_at
