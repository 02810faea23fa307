"""Scheduler exception hierarchy."""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for everything the scheduler raises."""


class ConfigError(SchedulerError, ValueError):
    """Invalid construction arguments. The scheduler is never created."""


class LifecycleError(SchedulerError, RuntimeError):
    """``start()`` was called while a run is already active."""


class OperationFailure(SchedulerError):
    """A single operation attempt failed.

    Operations raise this to report a failure together with the status code
    the remote API returned. Any other exception raised by an operation is
    treated the same way with status ``0``.
    """

    def __init__(self, operation: str, status: int, message: str) -> None:
        self.operation = operation
        self.status = status
        self.message = message
        super().__init__(f"{operation} failed (status {status}): {message}")


class CancellationFailure(SchedulerError):
    """The stop signal preempted an attempt or a backoff wait."""

    def __init__(self, reason: str = "stopped") -> None:
        self.reason = reason
        super().__init__(reason)
