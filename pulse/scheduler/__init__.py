"""Periodic scheduler — registry, retry executor, run loop and outcome sink."""

from pulse.scheduler.engine import Scheduler
from pulse.scheduler.errors import (
    CancellationFailure,
    ConfigError,
    LifecycleError,
    OperationFailure,
    SchedulerError,
)
from pulse.scheduler.models import CallResult, CycleOutcome, SchedulerState
from pulse.scheduler.registry import OperationRegistry
from pulse.scheduler.retry import RetryExecutor
from pulse.scheduler.sink import OutcomeSink

__all__ = [
    "Scheduler",
    "OperationRegistry",
    "RetryExecutor",
    "OutcomeSink",
    "CallResult",
    "CycleOutcome",
    "SchedulerState",
    "SchedulerError",
    "ConfigError",
    "LifecycleError",
    "OperationFailure",
    "CancellationFailure",
]
