"""Outcome records and lifecycle state for the scheduler."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pulse.scheduler.errors import CancellationFailure, OperationFailure

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    # Zero-argument coroutine function returning ``(message, status)``.
    Operation = Callable[[], Awaitable[tuple[str, int]]]


class SchedulerState(enum.Enum):
    """Run loop states. ``STOPPED`` is left only through a fresh ``start()``."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class CallResult:
    """Result of one operation after the retry executor is done with it.

    Attributes:
        message: Result text on success, empty on failure.
        status: Status code from the last attempt.
        error: The last failure, or ``None`` on success.
        attempts: How many times the operation was actually invoked.
    """

    message: str
    status: int
    error: Exception | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CancellationFailure)

    def describe(self) -> str:
        """Human-readable text used for outcome records."""
        if self.error is None:
            return f"{self.message} (status={self.status})"
        if isinstance(self.error, OperationFailure):
            return f"{self.error} (status={self.status})"
        return f"{type(self.error).__name__}: {self.error} (status={self.status})"


@dataclass
class CycleOutcome:
    """One row per operation per cycle, forwarded to the result sink."""

    target_id: int
    operation: str
    cycle: int
    position: int
    message: str
    status: int
    ok: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_result(
        cls,
        result: CallResult,
        *,
        target_id: int,
        operation: str,
        cycle: int,
        position: int,
    ) -> CycleOutcome:
        return cls(
            target_id=target_id,
            operation=operation,
            cycle=cycle,
            position=position,
            message=result.describe(),
            status=result.status,
            ok=result.ok,
        )

    def to_record(self) -> dict[str, Any]:
        """Serialize to the fields written to the outcome log."""
        return {
            "target_id": self.target_id,
            "operation": self.operation,
            "cycle": self.cycle,
            "position": self.position,
            "status": self.status,
            "ok": self.ok,
            "timestamp": self.timestamp.isoformat(),
        }

    def notification_text(self) -> str:
        return f"{self.operation}: {self.message}"
