"""Scheduler — restartable periodic runner for an ordered set of operations."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from pulse.scheduler.errors import ConfigError, LifecycleError
from pulse.scheduler.models import CycleOutcome, SchedulerState
from pulse.scheduler.registry import OperationRegistry
from pulse.scheduler.retry import RetryExecutor
from pulse.scheduler.sink import OutcomeSink

if TYPE_CHECKING:
    from pulse.notifications.channels import NotificationChannel
    from pulse.scheduler.models import Operation

logger = logging.getLogger(__name__)


def _parse_target_id(target_id: str | int) -> int:
    if isinstance(target_id, bool):
        msg = f"invalid target id: {target_id!r}"
        raise ConfigError(msg)
    try:
        return int(str(target_id).strip())
    except ValueError as exc:
        msg = f"invalid target id: {target_id!r}"
        raise ConfigError(msg) from exc


def _require_count(name: str, value: int) -> None:
    # bool is an int subclass but never a meaningful count
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{name} must be an integer, got {value!r}"
        raise ConfigError(msg)
    if value < 0:
        msg = f"{name} must be >= 0, got {value}"
        raise ConfigError(msg)


class Scheduler:
    """Runs every registered operation once per tick until stopped.

    ``start()`` launches a background run loop and returns at once;
    ``stop()`` signals it and waits until the loop has exited, so no cycle,
    retry or sink write happens after ``stop()`` returns. A stopped
    scheduler can be started again; each run gets a fresh stop event.

    Args:
        target_id: Chat the outcomes are attributed and reported to.
        interval_minutes: Pause between the end of one cycle and the next.
        max_runs: Stop after this many completed cycles (0 → unbounded).
        retry_count: Retries per operation after the first failure.
        retry_delay: Backoff unit in seconds (doubles per attempt).
        log_path: Append-only JSON log for outcome records.
        notifier: Channel that receives a message per outcome (optional).
        sink_timeout: Upper bound for a single notification, in seconds.
    """

    def __init__(
        self,
        target_id: str | int,
        interval_minutes: float,
        max_runs: int = 0,
        retry_count: int = 0,
        retry_delay: float = 0.0,
        log_path: str | Path = "logs/api_check.log",
        *,
        notifier: NotificationChannel | None = None,
        sink_timeout: float = 10.0,
    ) -> None:
        self._target_id = _parse_target_id(target_id)
        if not (isinstance(interval_minutes, int | float) and math.isfinite(interval_minutes)):
            msg = f"interval must be a finite number of minutes, got {interval_minutes!r}"
            raise ConfigError(msg)
        if interval_minutes <= 0:
            msg = f"interval must be > 0 minutes, got {interval_minutes}"
            raise ConfigError(msg)
        _require_count("max_runs", max_runs)
        _require_count("retry_count", retry_count)
        if retry_delay < 0:
            msg = f"retry_delay must be >= 0, got {retry_delay}"
            raise ConfigError(msg)

        self._interval = timedelta(minutes=interval_minutes)
        self._max_runs = max_runs
        self._executor = RetryExecutor(retry_count, retry_delay)
        self._registry = OperationRegistry()

        try:
            self._sink = OutcomeSink(
                Path(log_path), self._target_id, notifier=notifier, timeout=sink_timeout
            )
        except OSError as exc:
            msg = f"cannot open log file {log_path}: {exc}"
            raise ConfigError(msg) from exc

        self._lock = asyncio.Lock()
        self._running = False
        self._state = SchedulerState.IDLE
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._cycles = 0

        self._sink.event("Scheduler initialized", interval_minutes=interval_minutes)
        logger.info(
            "Scheduler initialized for chat %s (interval=%s, runs=%d, retries=%d)",
            self._target_id,
            self._interval,
            max_runs,
            retry_count,
        )

    # -- Properties ------------------------------------------------------------

    @property
    def target_id(self) -> int:
        return self._target_id

    @property
    def interval(self) -> timedelta:
        return self._interval

    @property
    def max_runs(self) -> int:
        return self._max_runs

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def cycles_completed(self) -> int:
        """Completed cycles in the current (or most recent) run."""
        return self._cycles

    @property
    def log_path(self) -> Path:
        return self._sink.path

    def register(self, name: str, operation: Operation) -> None:
        """Register an operation. Only valid before the first ``start()``."""
        self._registry.register(name, operation)

    # -- Lifecycle -------------------------------------------------------------

    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Launch a new run. Raises LifecycleError if one is already active."""
        async with self._lock:
            if self._running:
                msg = "scheduler already running"
                raise LifecycleError(msg)
            if self._sink.closed:
                msg = "scheduler is closed"
                raise LifecycleError(msg)
            self._registry.freeze()
            self._running = True
            self._state = SchedulerState.RUNNING
            self._stop_event = asyncio.Event()
            self._cycles = 0
            self._task = asyncio.create_task(
                self._run_loop(self._stop_event), name=f"scheduler-{self._target_id}"
            )

        logger.info("Scheduler started (%d operations)", len(self._registry))
        self._sink.event("Scheduler started", operations=self._registry.names())

    async def stop(self) -> None:
        """Signal the run loop and wait for it to exit. No-op when not running."""
        async with self._lock:
            task = self._task
            if not self._running:
                if task is None or task.done():
                    return
            else:
                self._running = False
                self._state = SchedulerState.STOPPING
                self._stop_event.set()
                logger.info("Scheduler stopping...")
                self._sink.event("Scheduler stopping")

        if task is asyncio.current_task():
            # Called from the run loop itself; it exits on its own.
            return
        await asyncio.wait({task})

    async def wait(self) -> None:
        """Block until the current run ends, by ``stop()`` or the run limit."""
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait({task})

    async def close(self) -> None:
        """Stop any active run and close the outcome log."""
        await self.stop()
        self._sink.close()

    # -- Run loop --------------------------------------------------------------

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        interval = self._interval.total_seconds()
        try:
            while True:
                if not await self._run_cycle(stop_event):
                    break
                if self._max_runs > 0 and self._cycles >= self._max_runs:
                    logger.info("Reached run limit %d, stopping loop", self._max_runs)
                    self._sink.event("Reached run limit", max_runs=self._max_runs)
                    await self._request_stop(stop_event)
                    break
                if await self._wait_for_tick(interval, stop_event):
                    logger.info("Received stop signal, exiting run loop")
                    break
        except Exception:
            logger.exception("Scheduler run loop crashed")
        finally:
            # A newer run may already own the scheduler state.
            if self._stop_event is stop_event:
                self._running = False
                self._state = SchedulerState.STOPPED
            logger.info("Scheduler stopped after %d cycle(s)", self._cycles)
            self._sink.event("Scheduler stopped", cycles=self._cycles)

    async def _run_cycle(self, stop_event: asyncio.Event) -> bool:
        """Run every operation once, in order. Returns False if abandoned."""
        cycle = self._cycles + 1
        logger.info("Scheduler run %d started", cycle)

        for position, (name, operation) in enumerate(self._registry):
            if stop_event.is_set():
                logger.info("Run %d abandoned before %s", cycle, name)
                return False

            result = await self._executor.run_with_retry(name, operation, stop_event)
            if result.cancelled:
                logger.info("Run %d abandoned during %s (%s)", cycle, name, result.error)
                return False

            outcome = CycleOutcome.from_result(
                result,
                target_id=self._target_id,
                operation=name,
                cycle=cycle,
                position=position,
            )
            log = logger.info if outcome.ok else logger.warning
            log("%-4d | %-12s | %s", position, name, outcome.message)
            await self._sink.publish(outcome, stop_event)

        self._cycles = cycle
        logger.info("Scheduler run %d completed", cycle)
        return True

    async def _request_stop(self, stop_event: asyncio.Event) -> None:
        """Stop from inside the loop without joining it."""
        async with self._lock:
            if self._stop_event is stop_event and self._running:
                self._running = False
                self._state = SchedulerState.STOPPING
                stop_event.set()

    async def _wait_for_tick(self, interval: float, stop_event: asyncio.Event) -> bool:
        """Wait one interval. Returns True if the stop event fired first."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except TimeoutError:
            return False
        return True
