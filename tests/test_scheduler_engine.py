"""Tests for Scheduler — lifecycle controller and run loop."""

import asyncio
import time
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeChannel, outcome_records, read_records, wait_until

from pulse.scheduler.engine import Scheduler
from pulse.scheduler.errors import ConfigError, LifecycleError, OperationFailure
from pulse.scheduler.models import SchedulerState

# 10 ms between cycles
FAST_INTERVAL = 0.01 / 60


def _make_scheduler(log_path: Path, channel: FakeChannel | None = None, **kwargs) -> Scheduler:
    defaults = {
        "target_id": "12345",
        "interval_minutes": FAST_INTERVAL,
        "max_runs": 0,
        "retry_count": 0,
        "retry_delay": 0,
        "log_path": log_path,
    }
    defaults.update(kwargs)
    return Scheduler(**defaults, notifier=channel)


@pytest.fixture
async def scheduler(log_path: Path, channel: FakeChannel):
    s = _make_scheduler(log_path, channel)
    yield s
    await s.close()


def _counting_op(calls: list[str], name: str):
    async def op() -> tuple[str, int]:
        calls.append(name)
        return f"{name} ok", 200

    return op


# -- Construction --------------------------------------------------------------


def test_invalid_target_id(log_path: Path) -> None:
    with pytest.raises(ConfigError, match="invalid target id"):
        _make_scheduler(log_path, target_id="not-a-chat")


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("interval_minutes", 0),
        ("interval_minutes", -1.5),
        ("interval_minutes", float("nan")),
        ("max_runs", -1),
        ("retry_count", -1),
        ("max_runs", 2.0),
        ("max_runs", True),
        ("retry_count", 1.5),
        ("retry_count", False),
        ("retry_delay", -0.1),
    ],
)
def test_invalid_numeric_config(log_path: Path, field: str, value: float) -> None:
    with pytest.raises(ConfigError):
        _make_scheduler(log_path, **{field: value})


def test_unopenable_log_destination(tmp_path: Path) -> None:
    # A directory cannot be opened for appending
    with pytest.raises(ConfigError, match="cannot open log file"):
        _make_scheduler(tmp_path)


def test_construction_opens_log_and_records_init(log_path: Path) -> None:
    s = _make_scheduler(log_path, target_id=" -100123 ", interval_minutes=0.5)

    assert s.target_id == -100123
    assert s.interval.total_seconds() == 30
    assert s.state is SchedulerState.IDLE
    records = read_records(log_path)
    assert records[0]["event"] == "Scheduler initialized"
    assert records[0]["target_id"] == -100123


# -- Lifecycle -----------------------------------------------------------------


async def test_not_running_before_start(scheduler: Scheduler) -> None:
    assert scheduler.is_running() is False


async def test_start_and_stop(scheduler: Scheduler) -> None:
    calls: list[str] = []
    scheduler.register("A", _counting_op(calls, "A"))

    await scheduler.start()
    assert scheduler.is_running() is True
    assert scheduler.state is SchedulerState.RUNNING

    await wait_until(lambda: calls)
    await scheduler.stop()

    assert scheduler.is_running() is False
    assert scheduler.state is SchedulerState.STOPPED


async def test_start_returns_before_first_cycle_finishes(scheduler: Scheduler) -> None:
    release = asyncio.Event()

    async def blocked() -> tuple[str, int]:
        await release.wait()
        return "done", 200

    scheduler.register("Blocked", blocked)

    await asyncio.wait_for(scheduler.start(), timeout=0.5)
    assert scheduler.cycles_completed == 0
    release.set()


async def test_start_while_running_raises_and_keeps_run(scheduler: Scheduler) -> None:
    calls: list[str] = []
    scheduler.register("A", _counting_op(calls, "A"))
    await scheduler.start()
    await wait_until(lambda: scheduler.cycles_completed >= 1)

    with pytest.raises(LifecycleError, match="already running"):
        await scheduler.start()

    seen = scheduler.cycles_completed
    await wait_until(lambda: scheduler.cycles_completed > seen)
    assert scheduler.is_running() is True
    await scheduler.stop()


async def test_stop_when_not_running_is_noop(scheduler: Scheduler) -> None:
    started = time.monotonic()
    await scheduler.stop()
    await scheduler.stop()
    assert time.monotonic() - started < 0.1
    assert scheduler.is_running() is False
    assert scheduler.state is SchedulerState.IDLE


async def test_restart_creates_independent_run(scheduler: Scheduler) -> None:
    calls: list[str] = []
    scheduler.register("A", _counting_op(calls, "A"))

    await scheduler.start()
    await wait_until(lambda: scheduler.cycles_completed >= 2)
    await scheduler.stop()
    first_event = scheduler._stop_event

    await scheduler.start()
    assert scheduler._stop_event is not first_event
    assert not scheduler._stop_event.is_set()
    await wait_until(lambda: scheduler.cycles_completed >= 1)
    assert scheduler.is_running() is True
    await scheduler.stop()
    assert scheduler.is_running() is False


async def test_no_work_after_stop_returns(scheduler: Scheduler, channel: FakeChannel) -> None:
    calls: list[str] = []
    scheduler.register("A", _counting_op(calls, "A"))
    await scheduler.start()
    await wait_until(lambda: len(calls) >= 2)
    await scheduler.stop()

    seen_calls = len(calls)
    seen_sent = len(channel.sent)
    await asyncio.sleep(0.05)
    assert len(calls) == seen_calls
    assert len(channel.sent) == seen_sent


async def test_concurrent_stops_both_wait_for_exit(scheduler: Scheduler) -> None:
    calls: list[str] = []
    scheduler.register("A", _counting_op(calls, "A"))
    await scheduler.start()
    await wait_until(lambda: calls)

    await asyncio.gather(scheduler.stop(), scheduler.stop())

    assert scheduler._task.done()
    assert scheduler.is_running() is False


async def test_concurrent_starts_launch_one_run(scheduler: Scheduler) -> None:
    calls: list[str] = []
    scheduler.register("A", _counting_op(calls, "A"))

    results = await asyncio.gather(
        scheduler.start(), scheduler.start(), return_exceptions=True
    )

    errors = [r for r in results if isinstance(r, LifecycleError)]
    assert len(errors) == 1
    assert results.count(None) == 1
    assert scheduler.is_running() is True
    assert not scheduler._task.done()
    await scheduler.stop()
    assert scheduler._task.done()


async def test_start_racing_stop_leaves_consistent_state(scheduler: Scheduler) -> None:
    scheduler.register("A", _counting_op([], "A"))

    await asyncio.gather(scheduler.start(), scheduler.stop())

    assert scheduler.is_running() is False
    assert scheduler._task.done()
    assert scheduler.state is SchedulerState.STOPPED


async def test_restart_racing_stop_leaves_consistent_state(scheduler: Scheduler) -> None:
    calls: list[str] = []
    scheduler.register("A", _counting_op(calls, "A"))
    await scheduler.start()
    first_task = scheduler._task
    await wait_until(lambda: calls)

    await asyncio.gather(scheduler.stop(), scheduler.start())

    assert first_task.done()
    assert scheduler.is_running() is True
    assert scheduler._task is not first_task
    assert not scheduler._task.done()
    await wait_until(lambda: scheduler.cycles_completed >= 1)

    await scheduler.stop()
    assert scheduler.is_running() is False
    assert scheduler._task.done()
    assert scheduler.state is SchedulerState.STOPPED


async def test_stop_abandons_inflight_notification(log_path: Path) -> None:
    entered = asyncio.Event()

    class HangingChannel(FakeChannel):
        async def send(self, chat_id: str, message: str) -> bool:
            entered.set()
            await asyncio.sleep(30)
            return True

    s = _make_scheduler(log_path, HangingChannel(), sink_timeout=3.0)
    calls: list[str] = []
    s.register("A", _counting_op(calls, "A"))
    s.register("B", _counting_op(calls, "B"))

    await s.start()
    await asyncio.wait_for(entered.wait(), timeout=1.0)
    started = time.monotonic()
    await s.stop()

    assert time.monotonic() - started < 0.5
    assert calls == ["A"]
    assert s.is_running() is False
    await s.close()


async def test_stop_abandons_long_interval_wait(log_path: Path) -> None:
    s = _make_scheduler(log_path, interval_minutes=10)
    calls: list[str] = []
    s.register("A", _counting_op(calls, "A"))

    await s.start()
    await asyncio.sleep(0.05)
    started = time.monotonic()
    await s.stop()
    elapsed = time.monotonic() - started

    assert elapsed < 0.5
    assert calls == ["A"]
    assert s.is_running() is False
    await s.close()


async def test_stop_during_operation_abandons_cycle(
    scheduler: Scheduler, log_path: Path, channel: FakeChannel
) -> None:
    calls: list[str] = []
    entered = asyncio.Event()

    async def slow() -> tuple[str, int]:
        entered.set()
        await asyncio.sleep(10)
        return "late", 200

    scheduler.register("A", _counting_op(calls, "A"))
    scheduler.register("Slow", slow)
    scheduler.register("C", _counting_op(calls, "C"))

    await scheduler.start()
    await asyncio.wait_for(entered.wait(), timeout=1.0)
    await asyncio.wait_for(scheduler.stop(), timeout=1.0)

    assert calls == ["A"]
    assert scheduler.cycles_completed == 0
    # The abandoned operation is not reported as a failure
    assert [r["operation"] for r in outcome_records(log_path)] == ["A"]
    assert channel.sent == [("12345", "A: A ok (status=200)")]


async def test_registration_frozen_after_start(scheduler: Scheduler) -> None:
    scheduler.register("A", _counting_op([], "A"))
    await scheduler.start()

    with pytest.raises(RuntimeError, match="frozen"):
        scheduler.register("B", _counting_op([], "B"))
    await scheduler.stop()


async def test_close_stops_and_rejects_restart(log_path: Path) -> None:
    s = _make_scheduler(log_path)
    s.register("A", _counting_op([], "A"))
    await s.start()

    await s.close()
    await s.close()

    assert s.is_running() is False
    with pytest.raises(LifecycleError, match="closed"):
        await s.start()


# -- Run loop ------------------------------------------------------------------


async def test_max_runs_stops_without_intervention(log_path: Path, channel: FakeChannel) -> None:
    s = _make_scheduler(log_path, channel, max_runs=3)
    calls: list[str] = []
    s.register("A", _counting_op(calls, "A"))

    await s.start()
    await asyncio.wait_for(s.wait(), timeout=2.0)

    assert calls == ["A", "A", "A"]
    assert s.cycles_completed == 3
    assert s.is_running() is False
    assert s.state is SchedulerState.STOPPED
    assert [r["cycle"] for r in outcome_records(log_path)] == [1, 2, 3]
    events = [r["event"] for r in read_records(log_path)]
    assert "Reached run limit" in events
    await s.close()


async def test_max_runs_one_runs_single_cycle(log_path: Path) -> None:
    s = _make_scheduler(log_path, max_runs=1)
    calls: list[str] = []
    s.register("A", _counting_op(calls, "A"))

    await s.start()
    await asyncio.wait_for(s.wait(), timeout=2.0)

    assert calls == ["A"]
    await s.close()


async def test_operations_run_in_registration_order(log_path: Path) -> None:
    s = _make_scheduler(log_path, max_runs=2)
    trace: list[str] = []

    def staggered(name: str, delay: float):
        async def op() -> tuple[str, int]:
            await asyncio.sleep(delay)
            trace.append(name)
            return name, 200

        return op

    s.register("Slowest", staggered("Slowest", 0.03))
    s.register("Instant", staggered("Instant", 0))
    s.register("Medium", staggered("Medium", 0.01))

    await s.start()
    await asyncio.wait_for(s.wait(), timeout=2.0)

    assert trace == ["Slowest", "Instant", "Medium"] * 2
    records = outcome_records(log_path)
    assert [r["position"] for r in records] == [0, 1, 2, 0, 1, 2]
    await s.close()


async def test_failure_does_not_affect_next_operation(
    log_path: Path, channel: FakeChannel
) -> None:
    s = _make_scheduler(log_path, channel, max_runs=1, retry_count=1)
    calls: list[str] = []

    async def broken() -> tuple[str, int]:
        calls.append("Broken")
        raise OperationFailure("Broken", 403, "bot was blocked")

    s.register("Broken", broken)
    s.register("A", _counting_op(calls, "A"))

    await s.start()
    await asyncio.wait_for(s.wait(), timeout=2.0)

    assert calls == ["Broken", "Broken", "A"]
    broken_rec, ok_rec = outcome_records(log_path)
    assert broken_rec["ok"] is False
    assert broken_rec["status"] == 403
    assert broken_rec["level"] == "warning"
    assert broken_rec["event"] == "Broken failed (status 403): bot was blocked (status=403)"
    assert ok_rec["ok"] is True
    assert channel.sent[0] == (
        "12345",
        "Broken: Broken failed (status 403): bot was blocked (status=403)",
    )
    await s.close()


async def test_crashing_sink_does_not_stop_loop(log_path: Path) -> None:
    failing = FakeChannel()
    failing.send = AsyncMock(side_effect=RuntimeError("telegram down"))
    s = _make_scheduler(log_path, failing, max_runs=2)
    calls: list[str] = []
    s.register("A", _counting_op(calls, "A"))

    await s.start()
    await asyncio.wait_for(s.wait(), timeout=2.0)

    assert s.cycles_completed == 2
    assert len(outcome_records(log_path)) == 2
    await s.close()


async def test_interval_wait_follows_each_cycle(log_path: Path) -> None:
    s = _make_scheduler(log_path, interval_minutes=0.5, max_runs=3)
    s.register("A", _counting_op([], "A"))

    with patch.object(Scheduler, "_wait_for_tick", AsyncMock(return_value=False)) as tick:
        await s.start()
        await asyncio.wait_for(s.wait(), timeout=2.0)

    # Two waits between three cycles, none after the last
    assert [c.args[0] for c in tick.await_args_list] == [30.0, 30.0]
    await s.close()


async def test_scenario_two_cycles_with_one_retry(log_path: Path, channel: FakeChannel) -> None:
    s = _make_scheduler(
        log_path, channel, interval_minutes=0.1, max_runs=2, retry_count=1, retry_delay=1
    )
    calls: list[str] = []
    b_attempts = {"count": 0}

    async def op_b() -> tuple[str, int]:
        b_attempts["count"] += 1
        calls.append("B")
        # Fails on the first attempt of every cycle
        if b_attempts["count"] % 2 == 1:
            raise OperationFailure("B", 502, "bad gateway")
        return "B ok", 200

    s.register("A", _counting_op(calls, "A"))
    s.register("B", op_b)

    tick = AsyncMock(return_value=False)
    backoff = AsyncMock(return_value=False)
    with patch.object(Scheduler, "_wait_for_tick", tick):
        s._executor._backoff = backoff
        await s.start()
        await asyncio.wait_for(s.wait(), timeout=2.0)

    assert s.cycles_completed == 2
    assert s.state is SchedulerState.STOPPED
    assert s.is_running() is False
    assert calls == ["A", "B", "B", "A", "B", "B"]
    assert [c.args[0] for c in tick.await_args_list] == [6.0]
    assert [c.args[0] for c in backoff.await_args_list] == [1, 1]

    records = outcome_records(log_path)
    assert len(records) == 4
    assert all(r["ok"] for r in records)
    assert [(r["operation"], r["cycle"]) for r in records] == [
        ("A", 1),
        ("B", 1),
        ("A", 2),
        ("B", 2),
    ]
    assert len(channel.sent) == 4
    await s.close()
