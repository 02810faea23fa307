"""Shared test fixtures."""

import asyncio
import json
from pathlib import Path

import pytest


class FakeChannel:
    """Minimal notification channel that records what it was asked to send."""

    def __init__(self, channel_name: str = "fake") -> None:
        self._name = channel_name
        self.sent: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return self._name

    async def send(self, chat_id: str, message: str) -> bool:
        self.sent.append((chat_id, message))
        return True


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "api_check.log"


def read_records(path: Path) -> list[dict]:
    """Parse the JSON-lines outcome log."""
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


def outcome_records(path: Path) -> list[dict]:
    """Only the per-operation outcome records (lifecycle events excluded)."""
    return [r for r in read_records(path) if "operation" in r]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            msg = "condition not met in time"
            raise AssertionError(msg)
        await asyncio.sleep(0.005)
