"""OutcomeSink — append-only JSON log plus chat notification for cycle outcomes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from pathlib import Path

    from pulse.notifications.channels import NotificationChannel
    from pulse.scheduler.models import CycleOutcome

logger = logging.getLogger(__name__)


def open_outcome_log(path: Path):
    """Open ``path`` for appending and wrap it in a JSON-rendering structlog logger.

    Returns ``(file, logger)``. Raises OSError when the file cannot be opened.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fh = path.open("a", encoding="utf-8")
    log = structlog.wrap_logger(
        structlog.WriteLogger(fh),
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="logged_at"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
    )
    return fh, log


class OutcomeSink:
    """Receives one ``CycleOutcome`` per operation per cycle.

    Each outcome is appended to the JSON log and then, if a notifier is
    configured, sent to the target chat as ``"<operation>: <message>"``.
    Failures on either path are logged and swallowed; a notification that
    takes longer than ``timeout`` seconds is abandoned.

    Args:
        log_path: Append-only JSON log destination.
        target_id: Chat the scheduler reports to.
        notifier: Channel used for chat notifications (None → log only).
        timeout: Upper bound for a single notification, in seconds.
    """

    def __init__(
        self,
        log_path: Path,
        target_id: int,
        *,
        notifier: NotificationChannel | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._path = log_path
        self._target_id = target_id
        self._notifier = notifier
        self._timeout = timeout
        self._file, self._log = open_outcome_log(log_path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._file.closed

    def event(self, message: str, **fields: Any) -> None:
        """Append a lifecycle record (started, stopped, ...) to the log."""
        if self._file.closed:
            return
        try:
            self._log.info(message, target_id=self._target_id, **fields)
        except Exception:
            logger.exception("Failed to write scheduler event: %s", message)

    async def publish(
        self, outcome: CycleOutcome, stop_event: asyncio.Event | None = None
    ) -> None:
        """Record an outcome and forward it to the notifier.

        The notification is skipped when ``stop_event`` is already set and
        abandoned if it fires while the send is in flight.
        """
        self._write(outcome)
        if self._notifier is None:
            return
        if stop_event is not None and stop_event.is_set():
            return
        await self._notify(outcome, stop_event)

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()

    # -- Internal --------------------------------------------------------------

    def _write(self, outcome: CycleOutcome) -> None:
        if self._file.closed:
            logger.warning("Outcome log closed, dropping record for %s", outcome.operation)
            return
        try:
            if outcome.ok:
                self._log.info(outcome.message, **outcome.to_record())
            else:
                self._log.warning(outcome.message, **outcome.to_record())
        except Exception:
            logger.exception("Failed to write outcome record for %s", outcome.operation)

    async def _notify(self, outcome: CycleOutcome, stop_event: asyncio.Event | None) -> None:
        send = asyncio.ensure_future(
            asyncio.wait_for(
                self._notifier.send(str(self._target_id), outcome.notification_text()),
                timeout=self._timeout,
            )
        )
        waiters: set[asyncio.Future] = {send}
        stop_waiter = None
        if stop_event is not None:
            stop_waiter = asyncio.ensure_future(stop_event.wait())
            waiters.add(stop_waiter)
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if stop_waiter is not None:
                stop_waiter.cancel()
            if not send.done():
                send.cancel()

        if send.cancelled() or not send.done():
            await asyncio.wait({send})
            logger.info("Notification for %s abandoned, scheduler stopping", outcome.operation)
            return

        try:
            sent = send.result()
        except TimeoutError:
            logger.warning(
                "Notification for %s timed out after %.1fs", outcome.operation, self._timeout
            )
        except Exception:
            logger.exception("Notification for %s failed", outcome.operation)
        else:
            if not sent:
                logger.warning("Notification for %s was not delivered", outcome.operation)
