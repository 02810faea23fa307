"""RetryExecutor — bounded retries with exponential backoff for one operation."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pulse.scheduler.errors import CancellationFailure, OperationFailure
from pulse.scheduler.models import CallResult

if TYPE_CHECKING:
    from pulse.scheduler.models import Operation

logger = logging.getLogger(__name__)


class RetryExecutor:
    """Runs a single operation up to ``retry_count + 1`` times.

    Between failed attempts it waits ``base_delay * 2**attempt`` seconds
    (attempt is 0-indexed). The operation call and every wait race the stop
    event, so a stop request ends the executor without waiting out a
    backoff window or a slow remote call.

    Args:
        retry_count: Extra attempts after the first failure.
        base_delay: Backoff unit in seconds.
    """

    def __init__(self, retry_count: int, base_delay: float) -> None:
        self._retry_count = retry_count
        self._base_delay = base_delay

    @property
    def max_attempts(self) -> int:
        return self._retry_count + 1

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the failed 0-indexed ``attempt``."""
        return self._base_delay * (2**attempt)

    async def run_with_retry(
        self,
        name: str,
        operation: Operation,
        stop_event: asyncio.Event,
    ) -> CallResult:
        """Invoke ``operation`` until it succeeds, retries run out, or a stop arrives.

        Never raises for operation failures; the outcome is in the returned
        ``CallResult``. A stop request yields a ``CancellationFailure`` error.
        """
        total = self.max_attempts
        status = 0
        last_error: Exception | None = None
        attempts = 0

        for attempt in range(total):
            if stop_event.is_set():
                return CallResult("", status, CancellationFailure("stopped"), attempts)

            attempts += 1
            try:
                message, status = await self._invoke(operation, stop_event)
            except CancellationFailure as exc:
                return CallResult("", status, exc, attempts)
            except Exception as exc:
                status = exc.status if isinstance(exc, OperationFailure) else 0
                last_error = exc
                logger.warning("%s attempt %d/%d failed: %s", name, attempt + 1, total, exc)
            else:
                if attempt:
                    logger.info("%s succeeded on attempt %d/%d", name, attempt + 1, total)
                return CallResult(message, status, None, attempts)

            if attempt + 1 < total:
                delay = self.backoff_delay(attempt)
                if await self._backoff(delay, stop_event):
                    logger.info("%s: stop requested during retry backoff", name)
                    return CallResult(
                        "", status, CancellationFailure("stopped during retry"), attempts
                    )

        logger.error("%s failed after %d attempt(s): %s", name, total, last_error)
        return CallResult("", status, last_error, attempts)

    async def _invoke(
        self, operation: Operation, stop_event: asyncio.Event
    ) -> tuple[str, int]:
        """Await the operation, abandoning it if the stop event fires first."""
        op_task = asyncio.ensure_future(operation())
        stop_waiter = asyncio.ensure_future(stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {op_task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_waiter.cancel()
            if not op_task.done():
                op_task.cancel()

        if op_task in done:
            return op_task.result()

        # Let the cancelled call unwind before reporting the stop.
        await asyncio.wait({op_task})
        if not op_task.cancelled() and op_task.exception() is not None:
            logger.debug("Operation raised while being cancelled: %r", op_task.exception())
        raise CancellationFailure("stopped")

    async def _backoff(self, delay: float, stop_event: asyncio.Event) -> bool:
        """Sleep for ``delay`` seconds. Returns True if the stop event fired first."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True
