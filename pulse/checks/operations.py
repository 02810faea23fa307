"""Telegram Bot API checks exercised by the scheduler every cycle."""

from __future__ import annotations

import contextlib
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from telegram.error import (
    BadRequest,
    Conflict,
    Forbidden,
    InvalidToken,
    NetworkError,
    RetryAfter,
    TelegramError,
    TimedOut,
)

from pulse.scheduler.errors import OperationFailure

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator
    from pathlib import Path

    import telegram

    from pulse.scheduler.registry import OperationRegistry

logger = logging.getLogger(__name__)

STATUS_OK = 200

GIF_FILE = "happy.gif"
VOICE_FILE = "test.ogg"
VIDEO_FILE = "test_small.mp4"


def status_for_error(exc: TelegramError) -> int:
    """Map a python-telegram-bot error to the HTTP status Telegram answered with."""
    # TimedOut and BadRequest subclass NetworkError, so order matters.
    if isinstance(exc, TimedOut):
        return 504
    if isinstance(exc, BadRequest):
        return 400
    if isinstance(exc, InvalidToken):
        return 401
    if isinstance(exc, Forbidden):
        return 403
    if isinstance(exc, Conflict):
        return 409
    if isinstance(exc, RetryAfter):
        return 429
    if isinstance(exc, NetworkError):
        return 502
    return 500


@contextlib.contextmanager
def _api_call(name: str) -> Iterator[None]:
    """Translate Telegram errors raised inside the block into OperationFailure."""
    try:
        yield
    except TelegramError as exc:
        raise OperationFailure(name, status_for_error(exc), exc.message) from exc


class TelegramOperations:
    """The Bot API calls the scheduler runs against one chat.

    Each public coroutine follows the scheduler's operation convention:
    no arguments, returns ``(message, status)``, raises ``OperationFailure``
    when Telegram rejects the call.

    Args:
        bot: python-telegram-bot ``Bot`` instance.
        chat_id: Chat that receives the test messages.
        uploads_dir: Directory holding the media files used by the checks.
    """

    def __init__(self, bot: telegram.Bot, chat_id: int, uploads_dir: Path) -> None:
        self._bot = bot
        self._chat_id = chat_id
        self._uploads_dir = uploads_dir

    async def send_message(self) -> tuple[str, int]:
        text = f"Scheduler: Test message sent at {datetime.now(UTC).isoformat()}"
        with _api_call("SendMessage"):
            await self._bot.send_message(chat_id=self._chat_id, text=text)
        return "SendMessage ok", STATUS_OK

    async def send_gif(self) -> tuple[str, int]:
        return await self._send_media(
            "SendGIF",
            "sendAnimation",
            self._bot.send_animation,
            "animation",
            GIF_FILE,
            "Scheduler test GIF",
        )

    async def send_voice(self) -> tuple[str, int]:
        return await self._send_media(
            "SendVoice",
            "sendVoice",
            self._bot.send_voice,
            "voice",
            VOICE_FILE,
            "Scheduler test voice",
        )

    async def send_video(self) -> tuple[str, int]:
        return await self._send_media(
            "SendVideo",
            "sendVideo",
            self._bot.send_video,
            "video",
            VIDEO_FILE,
            "Scheduler test video",
        )

    async def get_updates(self) -> tuple[str, int]:
        """Fetch pending updates without confirming them."""
        with _api_call("GetUpdates"):
            updates = await self._bot.get_updates(offset=0, limit=100, timeout=0)
        return f"GetUpdates ok: {len(updates)} new", STATUS_OK

    async def _send_media(
        self,
        name: str,
        api_method: str,
        send: Callable[..., Awaitable[object]],
        field: str,
        filename: str,
        caption: str,
    ) -> tuple[str, int]:
        """Upload a local file; a missing file is reported as a skip, not a failure."""
        path = self._uploads_dir / filename
        if not path.is_file():
            logger.debug("%s: %s not found, skipping", name, path)
            return f"skip {api_method} - file not found", 0

        with path.open("rb") as fh, _api_call(name):
            await send(chat_id=self._chat_id, caption=caption, **{field: fh})
        return f"{api_method} sent: {path}", STATUS_OK


def register_default_operations(
    registry: OperationRegistry,
    ops: TelegramOperations,
    *,
    include_updates: bool = True,
) -> None:
    """Register the standard checks in their reporting order.

    ``include_updates`` must be False when the same bot token is also
    long-polling, since Telegram allows only one getUpdates consumer.
    """
    registry.register("SendMessage", ops.send_message)
    registry.register("SendGIF", ops.send_gif)
    registry.register("SendVoice", ops.send_voice)
    registry.register("SendVideo", ops.send_video)
    if include_updates:
        registry.register("GetUpdates", ops.get_updates)
    else:
        logger.info("GetUpdates check disabled while the bot is polling")
