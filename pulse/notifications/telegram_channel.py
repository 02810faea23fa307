"""Telegram implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging

import telegram

logger = logging.getLogger(__name__)

# Telegram rejects messages longer than this.
MAX_MESSAGE_LENGTH = 4096


class TelegramChannel:
    """Sends scheduler outcomes via the Telegram Bot API."""

    def __init__(self, bot: telegram.Bot) -> None:
        self._bot = bot

    @property
    def name(self) -> str:
        return "telegram"

    async def send(self, chat_id: str, message: str) -> bool:
        """Send a plain text message to a Telegram chat."""
        if len(message) > MAX_MESSAGE_LENGTH:
            message = message[: MAX_MESSAGE_LENGTH - 3] + "..."
        try:
            await self._bot.send_message(chat_id=int(chat_id), text=message)
            return True
        except Exception:
            logger.exception("TelegramChannel.send failed for chat_id=%s", chat_id)
            return False
