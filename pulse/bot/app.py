"""Telegram application factory and scheduler wiring."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram.ext import Application, CommandHandler

from pulse.bot.handlers import (
    handle_scheduler_start,
    handle_scheduler_status,
    handle_scheduler_stop,
    init_scheduler_handlers,
)
from pulse.checks.operations import TelegramOperations, register_default_operations
from pulse.config import settings
from pulse.notifications.telegram_channel import TelegramChannel
from pulse.scheduler.engine import Scheduler
from pulse.scheduler.errors import LifecycleError

if TYPE_CHECKING:
    import telegram

logger = logging.getLogger(__name__)

# Module-level reference so the lifecycle hooks can access it.
_scheduler: Scheduler | None = None


def build_scheduler(bot: telegram.Bot, *, include_updates: bool) -> Scheduler:
    """Create a scheduler from settings with the standard Bot API checks.

    Raises ConfigError when the settings are invalid.
    """
    scheduler = Scheduler(
        settings.telegram_chat_id,
        settings.scheduler_interval_minutes,
        settings.scheduler_runs,
        settings.scheduler_retry_count,
        settings.scheduler_retry_delay_seconds,
        settings.scheduler_log_path,
        notifier=TelegramChannel(bot),
        sink_timeout=settings.scheduler_sink_timeout_seconds,
    )
    ops = TelegramOperations(bot, scheduler.target_id, settings.uploads_dir)
    register_default_operations(scheduler.registry, ops, include_updates=include_updates)
    return scheduler


async def _post_init(app: Application) -> None:
    """Called after the Application is fully initialized (event loop running)."""
    if _scheduler is None or not settings.scheduler_run_immediate:
        return
    try:
        await _scheduler.start()
    except LifecycleError:
        logger.exception("Scheduler failed to start at startup")
    else:
        logger.info("Scheduler started immediately at startup")


async def _post_shutdown(app: Application) -> None:
    """Called during graceful shutdown."""
    if _scheduler is not None:
        await _scheduler.close()


def create_app() -> Application:
    """Build the Telegram application and the scheduler it controls."""
    global _scheduler  # noqa: PLW0603

    app = Application.builder().token(settings.telegram_bot_token).concurrent_updates(True).build()

    _scheduler = build_scheduler(app.bot, include_updates=False)
    init_scheduler_handlers(_scheduler)

    app.add_handler(CommandHandler("scheduler_start", handle_scheduler_start))
    app.add_handler(CommandHandler("scheduler_stop", handle_scheduler_stop))
    app.add_handler(CommandHandler("scheduler_status", handle_scheduler_status))

    app.post_init = _post_init
    app.post_shutdown = _post_shutdown

    return app
