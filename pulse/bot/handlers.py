"""Telegram command handlers that drive the scheduler lifecycle."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pulse.bot.security import is_allowed
from pulse.scheduler.errors import LifecycleError

if TYPE_CHECKING:
    from telegram import Update
    from telegram.ext import ContextTypes

    from pulse.scheduler.engine import Scheduler

logger = logging.getLogger(__name__)

# Module-level state, set by init_scheduler_handlers() during startup.
_scheduler: Scheduler | None = None


def init_scheduler_handlers(scheduler: Scheduler | None) -> None:
    """Wire the scheduler the command handlers control."""
    global _scheduler  # noqa: PLW0603
    _scheduler = scheduler


async def handle_scheduler_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /scheduler_start."""
    if not is_allowed(update):
        return

    if _scheduler is None:
        await update.message.reply_text("Scheduler not initialized")
        return

    try:
        await _scheduler.start()
    except LifecycleError:
        await update.message.reply_text("Scheduler already running")
        return

    logger.info("Scheduler started by user %s", update.effective_user.id)
    await update.message.reply_text("Scheduler started")


async def handle_scheduler_stop(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /scheduler_stop — blocks until the run loop has exited."""
    if not is_allowed(update):
        return

    if _scheduler is None or not _scheduler.is_running():
        await update.message.reply_text("Scheduler not running")
        return

    await _scheduler.stop()
    logger.info("Scheduler stopped by user %s", update.effective_user.id)
    await update.message.reply_text("Scheduler stopped")


async def handle_scheduler_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /scheduler_status — show lifecycle state and configuration."""
    if not is_allowed(update):
        return

    if _scheduler is None:
        await update.message.reply_text("Scheduler not initialized")
        return

    s = _scheduler
    lines = [
        "Scheduler status",
        f"State: {s.state.value}",
        f"Running: {'yes' if s.is_running() else 'no'}",
        f"Completed cycles: {s.cycles_completed}",
        f"Interval: {s.interval}",
        f"Run limit: {s.max_runs or 'unbounded'}",
        f"Operations: {', '.join(s.registry.names()) or '(none)'}",
    ]
    await update.message.reply_text("\n".join(lines))
