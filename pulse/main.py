"""tg-pulse entry point."""

import asyncio
import contextlib
import logging
import signal
import sys

import telegram

from pulse.config import settings
from pulse.scheduler.errors import ConfigError

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
# httpx logs every Bot API request at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def _log_configuration() -> None:
    logger.info(
        "Scheduler config: interval=%.2f min, runs=%d, retries=%d, retry delay=%.1fs, log=%s",
        settings.scheduler_interval_minutes,
        settings.scheduler_runs,
        settings.scheduler_retry_count,
        settings.scheduler_retry_delay_seconds,
        settings.scheduler_log_path,
    )


async def run_headless() -> None:
    """Run the scheduler without bot commands until its run limit or a signal."""
    from pulse.bot.app import build_scheduler

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, shutdown.set)

    async with telegram.Bot(settings.telegram_bot_token) as bot:
        scheduler = build_scheduler(bot, include_updates=True)
        await scheduler.start()
        finished = asyncio.create_task(scheduler.wait())
        interrupted = asyncio.create_task(shutdown.wait())
        try:
            await asyncio.wait({finished, interrupted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            finished.cancel()
            interrupted.cancel()
            await scheduler.close()


def main() -> None:
    """Start tg-pulse with bot commands, or headless when they are disabled."""
    if not settings.scheduler_configured:
        logger.error("Scheduler not initialized, missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID")
        sys.exit(1)

    _log_configuration()

    try:
        if settings.bot_commands_enabled:
            from pulse.bot.app import create_app

            allowed = settings.get_allowed_user_ids()
            if not allowed:
                logger.warning("ALLOWED_USER_IDS is empty, scheduler commands will be rejected")
            app = create_app()
            logger.info("Listening for scheduler commands on Telegram...")
            app.run_polling()
        else:
            logger.info("Bot commands disabled, running headless")
            asyncio.run(run_headless())
    except ConfigError as exc:
        logger.error("Failed to create scheduler: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
