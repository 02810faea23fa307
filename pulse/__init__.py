"""tg-pulse — periodic Telegram Bot API health checks."""
