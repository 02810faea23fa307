"""Notification channels used to echo scheduler outcomes to a chat."""

from pulse.notifications.channels import NotificationChannel
from pulse.notifications.telegram_channel import TelegramChannel

__all__ = [
    "NotificationChannel",
    "TelegramChannel",
]
