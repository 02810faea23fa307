"""NotificationChannel protocol — interface for outcome delivery channels."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy."""

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'telegram')."""
        ...

    async def send(self, chat_id: str, message: str) -> bool:
        """Send a plain text message. Returns True on success."""
        ...
