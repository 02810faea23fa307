"""Bot API checks the scheduler runs each cycle."""

from pulse.checks.operations import (
    TelegramOperations,
    register_default_operations,
    status_for_error,
)

__all__ = [
    "TelegramOperations",
    "register_default_operations",
    "status_for_error",
]
