"""Allowlist gate for scheduler commands."""

import logging

from telegram import Update

from pulse.config import settings

logger = logging.getLogger(__name__)


def is_allowed(update: Update) -> bool:
    """Return True if the sender may start or stop the scheduler.

    Unknown senders are rejected without a reply. An empty ALLOWED_USER_IDS
    rejects everyone, since the commands control outbound traffic.
    """
    user = update.effective_user
    if user is None:
        return False

    allowed = settings.get_allowed_user_ids()
    if not allowed:
        logger.warning("ALLOWED_USER_IDS is empty, rejecting scheduler command")
        return False

    if user.id not in allowed:
        logger.info("Rejected scheduler command from user %s", user.id)
        return False
    return True
