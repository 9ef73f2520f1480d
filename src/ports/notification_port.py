"""Notification port — abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
Delivery is fire-and-forget: a failed send is logged, never retried, and
never undoes the state transition that caused it.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(self, chat_id: str, text: str) -> None: ...


async def notify(notifier: NotificationPort, chat_id: str, text: str) -> bool:
    """Send and swallow transport errors. Returns whether the send went through."""
    try:
        await notifier.send_message(chat_id, text)
        return True
    except Exception as exc:
        logger.warning("Failed to send message to chat %s: %s", chat_id, exc)
        return False
