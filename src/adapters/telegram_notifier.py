"""Telegram delivery for the coach — implements NotificationPort.

Sends reminders, feedback and summaries to a chat through a telegram.Bot.
Texts longer than Telegram's per-message limit are split on line breaks
and sent in order.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.constants import MessageLimit

logger = logging.getLogger(__name__)


def split_text(text: str, limit: int = MessageLimit.MAX_TEXT_LENGTH) -> list[str]:
    """Split text into chunks of at most `limit` characters, preferring newlines."""
    chunks: list[str] = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text:
        chunks.append(text)
    return chunks


class TelegramNotifier:
    """Coach messages over the Telegram Bot API."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, chat_id: str, text: str) -> None:
        for chunk in split_text(text):
            await self._bot.send_message(chat_id=chat_id, text=chunk)
        logger.debug("Sent %d chars to chat %s", len(text), chat_id)
