"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol.
The Telegram message id is the delivery id, so a later reply quoting the
message can be matched back to the sent-log row.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import BadRequest, TelegramError

from src.ports.notification_port import DeliveryResult

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, handle: str, text: str) -> DeliveryResult:
        try:
            chat_id = int(handle)
            try:
                message = await self._bot.send_message(chat_id=chat_id, text=text, parse_mode="Markdown")
            except BadRequest as exc:
                # Titles with stray "*" or "_" break Markdown entities
                logger.debug("Markdown rejected (%s), resending as plain text", exc)
                message = await self._bot.send_message(chat_id=chat_id, text=text)
        except (TelegramError, ValueError) as exc:
            logger.warning("Telegram send to %s failed: %s", handle, exc)
            return DeliveryResult(ok=False, error=str(exc))
        return DeliveryResult(ok=True, delivery_id=str(message.message_id))
