"""Notifier factory — creates the outbound transport based on config."""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.config import settings

if TYPE_CHECKING:
    from telegram import Bot

    from src.ports.notification_port import NotificationPort


def create_notifier(bot: Bot | None = None) -> NotificationPort:
    """Return the notifier matching MESSAGING_PROVIDER.

    Args:
        bot: Telegram bot instance; required for the "telegram" provider.
    """
    provider = settings.MESSAGING_PROVIDER.lower()

    if provider == "telegram":
        if bot is None:
            raise ValueError("The telegram provider needs a Bot instance")
        from src.adapters.telegram_notifier import TelegramNotifier

        return TelegramNotifier(bot)

    if provider == "zapi":
        if not settings.ZAPI_INSTANCE_ID or not settings.ZAPI_TOKEN:
            raise ValueError("ZAPI_INSTANCE_ID and ZAPI_TOKEN are required for the zapi provider")
        from src.adapters.zapi_notifier import ZapiNotifier

        return ZapiNotifier(settings.ZAPI_INSTANCE_ID, settings.ZAPI_TOKEN, settings.ZAPI_CLIENT_TOKEN)

    raise ValueError(f"Unknown MESSAGING_PROVIDER: {provider!r}")
