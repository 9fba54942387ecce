"""Delivery channel factory — creates the adapters enabled by config."""

from __future__ import annotations

from typing import TYPE_CHECKING

from smartcal.config import settings

if TYPE_CHECKING:
    from telegram import Bot

    from smartcal.ports.delivery_port import ChatChannelPort, EmailChannelPort


def create_chat_channel(bot: Bot) -> ChatChannelPort:
    from smartcal.adapters.telegram_channel import TelegramChatChannel

    return TelegramChatChannel(bot)


def create_email_channel() -> EmailChannelPort | None:
    """Return the email adapter, or None when no provider key is configured."""
    if not settings.RESEND_API_KEY:
        return None

    from smartcal.adapters.resend_email import ResendEmailChannel

    return ResendEmailChannel(api_key=settings.RESEND_API_KEY, sender=settings.EMAIL_FROM)
