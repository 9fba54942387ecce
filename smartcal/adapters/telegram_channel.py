"""Telegram chat channel — implements ChatChannelPort.

Wraps a telegram.Bot instance; the user's channel address is their chat id.

The text message is the delivery. An attachment that fails after the text
went out is logged and dropped: the user already has the message, so the
send still counts as delivered.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

from smartcal.ports.delivery_port import Attachment, DeliveryError

logger = logging.getLogger(__name__)


class TelegramChatChannel:
    """Telegram implementation of ChatChannelPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_chat_message(
        self, address: str, text: str, attachment: Attachment | None = None
    ) -> str:
        try:
            message = await self._bot.send_message(chat_id=address, text=text)
        except TelegramError as exc:
            raise DeliveryError(f"Telegram send to {address} failed: {exc}") from exc

        logger.info("Telegram message %s sent to %s", message.message_id, address)

        if attachment is not None:
            try:
                await self._bot.send_document(
                    chat_id=address,
                    document=attachment.content,
                    filename=attachment.filename,
                )
            except TelegramError as exc:
                logger.warning(
                    "Telegram attachment %s to %s failed after message %s: %s",
                    attachment.filename, address, message.message_id, exc,
                )

        return str(message.message_id)
