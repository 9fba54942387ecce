"""Tests for the delivery adapters — Resend email, Telegram chat, factory."""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from telegram.error import TelegramError

from smartcal.adapters.resend_email import ResendEmailChannel
from smartcal.adapters.telegram_channel import TelegramChatChannel
from smartcal.ports.delivery_port import Attachment, DeliveryError

_ATTACHMENT = Attachment(filename="schedule.ics", content=b"BEGIN:VCALENDAR", mime_type="text/calendar")


def _mock_client(response=None, error=None):
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    if error is not None:
        mock_client.post = AsyncMock(side_effect=error)
    else:
        mock_client.post = AsyncMock(return_value=response)
    return mock_client


def _mock_response(payload):
    mock_resp = MagicMock()
    mock_resp.json.return_value = payload
    mock_resp.raise_for_status = MagicMock()
    return mock_resp


# ---------------------------------------------------------------------------
# Resend
# ---------------------------------------------------------------------------


class TestResendEmailChannel:
    @pytest.mark.asyncio
    async def test_successful_send(self):
        mock_client = _mock_client(_mock_response({"id": "re_123"}))
        channel = ResendEmailChannel(api_key="fake-key", sender="Smart Calendar <a@b.c>")

        with patch("smartcal.adapters.resend_email.httpx.AsyncClient", return_value=mock_client):
            message_id = await channel.send_email("asha@example.com", "Subject", "<p>Hi</p>", _ATTACHMENT)

        assert message_id == "re_123"
        kwargs = mock_client.post.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer fake-key"
        payload = kwargs["json"]
        assert payload["to"] == ["asha@example.com"]
        assert payload["subject"] == "Subject"
        assert payload["attachments"][0]["filename"] == "schedule.ics"
        assert base64.b64decode(payload["attachments"][0]["content"]) == b"BEGIN:VCALENDAR"

    @pytest.mark.asyncio
    async def test_without_attachment(self):
        mock_client = _mock_client(_mock_response({"id": "re_1"}))
        channel = ResendEmailChannel(api_key="k", sender="s")

        with patch("smartcal.adapters.resend_email.httpx.AsyncClient", return_value=mock_client):
            await channel.send_email("asha@example.com", "Subject", "<p>Hi</p>")

        assert "attachments" not in mock_client.post.call_args.kwargs["json"]

    @pytest.mark.asyncio
    async def test_http_error_raises_delivery_error(self):
        mock_client = _mock_client(error=httpx.ConnectTimeout("timeout"))
        channel = ResendEmailChannel(api_key="k", sender="s")

        with patch("smartcal.adapters.resend_email.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(DeliveryError):
                await channel.send_email("asha@example.com", "Subject", "<p>Hi</p>")

    @pytest.mark.asyncio
    async def test_missing_id_raises_delivery_error(self):
        mock_client = _mock_client(_mock_response({"message": "validation_error"}))
        channel = ResendEmailChannel(api_key="k", sender="s")

        with patch("smartcal.adapters.resend_email.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(DeliveryError):
                await channel.send_email("asha@example.com", "Subject", "<p>Hi</p>")


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------


class TestTelegramChatChannel:
    @pytest.mark.asyncio
    async def test_sends_text_then_document(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(return_value=MagicMock(message_id=42))
        bot.send_document = AsyncMock()

        message_id = await TelegramChatChannel(bot).send_chat_message("12345", "Hi Asha!", _ATTACHMENT)

        assert message_id == "42"
        bot.send_message.assert_awaited_once_with(chat_id="12345", text="Hi Asha!")
        kwargs = bot.send_document.call_args.kwargs
        assert kwargs["chat_id"] == "12345"
        assert kwargs["document"] == b"BEGIN:VCALENDAR"
        assert kwargs["filename"] == "schedule.ics"

    @pytest.mark.asyncio
    async def test_text_only(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(return_value=MagicMock(message_id=1))
        bot.send_document = AsyncMock()

        await TelegramChatChannel(bot).send_chat_message("12345", "Hi")

        bot.send_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_document_failure_after_text_still_delivered(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(return_value=MagicMock(message_id=42))
        bot.send_document = AsyncMock(side_effect=TelegramError("file too big"))

        message_id = await TelegramChatChannel(bot).send_chat_message("12345", "Hi Asha!", _ATTACHMENT)

        assert message_id == "42"
        bot.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_telegram_error_wrapped(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=TelegramError("Forbidden: bot was blocked"))

        with pytest.raises(DeliveryError):
            await TelegramChatChannel(bot).send_chat_message("12345", "Hi")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestChannelFactory:
    def test_chat_channel(self):
        from smartcal.adapters.channel_factory import create_chat_channel

        assert isinstance(create_chat_channel(MagicMock()), TelegramChatChannel)

    def test_email_disabled_without_key(self):
        from smartcal.adapters.channel_factory import create_email_channel

        with patch("smartcal.adapters.channel_factory.settings") as mock_settings:
            mock_settings.RESEND_API_KEY = ""
            assert create_email_channel() is None

    def test_email_enabled_with_key(self):
        from smartcal.adapters.channel_factory import create_email_channel

        with patch("smartcal.adapters.channel_factory.settings") as mock_settings:
            mock_settings.RESEND_API_KEY = "re_key"
            mock_settings.EMAIL_FROM = "Smart Calendar <noreply@smartcal.local>"
            assert isinstance(create_email_channel(), ResendEmailChannel)
