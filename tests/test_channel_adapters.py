"""Tests for the channel transports and the transport factory."""

import smtplib

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from telegram.error import NetworkError

from gardenit.adapters.channel_factory import create_transports
from gardenit.adapters.smtp_email import SmtpEmailTransport
from gardenit.adapters.telegram_push import TelegramPushTransport
from gardenit.ports.channel_port import ChannelError, ChannelPayload

PAYLOAD = ChannelPayload(subject="Frost risk", text="Cover the basil tonight.")


class TestTelegramPushTransport:
    @pytest.mark.asyncio
    async def test_sends_subject_and_text(self):
        bot = AsyncMock()
        await TelegramPushTransport(bot).send("4242", PAYLOAD)
        bot.send_message.assert_awaited_once_with(
            chat_id="4242", text="Frost risk\n\nCover the basil tonight.",
        )

    @pytest.mark.asyncio
    async def test_truncates_long_messages(self):
        bot = AsyncMock()
        await TelegramPushTransport(bot).send("4242", ChannelPayload(subject="S", text="x" * 5000))
        assert len(bot.send_message.call_args.kwargs["text"]) == 4096

    @pytest.mark.asyncio
    async def test_telegram_error_becomes_channel_error(self):
        bot = AsyncMock()
        bot.send_message.side_effect = NetworkError("unreachable")
        with pytest.raises(ChannelError):
            await TelegramPushTransport(bot).send("4242", PAYLOAD)


class TestSmtpEmailTransport:
    @pytest.mark.asyncio
    async def test_sends_message(self):
        server = MagicMock()
        smtp_cls = MagicMock()
        smtp_cls.return_value.__enter__.return_value = server

        transport = SmtpEmailTransport(
            host="smtp.test", port=587, sender="Gardenit <no-reply@gardenit.app>",
            username="user", password="secret",
        )
        with patch("gardenit.adapters.smtp_email.smtplib.SMTP", smtp_cls):
            await transport.send("gardener@example.com", PAYLOAD)

        smtp_cls.assert_called_once_with("smtp.test", 587, timeout=15)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "secret")
        msg = server.send_message.call_args.args[0]
        assert msg["Subject"] == "[Gardenit] Frost risk"
        assert msg["To"] == "gardener@example.com"

    @pytest.mark.asyncio
    async def test_no_login_without_username(self):
        server = MagicMock()
        smtp_cls = MagicMock()
        smtp_cls.return_value.__enter__.return_value = server

        transport = SmtpEmailTransport(host="smtp.test", port=25, sender="a@b.c")
        with patch("gardenit.adapters.smtp_email.smtplib.SMTP", smtp_cls):
            await transport.send("gardener@example.com", PAYLOAD)

        server.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_smtp_failure_becomes_channel_error(self):
        smtp_cls = MagicMock(side_effect=smtplib.SMTPConnectError(421, "busy"))
        transport = SmtpEmailTransport(host="smtp.test", port=587, sender="a@b.c")
        with patch("gardenit.adapters.smtp_email.smtplib.SMTP", smtp_cls):
            with pytest.raises(ChannelError):
                await transport.send("gardener@example.com", PAYLOAD)


class TestCreateTransports:
    def test_no_smtp_no_bot(self):
        with patch("gardenit.adapters.channel_factory.settings") as mock_settings:
            mock_settings.SMTP_HOST = ""
            assert create_transports() == {}

    def test_email_and_push(self):
        with patch("gardenit.adapters.channel_factory.settings") as mock_settings:
            mock_settings.SMTP_HOST = "smtp.test"
            mock_settings.SMTP_PORT = 587
            mock_settings.EMAIL_FROM = "a@b.c"
            mock_settings.SMTP_USERNAME = ""
            mock_settings.SMTP_PASSWORD = ""
            transports = create_transports(bot=MagicMock())

        assert isinstance(transports["email"], SmtpEmailTransport)
        assert isinstance(transports["push"], TelegramPushTransport)
