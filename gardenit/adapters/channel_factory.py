"""Channel transport factory — wires transports from config."""

from __future__ import annotations

import logging

from telegram import Bot

from gardenit.config import settings
from gardenit.data.models import CHANNEL_EMAIL, CHANNEL_PUSH
from gardenit.ports.channel_port import ChannelTransport

logger = logging.getLogger(__name__)


def create_transports(bot: Bot | None = None) -> dict[str, ChannelTransport]:
    """Return the transports available under the current settings.

    Email is only wired when SMTP_HOST is configured; push needs a bot.
    Channels without a transport are reported as skipped by the dispatcher.
    """
    transports: dict[str, ChannelTransport] = {}

    if settings.SMTP_HOST:
        from gardenit.adapters.smtp_email import SmtpEmailTransport

        transports[CHANNEL_EMAIL] = SmtpEmailTransport(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            sender=settings.EMAIL_FROM,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
        )
    else:
        logger.warning("SMTP_HOST not set — email channel disabled")

    if bot is not None:
        from gardenit.adapters.telegram_push import TelegramPushTransport

        transports[CHANNEL_PUSH] = TelegramPushTransport(bot)

    return transports
