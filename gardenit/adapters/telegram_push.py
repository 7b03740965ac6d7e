"""Telegram push adapter — implements ChannelTransport for the push channel.

Wraps a telegram.Bot instance; the recipient is the user's chat id.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

from gardenit.ports.channel_port import ChannelError, ChannelPayload

logger = logging.getLogger(__name__)

# Telegram rejects messages longer than this.
_MAX_MESSAGE_LENGTH = 4096


class TelegramPushTransport:
    """Telegram implementation of ChannelTransport."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, recipient: str, payload: ChannelPayload) -> None:
        text = f"{payload.subject}\n\n{payload.text}" if payload.text else payload.subject
        if len(text) > _MAX_MESSAGE_LENGTH:
            text = text[: _MAX_MESSAGE_LENGTH - 1] + "…"
        try:
            await self._bot.send_message(chat_id=recipient, text=text)
        except TelegramError as exc:
            raise ChannelError(f"Telegram send to {recipient} failed: {exc}") from exc
