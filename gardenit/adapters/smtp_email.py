"""SMTP email adapter — implements ChannelTransport for the email channel.

smtplib is blocking, so each send runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.text import MIMEText

from gardenit.ports.channel_port import ChannelError, ChannelPayload

logger = logging.getLogger(__name__)

_SUBJECT_PREFIX = "[Gardenit]"
_TIMEOUT_SECONDS = 15


class SmtpEmailTransport:
    """SMTP implementation of ChannelTransport."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password

    def _send_sync(self, recipient: str, payload: ChannelPayload) -> None:
        msg = MIMEText(payload.text, _charset="utf-8")
        msg["Subject"] = f"{_SUBJECT_PREFIX} {payload.subject}"
        msg["From"] = self._sender
        msg["To"] = recipient

        with smtplib.SMTP(self._host, self._port, timeout=_TIMEOUT_SECONDS) as server:
            server.starttls()
            if self._username:
                server.login(self._username, self._password)
            server.send_message(msg)

    async def send(self, recipient: str, payload: ChannelPayload) -> None:
        try:
            await asyncio.to_thread(self._send_sync, recipient, payload)
        except (smtplib.SMTPException, OSError) as exc:
            raise ChannelError(f"Email to {recipient} failed: {exc}") from exc
        logger.debug("Email '%s' sent to %s", payload.subject, recipient)
