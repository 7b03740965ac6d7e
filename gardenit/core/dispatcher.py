"""Dispatcher — fans a composed digest out to the user's channels.

Channels are independent: one failing transport never blocks or rolls back
another, and partial success is the normal case. Every line delivered on a
channel is recorded as a Notification row for that channel. The dispatcher
has no retry timer; undelivered lines stay pending in the store and the next
tick offers them again.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gardenit.core.digest import DigestLine
from gardenit.data.models import (
    CHANNEL_EMAIL,
    CHANNEL_IN_APP,
    CHANNEL_PUSH,
    CHANNELS,
    NotificationPreference,
    User,
)
from gardenit.ports.channel_port import ChannelPayload

if TYPE_CHECKING:
    from gardenit.data.db import NotificationStore
    from gardenit.ports.channel_port import ChannelTransport

logger = logging.getLogger(__name__)

SENT = "sent"
FAILED = "failed"
HELD = "held"
DISABLED = "disabled"
SKIPPED = "skipped"
NOTHING = "nothing"

_PUSH_MAX_LINES = 8


@dataclass
class DeliveryResult:
    """Outcome of delivering a digest on one channel."""

    channel: str
    status: str
    delivered: list[str] = field(default_factory=list)
    held: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def required(self) -> bool:
        """Whether items still owe a delivery on this channel."""
        return self.status not in (DISABLED, SKIPPED)


def build_email_payload(lines: list[DigestLine]) -> ChannelPayload:
    if len(lines) == 1:
        subject = lines[0].title
    else:
        subject = f"Your garden digest — {len(lines)} items"
    blocks = []
    for line in lines:
        block = line.text
        if line.body:
            block += "\n" + "\n".join(f"    {row}" for row in line.body.splitlines())
        blocks.append(block)
    text = "\n\n".join(blocks) + "\n\nVisit Gardenit to log progress or adjust reminders."
    return ChannelPayload(subject=subject, text=text)


def build_push_payload(lines: list[DigestLine]) -> ChannelPayload:
    if len(lines) == 1:
        return ChannelPayload(subject=lines[0].title, text=lines[0].body or lines[0].text)
    shown = [line.text for line in lines[:_PUSH_MAX_LINES]]
    if len(lines) > _PUSH_MAX_LINES:
        shown.append(f"+{len(lines) - _PUSH_MAX_LINES} more in the app")
    return ChannelPayload(subject=f"{len(lines)} garden updates", text="\n".join(shown))


_PAYLOAD_BUILDERS = {
    CHANNEL_EMAIL: build_email_payload,
    CHANNEL_PUSH: build_push_payload,
}


class Dispatcher:
    """Delivers digest lines over in-app, email and push."""

    def __init__(
        self,
        store: NotificationStore,
        transports: dict[str, ChannelTransport],
    ) -> None:
        self._store = store
        self._transports = transports

    async def deliver(
        self,
        user: User,
        lines: list[DigestLine],
        preferences: NotificationPreference,
        quiet: bool = False,
        already_sent: dict[str, set[str]] | None = None,
    ) -> dict[str, DeliveryResult]:
        """Deliver `lines` on every channel, returning one result per channel.

        Args:
            quiet: inside the user's quiet hours; email and push only carry
                urgent lines, the rest are reported as held.
            already_sent: item ids per channel that a previous tick already
                delivered; they are not sent again.
        """
        already_sent = already_sent or {}
        results: dict[str, DeliveryResult] = {}
        for channel in CHANNELS:
            pending = [l for l in lines if l.item_id not in already_sent.get(channel, set())]
            if not preferences.channel_enabled(channel):
                results[channel] = DeliveryResult(channel, DISABLED)
            elif channel == CHANNEL_IN_APP:
                results[channel] = self._deliver_in_app(user, pending)
            else:
                results[channel] = await self._deliver_remote(user, channel, pending, quiet)
        return results

    def _deliver_in_app(self, user: User, lines: list[DigestLine]) -> DeliveryResult:
        result = DeliveryResult(CHANNEL_IN_APP, NOTHING if not lines else SENT)
        for line in lines:
            try:
                self._record(user, CHANNEL_IN_APP, line)
            except sqlite3.Error as exc:
                logger.error("In-app notification for user %s failed: %s", user.id, exc)
                result.status = FAILED
                result.error = str(exc)
                break
            result.delivered.append(line.item_id)
        return result

    async def _deliver_remote(
        self, user: User, channel: str, lines: list[DigestLine], quiet: bool,
    ) -> DeliveryResult:
        recipient = user.email if channel == CHANNEL_EMAIL else user.push_chat_id
        transport = self._transports.get(channel)
        if not recipient or transport is None:
            return DeliveryResult(channel, SKIPPED)

        to_send = [l for l in lines if l.urgent] if quiet else list(lines)
        held = [l.item_id for l in lines if l not in to_send]
        if not to_send:
            return DeliveryResult(channel, HELD if held else NOTHING, held=held)

        payload = _PAYLOAD_BUILDERS[channel](to_send)
        try:
            await transport.send(recipient, payload)
        except Exception as exc:
            logger.error("%s delivery to user %s failed: %s", channel, user.id, exc)
            return DeliveryResult(channel, FAILED, held=held, error=str(exc))

        for line in to_send:
            try:
                self._record(user, channel, line)
            except sqlite3.Error as exc:
                logger.error(
                    "Delivered %s to user %s but recording it failed: %s",
                    channel, user.id, exc,
                )
        logger.info(
            "Delivered %d item(s) to user %s via %s (%d held)",
            len(to_send), user.id, channel, len(held),
        )
        return DeliveryResult(
            channel, SENT, delivered=[l.item_id for l in to_send], held=held,
        )

    def _record(self, user: User, channel: str, line: DigestLine) -> None:
        self._store.add_notification(
            user_id=user.id,
            title=line.title,
            body=line.body or line.text,
            severity=line.severity,
            channel=channel,
            due_at=line.due_at,
            rule_id=line.rule_id,
        )
