"""Channel port — abstract interface for delivering a payload to a recipient.

The dispatcher depends on this protocol, never on a specific transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class ChannelError(Exception):
    """Raised when a transport fails to deliver a payload."""


@dataclass(frozen=True)
class ChannelPayload:
    """What a transport sends: a subject line and a plain-text body."""

    subject: str
    text: str


class ChannelTransport(Protocol):
    """Abstract delivery interface used by the dispatcher."""

    async def send(self, recipient: str, payload: ChannelPayload) -> None: ...
