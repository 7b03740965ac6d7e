"""Tests for gardenit.core.dispatcher — per-channel delivery."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from gardenit.core.digest import DigestLine
from gardenit.core.dispatcher import (
    DISABLED,
    FAILED,
    HELD,
    NOTHING,
    SENT,
    SKIPPED,
    Dispatcher,
    build_email_payload,
    build_push_payload,
)
from gardenit.data.models import NotificationPreference, User
from gardenit.ports.channel_port import ChannelError

DUE = datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _line(item_id: str, title: str = "Water Basil", severity: str = "info", body: str = "") -> DigestLine:
    return DigestLine(
        item_id=item_id,
        source="reminder",
        title=title,
        body=body,
        severity=severity,
        due_at=DUE,
        context="Basil in Bed 2 (Backyard)",
        focused=False,
        rule_id=None,
        text=f"{title} — Basil in Bed 2 (Backyard) — due 2024-05-01 07:00 UTC",
    )


def _user(**overrides) -> User:
    fields = {"id": "u1", "email": "gardener@example.com", "push_chat_id": "4242"}
    fields.update(overrides)
    return User(**fields)


def _transports():
    return {"email": AsyncMock(), "push": AsyncMock()}


# ---------------------------------------------------------------------------
# Dispatcher.deliver
# ---------------------------------------------------------------------------


class TestDeliver:
    @pytest.mark.asyncio
    async def test_all_channels_sent(self, store):
        transports = _transports()
        dispatcher = Dispatcher(store, transports)

        results = await dispatcher.deliver(
            _user(), [_line("a"), _line("b", "Feed Tomato")], NotificationPreference(user_id="u1"),
        )

        assert {c: r.status for c, r in results.items()} == {
            "in_app": SENT, "email": SENT, "push": SENT,
        }
        assert results["email"].delivered == ["a", "b"]
        transports["email"].send.assert_awaited_once()
        recipient, payload = transports["email"].send.call_args.args
        assert recipient == "gardener@example.com"
        assert "Feed Tomato" in payload.text
        transports["push"].send.assert_awaited_once()
        assert transports["push"].send.call_args.args[0] == "4242"

    @pytest.mark.asyncio
    async def test_notifications_recorded_per_channel(self, store):
        dispatcher = Dispatcher(store, _transports())
        await dispatcher.deliver(_user(), [_line("a")], NotificationPreference(user_id="u1"))

        channels = sorted(n.channel for n in store.list_notifications("u1"))
        assert channels == ["email", "in_app", "push"]

    @pytest.mark.asyncio
    async def test_disabled_channel(self, store):
        transports = _transports()
        prefs = NotificationPreference(user_id="u1", email_enabled=False)

        results = await Dispatcher(store, transports).deliver(_user(), [_line("a")], prefs)

        assert results["email"].status == DISABLED
        assert results["email"].required is False
        transports["email"].send.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_recipient_skipped(self, store):
        transports = _transports()
        results = await Dispatcher(store, transports).deliver(
            _user(push_chat_id=None), [_line("a")], NotificationPreference(user_id="u1"),
        )
        assert results["push"].status == SKIPPED
        transports["push"].send.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_transport_skipped(self, store):
        results = await Dispatcher(store, {}).deliver(
            _user(), [_line("a")], NotificationPreference(user_id="u1"),
        )
        assert results["email"].status == SKIPPED
        assert results["push"].status == SKIPPED
        assert results["in_app"].status == SENT

    @pytest.mark.asyncio
    async def test_failing_channel_isolated(self, store):
        transports = _transports()
        transports["email"].send.side_effect = ChannelError("smtp down")

        results = await Dispatcher(store, transports).deliver(
            _user(), [_line("a")], NotificationPreference(user_id="u1"),
        )

        assert results["email"].status == FAILED
        assert "smtp down" in results["email"].error
        assert results["email"].delivered == []
        assert results["push"].status == SENT
        assert results["in_app"].status == SENT
        assert [n.channel for n in store.list_notifications("u1", channel="email")] == []

    @pytest.mark.asyncio
    async def test_quiet_hours_hold_non_urgent(self, store):
        transports = _transports()
        lines = [_line("a"), _line("frost", "Frost risk", severity="critical")]

        results = await Dispatcher(store, transports).deliver(
            _user(), lines, NotificationPreference(user_id="u1"), quiet=True,
        )

        assert results["email"].status == SENT
        assert results["email"].delivered == ["frost"]
        assert results["email"].held == ["a"]
        assert results["in_app"].delivered == ["a", "frost"]

    @pytest.mark.asyncio
    async def test_quiet_hours_nothing_urgent(self, store):
        transports = _transports()
        results = await Dispatcher(store, transports).deliver(
            _user(), [_line("a")], NotificationPreference(user_id="u1"), quiet=True,
        )
        assert results["push"].status == HELD
        assert results["push"].required is True
        transports["push"].send.assert_not_called()

    @pytest.mark.asyncio
    async def test_already_sent_not_repeated(self, store):
        transports = _transports()
        results = await Dispatcher(store, transports).deliver(
            _user(), [_line("a")], NotificationPreference(user_id="u1"),
            already_sent={"in_app": {"a"}, "email": {"a"}},
        )
        assert results["in_app"].status == NOTHING
        assert results["email"].status == NOTHING
        transports["email"].send.assert_not_called()
        assert results["push"].delivered == ["a"]

    @pytest.mark.asyncio
    async def test_in_app_store_failure(self):
        import sqlite3

        failing_store = MagicMock()
        failing_store.add_notification.side_effect = sqlite3.OperationalError("locked")

        results = await Dispatcher(failing_store, {}).deliver(
            _user(), [_line("a")], NotificationPreference(user_id="u1"),
        )
        assert results["in_app"].status == FAILED


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class TestPayloads:
    def test_email_single_line_uses_title(self):
        payload = build_email_payload([_line("a", body="Keep soil moist.")])
        assert payload.subject == "Water Basil"
        assert "    Keep soil moist." in payload.text

    def test_email_digest_subject(self):
        payload = build_email_payload([_line("a"), _line("b")])
        assert payload.subject == "Your garden digest — 2 items"

    def test_push_truncates_long_digest(self):
        lines = [_line(str(i), f"Task {i}") for i in range(11)]
        payload = build_push_payload(lines)
        assert payload.subject == "11 garden updates"
        assert payload.text.endswith("+3 more in the app")
