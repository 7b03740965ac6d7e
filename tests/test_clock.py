"""Tests for gardenit.core.clock."""

from datetime import datetime, timezone

import pytest

from gardenit.core.clock import (
    InvalidTimezoneError,
    resolve_timezone,
    to_local_time,
    user_timezone_name,
)
from gardenit.data.models import NotificationPreference, User


class TestResolveTimezone:
    def test_known_zone(self):
        assert resolve_timezone("Europe/London").key == "Europe/London"

    def test_unknown_zone_raises(self):
        with pytest.raises(InvalidTimezoneError):
            resolve_timezone("Mars/Olympus_Mons")

    def test_empty_name_raises(self):
        with pytest.raises(InvalidTimezoneError):
            resolve_timezone("")


class TestUserTimezoneName:
    def test_preference_wins(self):
        user = User(id="u1", timezone="America/New_York")
        prefs = NotificationPreference(user_id="u1", email_digest_timezone="Asia/Tokyo")
        assert user_timezone_name(user, prefs, "UTC") == "Asia/Tokyo"

    def test_profile_then_default(self):
        prefs = NotificationPreference(user_id="u1")
        assert user_timezone_name(User(id="u1", timezone="Europe/Paris"), prefs, "UTC") == "Europe/Paris"
        assert user_timezone_name(User(id="u1"), prefs, "UTC") == "UTC"


class TestToLocalTime:
    def test_converts_across_date_line(self):
        instant = datetime(2024, 5, 6, 23, 30, tzinfo=timezone.utc)  # Monday
        local = to_local_time(instant, resolve_timezone("Asia/Tokyo"))

        assert (local.year, local.month, local.day) == (2024, 5, 7)
        assert (local.hour, local.minute) == (8, 30)
        assert local.weekday == "TU"

    def test_naive_instant_is_utc(self):
        local = to_local_time(datetime(2024, 5, 6, 7, 10), resolve_timezone("UTC"))
        assert (local.hour, local.minute, local.weekday) == (7, 10, "MO")
