"""Tests for gardenit.core.quiet_hours — do-not-disturb windows."""

import pytest

from gardenit.core.quiet_hours import QuietHours, is_quiet_now, quiet_hours_for
from gardenit.data.models import NotificationPreference


class TestIsQuietNow:
    def test_no_window(self):
        assert all(not is_quiet_now(h, None) for h in range(24))

    def test_same_day_window(self):
        dnd = QuietHours(13, 15)
        assert [h for h in range(24) if is_quiet_now(h, dnd)] == [13, 14]

    def test_window_crossing_midnight(self):
        dnd = QuietHours(22, 6)
        quiet = [h for h in range(24) if is_quiet_now(h, dnd)]
        assert quiet == [0, 1, 2, 3, 4, 5, 22, 23]

    def test_end_hour_is_exclusive(self):
        assert is_quiet_now(6, QuietHours(22, 6)) is False
        assert is_quiet_now(22, QuietHours(22, 6)) is True

    def test_degenerate_window_raises(self):
        with pytest.raises(ValueError):
            is_quiet_now(3, QuietHours(5, 5))


class TestQuietHoursFor:
    def test_disabled(self):
        prefs = NotificationPreference(user_id="u1", dnd_start_hour=22, dnd_end_hour=6)
        assert quiet_hours_for(prefs) is None

    def test_enabled(self):
        prefs = NotificationPreference(
            user_id="u1", dnd_enabled=True, dnd_start_hour=22, dnd_end_hour=6,
        )
        assert quiet_hours_for(prefs) == QuietHours(22, 6)

    def test_enabled_without_hours(self):
        prefs = NotificationPreference(user_id="u1", dnd_enabled=True, dnd_start_hour=22)
        assert quiet_hours_for(prefs) is None
