"""Tests for gardenit.core.preferences — validation and digest-hour coupling."""

import pytest
from pydantic import ValidationError

from gardenit.core.builtin_rules import MORNING_DIGEST_RULE, ensure_builtin_rules
from gardenit.core.preferences import PreferenceSettings, update_preferences


class TestPreferenceSettings:
    def test_defaults_valid(self):
        assert PreferenceSettings().email_digest_hour == 7

    @pytest.mark.parametrize("fields", [
        {"dnd_enabled": True, "dnd_start_hour": 22},
        {"dnd_enabled": True, "dnd_start_hour": 5, "dnd_end_hour": 5},
        {"dnd_enabled": True, "dnd_start_hour": 24, "dnd_end_hour": 6},
        {"email_digest_hour": 25},
        {"email_digest_timezone": "Mars/Olympus_Mons"},
        {"unknown_field": True},
    ])
    def test_invalid(self, fields):
        with pytest.raises(ValidationError):
            PreferenceSettings(**fields)

    def test_valid_wraparound_window(self):
        prefs = PreferenceSettings(dnd_enabled=True, dnd_start_hour=22, dnd_end_hour=6)
        assert (prefs.dnd_start_hour, prefs.dnd_end_hour) == (22, 6)

    def test_hours_kept_while_dnd_off(self):
        prefs = PreferenceSettings(dnd_enabled=False, dnd_start_hour=22)
        assert prefs.dnd_start_hour == 22


class TestUpdatePreferences:
    def test_partial_update_keeps_other_fields(self, garden_db, store):
        update_preferences(garden_db, store, "u1", push_enabled=False)
        prefs = update_preferences(garden_db, store, "u1", email_enabled=False)
        assert prefs.push_enabled is False
        assert prefs.email_enabled is False
        assert garden_db.get_preferences("u1") == prefs

    def test_invalid_update_not_saved(self, garden_db, store):
        with pytest.raises(ValidationError):
            update_preferences(garden_db, store, "u1", dnd_enabled=True, dnd_start_hour=3, dnd_end_hour=3)
        assert garden_db.get_preferences("u1").dnd_enabled is False

    def test_digest_hour_moves_morning_digest(self, garden_db, store):
        ensure_builtin_rules(store, "u1")
        update_preferences(garden_db, store, "u1", email_digest_hour=6)

        digest = next(r for r in store.list_rules("u1") if r.name == MORNING_DIGEST_RULE)
        assert (digest.schedule.hour, digest.schedule.minute) == (6, 10)

    def test_digest_hour_without_rule(self, garden_db, store):
        prefs = update_preferences(garden_db, store, "u1", email_digest_hour=9)
        assert prefs.email_digest_hour == 9
        assert store.list_rules("u1") == []
