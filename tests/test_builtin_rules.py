"""Tests for gardenit.core.builtin_rules — default rule seeding."""

from gardenit.core.builtin_rules import BUILT_IN_RULES, ensure_builtin_rules


class TestEnsureBuiltinRules:
    def test_seeds_all(self, store):
        created = ensure_builtin_rules(store, "u1")
        assert len(created) == len(BUILT_IN_RULES)
        names = {r.name for r in store.list_rules("u1")}
        assert names == {d["name"] for d in BUILT_IN_RULES}

    def test_idempotent(self, store):
        ensure_builtin_rules(store, "u1")
        assert ensure_builtin_rules(store, "u1") == []
        assert len(store.list_rules("u1")) == len(BUILT_IN_RULES)

    def test_keeps_user_changes(self, store):
        ensure_builtin_rules(store, "u1")
        frost = next(r for r in store.list_rules("u1") if r.name == "weather_frost_risk")
        store.set_rule_enabled(frost.id, False)

        ensure_builtin_rules(store, "u1")

        assert store.get_rule(frost.id).is_enabled is False

    def test_morning_digest_schedule(self, store):
        ensure_builtin_rules(store, "u1")
        digest = next(r for r in store.list_rules("u1") if r.name == "time_morning_digest")
        assert (digest.schedule.frequency, digest.schedule.hour, digest.schedule.minute) == ("DAILY", 7, 10)
        assert digest.params["digest"] is True
