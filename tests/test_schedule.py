"""Tests for gardenit.core.schedule — parsing, formatting and matching."""

import pytest

from gardenit.core.schedule import (
    ScheduleError,
    build_schedule,
    format_schedule,
    matches,
    parse_schedule,
)
from gardenit.data.models import DAILY, WEEKDAYS, WEEKLY, LocalTime


def _local(hour: int, minute: int, weekday: str = "MO") -> LocalTime:
    return LocalTime(year=2024, month=5, day=6, hour=hour, minute=minute, weekday=weekday)


class TestParseSchedule:
    def test_daily(self):
        s = parse_schedule("FREQ=DAILY;BYHOUR=7;BYMINUTE=10")
        assert s.frequency == DAILY
        assert (s.hour, s.minute) == (7, 10)
        assert s.weekdays == frozenset()

    def test_weekly(self):
        s = parse_schedule("FREQ=WEEKLY;BYDAY=MO,WE;BYHOUR=18;BYMINUTE=0")
        assert s.frequency == WEEKLY
        assert s.weekdays == frozenset({"MO", "WE"})

    def test_keys_case_insensitive_and_any_order(self):
        s = parse_schedule("byminute=5;freq=weekly;BYday=sa;ByHour=9")
        assert s == build_schedule("WEEKLY", 9, 5, {"SA"})

    def test_byday_ignored_for_daily(self):
        s = parse_schedule("FREQ=DAILY;BYHOUR=6;BYMINUTE=0;BYDAY=MO")
        assert s.weekdays == frozenset()

    def test_trailing_semicolon_tolerated(self):
        assert parse_schedule("FREQ=DAILY;BYHOUR=6;BYMINUTE=0;").hour == 6

    @pytest.mark.parametrize("text", [
        "",
        "FREQ=MONTHLY;BYHOUR=7;BYMINUTE=0",
        "FREQ=DAILY;BYHOUR=24;BYMINUTE=0",
        "FREQ=DAILY;BYHOUR=7;BYMINUTE=60",
        "FREQ=DAILY;BYHOUR=-1;BYMINUTE=0",
        "FREQ=DAILY;BYHOUR=seven;BYMINUTE=0",
        "FREQ=DAILY;BYMINUTE=0",
        "FREQ=DAILY;BYHOUR=7;BYMINUTE=0;COUNT=3",
        "FREQ=DAILY;BYHOUR=7;BYHOUR=8;BYMINUTE=0",
        "FREQ=WEEKLY;BYHOUR=7;BYMINUTE=0",
        "FREQ=WEEKLY;BYDAY=XX;BYHOUR=7;BYMINUTE=0",
        "FREQ=DAILY;BYHOUR7;BYMINUTE=0",
    ])
    def test_malformed_raises(self, text):
        with pytest.raises(ScheduleError):
            parse_schedule(text)

    def test_schedule_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_schedule("nonsense")


class TestFormatSchedule:
    def test_weekdays_in_week_order(self):
        s = build_schedule("WEEKLY", 16, 0, {"SU", "MO", "WE"})
        assert format_schedule(s) == "FREQ=WEEKLY;BYHOUR=16;BYMINUTE=0;BYDAY=MO,WE,SU"

    def test_format_then_parse_is_stable(self):
        s = parse_schedule("freq=weekly;byday=fr,tu;byhour=8;byminute=30")
        assert parse_schedule(format_schedule(s)) == s


class TestMatches:
    def test_daily_exact_minute(self):
        s = build_schedule("DAILY", 7, 10)
        assert matches(_local(7, 10), s) is True
        assert matches(_local(7, 11), s) is False
        assert matches(_local(8, 10), s) is False

    def test_daily_any_weekday(self):
        s = build_schedule("DAILY", 7, 10)
        for day in WEEKDAYS:
            assert matches(_local(7, 10, day), s) is True
            assert matches(_local(7, 11, day), s) is False

    def test_weekly_requires_weekday(self):
        s = build_schedule("WEEKLY", 16, 0, {"MO", "SU"})
        for day in WEEKDAYS:
            assert matches(_local(16, 0, day), s) is (day in {"MO", "SU"})

    def test_weekly_wrong_time_on_right_day(self):
        s = build_schedule("WEEKLY", 16, 0, {"SU"})
        assert matches(_local(16, 1, "SU"), s) is False
