"""Schedule matcher — pure recurrence logic.

Parses the compact text form

    FREQ=DAILY|WEEKLY;BYHOUR=<0-23>;BYMINUTE=<0-59>[;BYDAY=MO,TU,...]

into a ScheduleExpression and matches it against an already localized
LocalTime. Matching is minute-exact: the tick driver must run at least once
a minute for a schedule to be observed.

No I/O and no timezone math: this module only compares fields.
"""

from __future__ import annotations

from gardenit.data.models import (
    DAILY,
    FREQUENCIES,
    WEEKDAYS,
    WEEKLY,
    LocalTime,
    ScheduleExpression,
)

_KNOWN_KEYS = {"FREQ", "BYHOUR", "BYMINUTE", "BYDAY"}


class ScheduleError(ValueError):
    """Raised when a schedule expression is malformed."""


def build_schedule(
    frequency: str,
    hour: int,
    minute: int,
    weekdays: frozenset[str] | set[str] | None = None,
) -> ScheduleExpression:
    """Validate the parts of a schedule and return the immutable value.

    Weekdays are required (and non-empty) for WEEKLY and dropped for DAILY.
    """
    frequency = frequency.upper()
    if frequency not in FREQUENCIES:
        raise ScheduleError(f"Unsupported frequency: {frequency!r}")
    if not 0 <= hour <= 23:
        raise ScheduleError(f"BYHOUR out of range: {hour}")
    if not 0 <= minute <= 59:
        raise ScheduleError(f"BYMINUTE out of range: {minute}")

    if frequency == DAILY:
        return ScheduleExpression(frequency=DAILY, hour=hour, minute=minute)

    days = frozenset(day.strip().upper() for day in (weekdays or ()))
    if not days:
        raise ScheduleError("WEEKLY schedules require a non-empty BYDAY")
    unknown = days - set(WEEKDAYS)
    if unknown:
        raise ScheduleError(f"Unknown weekday codes: {', '.join(sorted(unknown))}")
    return ScheduleExpression(frequency=WEEKLY, hour=hour, minute=minute, weekdays=days)


def parse_schedule(text: str) -> ScheduleExpression:
    """Parse the text form into a ScheduleExpression.

    Keys are case-insensitive and may appear in any order.

    Raises:
        ScheduleError: on unknown/duplicate keys, non-numeric or
            out-of-range values, or a WEEKLY schedule without BYDAY.
    """
    if not text or not text.strip():
        raise ScheduleError("Empty schedule expression")

    parts: dict[str, str] = {}
    for segment in text.strip().strip(";").split(";"):
        key, sep, value = segment.partition("=")
        key = key.strip().upper()
        if not sep or not key or not value.strip():
            raise ScheduleError(f"Malformed segment: {segment!r}")
        if key not in _KNOWN_KEYS:
            raise ScheduleError(f"Unknown key: {key!r}")
        if key in parts:
            raise ScheduleError(f"Duplicate key: {key!r}")
        parts[key] = value.strip()

    for required in ("FREQ", "BYHOUR", "BYMINUTE"):
        if required not in parts:
            raise ScheduleError(f"Missing {required}")

    try:
        hour = int(parts["BYHOUR"])
        minute = int(parts["BYMINUTE"])
    except ValueError as exc:
        raise ScheduleError(f"Non-numeric BYHOUR/BYMINUTE in {text!r}") from exc

    weekdays = None
    if "BYDAY" in parts:
        weekdays = {day for day in parts["BYDAY"].split(",") if day.strip()}

    return build_schedule(parts["FREQ"], hour, minute, weekdays)


def format_schedule(schedule: ScheduleExpression) -> str:
    """Render a ScheduleExpression back to its canonical text form."""
    text = f"FREQ={schedule.frequency};BYHOUR={schedule.hour};BYMINUTE={schedule.minute}"
    if schedule.frequency == WEEKLY:
        days = sorted(schedule.weekdays, key=WEEKDAYS.index)
        text += f";BYDAY={','.join(days)}"
    return text


def matches(local_time: LocalTime, schedule: ScheduleExpression) -> bool:
    """Return True when local_time falls on the scheduled minute."""
    if local_time.hour != schedule.hour or local_time.minute != schedule.minute:
        return False
    if schedule.frequency == WEEKLY:
        return local_time.weekday in schedule.weekdays
    return True
