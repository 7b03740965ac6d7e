"""Timezone resolution and local-time breakdown.

The only place where instants are converted to a user's wall clock. The
schedule matcher and the quiet-hours filter receive the LocalTime produced
here and never touch timezones themselves.
"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from gardenit.data.models import WEEKDAYS, LocalTime, NotificationPreference, User


class InvalidTimezoneError(ValueError):
    """Raised when a timezone identifier cannot be resolved."""


def resolve_timezone(name: str) -> ZoneInfo:
    """Return the ZoneInfo for an IANA identifier, or raise InvalidTimezoneError."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(f"Unknown timezone: {name!r}") from exc


def user_timezone_name(
    user: User, preferences: NotificationPreference, default: str,
) -> str:
    """Pick the timezone for a user: digest preference, then profile, then default."""
    return preferences.email_digest_timezone or user.timezone or default


def to_local_time(instant: datetime, tz: ZoneInfo) -> LocalTime:
    """Break an aware instant down into wall-clock fields in tz.

    Naive datetimes are taken to be UTC.
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    local = instant.astimezone(tz)
    return LocalTime(
        year=local.year,
        month=local.month,
        day=local.day,
        hour=local.hour,
        minute=local.minute,
        weekday=WEEKDAYS[local.weekday()],
    )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
