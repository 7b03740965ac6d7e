"""Do-not-disturb filter.

Quiet hours hold email and push delivery of non-urgent items. They never
stop evaluation, claiming or in-app delivery: a held item stays pending and
goes out on the first tick outside the window.
"""

from __future__ import annotations

from dataclasses import dataclass

from gardenit.data.models import NotificationPreference


@dataclass(frozen=True)
class QuietHours:
    """A local-hour window [start_hour, end_hour), possibly crossing midnight."""

    start_hour: int
    end_hour: int


def quiet_hours_for(preferences: NotificationPreference) -> QuietHours | None:
    """Return the user's quiet-hours window, or None when DND is off."""
    if not preferences.dnd_enabled:
        return None
    if preferences.dnd_start_hour is None or preferences.dnd_end_hour is None:
        return None
    return QuietHours(preferences.dnd_start_hour, preferences.dnd_end_hour)


def is_quiet_now(local_hour: int, dnd: QuietHours | None) -> bool:
    """Return True when local_hour falls inside the quiet window.

    Raises:
        ValueError: if start and end are equal. Such windows are rejected
            when preferences are saved, so this indicates corrupt data.
    """
    if dnd is None:
        return False
    start, end = dnd.start_hour, dnd.end_hour
    if start == end:
        raise ValueError(f"Degenerate quiet-hours window: {start}..{end}")
    if start < end:
        return start <= local_hour < end
    # Window crosses midnight, e.g. 22 -> 6
    return local_hour >= start or local_hour < end
