"""Reminder cadence and care-reminder materialization.

Cadenced reminders re-arm by moving due_at forward; one-shot reminders are
finished once sent_at is set. Cadence strings are the human form stored on
the reminder ("every 3 days", "weekly").
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, time, timedelta, timezone
from typing import TYPE_CHECKING

from gardenit.data.models import Planting, Reminder

if TYPE_CHECKING:
    from gardenit.data.db import NotificationStore

logger = logging.getLogger(__name__)

_CADENCE_RE = re.compile(r"^every\s+(\d+)\s+(hour|day|week)s?$", re.IGNORECASE)
_UNIT_HOURS = {"hour": 1, "day": 24, "week": 24 * 7}
_ALIASES = {"hourly": "every 1 hour", "daily": "every 1 day", "weekly": "every 1 week"}

_DEFAULT_DAYS_TO_MATURITY = 60


def cadence_interval(cadence: str | None) -> timedelta | None:
    """Return the repeat interval for a cadence string, or None for one-shot.

    Unparseable cadences are treated as one-shot and logged.
    """
    if not cadence or not cadence.strip():
        return None
    text = _ALIASES.get(cadence.strip().lower(), cadence.strip())
    match = _CADENCE_RE.match(text)
    if match is None:
        logger.warning("Unrecognized reminder cadence %r, treating as one-shot", cadence)
        return None
    count = int(match.group(1))
    if count <= 0:
        logger.warning("Non-positive reminder cadence %r, treating as one-shot", cadence)
        return None
    return timedelta(hours=count * _UNIT_HOURS[match.group(2).lower()])


def next_due_at(reminder: Reminder, now: datetime) -> datetime | None:
    """Where a cadenced reminder re-arms after firing at `now`.

    Skips every period that is already in the past, so a reminder that was
    overdue for several periods fires once and then lands in the future.
    Returns None for one-shot reminders.
    """
    interval = cadence_interval(reminder.cadence)
    if interval is None:
        return None
    due = reminder.due_at + interval
    if due <= now:
        missed = (now - due) // interval + 1
        due += interval * missed
    return due


def build_care_reminders(planting: Planting, now: datetime) -> list[dict]:
    """Standard care reminders for a new planting: water, feed, harvest check."""
    name = planting.plant_name
    maturity_days = planting.days_to_maturity or _DEFAULT_DAYS_TO_MATURITY
    start = datetime.combine(planting.start_date, time(hour=9), tzinfo=timezone.utc)
    return [
        {
            "title": f"Water {name}",
            "due_at": now + timedelta(days=3),
            "cadence": "every 3 days",
            "type": "watering",
            "details": f"Keep soil evenly moist around {name}. Adjust if rainfall is expected.",
        },
        {
            "title": f"Feed {name}",
            "due_at": now + timedelta(days=14),
            "cadence": "every 14 days",
            "type": "feeding",
            "details": f"Provide a balanced feed to {name} to support growth.",
        },
        {
            "title": f"Check harvest readiness for {name}",
            "due_at": start + timedelta(days=maturity_days),
            "cadence": None,
            "type": "harvest",
            "details": (
                f"Based on {name}'s maturity window. "
                "Inspect fruit or foliage for readiness."
            ),
        },
    ]


def schedule_care_reminders(
    store: NotificationStore, planting: Planting, now: datetime,
) -> list[Reminder]:
    """Materialize the standard care reminders for a planting."""
    created = [
        store.add_reminder(
            user_id=planting.user_id,
            planting_id=planting.id,
            **fields,
        )
        for fields in build_care_reminders(planting, now)
    ]
    logger.info(
        "Scheduled %d care reminders for planting %s (%s)",
        len(created), planting.id, planting.plant_name,
    )
    return created
