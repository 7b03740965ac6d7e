"""Built-in notification rules seeded for every user.

Seeding is idempotent by rule name: a user who disabled or rescheduled a
built-in keeps their version.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from gardenit.data.db import NotificationStore
    from gardenit.data.models import NotificationRule

logger = logging.getLogger(__name__)

MORNING_DIGEST_RULE = "time_morning_digest"

BUILT_IN_RULES: list[dict[str, Any]] = [
    {
        "name": MORNING_DIGEST_RULE,
        "type": "time",
        "schedule": "FREQ=DAILY;BYHOUR=7;BYMINUTE=10",
        "params": {
            "digest": True,
            "title": "Your morning garden digest",
        },
        "throttle_secs": 72000,
    },
    {
        "name": "time_weekly_check",
        "type": "time",
        "schedule": "FREQ=WEEKLY;BYDAY=SU;BYHOUR=16;BYMINUTE=0",
        "params": {
            "title": "Weekly garden walkthrough",
            "body": "Take a walk through the beds: check pests, ties and mulch.",
        },
        "throttle_secs": 43200,
    },
    {
        "name": "weather_rain_skip",
        "type": "rain_skip",
        "params": {"precip_prob_next_24h_gte": 0.6, "suppress_within_hours": 18},
        "throttle_secs": 43200,
    },
    {
        "name": "weather_frost_risk",
        "type": "frost_risk",
        "params": {"frost_prob_gte": 0.3, "min_temp_lte": 0},
        "throttle_secs": 21600,
    },
    {
        "name": "weather_heat_spike",
        "type": "heat_spike",
        "params": {"max_temp_tomorrow_gte": 28},
        "throttle_secs": 43200,
    },
    {
        "name": "soil_temp_threshold",
        "type": "soil_temperature",
        "params": {"soil_temp_10cm_gte": 12, "species": ["beans", "maize", "cucumber"]},
        "throttle_secs": 86400,
    },
    {
        "name": "phenology_gdd_harvest",
        "type": "harvest_window",
        "params": {"maturity_pct_gte": 0.8},
        "throttle_secs": 43200,
    },
    {
        "name": "weather_wind_advisory",
        "type": "wind_advisory",
        "params": {"gusts_next_24h_gte": 60},
        "throttle_secs": 43200,
    },
    {
        "name": "garden_focus_escalation",
        "type": "focus_overdue",
        "params": {"focus_only": True, "overdue_hours_gte": 48},
        "throttle_secs": 21600,
    },
]


def ensure_builtin_rules(store: NotificationStore, user_id: str) -> list[NotificationRule]:
    """Create whichever built-in rules the user does not have yet."""
    existing = {rule.name for rule in store.list_rules(user_id)}
    created = []
    for definition in BUILT_IN_RULES:
        if definition["name"] in existing:
            continue
        try:
            created.append(store.add_rule(user_id=user_id, **definition))
        except sqlite3.IntegrityError:
            # Seeded concurrently by an overlapping tick.
            logger.debug("Built-in rule %s already exists for user %s",
                         definition["name"], user_id)
    if created:
        logger.info("Seeded %d built-in rules for user %s", len(created), user_id)
    return created
