"""Throttle guard — per-(user, rule) cooldown check.

`allow` is the pure decision. The durable side (advancing last_fired_at) is
the store's atomic claim, which re-checks the same condition inside a single
UPDATE so that two overlapping ticks cannot both fire a rule.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


def allow(
    user_id: str,
    rule_id: str,
    now: datetime,
    throttle_secs: int,
    last_fired_at: datetime | None,
) -> bool:
    """Return True when the rule may fire at `now`.

    A throttle of zero means no cooldown: every matching tick fires.
    """
    if throttle_secs < 0:
        raise ValueError(f"throttle_secs must be >= 0, got {throttle_secs}")
    if last_fired_at is None:
        return True
    allowed = now - last_fired_at >= timedelta(seconds=throttle_secs)
    if not allowed:
        logger.debug(
            "Rule %s for user %s throttled (last fired %s, cooldown %ds)",
            rule_id, user_id, last_fired_at.isoformat(), throttle_secs,
        )
    return allowed


def cooldown_cutoff(now: datetime, throttle_secs: int) -> datetime:
    """Latest last_fired_at that still lets a rule fire at `now`."""
    return now - timedelta(seconds=throttle_secs)
