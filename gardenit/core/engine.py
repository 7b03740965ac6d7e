"""
Gardenit Notifications — Tick engine.

One tick, per user:

1. Gather context: preferences, plantings, focus pins, pending reminders and
   (when the user has a location) a weather snapshot.
2. Rules: schedule match -> condition -> throttle -> atomic claim. The claim
   writes the fire and its pending item in one transaction.
3. Reminders: every reminder whose due_at has passed is claimed the same way.
4. Delivery: lease the user's pending items, compose them into a digest and
   hand it to the dispatcher with the quiet-hours verdict. Channels that went
   out are recorded; items with channels still owed are released for the
   next tick.

Users are processed concurrently and in isolation: an exception for one user
is logged and the others carry on. Nothing raised here escapes run_tick.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING, Awaitable, Callable

from gardenit.core import throttle
from gardenit.core.builtin_rules import ensure_builtin_rules
from gardenit.core.clock import (
    InvalidTimezoneError,
    resolve_timezone,
    to_local_time,
    user_timezone_name,
)
from gardenit.core.conditions import evaluate_condition, parse_params
from gardenit.core.digest import compose, reminder_targets
from gardenit.core.quiet_hours import is_quiet_now, quiet_hours_for
from gardenit.core.reminders import next_due_at
from gardenit.core.schedule import matches
from gardenit.data.models import CHANNELS, ContextSnapshot, DueItem, WeatherSnapshot

if TYPE_CHECKING:
    from gardenit.core.dispatcher import DeliveryResult, Dispatcher
    from gardenit.data.db import GardenDB, NotificationStore
    from gardenit.data.models import (
        FocusItem,
        NotificationPreference,
        NotificationRule,
        Planting,
        User,
    )

logger = logging.getLogger(__name__)

WeatherFetcher = Callable[[float, float], Awaitable["WeatherSnapshot | None"]]


@dataclass
class UserTickReport:
    """What happened for one user during a tick."""

    user_id: str
    rules_fired: list[str] = field(default_factory=list)
    reminders_fired: list[str] = field(default_factory=list)
    quiet: bool = False
    deliveries: dict[str, DeliveryResult] = field(default_factory=dict)
    completed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    skipped_reason: str | None = None


@dataclass
class TickReport:
    now: datetime
    users: dict[str, UserTickReport] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    purged: int = 0


class NotificationEngine:
    """Runs scheduling ticks over every user in the garden database."""

    def __init__(
        self,
        garden_db: GardenDB,
        store: NotificationStore,
        dispatcher: Dispatcher,
        weather_fetcher: WeatherFetcher | None = None,
        default_timezone: str | None = None,
        lease_secs: int | None = None,
        retention_days: int | None = None,
    ) -> None:
        from gardenit.config import settings

        self._garden_db = garden_db
        self._store = store
        self._dispatcher = dispatcher
        self._weather_fetcher = weather_fetcher
        self._default_timezone = default_timezone or settings.DEFAULT_TIMEZONE
        self._lease_secs = lease_secs or settings.DELIVERY_LEASE_SECONDS
        self._retention_days = (
            retention_days if retention_days is not None
            else settings.NOTIFICATION_RETENTION_DAYS
        )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def run_tick(self, now: datetime) -> TickReport:
        """Process every user at instant `now`.

        A naive `now` is taken to be UTC, as everywhere else in the engine.
        """
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        report = TickReport(now=now)
        try:
            users = self._garden_db.list_users()
        except sqlite3.Error as exc:
            logger.error("Tick at %s could not load users: %s", now.isoformat(), exc)
            return report

        outcomes = await asyncio.gather(
            *(self._process_user(user, now) for user in users),
            return_exceptions=True,
        )
        for user, outcome in zip(users, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Tick failed for user %s: %s", user.id, outcome)
                report.errors[user.id] = str(outcome)
            else:
                report.users[user.id] = outcome

        if self._retention_days > 0:
            try:
                report.purged = self._store.purge_cleared(
                    now - timedelta(days=self._retention_days),
                )
            except sqlite3.Error as exc:
                logger.error("Purging cleared notifications failed: %s", exc)

        logger.info(
            "Tick %s: %d users, %d errors",
            now.isoformat(), len(report.users), len(report.errors),
        )
        return report

    async def _process_user(self, user: User, now: datetime) -> UserTickReport:
        result = UserTickReport(user_id=user.id)
        prefs = self._garden_db.get_preferences(user.id)

        tz_name = user_timezone_name(user, prefs, self._default_timezone)
        try:
            tz = resolve_timezone(tz_name)
        except InvalidTimezoneError as exc:
            logger.error("Skipping user %s: %s", user.id, exc)
            result.skipped_reason = str(exc)
            return result

        ensure_builtin_rules(self._store, user.id)
        plantings = self._garden_db.list_plantings(user.id)
        focus_items = self._garden_db.list_focus_items(user.id)
        # Rules are read before the weather await; the claim settles overlaps.
        rules = self._store.list_rules(user.id, enabled_only=True)
        snapshot = ContextSnapshot(
            now=now,
            local_time=to_local_time(now, tz),
            weather=await self._fetch_weather(user),
            plantings=plantings,
            reminders=self._store.list_reminders(user.id),
            focus_items=focus_items,
        )

        for rule in rules:
            if self._fire_rule(user, rule, snapshot):
                result.rules_fired.append(rule.id)
        result.reminders_fired = self._fire_reminders(user, plantings, now)

        try:
            result.quiet = is_quiet_now(snapshot.local_time.hour, quiet_hours_for(prefs))
        except ValueError as exc:
            logger.error("Ignoring quiet hours for user %s: %s", user.id, exc)

        await self._deliver(user, prefs, focus_items, tz, now, result)
        return result

    async def _fetch_weather(self, user: User) -> WeatherSnapshot | None:
        if self._weather_fetcher is None:
            return None
        if user.location_lat is None or user.location_lon is None:
            return None
        return await self._weather_fetcher(user.location_lat, user.location_lon)

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    def _fire_rule(
        self, user: User, rule: NotificationRule, snapshot: ContextSnapshot,
    ) -> bool:
        if rule.schedule is not None and not matches(snapshot.local_time, rule.schedule):
            return False
        outcome = evaluate_condition(rule, snapshot)
        if not outcome.triggered:
            return False
        if not throttle.allow(
            user.id, rule.id, snapshot.now, rule.throttle_secs, rule.last_fired_at,
        ):
            return False

        item = DueItem(
            id=uuid.uuid4().hex,
            user_id=user.id,
            source="rule",
            source_id=rule.id,
            rule_id=rule.id,
            title=outcome.title,
            body=outcome.body,
            severity=outcome.severity,
            due_at=snapshot.now,
            context=outcome.context,
            targets=outcome.targets,
        )
        if not self._store.claim_rule_fire(rule, snapshot.now, item):
            return False

        if rule.type == "rain_skip":
            self._suppress_for_rain(user, rule, snapshot.now)
        return True

    def _suppress_for_rain(self, user: User, rule: NotificationRule, now: datetime) -> None:
        params = parse_params(rule)
        if not params.suppress_reminder_type:
            return
        self._store.postpone_reminders(
            user_id=user.id,
            reminder_type=params.suppress_reminder_type,
            now=now,
            within_hours=params.suppress_within_hours,
            details="Rain is forecast, so this reminder was pushed back a day.",
        )

    def _fire_reminders(
        self, user: User, plantings: list[Planting], now: datetime,
    ) -> list[str]:
        by_id = {p.id: p for p in plantings}
        fired = []
        for reminder in self._store.list_due_reminders(user.id, now):
            planting = by_id.get(reminder.planting_id) if reminder.planting_id else None
            item = DueItem(
                id=uuid.uuid4().hex,
                user_id=user.id,
                source="reminder",
                source_id=reminder.id,
                title=reminder.title,
                body=reminder.details or "",
                severity="info",
                due_at=reminder.due_at,
                context=planting.label if planting else "",
                targets=reminder_targets(reminder, planting),
            )
            if self._store.claim_reminder(reminder, now, next_due_at(reminder, now), item):
                fired.append(reminder.id)
        return fired

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(
        self,
        user: User,
        prefs: NotificationPreference,
        focus_items: list[FocusItem],
        tz: tzinfo,
        now: datetime,
        result: UserTickReport,
    ) -> None:
        items = self._store.lease_due_items(user.id, now, self._lease_secs)
        if not items:
            return

        lines = compose(
            [i for i in items if i.source == "reminder"],
            [i for i in items if i.source == "rule"],
            focus_items,
            tz,
        )
        already_sent = {
            channel: {i.id for i in items if channel in i.sent} for channel in CHANNELS
        }
        try:
            deliveries = await self._dispatcher.deliver(
                user, lines, prefs, quiet=result.quiet, already_sent=already_sent,
            )
        except Exception:
            self._store.release_items([i.id for i in items])
            raise
        result.deliveries = deliveries

        for channel, delivery in deliveries.items():
            self._store.mark_channel_sent(delivery.delivered, channel, now)

        for item in items:
            owed = [
                channel for channel, delivery in deliveries.items()
                if delivery.required
                and channel not in item.sent
                and item.id not in delivery.delivered
            ]
            (result.pending if owed else result.completed).append(item.id)

        self._store.complete_items(result.completed, now)
        self._store.release_items(result.pending)
        if result.pending:
            logger.info(
                "User %s: %d item(s) still owed on some channel",
                user.id, len(result.pending),
            )
