"""
Gardenit Notifications — SQLite storage.

Two stores share one database file:

- GardenDB: the read-mostly context the engine consumes (users, notification
  preferences, plantings, focus pins). Written by the surrounding app.
- NotificationStore: rules, reminders, claimed-but-undelivered items and
  delivered notifications. All firing state lives here, so claims survive
  process restarts.

Claims are single conditional UPDATEs executed in the same transaction as
the insert of the item they produce: either the fire is recorded and queued
for delivery, or nothing changes.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from gardenit.core.throttle import cooldown_cutoff
from gardenit.data.models import (
    CHANNELS,
    FOCUS_KINDS,
    DueItem,
    FocusItem,
    Notification,
    NotificationPreference,
    NotificationRule,
    Planting,
    Reminder,
    User,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _iso(value: datetime | None) -> str | None:
    """Fixed-width UTC text so that SQL string comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _SQLiteStore:
    """Connection handling shared by both stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from gardenit.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class GardenDB(_SQLiteStore):
    """Users, preferences, plantings and focus pins."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id            TEXT PRIMARY KEY,
                    email         TEXT,
                    display_name  TEXT NOT NULL DEFAULT '',
                    timezone      TEXT,
                    push_chat_id  TEXT,
                    location_lat  REAL,
                    location_lon  REAL,
                    created_at    TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notification_preferences (
                    user_id               TEXT PRIMARY KEY,
                    email_enabled         INTEGER NOT NULL DEFAULT 1,
                    push_enabled          INTEGER NOT NULL DEFAULT 1,
                    in_app_enabled        INTEGER NOT NULL DEFAULT 1,
                    email_digest_hour     INTEGER NOT NULL DEFAULT 7,
                    email_digest_timezone TEXT,
                    dnd_enabled           INTEGER NOT NULL DEFAULT 0,
                    dnd_start_hour        INTEGER,
                    dnd_end_hour          INTEGER
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS plantings (
                    id                TEXT PRIMARY KEY,
                    user_id           TEXT NOT NULL,
                    plant_id          TEXT NOT NULL,
                    plant_name        TEXT NOT NULL,
                    bed_id            TEXT NOT NULL,
                    bed_name          TEXT NOT NULL,
                    garden_name       TEXT NOT NULL,
                    start_date        TEXT NOT NULL,
                    days_to_maturity  INTEGER
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS focus_items (
                    id          TEXT PRIMARY KEY,
                    user_id     TEXT NOT NULL,
                    kind        TEXT NOT NULL,
                    target_id   TEXT NOT NULL,
                    label       TEXT,
                    created_at  TEXT NOT NULL,
                    UNIQUE (user_id, kind, target_id)
                )
            """)
        logger.debug("Garden tables initialized at %s", self._db_path)

    # -- users ---------------------------------------------------------------

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            display_name=row["display_name"],
            timezone=row["timezone"],
            push_chat_id=row["push_chat_id"],
            location_lat=row["location_lat"],
            location_lon=row["location_lon"],
        )

    def add_user(
        self,
        email: str | None = None,
        display_name: str = "",
        timezone_name: str | None = None,
        push_chat_id: str | None = None,
        location_lat: float | None = None,
        location_lon: float | None = None,
        user_id: str | None = None,
    ) -> User:
        """Register a user."""
        user = User(
            id=user_id or _new_id(),
            email=email,
            display_name=display_name,
            timezone=timezone_name,
            push_chat_id=push_chat_id,
            location_lat=location_lat,
            location_lon=location_lon,
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users
                    (id, email, display_name, timezone, push_chat_id,
                     location_lat, location_lon, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user.id, email, display_name, timezone_name, push_chat_id,
                    location_lat, location_lon, _iso(_now()),
                ),
            )
        logger.info("User registered: %s '%s'", user.id, display_name)
        return user

    def get_user(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> list[User]:
        """Return all users, oldest first."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at, id").fetchall()
        return [self._row_to_user(r) for r in rows]

    # -- preferences ---------------------------------------------------------

    def get_preferences(self, user_id: str) -> NotificationPreference:
        """Return stored preferences, or the defaults when none were saved."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM notification_preferences WHERE user_id = ?", (user_id,),
            ).fetchone()
        if row is None:
            return NotificationPreference(user_id=user_id)
        return NotificationPreference(
            user_id=user_id,
            email_enabled=bool(row["email_enabled"]),
            push_enabled=bool(row["push_enabled"]),
            in_app_enabled=bool(row["in_app_enabled"]),
            email_digest_hour=row["email_digest_hour"],
            email_digest_timezone=row["email_digest_timezone"],
            dnd_enabled=bool(row["dnd_enabled"]),
            dnd_start_hour=row["dnd_start_hour"],
            dnd_end_hour=row["dnd_end_hour"],
        )

    def save_preferences(self, prefs: NotificationPreference) -> NotificationPreference:
        """Upsert preferences. Callers validate first (see core.preferences)."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO notification_preferences
                    (user_id, email_enabled, push_enabled, in_app_enabled,
                     email_digest_hour, email_digest_timezone,
                     dnd_enabled, dnd_start_hour, dnd_end_hour)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    email_enabled = excluded.email_enabled,
                    push_enabled = excluded.push_enabled,
                    in_app_enabled = excluded.in_app_enabled,
                    email_digest_hour = excluded.email_digest_hour,
                    email_digest_timezone = excluded.email_digest_timezone,
                    dnd_enabled = excluded.dnd_enabled,
                    dnd_start_hour = excluded.dnd_start_hour,
                    dnd_end_hour = excluded.dnd_end_hour
                """,
                (
                    prefs.user_id, int(prefs.email_enabled), int(prefs.push_enabled),
                    int(prefs.in_app_enabled), prefs.email_digest_hour,
                    prefs.email_digest_timezone, int(prefs.dnd_enabled),
                    prefs.dnd_start_hour, prefs.dnd_end_hour,
                ),
            )
        logger.info("Notification preferences saved for user %s", prefs.user_id)
        return prefs

    # -- plantings -----------------------------------------------------------

    @staticmethod
    def _row_to_planting(row: sqlite3.Row) -> Planting:
        return Planting(
            id=row["id"],
            user_id=row["user_id"],
            plant_id=row["plant_id"],
            plant_name=row["plant_name"],
            bed_id=row["bed_id"],
            bed_name=row["bed_name"],
            garden_name=row["garden_name"],
            start_date=date.fromisoformat(row["start_date"]),
            days_to_maturity=row["days_to_maturity"],
        )

    def add_planting(
        self,
        user_id: str,
        plant_id: str,
        plant_name: str,
        bed_id: str,
        bed_name: str,
        garden_name: str,
        start_date: date,
        days_to_maturity: int | None = None,
        planting_id: str | None = None,
    ) -> Planting:
        planting = Planting(
            id=planting_id or _new_id(),
            user_id=user_id,
            plant_id=plant_id,
            plant_name=plant_name,
            bed_id=bed_id,
            bed_name=bed_name,
            garden_name=garden_name,
            start_date=start_date,
            days_to_maturity=days_to_maturity,
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO plantings
                    (id, user_id, plant_id, plant_name, bed_id, bed_name,
                     garden_name, start_date, days_to_maturity)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    planting.id, user_id, plant_id, plant_name, bed_id, bed_name,
                    garden_name, start_date.isoformat(), days_to_maturity,
                ),
            )
        logger.info("Planting added: %s (%s)", planting.id, planting.label)
        return planting

    def list_plantings(self, user_id: str) -> list[Planting]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM plantings WHERE user_id = ? ORDER BY start_date, id",
                (user_id,),
            ).fetchall()
        return [self._row_to_planting(r) for r in rows]

    # -- focus pins ----------------------------------------------------------

    @staticmethod
    def _row_to_focus(row: sqlite3.Row) -> FocusItem:
        return FocusItem(
            id=row["id"],
            user_id=row["user_id"],
            kind=row["kind"],
            target_id=row["target_id"],
            label=row["label"],
            created_at=_dt(row["created_at"]),
        )

    def add_focus_item(
        self,
        user_id: str,
        kind: str,
        target_id: str,
        label: str | None = None,
        created_at: datetime | None = None,
    ) -> FocusItem:
        """Pin a target. Pinning the same target twice is an error."""
        if kind not in FOCUS_KINDS:
            raise ValueError(f"Unknown focus kind: {kind!r}")
        item = FocusItem(
            id=_new_id(),
            user_id=user_id,
            kind=kind,
            target_id=target_id,
            label=label,
            created_at=created_at or _now(),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO focus_items (id, user_id, kind, target_id, label, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (item.id, user_id, kind, target_id, label, _iso(item.created_at)),
            )
        logger.info("Focus pin added for user %s: %s %s", user_id, kind, target_id)
        return item

    def list_focus_items(self, user_id: str) -> list[FocusItem]:
        """Focus pins in the order they were created."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM focus_items WHERE user_id = ? ORDER BY created_at, id",
                (user_id,),
            ).fetchall()
        return [self._row_to_focus(r) for r in rows]

    def remove_focus_item(self, user_id: str, focus_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM focus_items WHERE id = ? AND user_id = ?", (focus_id, user_id),
            )
        return cursor.rowcount > 0


class NotificationStore(_SQLiteStore):
    """Rules, reminders, pending deliveries and delivered notifications."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notification_rules (
                    id             TEXT PRIMARY KEY,
                    user_id        TEXT NOT NULL,
                    name           TEXT NOT NULL,
                    type           TEXT NOT NULL,
                    schedule       TEXT,
                    params         TEXT NOT NULL DEFAULT '{}',
                    throttle_secs  INTEGER NOT NULL DEFAULT 21600,
                    is_enabled     INTEGER NOT NULL DEFAULT 1,
                    last_fired_at  TEXT,
                    created_at     TEXT NOT NULL,
                    UNIQUE (user_id, name)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminders (
                    id           TEXT PRIMARY KEY,
                    user_id      TEXT NOT NULL,
                    planting_id  TEXT,
                    title        TEXT NOT NULL,
                    due_at       TEXT NOT NULL,
                    cadence      TEXT,
                    type         TEXT NOT NULL DEFAULT 'custom',
                    sent_at      TEXT,
                    details      TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS due_items (
                    id               TEXT PRIMARY KEY,
                    user_id          TEXT NOT NULL,
                    source           TEXT NOT NULL,
                    source_id        TEXT NOT NULL,
                    rule_id          TEXT,
                    title            TEXT NOT NULL,
                    body             TEXT NOT NULL DEFAULT '',
                    severity         TEXT NOT NULL DEFAULT 'info',
                    due_at           TEXT NOT NULL,
                    context          TEXT NOT NULL DEFAULT '',
                    targets          TEXT NOT NULL DEFAULT '[]',
                    in_app_sent_at   TEXT,
                    email_sent_at    TEXT,
                    push_sent_at     TEXT,
                    completed_at     TEXT,
                    lease_token      TEXT,
                    leased_until     TEXT,
                    created_at       TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id          TEXT PRIMARY KEY,
                    user_id     TEXT NOT NULL,
                    rule_id     TEXT,
                    title       TEXT NOT NULL,
                    body        TEXT NOT NULL,
                    severity    TEXT NOT NULL,
                    channel     TEXT NOT NULL,
                    due_at      TEXT NOT NULL,
                    read_at     TEXT,
                    cleared_at  TEXT,
                    created_at  TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_reminders_due ON reminders (user_id, sent_at, due_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_due_items_open ON due_items (user_id, completed_at)"
            )
        logger.debug("Notification tables initialized at %s", self._db_path)

    # -- rules ---------------------------------------------------------------

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> NotificationRule:
        from gardenit.core.schedule import ScheduleError, parse_schedule

        schedule = None
        if row["schedule"]:
            try:
                schedule = parse_schedule(row["schedule"])
            except ScheduleError as exc:
                # Stored text that no longer parses never matches.
                logger.error("Rule %s has an invalid stored schedule: %s", row["id"], exc)
                schedule = None
        return NotificationRule(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            type=row["type"],
            schedule=schedule,
            params=json.loads(row["params"] or "{}"),
            throttle_secs=row["throttle_secs"],
            is_enabled=bool(row["is_enabled"]),
            last_fired_at=_dt(row["last_fired_at"]),
            created_at=_dt(row["created_at"]),
        )

    def add_rule(
        self,
        user_id: str,
        name: str,
        type: str,
        schedule: str | None = None,
        params: dict[str, Any] | None = None,
        throttle_secs: int | None = None,
        is_enabled: bool = True,
        rule_id: str | None = None,
    ) -> NotificationRule:
        """Create a rule, rejecting malformed schedules and params.

        Raises:
            ScheduleError: schedule text is malformed.
            pydantic.ValidationError: params do not fit the rule type.
            ValueError: negative throttle.
        """
        from gardenit.core.conditions import CONDITIONS, parse_params
        from gardenit.core.schedule import format_schedule, parse_schedule

        if throttle_secs is None:
            from gardenit.config import settings
            throttle_secs = settings.DEFAULT_THROTTLE_SECS
        if throttle_secs < 0:
            raise ValueError(f"throttle_secs must be >= 0, got {throttle_secs}")

        schedule_text = format_schedule(parse_schedule(schedule)) if schedule else None
        rule = NotificationRule(
            id=rule_id or _new_id(),
            user_id=user_id,
            name=name,
            type=type,
            schedule=parse_schedule(schedule_text) if schedule_text else None,
            params=dict(params or {}),
            throttle_secs=throttle_secs,
            is_enabled=is_enabled,
            created_at=_now(),
        )
        if type in CONDITIONS:
            parse_params(rule)
        else:
            logger.warning("Rule '%s' has unknown type %r; it will never trigger", name, type)

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO notification_rules
                    (id, user_id, name, type, schedule, params, throttle_secs,
                     is_enabled, last_fired_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, ?)
                """,
                (
                    rule.id, user_id, name, type, schedule_text,
                    json.dumps(rule.params), throttle_secs, int(is_enabled),
                    _iso(rule.created_at),
                ),
            )
        logger.info("Rule added: %s '%s' (%s) for user %s", rule.id, name, type, user_id)
        return rule

    def get_rule(self, rule_id: str) -> NotificationRule | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM notification_rules WHERE id = ?", (rule_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_rule(row)

    def list_rules(self, user_id: str, enabled_only: bool = False) -> list[NotificationRule]:
        query = "SELECT * FROM notification_rules WHERE user_id = ?"
        if enabled_only:
            query += " AND is_enabled = 1"
        query += " ORDER BY created_at, id"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_rule(r) for r in rows]

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE notification_rules SET is_enabled = ? WHERE id = ?",
                (int(enabled), rule_id),
            )
        return cursor.rowcount > 0

    def set_rule_schedule(self, user_id: str, name: str, schedule: str) -> int:
        """Replace the schedule of a user's rule by name. Returns rows changed."""
        from gardenit.core.schedule import format_schedule, parse_schedule

        schedule_text = format_schedule(parse_schedule(schedule))
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE notification_rules SET schedule = ? WHERE user_id = ? AND name = ?",
                (schedule_text, user_id, name),
            )
        return cursor.rowcount

    def claim_rule_fire(
        self, rule: NotificationRule, now: datetime, item: DueItem,
    ) -> bool:
        """Atomically advance last_fired_at and queue the item for delivery.

        The UPDATE only matches while the stored last_fired_at still lets the
        rule fire, so of two overlapping ticks exactly one wins. Any database
        error counts as a lost claim: nothing is delivered.
        """
        cutoff = cooldown_cutoff(now, rule.throttle_secs)
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE notification_rules SET last_fired_at = ?
                    WHERE id = ? AND is_enabled = 1
                      AND (last_fired_at IS NULL OR last_fired_at <= ?)
                    """,
                    (_iso(now), rule.id, _iso(cutoff)),
                )
                if cursor.rowcount != 1:
                    logger.info("Rule %s already claimed within its cooldown", rule.id)
                    return False
                self._insert_due_item(conn, item, now)
        except sqlite3.Error as exc:
            logger.error("Claim for rule %s failed: %s", rule.id, exc)
            return False
        rule.last_fired_at = now
        logger.info("Rule %s '%s' fired for user %s", rule.id, rule.name, rule.user_id)
        return True

    # -- reminders -----------------------------------------------------------

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            user_id=row["user_id"],
            planting_id=row["planting_id"],
            title=row["title"],
            due_at=_dt(row["due_at"]),
            cadence=row["cadence"],
            type=row["type"],
            sent_at=_dt(row["sent_at"]),
            details=row["details"],
        )

    def add_reminder(
        self,
        user_id: str,
        title: str,
        due_at: datetime,
        type: str = "custom",
        planting_id: str | None = None,
        cadence: str | None = None,
        details: str | None = None,
        reminder_id: str | None = None,
    ) -> Reminder:
        reminder = Reminder(
            id=reminder_id or _new_id(),
            user_id=user_id,
            title=title,
            due_at=due_at,
            type=type,
            planting_id=planting_id,
            cadence=cadence,
            details=details,
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reminders
                    (id, user_id, planting_id, title, due_at, cadence, type, sent_at, details)
                VALUES (?, ?, ?, ?, ?, ?, ?, NULL, ?)
                """,
                (
                    reminder.id, user_id, planting_id, title, _iso(due_at),
                    cadence, type, details,
                ),
            )
        logger.info("Reminder added: %s '%s' due %s", reminder.id, title, _iso(due_at))
        return reminder

    def get_reminder(self, reminder_id: str) -> Reminder | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ?", (reminder_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_reminder(row)

    def list_reminders(self, user_id: str, pending_only: bool = True) -> list[Reminder]:
        """All of a user's reminders; pending_only drops finished one-shots."""
        query = "SELECT * FROM reminders WHERE user_id = ?"
        if pending_only:
            query += " AND sent_at IS NULL"
        query += " ORDER BY due_at, id"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def list_due_reminders(self, user_id: str, now: datetime) -> list[Reminder]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminders
                WHERE user_id = ? AND sent_at IS NULL AND due_at <= ?
                ORDER BY due_at, id
                """,
                (user_id, _iso(now)),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def claim_reminder(
        self,
        reminder: Reminder,
        now: datetime,
        next_due: datetime | None,
        item: DueItem,
    ) -> bool:
        """Atomically finish or re-arm a reminder and queue the item.

        One-shot reminders get sent_at; cadenced ones move to next_due. Both
        compare against the due_at this tick read, so an overlapping tick
        that already advanced the reminder makes this claim a no-op.
        """
        try:
            with self._connect() as conn:
                if next_due is None:
                    cursor = conn.execute(
                        """
                        UPDATE reminders SET sent_at = ?
                        WHERE id = ? AND sent_at IS NULL AND due_at = ?
                        """,
                        (_iso(now), reminder.id, _iso(reminder.due_at)),
                    )
                else:
                    cursor = conn.execute(
                        """
                        UPDATE reminders SET due_at = ?
                        WHERE id = ? AND sent_at IS NULL AND due_at = ?
                        """,
                        (_iso(next_due), reminder.id, _iso(reminder.due_at)),
                    )
                if cursor.rowcount != 1:
                    logger.info("Reminder %s already claimed", reminder.id)
                    return False
                self._insert_due_item(conn, item, now)
        except sqlite3.Error as exc:
            logger.error("Claim for reminder %s failed: %s", reminder.id, exc)
            return False
        return True

    def postpone_reminders(
        self,
        user_id: str,
        reminder_type: str,
        now: datetime,
        within_hours: float,
        details: str,
    ) -> int:
        """Push unsent reminders of a type due in the next window past it.

        Used by weather rules (rain means no watering): reminders due within
        `within_hours` move to now + within_hours + 24h.
        """
        window_end = now + timedelta(hours=within_hours)
        new_due = now + timedelta(hours=within_hours + 24)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE reminders SET due_at = ?, details = ?
                WHERE user_id = ? AND type = ? AND sent_at IS NULL
                  AND due_at >= ? AND due_at <= ?
                """,
                (_iso(new_due), details, user_id, reminder_type, _iso(now), _iso(window_end)),
            )
        if cursor.rowcount:
            logger.info(
                "Postponed %d '%s' reminders for user %s until %s",
                cursor.rowcount, reminder_type, user_id, _iso(new_due),
            )
        return cursor.rowcount

    # -- pending deliveries --------------------------------------------------

    @staticmethod
    def _insert_due_item(conn: sqlite3.Connection, item: DueItem, now: datetime) -> None:
        conn.execute(
            """
            INSERT INTO due_items
                (id, user_id, source, source_id, rule_id, title, body, severity,
                 due_at, context, targets, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id, item.user_id, item.source, item.source_id, item.rule_id,
                item.title, item.body, item.severity, _iso(item.due_at),
                item.context, json.dumps([list(t) for t in item.targets]), _iso(now),
            ),
        )

    @staticmethod
    def _row_to_due_item(row: sqlite3.Row) -> DueItem:
        sent = {
            channel: _dt(row[f"{channel}_sent_at"])
            for channel in CHANNELS
            if row[f"{channel}_sent_at"] is not None
        }
        return DueItem(
            id=row["id"],
            user_id=row["user_id"],
            source=row["source"],
            source_id=row["source_id"],
            rule_id=row["rule_id"],
            title=row["title"],
            body=row["body"],
            severity=row["severity"],
            due_at=_dt(row["due_at"]),
            context=row["context"],
            targets=[tuple(t) for t in json.loads(row["targets"] or "[]")],
            sent=sent,
        )

    def lease_due_items(
        self, user_id: str, now: datetime, lease_secs: int,
    ) -> list[DueItem]:
        """Take a delivery lease on a user's open items.

        Items leased by another tick are skipped until that lease expires,
        which is how a tick abandoned mid-delivery hands its work over.
        """
        token = _new_id()
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE due_items SET lease_token = ?, leased_until = ?
                WHERE user_id = ? AND completed_at IS NULL
                  AND (leased_until IS NULL OR leased_until <= ?)
                """,
                (token, _iso(now + timedelta(seconds=lease_secs)), user_id, _iso(now)),
            )
            rows = conn.execute(
                "SELECT * FROM due_items WHERE lease_token = ? ORDER BY due_at, id",
                (token,),
            ).fetchall()
        return [self._row_to_due_item(r) for r in rows]

    def mark_channel_sent(self, item_ids: list[str], channel: str, now: datetime) -> None:
        if channel not in CHANNELS:
            raise ValueError(f"Unknown channel: {channel!r}")
        if not item_ids:
            return
        placeholders = ",".join("?" for _ in item_ids)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE due_items SET {channel}_sent_at = ? "
                f"WHERE id IN ({placeholders}) AND {channel}_sent_at IS NULL",
                (_iso(now), *item_ids),
            )

    def complete_items(self, item_ids: list[str], now: datetime) -> None:
        if not item_ids:
            return
        placeholders = ",".join("?" for _ in item_ids)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE due_items SET completed_at = ?, lease_token = NULL, leased_until = NULL "
                f"WHERE id IN ({placeholders})",
                (_iso(now), *item_ids),
            )

    def release_items(self, item_ids: list[str]) -> None:
        """Drop the lease so the next tick retries these items."""
        if not item_ids:
            return
        placeholders = ",".join("?" for _ in item_ids)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE due_items SET lease_token = NULL, leased_until = NULL "
                f"WHERE id IN ({placeholders})",
                tuple(item_ids),
            )

    def list_open_items(self, user_id: str) -> list[DueItem]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM due_items
                WHERE user_id = ? AND completed_at IS NULL
                ORDER BY due_at, id
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_due_item(r) for r in rows]

    # -- notifications -------------------------------------------------------

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> Notification:
        return Notification(
            id=row["id"],
            user_id=row["user_id"],
            rule_id=row["rule_id"],
            title=row["title"],
            body=row["body"],
            severity=row["severity"],
            channel=row["channel"],
            due_at=_dt(row["due_at"]),
            read_at=_dt(row["read_at"]),
            cleared_at=_dt(row["cleared_at"]),
            created_at=_dt(row["created_at"]),
        )

    def add_notification(
        self,
        user_id: str,
        title: str,
        body: str,
        severity: str,
        channel: str,
        due_at: datetime,
        rule_id: str | None = None,
    ) -> Notification:
        notification = Notification(
            id=_new_id(),
            user_id=user_id,
            title=title,
            body=body,
            severity=severity,
            channel=channel,
            due_at=due_at,
            rule_id=rule_id,
            created_at=_now(),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO notifications
                    (id, user_id, rule_id, title, body, severity, channel,
                     due_at, read_at, cleared_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, ?)
                """,
                (
                    notification.id, user_id, rule_id, title, body, severity,
                    channel, _iso(due_at), _iso(notification.created_at),
                ),
            )
        return notification

    def list_notifications(
        self, user_id: str, channel: str | None = None, include_cleared: bool = False,
    ) -> list[Notification]:
        query = "SELECT * FROM notifications WHERE user_id = ?"
        params: list = [user_id]
        if channel is not None:
            query += " AND channel = ?"
            params.append(channel)
        if not include_cleared:
            query += " AND cleared_at IS NULL"
        query += " ORDER BY due_at DESC, created_at DESC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_notification(r) for r in rows]

    def mark_read(self, user_id: str, notification_id: str, now: datetime) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET read_at = ? WHERE id = ? AND user_id = ? AND read_at IS NULL",
                (_iso(now), notification_id, user_id),
            )
        return cursor.rowcount > 0

    def clear(self, user_id: str, notification_id: str, now: datetime) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET cleared_at = ? WHERE id = ? AND user_id = ? AND cleared_at IS NULL",
                (_iso(now), notification_id, user_id),
            )
        return cursor.rowcount > 0

    def purge_cleared(self, before: datetime) -> int:
        """Delete notifications cleared before `before`. Returns rows removed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM notifications WHERE cleared_at IS NOT NULL AND cleared_at < ?",
                (_iso(before),),
            )
        if cursor.rowcount:
            logger.info("Purged %d cleared notifications", cursor.rowcount)
        return cursor.rowcount
