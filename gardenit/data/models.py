"""
Gardenit Notifications — Data Models.

Rows the engine reads from (and writes back to) the SQLite store. Every
datetime is timezone-aware UTC; local time only exists as a LocalTime
breakdown produced for schedule matching and quiet-hours checks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

DAILY = "DAILY"
WEEKLY = "WEEKLY"
FREQUENCIES = (DAILY, WEEKLY)

# Two-letter weekday codes, Monday first (matches datetime.weekday()).
WEEKDAYS = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

CHANNEL_IN_APP = "in_app"
CHANNEL_EMAIL = "email"
CHANNEL_PUSH = "push"
CHANNELS = (CHANNEL_IN_APP, CHANNEL_EMAIL, CHANNEL_PUSH)

SEVERITIES = ("info", "warning", "critical")

FOCUS_KINDS = ("planting", "bed", "plant", "task")


@dataclass(frozen=True)
class ScheduleExpression:
    """A compact recurrence: daily or weekly at a fixed local hour/minute."""

    frequency: str
    hour: int
    minute: int
    weekdays: frozenset[str] = frozenset()


@dataclass(frozen=True)
class LocalTime:
    """A wall-clock breakdown already resolved in the user's timezone."""

    year: int
    month: int
    day: int
    hour: int
    minute: int
    weekday: str  # two-letter code, e.g. "MO"


@dataclass
class User:
    """A gardener who receives notifications."""

    id: str
    email: str | None = None
    display_name: str = ""
    timezone: str | None = None
    push_chat_id: str | None = None    # Telegram chat the push channel targets
    location_lat: float | None = None
    location_lon: float | None = None


@dataclass
class NotificationPreference:
    """Per-user channel toggles, digest hour and quiet hours."""

    user_id: str
    email_enabled: bool = True
    push_enabled: bool = True
    in_app_enabled: bool = True
    email_digest_hour: int = 7
    email_digest_timezone: str | None = None
    dnd_enabled: bool = False
    dnd_start_hour: int | None = None
    dnd_end_hour: int | None = None

    def channel_enabled(self, channel: str) -> bool:
        return {
            CHANNEL_IN_APP: self.in_app_enabled,
            CHANNEL_EMAIL: self.email_enabled,
            CHANNEL_PUSH: self.push_enabled,
        }.get(channel, False)


@dataclass
class NotificationRule:
    """A condition-driven recurring trigger configured by the user.

    The user owns every field except last_fired_at, which only the engine
    advances (through an atomic claim in the store).
    """

    id: str
    user_id: str
    name: str
    type: str
    schedule: ScheduleExpression | None = None
    params: dict[str, Any] = field(default_factory=dict)
    throttle_secs: int = 21600
    is_enabled: bool = True
    last_fired_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Reminder:
    """A materialized due-date item, either one-shot or cadenced."""

    id: str
    user_id: str
    title: str
    due_at: datetime
    type: str = "custom"
    planting_id: str | None = None
    cadence: str | None = None         # e.g. "every 3 days"; None = one-shot
    sent_at: datetime | None = None
    details: str | None = None


@dataclass
class FocusItem:
    """A user pin that moves matching items to the top of the digest."""

    id: str
    user_id: str
    kind: str                          # planting | bed | plant | task
    target_id: str
    created_at: datetime
    label: str | None = None


@dataclass
class Planting:
    """A plant growing in a bed; digest lines render its context chain."""

    id: str
    user_id: str
    plant_id: str
    plant_name: str
    bed_id: str
    bed_name: str
    garden_name: str
    start_date: date
    days_to_maturity: int | None = None

    @property
    def label(self) -> str:
        return f"{self.plant_name} in {self.bed_name} ({self.garden_name})"


@dataclass
class Notification:
    """A delivered notification on one channel."""

    id: str
    user_id: str
    title: str
    body: str
    severity: str
    channel: str
    due_at: datetime
    rule_id: str | None = None
    read_at: datetime | None = None
    cleared_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class WeatherSnapshot:
    """Forecast signals for the next 24-48 hours at the user's location."""

    timezone: str = "UTC"
    precip_prob_next_24h: float = 0.0      # 0..1
    min_temp_next_24h: float | None = None
    max_temp_tomorrow: float | None = None
    frost_probability: float = 0.0         # 0..1
    gusts_next_24h: float | None = None    # km/h
    soil_temp_10cm: float | None = None
    soil_moisture: float | None = None     # m³/m³


@dataclass
class ContextSnapshot:
    """Everything a condition may read, captured once per user per tick."""

    now: datetime
    local_time: LocalTime
    weather: WeatherSnapshot | None = None
    plantings: list[Planting] = field(default_factory=list)
    reminders: list[Reminder] = field(default_factory=list)
    focus_items: list[FocusItem] = field(default_factory=list)


@dataclass
class DueItem:
    """A claimed fire (rule or reminder) waiting to be delivered.

    Written by the store in the same transaction as the claim, so a fire
    that was claimed but never delivered stays visible to later ticks.
    """

    id: str
    user_id: str
    source: str                        # "reminder" | "rule"
    source_id: str
    title: str
    body: str
    severity: str
    due_at: datetime
    context: str = ""
    targets: list[tuple[str, str]] = field(default_factory=list)
    rule_id: str | None = None
    sent: dict[str, datetime] = field(default_factory=dict)

    @property
    def urgent(self) -> bool:
        return self.severity == "critical"
