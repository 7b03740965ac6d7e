"""Notification preference updates.

Preferences are validated before they are stored, so the engine can trust
what it reads: a DND window always has two distinct hours, and a digest
timezone always resolves.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gardenit.core.builtin_rules import MORNING_DIGEST_RULE
from gardenit.core.clock import InvalidTimezoneError, resolve_timezone
from gardenit.data.models import NotificationPreference

if TYPE_CHECKING:
    from gardenit.data.db import GardenDB, NotificationStore

logger = logging.getLogger(__name__)


class PreferenceSettings(BaseModel):
    """The writable preference fields, with their cross-field rules."""

    model_config = ConfigDict(extra="forbid")

    email_enabled: bool = True
    push_enabled: bool = True
    in_app_enabled: bool = True
    email_digest_hour: int = Field(default=7, ge=0, le=23)
    email_digest_timezone: str | None = None
    dnd_enabled: bool = False
    dnd_start_hour: int | None = Field(default=None, ge=0, le=23)
    dnd_end_hour: int | None = Field(default=None, ge=0, le=23)

    @field_validator("email_digest_timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            resolve_timezone(v)
        except InvalidTimezoneError as exc:
            raise ValueError(str(exc)) from exc
        return v

    @model_validator(mode="after")
    def check_quiet_hours(self) -> PreferenceSettings:
        if not self.dnd_enabled:
            return self
        if self.dnd_start_hour is None or self.dnd_end_hour is None:
            raise ValueError("Quiet hours need both dnd_start_hour and dnd_end_hour")
        if self.dnd_start_hour == self.dnd_end_hour:
            raise ValueError("Quiet hours start and end must differ")
        return self


def digest_schedule(hour: int) -> str:
    return f"FREQ=DAILY;BYHOUR={hour};BYMINUTE=10"


def update_preferences(
    garden_db: GardenDB,
    store: NotificationStore,
    user_id: str,
    **changes: Any,
) -> NotificationPreference:
    """Apply `changes` to a user's preferences, validate and save them.

    Changing the digest hour also moves the user's morning digest rule.

    Raises:
        pydantic.ValidationError: the resulting preferences are invalid.
    """
    current = asdict(garden_db.get_preferences(user_id))
    current.pop("user_id")
    current.update(changes)
    validated = PreferenceSettings.model_validate(current)

    prefs = garden_db.save_preferences(
        NotificationPreference(user_id=user_id, **validated.model_dump()),
    )
    if "email_digest_hour" in changes:
        moved = store.set_rule_schedule(
            user_id, MORNING_DIGEST_RULE, digest_schedule(prefs.email_digest_hour),
        )
        if moved:
            logger.info(
                "Morning digest for user %s moved to %02d:10",
                user_id, prefs.email_digest_hour,
            )
    return prefs
