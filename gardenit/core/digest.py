"""Digest composer — orders a user's due items into digest lines.

Ordering is the one user-facing promise of the engine:

1. Items touching a focus pin come first, in the order the pins were created
   (an item matching several pins ranks by its oldest one), then by due_at,
   then by id.
2. Everything else follows by due_at, then id.

Each line carries its own context chain (plant in bed (garden)) so it reads
on its own in an email, a push message or the in-app feed.

Pure: no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo

from gardenit.data.models import DueItem, FocusItem, Planting, Reminder

FOCUS_MARK = "★"


@dataclass(frozen=True)
class DigestLine:
    """One rendered entry of a digest."""

    item_id: str
    source: str
    title: str
    body: str
    severity: str
    due_at: datetime
    context: str
    focused: bool
    rule_id: str | None
    text: str

    @property
    def urgent(self) -> bool:
        return self.severity == "critical"


def reminder_targets(
    reminder: Reminder, planting: Planting | None,
) -> list[tuple[str, str]]:
    """Focus targets a reminder can match: itself as a task, and its planting chain."""
    targets = [("task", reminder.id)]
    if planting is not None:
        targets.extend([
            ("planting", planting.id),
            ("plant", planting.plant_id),
            ("bed", planting.bed_id),
        ])
    elif reminder.planting_id:
        targets.append(("planting", reminder.planting_id))
    return targets


def _focus_ranks(focus_items: list[FocusItem]) -> dict[tuple[str, str], tuple[datetime, str]]:
    ranks: dict[tuple[str, str], tuple[datetime, str]] = {}
    for pin in focus_items:
        key = (pin.kind, pin.target_id)
        rank = (pin.created_at, pin.id)
        if key not in ranks or rank < ranks[key]:
            ranks[key] = rank
    return ranks


def _format_due(due_at: datetime, tz: tzinfo | None) -> str:
    if tz is None:
        return due_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    return due_at.astimezone(tz).strftime("%Y-%m-%d %H:%M")


def render_line(item: DueItem, focused: bool, tz: tzinfo | None = None) -> str:
    parts = [item.title]
    if item.context:
        parts.append(item.context)
    parts.append(f"due {_format_due(item.due_at, tz)}")
    text = " — ".join(parts)
    if focused:
        text = f"{FOCUS_MARK} {text}"
    return text


def compose(
    due_reminders: list[DueItem],
    due_rule_firings: list[DueItem],
    focus_items: list[FocusItem],
    tz: tzinfo | None = None,
) -> list[DigestLine]:
    """Merge due reminders and rule firings into one ordered digest.

    An empty due set yields an empty list.
    """
    ranks = _focus_ranks(focus_items)
    focused: list[tuple[tuple, DueItem]] = []
    routine: list[tuple[tuple, DueItem]] = []

    for item in [*due_reminders, *due_rule_firings]:
        matched = [ranks[t] for t in item.targets if t in ranks]
        if matched:
            focused.append(((min(matched), item.due_at, item.id), item))
        else:
            routine.append(((item.due_at, item.id), item))

    focused.sort(key=lambda pair: pair[0])
    routine.sort(key=lambda pair: pair[0])

    lines = []
    for is_focused, bucket in ((True, focused), (False, routine)):
        for _, item in bucket:
            lines.append(DigestLine(
                item_id=item.id,
                source=item.source,
                title=item.title,
                body=item.body,
                severity=item.severity,
                due_at=item.due_at,
                context=item.context,
                focused=is_focused,
                rule_id=item.rule_id,
                text=render_line(item, is_focused, tz),
            ))
    return lines
