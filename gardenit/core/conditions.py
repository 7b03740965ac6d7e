"""Condition evaluator — typed trigger conditions for notification rules.

A rule's `type` selects one variant from a closed set; the rule's free-form
`params` mapping is validated into that variant's pydantic model before
evaluation. Anything that cannot be interpreted (unknown type, malformed
params, missing signal) fails closed: the rule simply does not trigger, and
the scheduler carries on with the remaining rules and users.

Evaluation is pure. It reads only the ContextSnapshot and the params, so
calling it twice with the same snapshot yields the same result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from gardenit.data.models import ContextSnapshot, NotificationRule, Planting

logger = logging.getLogger(__name__)

Severity = Literal["info", "warning", "critical"]


@dataclass
class ConditionResult:
    """Outcome of evaluating one rule against one snapshot."""

    triggered: bool
    title: str = ""
    body: str = ""
    severity: str = "info"
    targets: list[tuple[str, str]] = field(default_factory=list)
    context: str = ""


NOT_TRIGGERED = ConditionResult(triggered=False)


# ---------------------------------------------------------------------------
# Parameter models
# ---------------------------------------------------------------------------


class ConditionParams(BaseModel):
    """Fields every variant accepts: optional message overrides."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    title: str | None = None
    body: str | None = None
    severity: Severity | None = None


class TimeParams(ConditionParams):
    digest: bool = False


class RainSkipParams(ConditionParams):
    precip_prob_next_24h_gte: float = Field(ge=0, le=1)
    suppress_reminder_type: str | None = "watering"
    suppress_within_hours: float = Field(default=18, gt=0)


class FrostRiskParams(ConditionParams):
    frost_prob_gte: float | None = Field(default=None, ge=0, le=1)
    min_temp_lte: float | None = None

    @model_validator(mode="after")
    def require_threshold(self) -> FrostRiskParams:
        if self.frost_prob_gte is None and self.min_temp_lte is None:
            raise ValueError("frost_risk needs frost_prob_gte or min_temp_lte")
        return self


class HeatSpikeParams(ConditionParams):
    max_temp_tomorrow_gte: float


class WindAdvisoryParams(ConditionParams):
    gusts_next_24h_gte: float = Field(ge=0)


class SoilTemperatureParams(ConditionParams):
    soil_temp_10cm_gte: float
    species: list[str] = Field(min_length=1)


class SoilMoistureParams(ConditionParams):
    soil_moisture_lte: float = Field(ge=0)


class PestSeasonParams(ConditionParams):
    months: list[int] = Field(min_length=1)
    species: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_months(self) -> PestSeasonParams:
        bad = [m for m in self.months if not 1 <= m <= 12]
        if bad:
            raise ValueError(f"months out of range: {bad}")
        return self


class HarvestWindowParams(ConditionParams):
    maturity_pct_gte: float = Field(default=0.8, gt=0)


class FocusOverdueParams(ConditionParams):
    overdue_hours_gte: float = Field(default=48, ge=0)
    focus_only: bool = True


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


def _planting_targets(plantings: list[Planting]) -> list[tuple[str, str]]:
    targets: list[tuple[str, str]] = []
    for planting in plantings:
        targets.extend([
            ("planting", planting.id),
            ("plant", planting.plant_id),
            ("bed", planting.bed_id),
        ])
    return targets


def _matching_species(plantings: list[Planting], species: list[str]) -> list[Planting]:
    wanted = [s.lower() for s in species]
    return [p for p in plantings if any(s in p.plant_name.lower() for s in wanted)]


def _names(plantings: list[Planting]) -> str:
    return ", ".join(p.plant_name for p in plantings)


class Condition:
    """Base class for one rule type."""

    params_model: type[ConditionParams] = ConditionParams
    title = "Garden alert"
    body = ""
    severity = "info"

    def evaluate(self, params: ConditionParams, snapshot: ContextSnapshot) -> ConditionResult:
        raise NotImplementedError

    def fire(
        self,
        params: ConditionParams,
        body: str | None = None,
        plantings: list[Planting] | None = None,
        targets: list[tuple[str, str]] | None = None,
    ) -> ConditionResult:
        plantings = plantings or []
        return ConditionResult(
            triggered=True,
            title=params.title or self.title,
            body=params.body or body or self.body,
            severity=params.severity or self.severity,
            targets=(targets or []) + _planting_targets(plantings),
            context="; ".join(p.label for p in plantings),
        )


class TimeCondition(Condition):
    """Schedule-only rule. With `digest`, summarizes the day ahead."""

    params_model = TimeParams
    title = "Garden reminder"

    def evaluate(self, params: TimeParams, snapshot: ContextSnapshot) -> ConditionResult:
        if not params.digest:
            return self.fire(params)
        return self.fire(params, body=_day_ahead_summary(snapshot))


class RainSkipCondition(Condition):
    params_model = RainSkipParams
    title = "Rain coming — skip watering"
    body = "Precipitation is likely in the next 24 hours. Watering reminders are paused."

    def evaluate(self, params: RainSkipParams, snapshot: ContextSnapshot) -> ConditionResult:
        weather = snapshot.weather
        if weather is None:
            return NOT_TRIGGERED
        if weather.precip_prob_next_24h < params.precip_prob_next_24h_gte:
            return NOT_TRIGGERED
        return self.fire(params)


class FrostRiskCondition(Condition):
    params_model = FrostRiskParams
    title = "Frost risk — protect tender plants"
    body = "Cover focus plantings and sensitive crops overnight to prevent damage."
    severity = "critical"

    def evaluate(self, params: FrostRiskParams, snapshot: ContextSnapshot) -> ConditionResult:
        weather = snapshot.weather
        if weather is None:
            return NOT_TRIGGERED
        if params.frost_prob_gte is not None and weather.frost_probability < params.frost_prob_gte:
            return NOT_TRIGGERED
        if params.min_temp_lte is not None:
            if weather.min_temp_next_24h is None or weather.min_temp_next_24h > params.min_temp_lte:
                return NOT_TRIGGERED
        return self.fire(params)


class HeatSpikeCondition(Condition):
    params_model = HeatSpikeParams
    title = "Heat spike incoming"
    body = "Plan early watering and shade cloth for leafy greens before temperatures climb tomorrow."
    severity = "warning"

    def evaluate(self, params: HeatSpikeParams, snapshot: ContextSnapshot) -> ConditionResult:
        weather = snapshot.weather
        if weather is None or weather.max_temp_tomorrow is None:
            return NOT_TRIGGERED
        if weather.max_temp_tomorrow < params.max_temp_tomorrow_gte:
            return NOT_TRIGGERED
        return self.fire(params)


class WindAdvisoryCondition(Condition):
    params_model = WindAdvisoryParams
    title = "Secure trellises and hoops"
    body = "High winds are forecast — stake tomatoes and tie down floating row covers."
    severity = "warning"

    def evaluate(self, params: WindAdvisoryParams, snapshot: ContextSnapshot) -> ConditionResult:
        weather = snapshot.weather
        if weather is None or weather.gusts_next_24h is None:
            return NOT_TRIGGERED
        if weather.gusts_next_24h < params.gusts_next_24h_gte:
            return NOT_TRIGGERED
        return self.fire(params)


class SoilTemperatureCondition(Condition):
    params_model = SoilTemperatureParams
    title = "Soil warm enough to sow"

    def evaluate(self, params: SoilTemperatureParams, snapshot: ContextSnapshot) -> ConditionResult:
        weather = snapshot.weather
        if weather is None or weather.soil_temp_10cm is None:
            return NOT_TRIGGERED
        if weather.soil_temp_10cm < params.soil_temp_10cm_gte:
            return NOT_TRIGGERED
        relevant = _matching_species(snapshot.plantings, params.species)
        if not relevant:
            return NOT_TRIGGERED
        body = f"Soil is {weather.soil_temp_10cm:.1f}°C at 10cm — ideal for {_names(relevant)}."
        return self.fire(params, body=body, plantings=relevant)


class SoilMoistureCondition(Condition):
    params_model = SoilMoistureParams
    title = "Soil is drying out"
    severity = "warning"

    def evaluate(self, params: SoilMoistureParams, snapshot: ContextSnapshot) -> ConditionResult:
        weather = snapshot.weather
        if weather is None or weather.soil_moisture is None:
            return NOT_TRIGGERED
        if weather.soil_moisture > params.soil_moisture_lte:
            return NOT_TRIGGERED
        body = f"Soil moisture is down to {weather.soil_moisture:.2f} m³/m³ — check your beds and water deeply."
        return self.fire(params, body=body, plantings=snapshot.plantings)


class PestSeasonCondition(Condition):
    params_model = PestSeasonParams
    title = "Pest season — inspect your plants"
    body = "Pest pressure peaks this time of year. Check leaf undersides and growing tips."
    severity = "warning"

    def evaluate(self, params: PestSeasonParams, snapshot: ContextSnapshot) -> ConditionResult:
        if snapshot.local_time.month not in params.months:
            return NOT_TRIGGERED
        if not params.species:
            return self.fire(params)
        relevant = _matching_species(snapshot.plantings, params.species)
        if not relevant:
            return NOT_TRIGGERED
        body = f"Pest season for {_names(relevant)}. Check leaf undersides and growing tips."
        return self.fire(params, body=body, plantings=relevant)


class HarvestWindowCondition(Condition):
    params_model = HarvestWindowParams
    title = "Plantings nearing harvest window"

    def evaluate(self, params: HarvestWindowParams, snapshot: ContextSnapshot) -> ConditionResult:
        today = snapshot.now.date()
        nearing = []
        for planting in snapshot.plantings:
            if not planting.days_to_maturity:
                continue
            age_days = (today - planting.start_date).days
            if age_days / planting.days_to_maturity >= params.maturity_pct_gte:
                nearing.append(planting)
        if not nearing:
            return NOT_TRIGGERED
        body = f"Check {_names(nearing)} for harvest readiness."
        return self.fire(params, body=body, plantings=nearing)


class FocusOverdueCondition(Condition):
    params_model = FocusOverdueParams
    title = "Focus tasks overdue"
    severity = "warning"

    def evaluate(self, params: FocusOverdueParams, snapshot: ContextSnapshot) -> ConditionResult:
        focused_tasks = {f.target_id for f in snapshot.focus_items if f.kind == "task"}
        threshold = timedelta(hours=params.overdue_hours_gte)
        overdue = []
        for reminder in snapshot.reminders:
            if reminder.sent_at is not None and reminder.sent_at > reminder.due_at:
                continue
            if snapshot.now - reminder.due_at < threshold:
                continue
            if params.focus_only and reminder.id not in focused_tasks:
                continue
            overdue.append(reminder)
        if not overdue:
            return NOT_TRIGGERED
        overdue.sort(key=lambda r: (r.due_at, r.id))
        body = "\n".join(f"• {r.title} (due {r.due_at:%Y-%m-%d %H:%M} UTC)" for r in overdue)
        return self.fire(params, body=body, targets=[("task", r.id) for r in overdue])


class UnrecognizedCondition(Condition):
    """Catch-all for unknown or future rule types. Never triggers."""

    def evaluate(self, params: ConditionParams, snapshot: ContextSnapshot) -> ConditionResult:
        return NOT_TRIGGERED


CONDITIONS: dict[str, Condition] = {
    "time": TimeCondition(),
    "rain_skip": RainSkipCondition(),
    "frost_risk": FrostRiskCondition(),
    "heat_spike": HeatSpikeCondition(),
    "wind_advisory": WindAdvisoryCondition(),
    "soil_temperature": SoilTemperatureCondition(),
    "soil_moisture": SoilMoistureCondition(),
    "pest_season": PestSeasonCondition(),
    "harvest_window": HarvestWindowCondition(),
    "focus_overdue": FocusOverdueCondition(),
}

_UNRECOGNIZED = UnrecognizedCondition()


def condition_for(rule_type: str) -> Condition:
    """Return the variant for a rule type; unknown types get the catch-all."""
    return CONDITIONS.get(rule_type, _UNRECOGNIZED)


def parse_params(rule: NotificationRule) -> ConditionParams:
    """Validate a rule's params against its variant's model.

    Raises pydantic.ValidationError; used at rule write time.
    """
    return condition_for(rule.type).params_model.model_validate(rule.params or {})


def evaluate_condition(rule: NotificationRule, snapshot: ContextSnapshot) -> ConditionResult:
    """Evaluate a rule's condition, failing closed on anything unexpected."""
    condition = condition_for(rule.type)
    if condition is _UNRECOGNIZED:
        logger.warning("Rule %s has unrecognized type %r", rule.id, rule.type)
        return NOT_TRIGGERED

    try:
        params = condition.params_model.model_validate(rule.params or {})
    except ValidationError as exc:
        logger.warning(
            "Rule %s (%s) has invalid params, skipping: %s",
            rule.id, rule.type, exc.errors(include_url=False),
        )
        return NOT_TRIGGERED

    try:
        return condition.evaluate(params, snapshot)
    except Exception as exc:
        logger.warning("Rule %s (%s) evaluation failed: %s", rule.id, rule.type, exc)
        return NOT_TRIGGERED


def evaluate(rule: NotificationRule, snapshot: ContextSnapshot) -> bool:
    """Return True when the rule's trigger condition holds for this snapshot."""
    return evaluate_condition(rule, snapshot).triggered


# ---------------------------------------------------------------------------
# Day-ahead digest body
# ---------------------------------------------------------------------------


def _day_ahead_summary(snapshot: ContextSnapshot) -> str:
    """Focus pins plus reminders due within 24 hours, as bullet lines."""
    plantings = {p.id: p for p in snapshot.plantings}
    beds = {p.bed_id: p for p in snapshot.plantings}
    plants = {p.plant_id: p for p in snapshot.plantings}
    reminders = {r.id: r for r in snapshot.reminders}

    focus_lines: list[str] = []
    for item in sorted(snapshot.focus_items, key=lambda f: (f.created_at, f.id)):
        if item.kind == "planting" and item.target_id in plantings:
            p = plantings[item.target_id]
            focus_lines.append(f"• {p.label} — planted {p.start_date.isoformat()}")
        elif item.kind == "bed" and item.target_id in beds:
            p = beds[item.target_id]
            focus_lines.append(f"• Bed {p.bed_name} ({p.garden_name})")
        elif item.kind == "plant" and item.target_id in plants:
            focus_lines.append(f"• {plants[item.target_id].plant_name}")
        elif item.kind == "task" and item.target_id in reminders:
            r = reminders[item.target_id]
            focus_lines.append(f"• {r.title} — due {r.due_at:%Y-%m-%d %H:%M} UTC")

    horizon = snapshot.now + timedelta(days=1)
    upcoming = sorted(
        (r for r in snapshot.reminders if r.sent_at is None and r.due_at <= horizon),
        key=lambda r: (r.due_at, r.id),
    )
    task_lines = [f"• {r.title} — due {r.due_at:%Y-%m-%d %H:%M} UTC" for r in upcoming]

    lines: list[str] = []
    if focus_lines:
        lines.append("Focus priorities:")
        lines.extend(focus_lines)
    if task_lines:
        if lines:
            lines.append("")
        lines.append("Today's tasks:")
        lines.extend(task_lines)
    return "\n".join(lines) or "No tasks today — enjoy the garden!"
