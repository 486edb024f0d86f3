from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from economy_engine.config.validation import validate_trigger_table
from economy_engine.errors import ConfigError
from economy_engine.models import Direction, Run, Trigger, TriggerKind, TriggerStatus, hours_between


LOOP_FRESHNESS_KEY = "loopFreshness"


@dataclass(slots=True, frozen=True)
class TriggerCondition:
    metric_key: str
    threshold: float
    direction: Direction

    def holds(self, metrics: dict[str, float]) -> bool | None:
        """True/False when the metric is known, None when it is absent."""
        current = metrics.get(self.metric_key)
        if current is None:
            return None
        if self.direction == Direction.BELOW:
            return current < self.threshold
        return current > self.threshold


@dataclass(slots=True, frozen=True)
class TriggerRule:
    id: str
    label: str
    kind: TriggerKind
    metric_key: str
    threshold: float
    direction: Direction
    severity_fired: str = "medium"
    severity_idle: str = "low"
    fired_reason: str = ""
    idle_reason: str = ""
    requires: tuple[TriggerCondition, ...] = field(default_factory=tuple)

    @property
    def primary(self) -> TriggerCondition:
        return TriggerCondition(self.metric_key, self.threshold, self.direction)


def _rule(tid, label, kind, key, thr, direction, sev_fired, sev_idle, fired, idle, requires=()):
    return TriggerRule(
        id=tid,
        label=label,
        kind=TriggerKind(kind),
        metric_key=key,
        threshold=float(thr),
        direction=Direction(direction),
        severity_fired=sev_fired,
        severity_idle=sev_idle,
        fired_reason=fired,
        idle_reason=idle,
        requires=tuple(TriggerCondition(k, float(t), Direction(d)) for k, t, d in requires),
    )


DEFAULT_TRIGGER_RULES: tuple[TriggerRule, ...] = (
    _rule(
        "foundation_gap", "Foundation Stability", "risk", "combinedScore", 58, "below", "high", "low",
        "Combined score is below stabilization threshold; prioritize canon and narrative reliability before scaling.",
        "Combined score remains within a stable band.",
    ),
    _rule(
        "retention_drift", "Retention Drift", "risk", "retentionPotential", 62, "below", "high", "medium",
        "Retention potential dipped under target; reinforce hook cadence and continuation prompts.",
        "Retention potential is within operating range.",
    ),
    _rule(
        "merch_signal_gap", "Merch Signal Gap", "risk", "merchSignal", 60, "below", "medium", "low",
        "Merch signal is still early; run low-cost concept probes before larger experiments.",
        "Merch signals are healthy enough for staged testing.",
    ),
    _rule(
        "role_coverage_gap", "Role Coverage Gap", "risk", "roleCoverage", 82, "below", "medium", "low",
        "Role ownership is incomplete; resolve assignment gaps before high-throughput runs.",
        "Role ownership coverage is healthy.",
    ),
    _rule(
        "stale_execution_loop", "Stale Execution Loop", "risk", LOOP_FRESHNESS_KEY, 28, "below", "medium", "low",
        "Latest run has not closed the feedback loop in time; create and execute the next run.",
        "Execution loop cadence is current.",
    ),
    _rule(
        "scale_window", "Scale Window", "opportunity", "combinedScore", 78, "above", "high", "low",
        "Metrics indicate a scale-ready window; increase distribution throughput with controlled experiments.",
        "Scale window not open yet; continue strengthening the baseline.",
        requires=(("retentionPotential", 70, "above"), ("merchSignal", 66, "above"), ("roleCoverage", 86, "above")),
    ),
)


def load_trigger_rules(rows: list[dict[str, Any]] | None) -> tuple[TriggerRule, ...]:
    """Build the threshold table from config rows; an empty table keeps the built-in rules."""
    if not rows:
        return DEFAULT_TRIGGER_RULES
    errors = [x for x in validate_trigger_table(rows) if x.level == "error"]
    if errors:
        raise ConfigError([f"[{x.path}] {x.message}" for x in errors])
    defaults = {r.id: r for r in DEFAULT_TRIGGER_RULES}
    out: list[TriggerRule] = []
    for row in rows:
        base = defaults.get(str(row["id"]))
        out.append(
            _rule(
                str(row["id"]),
                str(row.get("label") or (base.label if base else row["id"])),
                row["kind"],
                str(row["metric_key"]),
                row["threshold"],
                row["direction"],
                str(row.get("severity_fired", "medium")),
                str(row.get("severity_idle", "low")),
                str(row.get("fired_reason") or (base.fired_reason if base else "")),
                str(row.get("idle_reason") or (base.idle_reason if base else "")),
                requires=[(c["metric_key"], c["threshold"], c["direction"]) for c in row.get("requires", []) or []],
            )
        )
    return tuple(out)


def loop_freshness(history: list[Run], now: datetime) -> float:
    """0-100 freshness of the execution loop; open runs age three times faster."""
    if not history:
        return 0.0
    latest = history[0]
    factor = 1.0 if latest.is_completed else 3.0
    hours = hours_between(now, latest.anchor_at)
    return float(max(0.0, 100.0 - min(100.0, hours * factor)))


def _fmt(value: float) -> str:
    return f"{value:g}"


def evaluate_trigger(rule: TriggerRule, metrics: dict[str, float]) -> Trigger:
    checks = [rule.primary.holds(metrics)] + [c.holds(metrics) for c in rule.requires]
    missing = [c.metric_key for c, ok in zip((rule.primary,) + rule.requires, checks) if ok is None]
    fired = not missing and all(checks)
    if missing:
        reason = f"Missing metric(s) {', '.join(missing)}; trigger stays idle."
    elif fired:
        reason = rule.fired_reason or (
            f"{rule.metric_key} {_fmt(metrics[rule.metric_key])} is {rule.direction.value} {_fmt(rule.threshold)}."
        )
    else:
        reason = rule.idle_reason or f"{rule.metric_key} is within range."
    return Trigger(
        id=rule.id,
        label=rule.label,
        kind=rule.kind,
        status=TriggerStatus.FIRED if fired else TriggerStatus.IDLE,
        severity=rule.severity_fired if fired else rule.severity_idle,
        reason=reason,
        metric_key=rule.metric_key,
        current=metrics.get(rule.metric_key),
        threshold=rule.threshold,
        direction=rule.direction,
    )


def evaluate_triggers(metrics: dict[str, float], rules: Iterable[TriggerRule] = DEFAULT_TRIGGER_RULES) -> list[Trigger]:
    return [evaluate_trigger(rule, metrics) for rule in rules]
