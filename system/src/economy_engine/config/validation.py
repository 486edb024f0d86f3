from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from zoneinfo import ZoneInfo

from economy_engine.config.settings import SystemSettings
from economy_engine.errors import ConfigError
from economy_engine.models import METRIC_KEYS, AutonomyMode, Direction, TriggerKind


DERIVED_METRIC_KEYS = {"loopFreshness"}
ALLOWED_CADENCE_RANGE = (6, 24)


@dataclass(slots=True, frozen=True)
class ValidationIssue:
    level: str  # error | warning
    path: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"level": self.level, "path": self.path, "message": self.message}


def _as_float(v: Any, default: float = 0.0) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return float(default)


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _validate_condition(path: str, cond: Any, issues: list[ValidationIssue]) -> None:
    if not isinstance(cond, dict):
        issues.append(ValidationIssue("error", path, "must be a mapping"))
        return
    key = cond.get("metric_key")
    if key not in METRIC_KEYS and key not in DERIVED_METRIC_KEYS:
        issues.append(ValidationIssue("error", f"{path}.metric_key", f"unknown metric: {key!r}"))
    if not _is_number(cond.get("threshold")):
        issues.append(ValidationIssue("error", f"{path}.threshold", f"must be numeric, got {cond.get('threshold')!r}"))
    if cond.get("direction") not in {d.value for d in Direction}:
        issues.append(ValidationIssue("error", f"{path}.direction", f"must be below|above, got {cond.get('direction')!r}"))


def validate_trigger_table(rows: Any) -> list[ValidationIssue]:
    """Checks a trigger threshold table; an empty list means the built-in table is used."""
    issues: list[ValidationIssue] = []
    if rows in (None, []):
        return issues
    if not isinstance(rows, list):
        return [ValidationIssue("error", "triggers", "must be a list of trigger rules")]

    seen: set[str] = set()
    for i, row in enumerate(rows):
        path = f"triggers[{i}]"
        if not isinstance(row, dict):
            issues.append(ValidationIssue("error", path, "must be a mapping"))
            continue
        tid = str(row.get("id", "") or "").strip()
        if not tid:
            issues.append(ValidationIssue("error", f"{path}.id", "must be a non-empty string"))
        elif tid in seen:
            issues.append(ValidationIssue("error", f"{path}.id", f"duplicate trigger id: {tid}"))
        seen.add(tid)
        if row.get("kind") not in {k.value for k in TriggerKind}:
            issues.append(ValidationIssue("error", f"{path}.kind", f"must be risk|opportunity, got {row.get('kind')!r}"))
        _validate_condition(path, row, issues)
        requires = row.get("requires", [])
        if not isinstance(requires, list):
            issues.append(ValidationIssue("error", f"{path}.requires", "must be a list"))
        else:
            for j, cond in enumerate(requires):
                _validate_condition(f"{path}.requires[{j}]", cond, issues)
        if not row.get("label"):
            issues.append(ValidationIssue("warning", f"{path}.label", "missing label, id is used instead"))
    return issues


def validate_settings(settings: SystemSettings) -> dict[str, Any]:
    issues: list[ValidationIssue] = []

    tz = str(settings.timezone or "")
    try:
        ZoneInfo(tz)
    except Exception:
        issues.append(ValidationIssue("error", "timezone", f"invalid timezone: {tz!r}"))

    issues.extend(validate_trigger_table(settings.triggers))

    policy = settings.policy
    modes = policy.get("modes", {})
    if not isinstance(modes, dict):
        issues.append(ValidationIssue("error", "policy.modes", "must be a mapping of mode -> limits"))
        modes = {}
    for name, base in modes.items():
        path = f"policy.modes.{name}"
        if name not in {m.value for m in AutonomyMode}:
            issues.append(ValidationIssue("error", path, "unknown mode, expected manual|assist|auto"))
            continue
        if not isinstance(base, dict):
            issues.append(ValidationIssue("error", path, "must be a mapping"))
            continue
        max_actions = _as_int(base.get("max_actions", 1))
        cap = _as_int(base.get("max_actions_cap", 5))
        if not (1 <= max_actions <= 5):
            issues.append(ValidationIssue("error", f"{path}.max_actions", "must be in [1, 5]"))
        if not (1 <= cap <= 5):
            issues.append(ValidationIssue("error", f"{path}.max_actions_cap", "must be in [1, 5]"))
        if max_actions > cap:
            issues.append(ValidationIssue("warning", f"{path}.max_actions", "exceeds max_actions_cap and will be clamped"))
        if _as_float(base.get("cooldown_hours", 0)) < 0:
            issues.append(ValidationIssue("error", f"{path}.cooldown_hours", "must be >= 0"))
        if _as_float(base.get("cooldown_floor_hours", 0)) < 0:
            issues.append(ValidationIssue("error", f"{path}.cooldown_floor_hours", "must be >= 0"))
    baseline = _as_float(policy.get("baseline_confidence", 40))
    if not (0.0 <= baseline <= 100.0):
        issues.append(ValidationIssue("error", "policy.baseline_confidence", "must be in [0, 100]"))
    if _as_int(policy.get("history_window", 12)) < 1:
        issues.append(ValidationIssue("error", "policy.history_window", "must be >= 1"))

    learning = settings.learning
    if _as_float(learning.get("stale_after_hours", 18)) <= 0:
        issues.append(ValidationIssue("error", "learning.stale_after_hours", "must be > 0"))
    lo = _as_int(learning.get("min_cooldown_hours", 6))
    hi = _as_int(learning.get("max_cooldown_hours", 24))
    if not (0 <= lo <= hi):
        issues.append(ValidationIssue("error", "learning.*_cooldown_hours", "need 0 <= min_cooldown_hours <= max_cooldown_hours"))

    gov = settings.governance
    healthy = _as_float(gov.get("healthy_score", 70))
    watch = _as_float(gov.get("watch_score", 35))
    if not (0.0 < watch < healthy <= 100.0):
        issues.append(ValidationIssue("error", "governance.*_score", "need 0 < watch_score < healthy_score <= 100"))
    if _as_int(gov.get("paused_stale_runs", 4)) < 1:
        issues.append(ValidationIssue("error", "governance.paused_stale_runs", "must be >= 1"))
    caps = [_as_int(gov.get(f"{s}_max_actions_cap", d)) for s, d in (("healthy", 5), ("watch", 2), ("paused", 1))]
    floors = [_as_int(gov.get(f"{s}_cooldown_floor_hours", d)) for s, d in (("healthy", 6), ("watch", 12), ("paused", 18))]
    if not (caps[0] >= caps[1] >= caps[2] >= 1):
        issues.append(ValidationIssue("error", "governance.*_max_actions_cap", "caps must not loosen as status degrades"))
    if not (0 <= floors[0] <= floors[1] <= floors[2]):
        issues.append(ValidationIssue("error", "governance.*_cooldown_floor_hours", "floors must not loosen as status degrades"))

    strategy = settings.strategy
    options = strategy.get("cadence_options", [6, 8, 12, 18, 24])
    if not isinstance(options, list) or not options:
        issues.append(ValidationIssue("error", "strategy.cadence_options", "must be a non-empty list"))
    else:
        for i, opt in enumerate(options):
            if not _is_number(opt) or not (ALLOWED_CADENCE_RANGE[0] <= opt <= ALLOWED_CADENCE_RANGE[1]):
                issues.append(ValidationIssue("error", f"strategy.cadence_options[{i}]", "must be a number in [6, 24]"))
        if sorted(options) != list(options):
            issues.append(ValidationIssue("warning", "strategy.cadence_options", "not sorted, adaptation steps use sorted order"))
    default_cadence = _as_int(strategy.get("default_cadence_hours", 12))
    if not (ALLOWED_CADENCE_RANGE[0] <= default_cadence <= ALLOWED_CADENCE_RANGE[1]):
        issues.append(ValidationIssue("error", "strategy.default_cadence_hours", "must be in [6, 24]"))
    if _as_int(strategy.get("cycles", 3)) < 1:
        issues.append(ValidationIssue("error", "strategy.cycles", "must be >= 1"))

    agent = settings.outcome_agent
    if not (6 <= _as_int(agent.get("stale_after_hours", 18)) <= 240):
        issues.append(ValidationIssue("error", "outcome_agent.stale_after_hours", "must be in [6, 240]"))
    if not (1 <= _as_int(agent.get("max_runs", 3)) <= 10):
        issues.append(ValidationIssue("error", "outcome_agent.max_runs", "must be in [1, 10]"))

    features = settings.features
    if not isinstance(features, dict):
        issues.append(ValidationIssue("error", "features", "must be a mapping of stage -> bool"))
    else:
        for name, value in features.items():
            if not isinstance(value, bool):
                issues.append(ValidationIssue("error", f"features.{name}", "must be a boolean"))

    errors = [x for x in issues if x.level == "error"]
    warnings = [x for x in issues if x.level == "warning"]
    return {
        "ok": len(errors) == 0,
        "errors": [x.to_dict() for x in errors],
        "warnings": [x.to_dict() for x in warnings],
        "summary": {
            "errors": len(errors),
            "warnings": len(warnings),
        },
    }


def assert_valid_settings(settings: SystemSettings) -> None:
    result = validate_settings(settings)
    if result["ok"]:
        return
    raise ConfigError([f"[{item['path']}] {item['message']}" for item in result.get("errors", [])])
