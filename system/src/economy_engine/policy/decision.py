from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import numpy as np

from economy_engine.models import (
    AutomationPlan,
    AutonomyMode,
    DecisionPolicy,
    OutcomeDecision,
    Run,
    TriggerKind,
    hours_between,
)


BASE_GUARDRAILS = (
    "Always keep continuity + publishing quality gates active during autonomous runs.",
    "Require explicit owner assignment for every queued recommendation before execution.",
    "Never execute more than max actions per cycle; reassess triggers after each cycle.",
)


@dataclass(slots=True, frozen=True)
class ModeLimits:
    max_actions: int
    cooldown_hours: int
    max_actions_cap: int
    cooldown_floor_hours: int


DEFAULT_MODE_LIMITS: dict[AutonomyMode, ModeLimits] = {
    AutonomyMode.MANUAL: ModeLimits(max_actions=1, cooldown_hours=18, max_actions_cap=1, cooldown_floor_hours=18),
    AutonomyMode.ASSIST: ModeLimits(max_actions=2, cooldown_hours=10, max_actions_cap=3, cooldown_floor_hours=6),
    AutonomyMode.AUTO: ModeLimits(max_actions=3, cooldown_hours=8, max_actions_cap=5, cooldown_floor_hours=4),
}


@dataclass(slots=True, frozen=True)
class PolicyParams:
    baseline_confidence: int = 40
    history_window: int = 12
    risk_cooldown_hours: int = 12
    modes: dict[AutonomyMode, ModeLimits] = field(default_factory=lambda: dict(DEFAULT_MODE_LIMITS))

    @classmethod
    def from_config(cls, raw: dict[str, Any]) -> "PolicyParams":
        modes = dict(DEFAULT_MODE_LIMITS)
        for name, base in (raw.get("modes") or {}).items():
            mode = AutonomyMode(name)
            default = DEFAULT_MODE_LIMITS[mode]
            modes[mode] = ModeLimits(
                max_actions=int(base.get("max_actions", default.max_actions)),
                cooldown_hours=int(base.get("cooldown_hours", default.cooldown_hours)),
                max_actions_cap=int(base.get("max_actions_cap", default.max_actions_cap)),
                cooldown_floor_hours=int(base.get("cooldown_floor_hours", default.cooldown_floor_hours)),
            )
        return cls(
            baseline_confidence=int(raw.get("baseline_confidence", 40)),
            history_window=int(raw.get("history_window", 12)),
            risk_cooldown_hours=int(raw.get("risk_cooldown_hours", 12)),
            modes=modes,
        )

    def limits(self, mode: AutonomyMode) -> ModeLimits:
        return self.modes.get(mode, DEFAULT_MODE_LIMITS[mode])


def clamp_int(value: float, low: int, high: int) -> int:
    return int(np.clip(int(round(float(value))), low, high))


def tighten_policy(
    policy: DecisionPolicy,
    *,
    max_actions_cap: int | None = None,
    cooldown_floor_hours: int | None = None,
    mode: AutonomyMode | None = None,
    confidence: int | None = None,
    rationale: list[str] | None = None,
    guardrails: list[str] | None = None,
) -> DecisionPolicy:
    """Copy of `policy` with the cap/floor applied; never loosens either limit."""
    max_actions = policy.max_actions_per_cycle
    if max_actions_cap is not None:
        max_actions = min(max_actions, int(max_actions_cap))
    cooldown = policy.cooldown_hours
    if cooldown_floor_hours is not None:
        cooldown = max(cooldown, int(cooldown_floor_hours))
    return replace(
        policy,
        mode=mode if mode is not None else policy.mode,
        confidence=confidence if confidence is not None else policy.confidence,
        rationale=list(rationale) if rationale is not None else list(policy.rationale),
        guardrails=list(guardrails) if guardrails is not None else list(policy.guardrails),
        max_actions_per_cycle=max(1, max_actions),
        cooldown_hours=max(0, cooldown),
    )


def _recommended_outcome(decisions: list[OutcomeDecision]) -> tuple[OutcomeDecision, str]:
    if not decisions:
        return OutcomeDecision.ITERATE, "No completed runs yet; default to iterate."
    counts = Counter(decisions)
    top, top_count = max(counts.items(), key=lambda kv: (kv[1], -decisions.index(kv[0])))
    if top_count * 2 > len(decisions):
        return top, f"Majority of completed runs closed as {top.value} ({top_count}/{len(decisions)})."
    if len(decisions) >= 2 and decisions[0] == decisions[1]:
        return decisions[0], f"Two most recent completed runs both closed as {decisions[0].value}."
    return OutcomeDecision.ITERATE, "Completed outcomes are mixed; default to iterate."


def build_decision_policy(
    mode: AutonomyMode,
    plan: AutomationPlan,
    history: list[Run],
    now: datetime,
    params: PolicyParams | None = None,
) -> DecisionPolicy:
    params = params or PolicyParams()
    limits = params.limits(mode)
    risk = plan.fired_triggers(TriggerKind.RISK)
    opportunities = plan.fired_triggers(TriggerKind.OPPORTUNITY)
    high_risk = sum(1 for t in risk if t.severity == "high")

    recent = history[: max(1, params.history_window)]
    decisions = [r.outcome_decision for r in recent if r.is_completed and r.outcome_decision is not None]
    outcome, outcome_reason = _recommended_outcome(decisions)
    rationale = [outcome_reason]
    if high_risk >= 2 and outcome == OutcomeDecision.SCALE:
        outcome = OutcomeDecision.ITERATE
        rationale.append(f"{high_risk} high-risk triggers active; scale downgraded to iterate.")
    elif high_risk > 0:
        rationale.append(
            f"{high_risk} high-risk trigger(s) active; bias policy toward controlled iteration before scale decisions."
        )
    if opportunities:
        rationale.append("Opportunity trigger detected; distribution scale can be tested under quality gates.")

    if decisions:
        share = Counter(decisions)[outcome] / len(decisions) if outcome in decisions else 0.0
        raw_conf = params.baseline_confidence + 5 * min(len(decisions), 8) * share + 20 * share
        confidence = clamp_int(raw_conf, params.baseline_confidence, 100)
        rationale.append(f"Confidence from {len(decisions)} completed run(s), {share:.0%} agreeing.")
    else:
        confidence = int(params.baseline_confidence)

    if history:
        idle = hours_between(now, history[0].anchor_at)
        if idle >= 24:
            rationale.append("Execution loop is stale; enqueue at least one recommendation to restore learning cadence.")

    max_actions = max(1, min(limits.max_actions, limits.max_actions_cap))
    cooldown = limits.cooldown_hours
    if mode != AutonomyMode.MANUAL and risk:
        cooldown = max(cooldown, params.risk_cooldown_hours)

    guardrails = list(BASE_GUARDRAILS)
    if mode == AutonomyMode.MANUAL:
        guardrails.append("Manual mode: autonomous execution is disabled; every action needs an operator.")

    return DecisionPolicy(
        mode=mode,
        recommended_outcome=outcome,
        confidence=confidence,
        rationale=rationale,
        guardrails=guardrails,
        max_actions_per_cycle=max_actions,
        cooldown_hours=int(cooldown),
    )
