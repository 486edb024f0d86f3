from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import numpy as np

from economy_engine.models import (
    EXECUTION_PLAN_TYPES,
    Backlog,
    DecisionPolicy,
    GovernanceReport,
    GovernanceStatus,
    LearningReport,
    OutcomeDecision,
    Run,
    hours_between,
)
from economy_engine.policy.decision import tighten_policy


@dataclass(slots=True, frozen=True)
class GovernanceThresholds:
    healthy_score: int = 70
    watch_score: int = 35
    paused_stale_runs: int = 4
    paused_open_hours: float = 120.0
    paused_min_completed: int = 4
    paused_positive_rate: float = 0.28
    watch_stale_runs: int = 2
    watch_risky_rate: float = 0.5
    watch_min_completed: int = 3
    watch_positive_rate: float = 0.5
    healthy_max_actions_cap: int = 5
    watch_max_actions_cap: int = 2
    paused_max_actions_cap: int = 1
    healthy_cooldown_floor_hours: int = 6
    watch_cooldown_floor_hours: int = 12
    paused_cooldown_floor_hours: int = 18

    @classmethod
    def from_config(cls, raw: dict[str, Any]) -> "GovernanceThresholds":
        defaults = cls()
        kwargs = {}
        for name in cls.__dataclass_fields__:
            if name in raw:
                kwargs[name] = type(getattr(defaults, name))(raw[name])
        return cls(**kwargs)

    def constraints(self, status: GovernanceStatus) -> tuple[int, int]:
        if status == GovernanceStatus.HEALTHY:
            return self.healthy_max_actions_cap, self.healthy_cooldown_floor_hours
        if status == GovernanceStatus.WATCH:
            return self.watch_max_actions_cap, self.watch_cooldown_floor_hours
        return self.paused_max_actions_cap, self.paused_cooldown_floor_hours

    def status_for(self, score: int) -> GovernanceStatus:
        if score >= self.healthy_score:
            return GovernanceStatus.HEALTHY
        if score >= self.watch_score:
            return GovernanceStatus.WATCH
        return GovernanceStatus.PAUSED


def is_risky_outcome(run: Run) -> bool:
    if run.outcome_decision in (OutcomeDecision.ARCHIVE, OutcomeDecision.HOLD):
        return True
    delta = run.combined_delta
    return delta is not None and delta < -1


def build_governance_report(
    history: list[Run],
    learning: LearningReport,
    policy: DecisionPolicy,
    backlog: Backlog | None,
    now: datetime,
    thresholds: GovernanceThresholds | None = None,
) -> GovernanceReport:
    """Score loop health; the status and its constraints are a function of the score alone.

    Hard conditions (stale debt, very old open runs, poor automated outcomes) cap the score
    inside the paused or watch band, so a lower score can never carry looser limits.
    """
    thr = thresholds or GovernanceThresholds()
    completed = [r for r in history if r.is_completed]
    automated = [r for r in completed if isinstance(r.plan, EXECUTION_PLAN_TYPES)]
    open_runs = [r for r in history if not r.is_completed]

    risky_rate = sum(1 for r in automated if is_risky_outcome(r)) / len(automated) if automated else 0.0
    longest_open = max((hours_between(now, r.created_at) for r in open_runs), default=0.0)
    stale = learning.stale_open_runs
    positive_rate = learning.overall_positive_rate
    scored_rate = positive_rate if completed else 0.5

    raw = 82 + (scored_rate - 0.5) * 45 - stale * 6 - risky_rate * 22 - (8 if longest_open >= 72 else 0)
    score = int(np.clip(round(raw), 0, 100))

    reasons: list[str] = []
    recommendations: list[str] = []
    if (
        stale >= thr.paused_stale_runs
        or longest_open >= thr.paused_open_hours
        or (len(automated) >= thr.paused_min_completed and positive_rate <= thr.paused_positive_rate)
    ):
        score = min(score, thr.watch_score - 1)
        reasons.append("Hard pause condition met: stale debt, an abandoned run or a failing automated loop.")
    elif (
        stale >= thr.watch_stale_runs
        or risky_rate >= thr.watch_risky_rate
        or (len(automated) >= thr.watch_min_completed and positive_rate < thr.watch_positive_rate)
    ):
        score = min(score, thr.healthy_score - 1)

    status = thr.status_for(score)
    max_cap, floor = thr.constraints(status)

    if stale > 0:
        reasons.append(f"{stale} stale open run(s) detected; close stale cycles before scaling throughput.")
        recommendations.append("Run the outcome-closing agent before the next autonomous cycle.")
    if longest_open >= 72:
        reasons.append(f"Longest open run age is {round(longest_open)}h, signaling delayed feedback closure.")
    if risky_rate >= 0.4:
        reasons.append(f"Risk-heavy outcomes are elevated ({round(risky_rate * 100)}% archive/hold/negative).")
        recommendations.append("Reduce cycle width and prioritize stabilization recommendations.")
    if positive_rate >= 0.68 and stale == 0:
        recommendations.append("Healthy loop detected; controlled scale tests are safe.")
    if backlog is not None and backlog.summary["ready"] == 0 and status != GovernanceStatus.PAUSED:
        recommendations.append("No ready backlog items; resolve blocked owners or wait for cooldowns.")
    if not reasons:
        reasons.append("Autonomy signals are stable and within governance thresholds.")
    if not recommendations:
        recommendations.append("Continue monitored autonomous execution with periodic policy refresh.")

    return GovernanceReport(
        generated_at=now,
        status=status,
        governance_score=score,
        allow_autorun=status != GovernanceStatus.PAUSED,
        max_actions_cap=int(max_cap),
        cooldown_floor_hours=int(floor),
        completed_runs=len(completed),
        positive_rate=round(positive_rate, 2),
        stale_open_runs=stale,
        risky_outcome_rate=round(risky_rate, 2),
        longest_open_run_hours=round(longest_open, 1),
        reasons=reasons,
        recommendations=recommendations,
    )


def apply_governance_to_policy(policy: DecisionPolicy, governance: GovernanceReport) -> DecisionPolicy:
    penalty = {GovernanceStatus.WATCH: 6, GovernanceStatus.PAUSED: 14}.get(governance.status, 0)
    guardrails = [*policy.guardrails, "Honor governance action caps and cooldown floor before each autonomous run."]
    if governance.paused:
        guardrails.append("Autorun paused by governance; force-run should be used only for emergency interventions.")
    return tighten_policy(
        policy,
        max_actions_cap=governance.max_actions_cap,
        cooldown_floor_hours=governance.cooldown_floor_hours,
        confidence=int(np.clip(policy.confidence - penalty, 15, 99)),
        rationale=[*policy.rationale, f"Governance {governance.status.value}: score {governance.governance_score}."],
        guardrails=guardrails,
    )
