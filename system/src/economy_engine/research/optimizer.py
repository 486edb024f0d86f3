from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import numpy as np

from economy_engine.models import (
    MODE_RANK,
    AutomationPlan,
    AutonomyMode,
    Backlog,
    DecisionPolicy,
    GovernanceReport,
    GovernanceStatus,
    LearningReport,
    Objective,
    OptimizerProfile,
    OptimizerReport,
    Run,
)
from economy_engine.policy.backlog import build_backlog, select_execution_items
from economy_engine.policy.decision import tighten_policy


CONFIDENCE_SHIFT = {Objective.STABILIZE: 8, Objective.BALANCED: 2, Objective.GROWTH: -6}


@dataclass(slots=True)
class OptimizerResult:
    report: OptimizerReport
    policy: DecisionPolicy
    backlog: Backlog


def _clip(v: float, lo: int, hi: int) -> int:
    return int(np.clip(int(round(v)), lo, hi))


def _no_louder_than(mode: AutonomyMode, ceiling: AutonomyMode) -> AutonomyMode:
    return mode if MODE_RANK[mode] <= MODE_RANK[ceiling] else ceiling


def build_profiles(policy: DecisionPolicy, governance: GovernanceReport) -> list[OptimizerProfile]:
    cap = governance.max_actions_cap
    floor = governance.cooldown_floor_hours
    pm = policy.max_actions_per_cycle
    pc = policy.cooldown_hours
    healthy = governance.status == GovernanceStatus.HEALTHY

    stabilize_mode = AutonomyMode.MANUAL if governance.paused else AutonomyMode.ASSIST
    balanced_mode = AutonomyMode.ASSIST if (policy.mode == AutonomyMode.AUTO and not healthy) else policy.mode
    growth_mode = AutonomyMode.AUTO if healthy else AutonomyMode.ASSIST

    return [
        OptimizerProfile(
            objective=Objective.STABILIZE,
            label="Stabilize Loop",
            rationale="Prioritize safety and canon reliability while reducing throughput volatility.",
            mode=_no_louder_than(stabilize_mode, policy.mode),
            max_actions_per_cycle=1,
            cooldown_hours=_clip(max(pc + 2, floor + 2), 6, 24),
            velocity_delta=-18,
            risk_delta=-28,
            confidence_delta=6,
        ),
        OptimizerProfile(
            objective=Objective.BALANCED,
            label="Balanced Throughput",
            rationale="Maintain measured delivery speed while preserving governance-safe constraints.",
            mode=_no_louder_than(balanced_mode, policy.mode),
            max_actions_per_cycle=_clip(min(pm, cap), 1, 5),
            cooldown_hours=_clip(max(pc, floor), 4, 24),
            velocity_delta=4,
            risk_delta=-6,
            confidence_delta=4,
        ),
        OptimizerProfile(
            objective=Objective.GROWTH,
            label="Scale Window",
            rationale="Maximize cycle output when loop health is strong and stale debt is under control.",
            mode=_no_louder_than(growth_mode, policy.mode),
            max_actions_per_cycle=_clip(min(cap, max(pm, 2)), 1, 5),
            cooldown_hours=_clip(max(floor, pc - 2), 4, 24),
            velocity_delta=20,
            risk_delta=14,
            confidence_delta=-4,
        ),
    ]


def recommend_objective(learning: LearningReport, governance: GovernanceReport, ready_items: int) -> Objective:
    positive = learning.overall_positive_rate
    if governance.paused or learning.stale_open_runs >= 3 or positive < 0.45:
        return Objective.STABILIZE
    if governance.status == GovernanceStatus.HEALTHY and positive >= 0.68 and ready_items >= 2:
        return Objective.GROWTH
    return Objective.BALANCED


def build_optimizer_report(
    policy: DecisionPolicy,
    learning: LearningReport,
    governance: GovernanceReport,
    backlog: Backlog,
    now: datetime,
    requested: Objective | None = None,
) -> OptimizerReport:
    recommended = recommend_objective(learning, governance, backlog.summary["ready"])
    notes: list[str] = []
    if recommended == Objective.STABILIZE:
        notes.append("Optimizer recommends stabilization due to loop-health risk signals.")
    elif recommended == Objective.GROWTH:
        notes.append("Optimizer detected a healthy scale window with sufficient ready backlog.")
    notes.append(f"Governance status is {governance.status.value}; max action cap is {governance.max_actions_cap}.")
    notes.append(
        f"Learning signals: {round(learning.overall_positive_rate * 100)}% positive outcomes, "
        f"{learning.stale_open_runs} stale open run(s)."
    )
    if requested is not None and requested != recommended:
        notes.append(f"Operator requested {requested.value} over the recommended {recommended.value} objective.")
    return OptimizerReport(
        generated_at=now,
        recommended_objective=recommended,
        selected_objective=requested or recommended,
        profiles=build_profiles(policy, governance),
        notes=notes,
    )


def apply_optimizer_profile(policy: DecisionPolicy, report: OptimizerReport, objective: Objective) -> DecisionPolicy:
    profile = report.profile(objective)
    tuned = tighten_policy(
        policy,
        mode=profile.mode,
        confidence=int(np.clip(policy.confidence + CONFIDENCE_SHIFT[profile.objective], 10, 99)),
        rationale=[*policy.rationale, f"Optimizer objective applied: {profile.label}."],
        guardrails=[*policy.guardrails, f"Optimizer objective {profile.objective.value} active; reassess after one cycle."],
    )
    tuned.max_actions_per_cycle = profile.max_actions_per_cycle
    tuned.cooldown_hours = profile.cooldown_hours
    return tuned


def optimize(
    policy: DecisionPolicy,
    learning: LearningReport,
    governance: GovernanceReport,
    backlog: Backlog,
    plan: AutomationPlan,
    history: list[Run],
    now: datetime,
    requested: Objective | None = None,
) -> OptimizerResult:
    """Pick the objective, tune the policy to its profile and re-status the backlog under it."""
    report = build_optimizer_report(policy, learning, governance, backlog, now, requested)
    tuned = apply_optimizer_profile(policy, report, report.selected_objective)
    tuned = tighten_policy(
        tuned, max_actions_cap=governance.max_actions_cap, cooldown_floor_hours=governance.cooldown_floor_hours
    )
    rescored = build_backlog(policy.mode, plan, tuned, history, now)
    report.preview = [x.recommendation_id for x in select_execution_items(rescored)]
    return OptimizerResult(report=report, policy=tuned, backlog=rescored)
