from __future__ import annotations

from dataclasses import replace
from datetime import datetime

import numpy as np

from economy_engine.models import (
    MODE_RANK,
    SEVERITY_RANK,
    AutonomyMode,
    Backlog,
    BacklogStatus,
    DecisionPolicy,
    GateStatus,
    GovernanceReport,
    GovernanceStatus,
    LearningReport,
    Objective,
    PolicyPatch,
    Priority,
    RecoveryItem,
    SelfHealingReport,
    Severity,
    StrategyLoopReport,
    WindowReport,
)
from economy_engine.orchestration.strategy_loop import StrategyParams


ROI_LIFT = {Priority.HIGH: 8, Priority.MEDIUM: 5, Priority.LOW: 3}
RECOVERY_PLAN_SIZE = 4
CONFIDENCE_SHIFT = {Severity.CRITICAL: -12, Severity.WATCH: -6, Severity.NONE: 2}


def roi_gap_score(governance: GovernanceReport, backlog: Backlog) -> int:
    """Governance score deficit plus high-priority work that is neither done nor cooling down."""
    missed = sum(
        1 for x in backlog.items if x.priority == Priority.HIGH and x.status != BacklogStatus.COOLDOWN
    )
    raw = (100 - governance.governance_score) * 0.6 + 15 * missed
    return int(np.clip(round(raw), 0, 100))


def condition_severity(governance: GovernanceReport, learning: LearningReport, window: WindowReport) -> Severity:
    if governance.paused or window.gate.status == GateStatus.BLOCKED or learning.stale_open_runs >= 3:
        return Severity.CRITICAL
    if (
        governance.status == GovernanceStatus.WATCH
        or window.gate.status == GateStatus.HOLD
        or learning.overall_positive_rate < 0.58
    ):
        return Severity.WATCH
    return Severity.NONE


def score_severity(roi_gap: int, params: StrategyParams) -> Severity:
    if roi_gap >= params.self_healing_critical_roi:
        return Severity.CRITICAL
    if roi_gap >= params.self_healing_watch_roi:
        return Severity.WATCH
    return Severity.NONE


def _quieter(mode: AutonomyMode, ceiling: AutonomyMode) -> AutonomyMode:
    return mode if MODE_RANK[mode] <= MODE_RANK[ceiling] else ceiling


def build_patch(
    severity: Severity,
    policy: DecisionPolicy,
    governance: GovernanceReport,
    window: WindowReport,
) -> PolicyPatch:
    cap = governance.max_actions_cap
    floor = governance.cooldown_floor_hours
    cadence = window.adaptation.next_cadence_hours
    if severity == Severity.CRITICAL:
        return PolicyPatch(
            objective=Objective.STABILIZE,
            cadence_hours=cadence,
            mode=_quieter(AutonomyMode.ASSIST, policy.mode),
            max_actions_per_cycle=1,
            cooldown_hours=max(floor, policy.cooldown_hours + 4),
        )
    if severity == Severity.WATCH:
        return PolicyPatch(
            objective=Objective.BALANCED,
            cadence_hours=cadence,
            mode=_quieter(AutonomyMode.ASSIST, policy.mode),
            max_actions_per_cycle=int(np.clip(min(policy.max_actions_per_cycle, cap), 1, 3)),
            cooldown_hours=max(floor, policy.cooldown_hours + 2),
        )
    return PolicyPatch(
        objective=window.adaptation.recommended_objective,
        cadence_hours=cadence,
        mode=policy.mode,
        max_actions_per_cycle=int(np.clip(min(policy.max_actions_per_cycle, cap), 1, 5)),
        cooldown_hours=max(policy.cooldown_hours, floor),
    )


def build_recovery_plan(backlog: Backlog, objective: Objective) -> list[RecoveryItem]:
    """Items tied to at least one fired trigger, re-ranked by expected lift then backlog score."""
    relevant = [x for x in backlog.items if x.trigger_ids]
    relevant.sort(key=lambda x: (-ROI_LIFT[x.priority], -x.score, x.recommendation_id))
    return [
        RecoveryItem(item=x, target_objective=objective, expected_roi_lift=ROI_LIFT[x.priority])
        for x in relevant[:RECOVERY_PLAN_SIZE]
    ]


def build_self_healing_report(
    policy: DecisionPolicy,
    governance: GovernanceReport,
    learning: LearningReport,
    loop: StrategyLoopReport,
    window: WindowReport,
    backlog: Backlog,
    now: datetime,
    params: StrategyParams | None = None,
) -> SelfHealingReport:
    params = params or StrategyParams()
    gap = roi_gap_score(governance, backlog)
    severity = max(condition_severity(governance, learning, window), score_severity(gap, params), key=SEVERITY_RANK.get)

    triggers: list[str] = []
    if governance.status != GovernanceStatus.HEALTHY:
        triggers.append(f"Governance status is {governance.status.value}.")
    if window.gate.status != GateStatus.READY:
        triggers.append(f"Execution gate is {window.gate.status.value}.")
    if learning.stale_open_runs > 0:
        triggers.append(f"{learning.stale_open_runs} stale open run(s) need closure to recover ROI loop speed.")
    if learning.overall_positive_rate < 0.6:
        triggers.append(f"Positive outcome rate is {round(learning.overall_positive_rate * 100)}%.")
    if gap >= params.self_healing_watch_roi:
        triggers.append(f"ROI gap score {gap} exceeds the {params.self_healing_watch_roi} watch bound.")
    if not triggers:
        triggers.append("Loop is healthy; self-healing remains in observation mode.")

    patch = build_patch(severity, policy, governance, window)
    recovery = [] if severity == Severity.NONE else build_recovery_plan(backlog, patch.objective)

    notes = [
        f"Self-healing severity is {severity.value}; ROI gap score is {gap}.",
        f"Patch proposes {patch.mode.value} mode with {patch.max_actions_per_cycle} max action(s) "
        f"and {patch.cooldown_hours}h cooldown.",
        f"Cadence adapts toward {patch.cadence_hours}h with objective {patch.objective.value}.",
    ]
    if loop.cadence_hours != patch.cadence_hours:
        notes.append(f"Strategy cadence moves from {loop.cadence_hours}h to {patch.cadence_hours}h once patched.")

    return SelfHealingReport(
        generated_at=now,
        severity=severity,
        roi_gap_score=gap,
        triggers=triggers,
        policy_patch=patch,
        recovery_plan=recovery,
        notes=notes,
    )


def apply_self_healing_patch(policy: DecisionPolicy, report: SelfHealingReport) -> DecisionPolicy:
    patch = report.policy_patch
    return replace(
        policy,
        mode=patch.mode,
        max_actions_per_cycle=patch.max_actions_per_cycle,
        cooldown_hours=patch.cooldown_hours,
        confidence=int(np.clip(policy.confidence + CONFIDENCE_SHIFT[report.severity], 10, 99)),
        rationale=[
            *policy.rationale,
            f"Self-healing patch applied ({report.severity.value}) toward {patch.objective.value}.",
        ],
        guardrails=[
            *policy.guardrails,
            "Self-healing patch active: close recovery plan items before next escalation.",
        ],
    )


def settle_applied_patch(
    report: SelfHealingReport,
    loop: StrategyLoopReport,
    policy: DecisionPolicy,
    backlog: Backlog,
) -> SelfHealingReport:
    """The report as executed.

    Patch limits are read back from the pinned policy and the rebuilt loop, and recovery items
    are re-resolved against the backlog that policy produces, so a recovery item can never be
    ready while the applied cooldown still holds it.
    """
    proposed = report.policy_patch
    patch = replace(
        proposed,
        cadence_hours=loop.cadence_hours,
        mode=policy.mode,
        max_actions_per_cycle=policy.max_actions_per_cycle,
        cooldown_hours=policy.cooldown_hours,
    )
    notes = list(report.notes)
    if patch != proposed:
        notes.append(
            f"Applied patch settled at {patch.cadence_hours}h cadence, {patch.max_actions_per_cycle} max action(s) "
            f"and {patch.cooldown_hours}h cooldown."
        )
    recovery = [] if report.severity == Severity.NONE else build_recovery_plan(backlog, patch.objective)
    return replace(report, policy_patch=patch, recovery_plan=recovery, notes=notes)
