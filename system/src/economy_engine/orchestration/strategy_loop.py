from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from economy_engine.models import (
    Backlog,
    DecisionPolicy,
    GovernanceReport,
    GovernanceStatus,
    LearningReport,
    Objective,
    OptimizerReport,
    StrategyCycle,
    StrategyLoopReport,
    after_hours,
)
from economy_engine.research.optimizer import apply_optimizer_profile


CADENCE_OPTIONS: tuple[int, ...] = (6, 8, 12, 18, 24)

STRATEGY_GUARDRAILS = (
    "Never exceed governance max action cap for any strategy cycle.",
    "Always honor governance cooldown floor before scheduling the next cycle.",
    "If governance enters paused state, force objective to stabilize until health recovers.",
)


@dataclass(slots=True, frozen=True)
class StrategyParams:
    cadence_options: tuple[int, ...] = CADENCE_OPTIONS
    default_cadence_hours: int = 12
    cycles: int = 3
    window_min_positive_rate: float = 0.55
    window_blocked_positive_rate: float = 0.25
    self_healing_watch_roi: int = 35
    self_healing_critical_roi: int = 65

    @classmethod
    def from_config(cls, raw: dict[str, Any]) -> "StrategyParams":
        return cls(
            cadence_options=tuple(sorted(int(x) for x in raw.get("cadence_options", CADENCE_OPTIONS))),
            default_cadence_hours=int(raw.get("default_cadence_hours", 12)),
            cycles=int(raw.get("cycles", 3)),
            window_min_positive_rate=float(raw.get("window_min_positive_rate", 0.55)),
            window_blocked_positive_rate=float(raw.get("window_blocked_positive_rate", 0.25)),
            self_healing_watch_roi=int(raw.get("self_healing_watch_roi", 35)),
            self_healing_critical_roi=int(raw.get("self_healing_critical_roi", 65)),
        )


def pick_closest_cadence(hours: float, options: tuple[int, ...] = CADENCE_OPTIONS) -> int:
    """Snap to the nearest option; ties go to the shorter cadence."""
    bounded = min(max(float(hours), min(options)), max(options))
    return min(options, key=lambda opt: (abs(opt - bounded), opt))


def recommended_cadence(
    governance: GovernanceReport, learning: LearningReport, ready_items: int, default_hours: int = 12
) -> int:
    if governance.status == GovernanceStatus.PAUSED:
        return 24
    if governance.status == GovernanceStatus.WATCH:
        return 12
    positive = learning.overall_positive_rate
    if positive >= 0.75 and ready_items >= 2 and learning.stale_open_runs == 0:
        return 6
    if positive >= 0.62:
        return 8
    return default_hours


def loop_is_healthy(governance: GovernanceReport, learning: LearningReport) -> bool:
    return (
        governance.status == GovernanceStatus.HEALTHY
        and learning.stale_open_runs == 0
        and governance.risky_outcome_rate < 0.4
    )


def _cycle_objective(
    cycle: int,
    previous: Objective,
    selected: Objective,
    healthy_loop: bool,
    auto_optimize: bool,
    governance: GovernanceReport,
    learning: LearningReport,
    ready_items: int,
) -> tuple[Objective, str]:
    if cycle == 1:
        return selected, f"Operator-selected entry objective: {selected.value}."
    if governance.paused:
        return Objective.STABILIZE, "Governance is paused; enforcing stabilize objective until loop health recovers."
    if not auto_optimize:
        return selected, "Auto-optimization is disabled; cadence will reuse the selected objective."
    if learning.overall_positive_rate < 0.5 or learning.stale_open_runs >= 2:
        return Objective.STABILIZE, "Risk/staleness signals are elevated; shifting to stabilize objective."
    if healthy_loop and learning.overall_positive_rate >= 0.7 and ready_items >= 2:
        return Objective.GROWTH, "Healthy loop with ready backlog; upgrading cycle objective to growth."
    if previous == Objective.GROWTH and governance.status != GovernanceStatus.HEALTHY:
        return Objective.BALANCED, "Governance is no longer healthy; de-escalating from growth to balanced."
    return Objective.BALANCED, "Maintaining balanced objective for controlled throughput."


def build_strategy_loop(
    policy: DecisionPolicy,
    optimizer: OptimizerReport,
    governance: GovernanceReport,
    learning: LearningReport,
    backlog: Backlog,
    now: datetime,
    *,
    selected_objective: Objective | None = None,
    cadence_hours: float | None = None,
    auto_optimize: bool | None = None,
    force: bool = False,
    params: StrategyParams | None = None,
) -> StrategyLoopReport:
    params = params or StrategyParams()
    ready = backlog.summary["ready"]
    selected = selected_objective or optimizer.selected_objective
    recommended = pick_closest_cadence(
        recommended_cadence(governance, learning, ready, params.default_cadence_hours), params.cadence_options
    )
    cadence = recommended if cadence_hours is None else pick_closest_cadence(cadence_hours, params.cadence_options)

    healthy_loop = loop_is_healthy(governance, learning)
    auto = auto_optimize if auto_optimize is not None else (healthy_loop and governance.allow_autorun and ready > 0)

    cycles: list[StrategyCycle] = []
    rolling = policy
    previous = selected
    for n in range(1, max(1, params.cycles) + 1):
        objective, rationale = _cycle_objective(n, previous, selected, healthy_loop, auto, governance, learning, ready)
        tuned = apply_optimizer_profile(rolling, optimizer, objective)
        max_actions = min(tuned.max_actions_per_cycle, governance.max_actions_cap)
        cooldown = max(tuned.cooldown_hours, governance.cooldown_floor_hours)
        start = after_hours(now, (n - 1) * cadence)
        cycles.append(
            StrategyCycle(
                cycle=n,
                objective=objective,
                mode=tuned.mode,
                max_actions_per_cycle=max_actions,
                cooldown_hours=cooldown,
                scheduled_window_start=start,
                scheduled_window_end=after_hours(start, cadence),
                rationale=rationale,
            )
        )
        previous = objective
        rolling = replace(tuned, max_actions_per_cycle=max_actions, cooldown_hours=cooldown)

    safe_window = (not governance.paused) and (cycles[0].contains(now) or force) and healthy_loop

    notes = [
        f"Cadence selected at {cadence}h (recommended {recommended}h).",
        f"Loop health: {round(learning.overall_positive_rate * 100)}% positive outcomes "
        f"with {learning.stale_open_runs} stale run(s).",
        "Auto-optimization is enabled and will rebalance future cycles when loop signals drift."
        if auto
        else "Auto-optimization is currently off; objective progression stays operator-controlled.",
    ]
    if force and governance.paused:
        notes.append("Execution forced while governance is paused; this override is recorded on every run.")

    return StrategyLoopReport(
        generated_at=now,
        selected_objective=selected,
        recommended_cadence_hours=recommended,
        cadence_hours=cadence,
        auto_optimize_enabled=auto,
        safe_window=safe_window,
        next_refresh_at=after_hours(now, cadence),
        cycles=cycles,
        guardrails=list(STRATEGY_GUARDRAILS),
        notes=notes,
    )


def strategy_policy(policy: DecisionPolicy, loop: StrategyLoopReport) -> DecisionPolicy:
    """The policy that governs execution now: cycle 1's limits and mode."""
    first = loop.cycles[0]
    return replace(
        policy,
        mode=first.mode,
        max_actions_per_cycle=first.max_actions_per_cycle,
        cooldown_hours=first.cooldown_hours,
        rationale=[*policy.rationale, f"Strategy cycle 1 objective {first.objective.value} at {loop.cadence_hours}h cadence."],
        guardrails=[*policy.guardrails, *loop.guardrails],
    )
