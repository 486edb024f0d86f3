from __future__ import annotations

from datetime import datetime, timedelta

from economy_engine.models import (
    Backlog,
    GateStatus,
    GovernanceReport,
    GovernanceStatus,
    LearningReport,
    Objective,
    Run,
    StrategyCycle,
    StrategyLoopReport,
    WindowAdaptation,
    WindowGate,
    WindowReport,
)
from economy_engine.orchestration.strategy_loop import StrategyParams
from economy_engine.review.learning import is_positive_outcome


def active_cycle(loop: StrategyLoopReport, now: datetime) -> StrategyCycle | None:
    """The cycle whose window holds `now`, else the first upcoming one, else the last."""
    if not loop.cycles:
        return None
    for cycle in loop.cycles:
        if cycle.contains(now):
            return cycle
    for cycle in loop.cycles:
        if cycle.scheduled_window_start > now:
            return cycle
    return loop.cycles[-1]


def window_runs(history: list[Run], cycle: StrategyCycle, cadence_hours: int) -> list[Run]:
    """Runs created in the active window or the equally long window before it."""
    start = cycle.scheduled_window_start - timedelta(hours=cadence_hours)
    return [r for r in history if start <= r.created_at < cycle.scheduled_window_end]


def _step(options: tuple[int, ...], current: int, delta: int) -> int:
    idx = options.index(current) if current in options else len(options) // 2
    return options[max(0, min(len(options) - 1, idx + delta))]


def build_window_report(
    loop: StrategyLoopReport,
    history: list[Run],
    learning: LearningReport,
    governance: GovernanceReport,
    backlog: Backlog,
    now: datetime,
    params: StrategyParams | None = None,
) -> WindowReport:
    params = params or StrategyParams()
    cycle = active_cycle(loop, now)
    stale = learning.stale_open_runs

    reasons: list[str] = []
    status = GateStatus.READY
    completed_runs = 0
    positive_rate = 0.0
    if cycle is None:
        status = GateStatus.HOLD
        reasons.append("No active strategy cycle window is available.")
        max_actions = max(1, governance.max_actions_cap)
    else:
        done = [r for r in window_runs(history, cycle, loop.cadence_hours) if r.is_completed]
        completed_runs = len(done)
        if done:
            positive_rate = sum(1 for r in done if is_positive_outcome(r)) / len(done)
        max_actions = max(1, min(5, min(cycle.max_actions_per_cycle, governance.max_actions_cap)))

        if governance.paused:
            status = GateStatus.BLOCKED
            reasons.append("Governance is paused; execution window is blocked.")
        elif stale >= 2:
            status = GateStatus.HOLD
            reasons.append(f"{stale} stale open runs detected; close outcome debt before progressing cadence.")
        elif completed_runs == 0:
            status = GateStatus.HOLD
            reasons.append("No completed outcomes in the active window yet.")
        elif completed_runs >= 2 and positive_rate < params.window_blocked_positive_rate:
            status = GateStatus.BLOCKED
            reasons.append(
                f"Window positive rate is {round(positive_rate * 100)}%; critically low, execution is blocked."
            )
        elif positive_rate < params.window_min_positive_rate:
            status = GateStatus.HOLD
            reasons.append(
                f"Window positive rate is {round(positive_rate * 100)}%; "
                f"need >= {round(params.window_min_positive_rate * 100)}% to unlock cadence progression."
            )
    if not reasons:
        reasons.append("Execution window is healthy and outcome-gated progression is available.")

    options = params.cadence_options
    next_cadence = loop.cadence_hours
    reason = "Cadence remains stable based on current window outcomes."
    if status == GateStatus.READY and positive_rate >= 0.8 and stale == 0:
        next_cadence = _step(options, loop.cadence_hours, 1)
        reason = "Strong window outcomes detected; cycles can run one cadence step longer."
    elif status in (GateStatus.HOLD, GateStatus.BLOCKED):
        next_cadence = _step(options, loop.cadence_hours, -1)
        if status == GateStatus.HOLD:
            reason = "Outcome gate is on hold; cadence shrinks one step so outcomes are re-checked sooner."
        elif governance.paused:
            reason = "Governance blocked window; cadence shrinks one step while health is re-checked."
        else:
            reason = "Window outcomes are critically low; cadence shrinks one step while the loop stabilizes."

    if status in (GateStatus.HOLD, GateStatus.BLOCKED):
        objective = Objective.STABILIZE
    elif governance.status == GovernanceStatus.HEALTHY and positive_rate >= 0.75:
        objective = Objective.GROWTH
    else:
        objective = Objective.BALANCED

    return WindowReport(
        generated_at=now,
        active_cycle=cycle,
        gate=WindowGate(
            status=status,
            reasons=reasons,
            window_completed_runs=completed_runs,
            window_positive_rate=round(positive_rate, 2),
            stale_open_runs=stale,
        ),
        adaptation=WindowAdaptation(next_cadence_hours=next_cadence, recommended_objective=objective, reason=reason),
        ready_backlog_items=backlog.summary["ready"],
        max_actions=max_actions,
    )
