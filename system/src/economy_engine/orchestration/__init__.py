from economy_engine.orchestration.executor import (
    ExecutionRecord,
    ExecutionResult,
    execute_backlog,
    execute_items,
    execute_selection,
)
from economy_engine.orchestration.governance import (
    GovernanceThresholds,
    apply_governance_to_policy,
    build_governance_report,
)
from economy_engine.orchestration.outcome_agent import (
    CloseResult,
    ClosedRun,
    build_outcome_agent_plan,
    close_candidates,
    select_candidates,
)
from economy_engine.orchestration.reconciler import DerivedState, PipelineParams, Reconciler, stage_enabled
from economy_engine.orchestration.self_healing import (
    apply_self_healing_patch,
    build_self_healing_report,
    settle_applied_patch,
)
from economy_engine.orchestration.strategy_loop import (
    CADENCE_OPTIONS,
    StrategyParams,
    build_strategy_loop,
    pick_closest_cadence,
    strategy_policy,
)
from economy_engine.orchestration.window_gate import active_cycle, build_window_report

__all__ = [
    "CADENCE_OPTIONS",
    "CloseResult",
    "ClosedRun",
    "DerivedState",
    "ExecutionRecord",
    "ExecutionResult",
    "GovernanceThresholds",
    "PipelineParams",
    "Reconciler",
    "StrategyParams",
    "active_cycle",
    "apply_governance_to_policy",
    "apply_self_healing_patch",
    "build_governance_report",
    "build_outcome_agent_plan",
    "build_self_healing_report",
    "build_strategy_loop",
    "build_window_report",
    "close_candidates",
    "execute_backlog",
    "execute_items",
    "execute_selection",
    "pick_closest_cadence",
    "select_candidates",
    "settle_applied_patch",
    "stage_enabled",
    "strategy_policy",
]
