from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any

from economy_engine.config.features import FeatureSet
from economy_engine.config.settings import SystemSettings
from economy_engine.models import (
    AutomationPlan,
    AutonomyMode,
    Backlog,
    DecisionPolicy,
    GovernanceReport,
    LearningReport,
    Objective,
    OptimizerReport,
    OutcomeAgentPlan,
    Run,
    SelfHealingReport,
    StoryContext,
    StrategyLoopReport,
    WindowReport,
)
from economy_engine.orchestration.governance import (
    GovernanceThresholds,
    apply_governance_to_policy,
    build_governance_report,
)
from economy_engine.orchestration.outcome_agent import build_outcome_agent_plan
from economy_engine.orchestration.self_healing import (
    apply_self_healing_patch,
    build_self_healing_report,
    settle_applied_patch,
)
from economy_engine.orchestration.strategy_loop import StrategyParams, build_strategy_loop, strategy_policy
from economy_engine.orchestration.window_gate import build_window_report
from economy_engine.policy import PolicyParams, build_backlog, build_decision_policy, tighten_policy
from economy_engine.research import optimize
from economy_engine.review import LearningParams, apply_learning_to_policy, build_learning_report
from economy_engine.signal import DEFAULT_TRIGGER_RULES, TriggerRule, build_automation_plan, load_trigger_rules


logger = logging.getLogger(__name__)

# Each stage runs only when every stage it reads from is enabled too.
STAGE_REQUIRES = {
    "optimizer": ("governance",),
    "strategy_loop": ("optimizer",),
    "window_loop": ("strategy_loop",),
    "self_healing": ("window_loop",),
}


def stage_enabled(features: FeatureSet, stage: str) -> bool:
    if not features.enabled(stage):
        return False
    return all(stage_enabled(features, dep) for dep in STAGE_REQUIRES.get(stage, ()))


@dataclass(slots=True, frozen=True)
class PipelineParams:
    policy: PolicyParams = field(default_factory=PolicyParams)
    learning: LearningParams = field(default_factory=LearningParams)
    governance: GovernanceThresholds = field(default_factory=GovernanceThresholds)
    strategy: StrategyParams = field(default_factory=StrategyParams)
    rules: tuple[TriggerRule, ...] = DEFAULT_TRIGGER_RULES
    outcome_stale_after_hours: int = 18
    outcome_max_runs: int = 3

    @classmethod
    def from_settings(cls, settings: SystemSettings) -> "PipelineParams":
        agent = settings.outcome_agent
        return cls(
            policy=PolicyParams.from_config(settings.policy),
            learning=LearningParams.from_config(settings.learning),
            governance=GovernanceThresholds.from_config(settings.governance),
            strategy=StrategyParams.from_config(settings.strategy),
            rules=load_trigger_rules(settings.triggers),
            outcome_stale_after_hours=int(agent.get("stale_after_hours", 18)),
            outcome_max_runs=int(agent.get("max_runs", 3)),
        )


@dataclass(slots=True)
class DerivedState:
    """Everything derived from one history slice. `policy`/`backlog` are the ones execution uses."""

    generated_at: datetime
    mode: AutonomyMode
    features: FeatureSet
    plan: AutomationPlan
    base_policy: DecisionPolicy
    learning: LearningReport
    learned_policy: DecisionPolicy
    preliminary_backlog: Backlog
    policy: DecisionPolicy
    backlog: Backlog
    governance: GovernanceReport | None = None
    governed_policy: DecisionPolicy | None = None
    governed_backlog: Backlog | None = None
    optimizer: OptimizerReport | None = None
    optimized_policy: DecisionPolicy | None = None
    strategy_loop: StrategyLoopReport | None = None
    window: WindowReport | None = None
    self_healing: SelfHealingReport | None = None
    self_healing_patch_applied: bool = False
    outcome_plan: OutcomeAgentPlan | None = None

    def to_dict(self) -> dict[str, Any]:
        def opt(x: Any) -> Any:
            return x.to_dict() if x is not None else None

        return {
            "generated_at": self.generated_at.isoformat(),
            "mode": self.mode.value,
            "features": self.features.to_dict(),
            "automation": self.plan.to_dict(),
            "decision_policy": self.base_policy.to_dict(),
            "learning": self.learning.to_dict(),
            "governance": opt(self.governance),
            "optimizer": opt(self.optimizer),
            "strategy_loop": opt(self.strategy_loop),
            "window": opt(self.window),
            "self_healing": opt(self.self_healing),
            "self_healing_patch_applied": self.self_healing_patch_applied,
            "outcome_agent": opt(self.outcome_plan),
            "policy": self.policy.to_dict(),
            "backlog": self.backlog.to_dict(),
        }


@dataclass(slots=True)
class Reconciler:
    """Fixed-order derivation of the decision stack from run history.

    Call `refresh` with the current history after every persisted mutation; nothing is
    cached between calls.
    """

    context: StoryContext
    metrics: dict[str, float]
    mode: AutonomyMode
    now: datetime
    features: FeatureSet = field(default_factory=FeatureSet)
    params: PipelineParams = field(default_factory=PipelineParams)
    objective: Objective | None = None
    cadence_hours: int | None = None
    auto_optimize: bool | None = None
    force: bool = False
    self_heal: bool = False

    def refresh(self, history: list[Run]) -> DerivedState:
        now = self.now
        mode = self.mode
        features = self.features
        params = self.params

        plan = build_automation_plan(self.context, self.metrics, history, now, params.rules)
        base = build_decision_policy(mode, plan, history, now, params.policy)
        learning = build_learning_report(history, now, params.learning)
        limits = params.policy.limits(mode)
        learned = base
        if features.policy_learning:
            learned = apply_learning_to_policy(
                base,
                learning,
                max_actions_cap=limits.max_actions_cap,
                cooldown_floor_hours=limits.cooldown_floor_hours,
                lock_mode=mode,
            )
        preliminary = build_backlog(mode, plan, learned, history, now)
        state = DerivedState(
            generated_at=now,
            mode=mode,
            features=features,
            plan=plan,
            base_policy=base,
            learning=learning,
            learned_policy=learned,
            preliminary_backlog=preliminary,
            policy=learned,
            backlog=preliminary,
        )
        if not features.governance:
            return self._finish(state, history)

        governance = build_governance_report(history, learning, learned, preliminary, now, params.governance)
        governed = apply_governance_to_policy(learned, governance)
        governed_backlog = build_backlog(mode, plan, governed, history, now)
        state.governance = governance
        state.governed_policy = governed
        state.governed_backlog = governed_backlog
        state.policy, state.backlog = governed, governed_backlog
        if not stage_enabled(features, "optimizer"):
            return self._finish(state, history)

        result = optimize(governed, learning, governance, governed_backlog, plan, history, now, self.objective)
        state.optimizer = result.report
        state.optimized_policy = result.policy
        state.policy, state.backlog = result.policy, result.backlog
        if not stage_enabled(features, "strategy_loop"):
            return self._finish(state, history)

        self._strategy(state, governance, result.report, result.policy, history, self.objective, self.cadence_hours)
        if stage_enabled(features, "self_healing") and self.self_heal and state.self_healing is not None:
            applied = state.self_healing
            patch = applied.policy_patch
            patched = apply_self_healing_patch(result.policy, applied)
            self._strategy(state, governance, result.report, patched, history, patch.objective, patch.cadence_hours)
            # Cycle profiles can relax the patch; pin the executing policy to it.
            state.policy = tighten_policy(
                state.policy,
                max_actions_cap=patch.max_actions_per_cycle,
                cooldown_floor_hours=patch.cooldown_hours,
                mode=patch.mode,
            )
            state.backlog = build_backlog(mode, plan, state.policy, history, now)
            state.self_healing = settle_applied_patch(applied, state.strategy_loop, state.policy, state.backlog)
            state.self_healing_patch_applied = True
        return self._finish(state, history)

    def _strategy(
        self,
        state: DerivedState,
        governance: GovernanceReport,
        optimizer: OptimizerReport,
        policy: DecisionPolicy,
        history: list[Run],
        objective: Objective | None,
        cadence_hours: int | None,
    ) -> None:
        params = self.params
        loop = build_strategy_loop(
            policy,
            optimizer,
            governance,
            state.learning,
            state.backlog,
            self.now,
            selected_objective=objective,
            cadence_hours=cadence_hours,
            auto_optimize=self.auto_optimize,
            force=self.force,
            params=params.strategy,
        )
        executing = strategy_policy(policy, loop)
        backlog = build_backlog(self.mode, state.plan, executing, history, self.now)
        state.strategy_loop = loop
        state.policy, state.backlog = executing, backlog
        if not stage_enabled(self.features, "window_loop"):
            return
        state.window = build_window_report(
            loop, history, state.learning, governance, backlog, self.now, params.strategy
        )
        if not stage_enabled(self.features, "self_healing"):
            return
        state.self_healing = build_self_healing_report(
            executing, governance, state.learning, loop, state.window, backlog, self.now, params.strategy
        )

    def _finish(self, state: DerivedState, history: list[Run]) -> DerivedState:
        if self.features.outcome_agent:
            state.outcome_plan = build_outcome_agent_plan(
                history, state.plan.metrics, state.learning, self.now, self.params.outcome_stale_after_hours
            )
        logger.debug(
            "refreshed story=%s runs=%d ready=%d governance=%s",
            self.context.story_id,
            len(history),
            state.backlog.summary["ready"],
            state.governance.status.value if state.governance else "off",
        )
        return state
