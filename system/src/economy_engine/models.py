from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
import math
from typing import Any, ClassVar, Union


class AutonomyMode(str, Enum):
    MANUAL = "manual"
    ASSIST = "assist"
    AUTO = "auto"


class Objective(str, Enum):
    STABILIZE = "stabilize"
    BALANCED = "balanced"
    GROWTH = "growth"


class OutcomeDecision(str, Enum):
    SCALE = "scale"
    ITERATE = "iterate"
    HOLD = "hold"
    ARCHIVE = "archive"


class RunStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TriggerKind(str, Enum):
    RISK = "risk"
    OPPORTUNITY = "opportunity"


class TriggerStatus(str, Enum):
    FIRED = "fired"
    IDLE = "idle"


class Direction(str, Enum):
    BELOW = "below"
    ABOVE = "above"


class BacklogStatus(str, Enum):
    READY = "ready"
    BLOCKED = "blocked"
    COOLDOWN = "cooldown"


class RunSource(str, Enum):
    MANUAL = "manual"
    AUTOMATION = "automation"
    WINDOW_LOOP = "window_loop"
    SELF_HEALING = "self_healing"
    OUTCOME_AGENT = "outcome_agent"


ROLE_AGENT_IDS = (
    "story_architect",
    "continuity_director",
    "visual_art_director",
    "merch_operator",
    "distribution_operator",
)

SPRINT_OBJECTIVES = (
    "ship_next_drop",
    "stabilize_world",
    "scale_distribution",
    "launch_merch_pilot",
)

METRIC_KEYS = (
    "combinedScore",
    "ipOverall",
    "retentionPotential",
    "merchSignal",
    "roleCoverage",
    "collaboratorCount",
    "remixCount",
    "pageCount",
)

PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}
MODE_RANK = {AutonomyMode.MANUAL: 0, AutonomyMode.ASSIST: 1, AutonomyMode.AUTO: 2}


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        out = float(value)
    elif isinstance(value, str):
        try:
            out = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return out if math.isfinite(out) else None


def normalize_metrics(value: Any) -> dict[str, float]:
    """Keep the known metric keys with a finite numeric value; absent means unknown."""
    if not isinstance(value, dict):
        return {}
    out: dict[str, float] = {}
    for key in METRIC_KEYS:
        num = _as_number(value.get(key))
        if num is not None:
            out[key] = num
    return out


def parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


def hours_between(now: datetime, then: datetime) -> float:
    return max(0.0, (now - then).total_seconds() / 3600.0)


def after_hours(ts: datetime, hours: float) -> datetime:
    return ts + timedelta(hours=float(hours))


@dataclass(slots=True)
class Trigger:
    id: str
    label: str
    kind: TriggerKind
    status: TriggerStatus
    severity: str
    reason: str
    metric_key: str
    current: float | None
    threshold: float
    direction: Direction

    @property
    def fired(self) -> bool:
        return self.status == TriggerStatus.FIRED

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        data["direction"] = self.direction.value
        return data


@dataclass(slots=True)
class RecommendationExecution:
    sprint_objective: str
    horizon_days: int
    require_merch_plan: bool
    merch_candidate_id: str | None
    merch_channels: list[str]
    default_outcome_decision: OutcomeDecision

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["default_outcome_decision"] = self.default_outcome_decision.value
        return data


@dataclass(slots=True)
class Recommendation:
    id: str
    title: str
    priority: Priority
    owner_role_agent_id: str
    trigger_ids: list[str]
    summary: str
    rationale: str
    checklist: list[str]
    execution: RecommendationExecution

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "priority": self.priority.value,
            "owner_role_agent_id": self.owner_role_agent_id,
            "trigger_ids": list(self.trigger_ids),
            "summary": self.summary,
            "rationale": self.rationale,
            "checklist": list(self.checklist),
            "execution": self.execution.to_dict(),
        }


@dataclass(slots=True)
class QueueItem:
    id: str
    recommendation_id: str
    owner_role_agent_id: str
    owner_user_id: str | None
    status: BacklogStatus
    reason: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(slots=True)
class AutomationPlan:
    generated_at: datetime
    story_id: str
    metrics: dict[str, float]
    triggers: list[Trigger]
    recommendations: list[Recommendation]
    queue: list[QueueItem]
    notes: list[str] = field(default_factory=list)

    @property
    def trigger_summary(self) -> dict[str, int]:
        fired = [t for t in self.triggers if t.fired]
        return {
            "active": len(fired),
            "total": len(self.triggers),
            "risk_active": sum(1 for t in fired if t.kind == TriggerKind.RISK),
            "opportunity_active": sum(1 for t in fired if t.kind == TriggerKind.OPPORTUNITY),
        }

    def fired_triggers(self, kind: TriggerKind | None = None) -> list[Trigger]:
        return [t for t in self.triggers if t.fired and (kind is None or t.kind == kind)]

    def recommendation(self, recommendation_id: str) -> Recommendation | None:
        for rec in self.recommendations:
            if rec.id == recommendation_id:
                return rec
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "story_id": self.story_id,
            "metrics": dict(self.metrics),
            "trigger_summary": self.trigger_summary,
            "triggers": [t.to_dict() for t in self.triggers],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "queue": [q.to_dict() for q in self.queue],
            "notes": list(self.notes),
        }


# ---------------------------------------------------------------------------
# Run plan payloads, tagged by source
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ManualRunPlan:
    source: ClassVar[RunSource] = RunSource.MANUAL
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source.value, "notes": self.notes}


@dataclass(slots=True, frozen=True)
class AutomationRunPlan:
    source: ClassVar[RunSource] = RunSource.AUTOMATION
    executed_recommendation_id: str
    autonomy_mode: AutonomyMode
    policy: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "executed_recommendation_id": self.executed_recommendation_id,
            "autonomy_mode": self.autonomy_mode.value,
            "policy": dict(self.policy),
        }


@dataclass(slots=True, frozen=True)
class WindowLoopRunPlan:
    source: ClassVar[RunSource] = RunSource.WINDOW_LOOP
    executed_recommendation_id: str
    autonomy_mode: AutonomyMode
    strategy_cycle: int
    strategy_objective: Objective
    cadence_hours: int
    gate_status: str
    gate_reasons: tuple[str, ...] = ()
    policy: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "executed_recommendation_id": self.executed_recommendation_id,
            "autonomy_mode": self.autonomy_mode.value,
            "strategy_cycle": self.strategy_cycle,
            "strategy_objective": self.strategy_objective.value,
            "cadence_hours": self.cadence_hours,
            "gate_status": self.gate_status,
            "gate_reasons": list(self.gate_reasons),
            "policy": dict(self.policy),
        }


@dataclass(slots=True, frozen=True)
class SelfHealingRunPlan:
    source: ClassVar[RunSource] = RunSource.SELF_HEALING
    executed_recommendation_id: str
    autonomy_mode: AutonomyMode
    severity: str
    roi_gap_score: int
    target_objective: Objective
    cadence_hours: int
    triggers: tuple[str, ...] = ()
    policy: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "executed_recommendation_id": self.executed_recommendation_id,
            "autonomy_mode": self.autonomy_mode.value,
            "severity": self.severity,
            "roi_gap_score": self.roi_gap_score,
            "target_objective": self.target_objective.value,
            "cadence_hours": self.cadence_hours,
            "triggers": list(self.triggers),
            "policy": dict(self.policy),
        }


@dataclass(slots=True, frozen=True)
class OutcomeAgentRunPlan:
    source: ClassVar[RunSource] = RunSource.OUTCOME_AGENT
    closed_run_id: str
    stale_after_hours: int
    age_hours: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "closed_run_id": self.closed_run_id,
            "stale_after_hours": self.stale_after_hours,
            "age_hours": self.age_hours,
        }


RunPlan = Union[ManualRunPlan, AutomationRunPlan, WindowLoopRunPlan, SelfHealingRunPlan, OutcomeAgentRunPlan]
ExecutionRunPlan = Union[AutomationRunPlan, WindowLoopRunPlan, SelfHealingRunPlan]
EXECUTION_PLAN_TYPES = (AutomationRunPlan, WindowLoopRunPlan, SelfHealingRunPlan)

_LEGACY_SOURCES = {
    "economy_automation": RunSource.AUTOMATION,
    "economy_backlog": RunSource.AUTOMATION,
    "economy_autorun": RunSource.AUTOMATION,
    "economy_window_loop": RunSource.WINDOW_LOOP,
    "economy_self_healing": RunSource.SELF_HEALING,
    "economy_outcome_agent": RunSource.OUTCOME_AGENT,
}


def _enum_or(enum_cls: type[Enum], raw: Any, default: Any) -> Any:
    try:
        return enum_cls(str(raw))
    except ValueError:
        return default


def _plan_recommendation_id(payload: dict[str, Any]) -> str | None:
    direct = payload.get("executed_recommendation_id", payload.get("executedRecommendationId"))
    if isinstance(direct, str) and direct.strip():
        return direct.strip()
    nested = payload.get("recommendation")
    if isinstance(nested, dict):
        cand = nested.get("id")
        if isinstance(cand, str) and cand.strip():
            return cand.strip()
    return None


def parse_run_plan(payload: Any) -> RunPlan:
    if isinstance(payload, EXECUTION_PLAN_TYPES + (ManualRunPlan, OutcomeAgentRunPlan)):
        return payload
    if not isinstance(payload, dict):
        return ManualRunPlan()
    raw_source = str(payload.get("source") or "").strip()
    source = _LEGACY_SOURCES.get(raw_source) or _enum_or(RunSource, raw_source, RunSource.MANUAL)
    rec_id = _plan_recommendation_id(payload)
    raw_mode = payload.get("autonomy_mode", payload.get("autonomyMode"))
    default_mode = AutonomyMode.AUTO if raw_source == "economy_autorun" else AutonomyMode.ASSIST
    mode = _enum_or(AutonomyMode, raw_mode, default_mode)
    policy = payload.get("policy") or payload.get("decisionPolicy") or payload.get("strategyPolicy") or {}
    policy = dict(policy) if isinstance(policy, dict) else {}

    if source == RunSource.OUTCOME_AGENT:
        return OutcomeAgentRunPlan(
            closed_run_id=str(payload.get("closed_run_id", "")),
            stale_after_hours=int(_as_number(payload.get("stale_after_hours")) or 0),
            age_hours=float(_as_number(payload.get("age_hours")) or 0.0),
        )
    if source == RunSource.MANUAL or rec_id is None:
        return ManualRunPlan(notes=str(payload.get("notes", "") or ""))
    if source == RunSource.WINDOW_LOOP:
        return WindowLoopRunPlan(
            executed_recommendation_id=rec_id,
            autonomy_mode=mode,
            strategy_cycle=int(_as_number(payload.get("strategy_cycle", payload.get("strategyCycle"))) or 1),
            strategy_objective=_enum_or(
                Objective, payload.get("strategy_objective", payload.get("strategyObjective")), Objective.BALANCED
            ),
            cadence_hours=int(_as_number(payload.get("cadence_hours", payload.get("cadenceHours"))) or 12),
            gate_status=str(payload.get("gate_status", payload.get("gateStatus", "ready"))),
            gate_reasons=tuple(str(x) for x in payload.get("gate_reasons", payload.get("gateReasons", [])) or []),
            policy=policy,
        )
    if source == RunSource.SELF_HEALING:
        return SelfHealingRunPlan(
            executed_recommendation_id=rec_id,
            autonomy_mode=mode,
            severity=str(payload.get("severity", "watch")),
            roi_gap_score=int(_as_number(payload.get("roi_gap_score", payload.get("roiGapScore"))) or 0),
            target_objective=_enum_or(
                Objective, payload.get("target_objective", payload.get("targetObjective")), Objective.STABILIZE
            ),
            cadence_hours=int(_as_number(payload.get("cadence_hours", payload.get("cadenceHours"))) or 12),
            triggers=tuple(str(x) for x in payload.get("triggers", []) or []),
            policy=policy,
        )
    return AutomationRunPlan(executed_recommendation_id=rec_id, autonomy_mode=mode, policy=policy)


def plan_recommendation_id(plan: RunPlan) -> str | None:
    if isinstance(plan, EXECUTION_PLAN_TYPES):
        return plan.executed_recommendation_id
    return None


def plan_autonomy_mode(plan: RunPlan) -> AutonomyMode:
    if isinstance(plan, EXECUTION_PLAN_TYPES):
        return plan.autonomy_mode
    return AutonomyMode.MANUAL


@dataclass(slots=True)
class Run:
    id: str
    story_id: str
    created_by_user_id: str
    sprint_objective: str
    horizon_days: int
    status: RunStatus
    plan: RunPlan
    baseline_metrics: dict[str, float]
    outcome_metrics: dict[str, float]
    outcome_decision: OutcomeDecision | None
    outcome_notes: str | None
    created_at: datetime
    completed_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def combined_delta(self) -> float | None:
        base = self.baseline_metrics.get("combinedScore")
        out = self.outcome_metrics.get("combinedScore")
        if base is None or out is None:
            return None
        return float(out) - float(base)

    @property
    def executed_recommendation_id(self) -> str | None:
        return plan_recommendation_id(self.plan)

    @property
    def anchor_at(self) -> datetime:
        return self.completed_at or self.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "story_id": self.story_id,
            "created_by_user_id": self.created_by_user_id,
            "sprint_objective": self.sprint_objective,
            "horizon_days": self.horizon_days,
            "status": self.status.value,
            "plan": self.plan.to_dict(),
            "baseline_metrics": dict(self.baseline_metrics),
            "outcome_metrics": dict(self.outcome_metrics),
            "outcome_decision": self.outcome_decision.value if self.outcome_decision else None,
            "outcome_notes": self.outcome_notes,
            "created_at": iso(self.created_at),
            "completed_at": iso(self.completed_at),
        }


@dataclass(slots=True)
class NewRun:
    story_id: str
    created_by_user_id: str
    sprint_objective: str
    horizon_days: int
    plan: RunPlan
    baseline_metrics: dict[str, float]
    created_at: datetime
    status: RunStatus = RunStatus.PLANNED


@dataclass(slots=True)
class DecisionPolicy:
    mode: AutonomyMode
    recommended_outcome: OutcomeDecision
    confidence: int
    rationale: list[str]
    guardrails: list[str]
    max_actions_per_cycle: int
    cooldown_hours: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode.value
        data["recommended_outcome"] = self.recommended_outcome.value
        return data


@dataclass(slots=True)
class BacklogItem:
    id: str
    recommendation_id: str
    title: str
    priority: Priority
    owner_role_agent_id: str
    owner_user_id: str | None
    status: BacklogStatus
    score: float
    reason: str
    execution: RecommendationExecution
    trigger_ids: list[str]
    last_executed_at: datetime | None = None
    cooldown_until: datetime | None = None

    @property
    def is_ready(self) -> bool:
        return self.status == BacklogStatus.READY

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recommendation_id": self.recommendation_id,
            "title": self.title,
            "priority": self.priority.value,
            "owner_role_agent_id": self.owner_role_agent_id,
            "owner_user_id": self.owner_user_id,
            "status": self.status.value,
            "score": self.score,
            "reason": self.reason,
            "execution": self.execution.to_dict(),
            "trigger_ids": list(self.trigger_ids),
            "last_executed_at": iso(self.last_executed_at),
            "cooldown_until": iso(self.cooldown_until),
        }


@dataclass(slots=True)
class Backlog:
    generated_at: datetime
    mode: AutonomyMode
    policy: DecisionPolicy
    items: list[BacklogItem] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        counts = {s.value: 0 for s in BacklogStatus}
        for item in self.items:
            counts[item.status.value] += 1
        return {"total": len(self.items), **counts}

    def ready_items(self) -> list[BacklogItem]:
        return [x for x in self.items if x.is_ready]

    def item(self, recommendation_id: str) -> BacklogItem | None:
        for x in self.items:
            if x.recommendation_id == recommendation_id:
                return x
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "mode": self.mode.value,
            "policy": self.policy.to_dict(),
            "summary": self.summary,
            "items": [x.to_dict() for x in self.items],
        }


@dataclass(slots=True)
class MerchCandidate:
    id: str
    title: str
    channels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class StoryContext:
    """Per-evaluation inputs that are not metrics: sprint board, owner roster and merch shortlist."""

    story_id: str
    sprint_objective: str = "ship_next_drop"
    horizon_days: int = 14
    roster: dict[str, str | None] = field(default_factory=dict)
    merch_candidates: list[MerchCandidate] = field(default_factory=list)
    requested_by_user_id: str = "system"

    @property
    def top_merch_candidate(self) -> MerchCandidate | None:
        return self.merch_candidates[0] if self.merch_candidates else None

    def owner_for(self, role_agent_id: str) -> str | None:
        owner = self.roster.get(role_agent_id)
        return owner or None

    def to_dict(self) -> dict[str, Any]:
        return {
            "story_id": self.story_id,
            "sprint_objective": self.sprint_objective,
            "horizon_days": self.horizon_days,
            "roster": dict(self.roster),
            "merch_candidates": [c.to_dict() for c in self.merch_candidates],
            "requested_by_user_id": self.requested_by_user_id,
        }


class GovernanceStatus(str, Enum):
    HEALTHY = "healthy"
    WATCH = "watch"
    PAUSED = "paused"


class GateStatus(str, Enum):
    READY = "ready"
    HOLD = "hold"
    BLOCKED = "blocked"


class Severity(str, Enum):
    NONE = "none"
    WATCH = "watch"
    CRITICAL = "critical"


SEVERITY_RANK = {Severity.NONE: 0, Severity.WATCH: 1, Severity.CRITICAL: 2}


@dataclass(slots=True)
class LearningReport:
    generated_at: datetime
    total_runs: int
    completed_runs: int
    stale_open_runs: int
    positive_completed_runs: int
    overall_positive_rate: float
    avg_combined_delta: float
    recommended_mode: AutonomyMode
    suggested_cooldown_hours: int
    suggested_max_actions_per_cycle: int
    recommended_outcome_bias: OutcomeDecision
    mode_performance: list[dict[str, Any]] = field(default_factory=list)
    recommendation_performance: list[dict[str, Any]] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "totals": {
                "total_runs": self.total_runs,
                "completed_runs": self.completed_runs,
                "stale_open_runs": self.stale_open_runs,
                "positive_completed_runs": self.positive_completed_runs,
                "overall_positive_rate": self.overall_positive_rate,
                "avg_combined_delta": self.avg_combined_delta,
            },
            "recommendations": {
                "recommended_mode": self.recommended_mode.value,
                "suggested_cooldown_hours": self.suggested_cooldown_hours,
                "suggested_max_actions_per_cycle": self.suggested_max_actions_per_cycle,
                "recommended_outcome_bias": self.recommended_outcome_bias.value,
            },
            "mode_performance": [dict(x) for x in self.mode_performance],
            "recommendation_performance": [dict(x) for x in self.recommendation_performance],
            "notes": list(self.notes),
        }


@dataclass(slots=True)
class GovernanceReport:
    generated_at: datetime
    status: GovernanceStatus
    governance_score: int
    allow_autorun: bool
    max_actions_cap: int
    cooldown_floor_hours: int
    completed_runs: int
    positive_rate: float
    stale_open_runs: int
    risky_outcome_rate: float
    longest_open_run_hours: float
    reasons: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def paused(self) -> bool:
        return self.status == GovernanceStatus.PAUSED

    @property
    def healthy(self) -> bool:
        return self.status == GovernanceStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "status": self.status.value,
            "governance_score": self.governance_score,
            "constraints": {
                "allow_autorun": self.allow_autorun,
                "max_actions_cap": self.max_actions_cap,
                "cooldown_floor_hours": self.cooldown_floor_hours,
            },
            "signals": {
                "completed_runs": self.completed_runs,
                "positive_rate": self.positive_rate,
                "stale_open_runs": self.stale_open_runs,
                "risky_outcome_rate": self.risky_outcome_rate,
                "longest_open_run_hours": self.longest_open_run_hours,
            },
            "reasons": list(self.reasons),
            "recommendations": list(self.recommendations),
        }


@dataclass(slots=True)
class OptimizerProfile:
    objective: Objective
    label: str
    rationale: str
    mode: AutonomyMode
    max_actions_per_cycle: int
    cooldown_hours: int
    velocity_delta: int
    risk_delta: int
    confidence_delta: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "objective": self.objective.value,
            "label": self.label,
            "rationale": self.rationale,
            "policy_override": {
                "mode": self.mode.value,
                "max_actions_per_cycle": self.max_actions_per_cycle,
                "cooldown_hours": self.cooldown_hours,
            },
            "expected_impact": {
                "velocity_delta": self.velocity_delta,
                "risk_delta": self.risk_delta,
                "confidence_delta": self.confidence_delta,
            },
        }


@dataclass(slots=True)
class OptimizerReport:
    generated_at: datetime
    recommended_objective: Objective
    selected_objective: Objective
    profiles: list[OptimizerProfile]
    preview: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def profile(self, objective: Objective) -> OptimizerProfile:
        for p in self.profiles:
            if p.objective == objective:
                return p
        return next(p for p in self.profiles if p.objective == Objective.BALANCED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "recommended_objective": self.recommended_objective.value,
            "selected_objective": self.selected_objective.value,
            "profiles": [p.to_dict() for p in self.profiles],
            "preview": list(self.preview),
            "notes": list(self.notes),
        }


@dataclass(slots=True)
class StrategyCycle:
    cycle: int
    objective: Objective
    mode: AutonomyMode
    max_actions_per_cycle: int
    cooldown_hours: int
    scheduled_window_start: datetime
    scheduled_window_end: datetime
    rationale: str

    def contains(self, ts: datetime) -> bool:
        return self.scheduled_window_start <= ts < self.scheduled_window_end

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle": self.cycle,
            "objective": self.objective.value,
            "mode": self.mode.value,
            "max_actions_per_cycle": self.max_actions_per_cycle,
            "cooldown_hours": self.cooldown_hours,
            "scheduled_window_start": iso(self.scheduled_window_start),
            "scheduled_window_end": iso(self.scheduled_window_end),
            "rationale": self.rationale,
        }


@dataclass(slots=True)
class StrategyLoopReport:
    generated_at: datetime
    selected_objective: Objective
    recommended_cadence_hours: int
    cadence_hours: int
    auto_optimize_enabled: bool
    safe_window: bool
    next_refresh_at: datetime
    cycles: list[StrategyCycle]
    guardrails: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "selected_objective": self.selected_objective.value,
            "recommended_cadence_hours": self.recommended_cadence_hours,
            "cadence_hours": self.cadence_hours,
            "auto_optimize_enabled": self.auto_optimize_enabled,
            "safe_window": self.safe_window,
            "next_refresh_at": iso(self.next_refresh_at),
            "cycles": [c.to_dict() for c in self.cycles],
            "guardrails": list(self.guardrails),
            "notes": list(self.notes),
        }


@dataclass(slots=True)
class WindowGate:
    status: GateStatus
    reasons: list[str]
    window_completed_runs: int
    window_positive_rate: float
    stale_open_runs: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(slots=True)
class WindowAdaptation:
    next_cadence_hours: int
    recommended_objective: Objective
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "next_cadence_hours": self.next_cadence_hours,
            "recommended_objective": self.recommended_objective.value,
            "reason": self.reason,
        }


@dataclass(slots=True)
class WindowReport:
    generated_at: datetime
    active_cycle: StrategyCycle | None
    gate: WindowGate
    adaptation: WindowAdaptation
    ready_backlog_items: int
    max_actions: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "active_cycle": self.active_cycle.to_dict() if self.active_cycle else None,
            "gate": self.gate.to_dict(),
            "adaptation": self.adaptation.to_dict(),
            "preview": {"ready_backlog_items": self.ready_backlog_items, "max_actions": self.max_actions},
        }


@dataclass(slots=True)
class PolicyPatch:
    objective: Objective
    cadence_hours: int
    mode: AutonomyMode
    max_actions_per_cycle: int
    cooldown_hours: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "objective": self.objective.value,
            "cadence_hours": self.cadence_hours,
            "mode": self.mode.value,
            "max_actions_per_cycle": self.max_actions_per_cycle,
            "cooldown_hours": self.cooldown_hours,
        }


@dataclass(slots=True)
class RecoveryItem:
    item: BacklogItem
    target_objective: Objective
    expected_roi_lift: int

    @property
    def recommendation_id(self) -> str:
        return self.item.recommendation_id

    def to_dict(self) -> dict[str, Any]:
        data = self.item.to_dict()
        data["target_objective"] = self.target_objective.value
        data["expected_roi_lift"] = self.expected_roi_lift
        return data


@dataclass(slots=True)
class SelfHealingReport:
    generated_at: datetime
    severity: Severity
    roi_gap_score: int
    triggers: list[str]
    policy_patch: PolicyPatch
    recovery_plan: list[RecoveryItem] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "severity": self.severity.value,
            "roi_gap_score": self.roi_gap_score,
            "triggers": list(self.triggers),
            "policy_patch": self.policy_patch.to_dict(),
            "recovery_plan": [x.to_dict() for x in self.recovery_plan],
            "notes": list(self.notes),
        }


@dataclass(slots=True)
class OutcomeCandidate:
    run_id: str
    sprint_objective: str
    age_hours: float
    baseline_combined: float | None
    current_combined: float | None
    combined_delta: float | None
    suggested_outcome_decision: OutcomeDecision
    suggested_outcome_notes: str
    suggested_outcome_metrics: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["suggested_outcome_decision"] = self.suggested_outcome_decision.value
        return data


@dataclass(slots=True)
class OutcomeAgentPlan:
    generated_at: datetime
    candidates: list[OutcomeCandidate]
    total_open_runs: int
    stale_open_runs: int
    notes: list[str] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total_open_runs": self.total_open_runs,
            "stale_open_runs": self.stale_open_runs,
            "close_candidates": len(self.candidates),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": iso(self.generated_at),
            "candidates": [c.to_dict() for c in self.candidates],
            "summary": self.summary,
            "notes": list(self.notes),
        }
