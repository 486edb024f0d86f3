from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import functools
import logging
from pathlib import Path
import threading
from typing import Any
from zoneinfo import ZoneInfo

from economy_engine.config import FeatureSet, SystemSettings, assert_valid_settings, load_settings
from economy_engine.data import RunStoreProtocol, SqliteRunStore
from economy_engine.errors import FeatureDisabledError, ValidationError
from economy_engine.models import (
    AutomationRunPlan,
    AutonomyMode,
    BacklogItem,
    GateStatus,
    Objective,
    OutcomeDecision,
    SelfHealingRunPlan,
    StoryContext,
    WindowLoopRunPlan,
    normalize_metrics,
)
from economy_engine.orchestration import (
    DerivedState,
    ExecutionResult,
    PipelineParams,
    Reconciler,
    build_outcome_agent_plan,
    close_candidates,
    execute_backlog,
    execute_items,
    execute_selection,
    select_candidates,
    stage_enabled,
)
from economy_engine.orchestration.outcome_agent import MAX_RUNS_RANGE, STALE_AFTER_RANGE
from economy_engine.orchestration.strategy_loop import CADENCE_OPTIONS
from economy_engine.policy.backlog import MAX_ACTIONS_RANGE
from economy_engine.reporting import render_cycle_report, write_cycle_artifacts


logger = logging.getLogger(__name__)

HORIZON_RANGE = (3, 30)
NOTE_PREFIX_MAX = 240


@dataclass(slots=True)
class EngineContext:
    settings: SystemSettings
    root: Path
    output_dir: Path
    db_path: Path


def parse_mode(value: Any) -> AutonomyMode:
    try:
        return AutonomyMode(str(getattr(value, "value", value)))
    except ValueError:
        raise ValidationError("mode", f"expected one of {[m.value for m in AutonomyMode]}, got {value!r}") from None


def parse_objective(value: Any) -> Objective | None:
    if value is None:
        return None
    try:
        return Objective(str(getattr(value, "value", value)))
    except ValueError:
        raise ValidationError("objective", f"expected one of {[o.value for o in Objective]}, got {value!r}") from None


def parse_decision(value: Any) -> OutcomeDecision:
    try:
        return OutcomeDecision(str(getattr(value, "value", value)))
    except ValueError:
        raise ValidationError(
            "decision", f"expected one of {[d.value for d in OutcomeDecision]}, got {value!r}"
        ) from None


def bounded_int(name: str, value: Any, low: int, high: int) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValidationError(name, f"expected an integer, got {value!r}")
    if not low <= int(value) <= high:
        raise ValidationError(name, f"must be within [{low}, {high}], got {value}")
    return int(value)


def validate_context(context: StoryContext) -> StoryContext:
    if not isinstance(context.story_id, str) or not context.story_id.strip():
        raise ValidationError("story_id", "must be a non-empty string")
    bounded_int("horizon_days", context.horizon_days, *HORIZON_RANGE)
    return context


def serialized_per_story(method):
    """Run a mutating operation while holding the story's lock so racing callers see each other's runs."""

    @functools.wraps(method)
    def wrapper(self: "EconomyEngine", context: StoryContext, *args: Any, **kwargs: Any) -> Any:
        with self._story_lock(context.story_id):
            return method(self, context, *args, **kwargs)

    return wrapper


class EconomyEngine:
    """Request-level facade: validates inputs, derives the stack, runs mutations, re-derives."""

    def __init__(
        self,
        config_path: str | Path | None = None,
        *,
        settings: SystemSettings | None = None,
        store: RunStoreProtocol | None = None,
        features: FeatureSet | None = None,
        output_dir: str | Path | None = None,
        write_artifacts: bool = False,
        history_limit: int = 80,
    ) -> None:
        settings = settings or load_settings(config_path)
        assert_valid_settings(settings)
        root = Path(config_path).resolve().parent if config_path else Path(__file__).resolve().parents[2]
        out = Path(output_dir) if output_dir else root / settings.paths.get("output", "output")
        db_path = root / settings.paths.get("db", "output/artifacts/economy_runs.db")
        self.ctx = EngineContext(settings=settings, root=root, output_dir=out, db_path=db_path)
        self.store: RunStoreProtocol = store if store is not None else SqliteRunStore(db_path)
        self.features = features or FeatureSet.from_mapping(settings.features)
        self.params = PipelineParams.from_settings(settings)
        self.write_artifacts = write_artifacts
        self.history_limit = int(history_limit)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _story_lock(self, story_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(str(story_id), threading.Lock())

    @property
    def settings(self) -> SystemSettings:
        return self.ctx.settings

    def _now(self, now: datetime | None) -> datetime:
        if now is None:
            return datetime.now(ZoneInfo(self.settings.timezone))
        if now.tzinfo is None:
            raise ValidationError("now", "must be timezone-aware")
        return now

    def _history(self, story_id: str):
        return self.store.list_runs(story_id, limit=self.history_limit)

    def _require(self, stage: str) -> None:
        if not stage_enabled(self.features, stage):
            raise FeatureDisabledError(stage)

    def _reconciler(
        self,
        context: StoryContext,
        metrics: dict[str, Any],
        mode: AutonomyMode,
        now: datetime,
        **kwargs: Any,
    ) -> Reconciler:
        return Reconciler(
            context=context,
            metrics=normalize_metrics(metrics),
            mode=mode,
            now=now,
            features=self.features,
            params=self.params,
            **kwargs,
        )

    def _emit(
        self,
        operation: str,
        state: DerivedState,
        payload: dict[str, Any],
        execution: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if self.write_artifacts:
            report = render_cycle_report(state, operation, execution)
            payload["artifacts"] = write_cycle_artifacts(
                self.ctx.output_dir, state.plan.story_id, operation, payload, report, state.generated_at
            )
        return payload

    def evaluate(
        self,
        context: StoryContext,
        metrics: dict[str, Any],
        *,
        mode: Any = AutonomyMode.ASSIST,
        objective: Any = None,
        cadence_hours: int | None = None,
        auto_optimize: bool | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        validate_context(context)
        recon = self._reconciler(
            context,
            metrics,
            parse_mode(mode),
            self._now(now),
            objective=parse_objective(objective),
            cadence_hours=bounded_int("cadence_hours", cadence_hours, CADENCE_OPTIONS[0], CADENCE_OPTIONS[-1]),
            auto_optimize=auto_optimize,
        )
        state = recon.refresh(self._history(context.story_id))
        return self._emit("evaluate", state, {"story_id": context.story_id, "state": state.to_dict()})

    @serialized_per_story
    def execute_recommendation(
        self,
        context: StoryContext,
        metrics: dict[str, Any],
        recommendation_id: str,
        *,
        mode: Any = AutonomyMode.ASSIST,
        dry_run: bool = False,
        persist: bool = True,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Operator-named execution of one backlog item; non-ready items are reported, never run."""
        validate_context(context)
        if not isinstance(recommendation_id, str) or not recommendation_id.strip():
            raise ValidationError("recommendation_id", "must be a non-empty string")
        run_mode = parse_mode(mode)
        now = self._now(now)
        recon = self._reconciler(context, metrics, run_mode, now)
        state = recon.refresh(self._history(context.story_id))
        item = state.backlog.item(recommendation_id.strip())
        if item is None:
            raise ValidationError("recommendation_id", f"unknown recommendation {recommendation_id!r}")

        policy = state.policy.to_dict()
        records = execute_items(
            self.store,
            context,
            [item],
            lambda x: AutomationRunPlan(executed_recommendation_id=x.recommendation_id, autonomy_mode=run_mode, policy=policy),
            state.plan.metrics,
            now,
            dry_run=dry_run,
            persist=persist,
        )
        refreshed = self._refresh_if_written(recon, context, state, records)
        execution = {
            "dry_run": dry_run,
            "persisted": persist and not dry_run,
            "records": [r.to_dict() for r in records],
        }
        payload = {
            "story_id": context.story_id,
            "recommendation_id": item.recommendation_id,
            "execution": execution,
            "snapshot": state.to_dict(),
            "state": refreshed.to_dict(),
        }
        return self._emit("execute", refreshed, payload, execution)

    @serialized_per_story
    def autorun(
        self,
        context: StoryContext,
        metrics: dict[str, Any],
        *,
        mode: Any = AutonomyMode.AUTO,
        max_actions: int | None = None,
        dry_run: bool = False,
        persist: bool = True,
        force: bool = False,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        validate_context(context)
        self._require("autorun")
        run_mode = parse_mode(mode)
        if run_mode == AutonomyMode.MANUAL:
            raise ValidationError("mode", "autorun requires assist or auto mode")
        limit = bounded_int("max_actions", max_actions, *MAX_ACTIONS_RANGE)
        now = self._now(now)
        recon = self._reconciler(context, metrics, run_mode, now, force=force)
        state = recon.refresh(self._history(context.story_id))

        policy = state.policy.to_dict()
        result = execute_backlog(
            self.store,
            context,
            state.backlog,
            state.governance,
            lambda x: AutomationRunPlan(executed_recommendation_id=x.recommendation_id, autonomy_mode=run_mode, policy=policy),
            state.plan.metrics,
            now,
            max_actions=limit,
            dry_run=dry_run,
            persist=persist,
            force=force,
        )
        refreshed = self._refresh_if_written(recon, context, state, result.records)
        if result.blocked_by_governance:
            summary = "Autorun blocked by governance; pass force to override."
        else:
            verb = "Executed" if result.persisted else "Previewed"
            summary = f"{verb} {len(result.records)} autonomous action(s)."
        logger.info("autorun story=%s %s", context.story_id, summary)
        execution = result.to_dict()
        payload = {
            "story_id": context.story_id,
            "mode": run_mode.value,
            "blocked_by_governance": result.blocked_by_governance,
            "summary": summary,
            "execution": execution,
            "snapshot": state.to_dict(),
            "state": refreshed.to_dict(),
        }
        return self._emit("autorun", refreshed, payload, execution)

    @serialized_per_story
    def run_strategy_loop(
        self,
        context: StoryContext,
        metrics: dict[str, Any],
        *,
        mode: Any = AutonomyMode.ASSIST,
        objective: Any = None,
        cadence_hours: int | None = None,
        auto_optimize: bool | None = None,
        max_actions: int | None = None,
        self_heal: bool = False,
        execute_recovery: bool = False,
        execute_window: bool = False,
        dry_run: bool = False,
        persist: bool = True,
        force: bool = False,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        validate_context(context)
        self._require("strategy_loop")
        if self_heal or execute_recovery:
            self._require("self_healing")
        if execute_window:
            self._require("window_loop")
        run_mode = parse_mode(mode)
        limit = bounded_int("max_actions", max_actions, *MAX_ACTIONS_RANGE)
        now = self._now(now)
        recon = self._reconciler(
            context,
            metrics,
            run_mode,
            now,
            objective=parse_objective(objective),
            cadence_hours=bounded_int("cadence_hours", cadence_hours, CADENCE_OPTIONS[0], CADENCE_OPTIONS[-1]),
            auto_optimize=auto_optimize,
            force=force,
            self_heal=self_heal or execute_recovery,
        )
        state = recon.refresh(self._history(context.story_id))
        snapshot = state.to_dict()
        summary = "Strategy loop refreshed."
        if state.self_healing_patch_applied and state.self_healing is not None:
            patch = state.self_healing.policy_patch
            summary = (
                f"Self-healing patch applied ({state.self_healing.severity.value}) with {patch.cadence_hours}h "
                f"cadence and {patch.max_actions_per_cycle} max action(s)."
            )

        recovery: ExecutionResult | None = None
        if execute_recovery and state.self_healing is not None:
            report = state.self_healing
            patch = report.policy_patch
            policy = state.policy.to_dict()
            recovery = execute_selection(
                self.store,
                context,
                [r.item for r in report.recovery_plan],
                state.governance,
                lambda x: SelfHealingRunPlan(
                    executed_recommendation_id=x.recommendation_id,
                    autonomy_mode=patch.mode,
                    severity=report.severity.value,
                    roi_gap_score=report.roi_gap_score,
                    target_objective=patch.objective,
                    cadence_hours=patch.cadence_hours,
                    triggers=tuple(report.triggers),
                    policy=policy,
                ),
                state.plan.metrics,
                now,
                max_actions=limit or patch.max_actions_per_cycle,
                dry_run=dry_run,
                persist=persist,
                force=force,
            )
            state = self._refresh_if_written(recon, context, state, recovery.records)
            if recovery.blocked_by_governance:
                summary = "Self-healing recovery blocked by governance; pass force to override."
            else:
                verb = "Executed" if recovery.persisted else "Previewed"
                summary = (
                    f"{verb} {len(recovery.records)} self-healing recovery action(s). "
                    f"ROI gap now {state.self_healing.roi_gap_score if state.self_healing else report.roi_gap_score}."
                )

        window: ExecutionResult | None = None
        window_blocked = False
        if execute_window and state.window is not None:
            gate = state.window.gate
            if gate.status != GateStatus.READY and not force:
                window_blocked = True
                reason = gate.reasons[0] if gate.reasons else "Review window gate conditions before executing."
                summary = f"Execution window blocked by {gate.status.value} gate. {reason}"
                logger.info("window execution blocked story=%s gate=%s", context.story_id, gate.status.value)
            else:
                window = self._execute_window(context, state, run_mode, now, limit, dry_run, persist, force)
                state = self._refresh_if_written(recon, context, state, window.records)
                verb = "Executed" if window.persisted else "Previewed"
                summary = f"{verb} {len(window.records)} window action(s) under the {gate.status.value} gate."

        execution = {
            "recovery": recovery.to_dict() if recovery else None,
            "window": window.to_dict() if window else None,
            "window_blocked": window_blocked,
        }
        payload = {
            "story_id": context.story_id,
            "mode": run_mode.value,
            "summary": summary,
            "self_healing_patch_applied": state.self_healing_patch_applied,
            "execution": execution,
            "snapshot": snapshot,
            "state": state.to_dict(),
        }
        records = [*(recovery.to_dict()["records"] if recovery else []), *(window.to_dict()["records"] if window else [])]
        return self._emit("strategy_loop", state, payload, {"records": records})

    def _execute_window(
        self,
        context: StoryContext,
        state: DerivedState,
        mode: AutonomyMode,
        now: datetime,
        limit: int | None,
        dry_run: bool,
        persist: bool,
        force: bool,
    ) -> ExecutionResult:
        window = state.window
        loop = state.strategy_loop
        cycle = window.active_cycle
        policy = state.policy.to_dict()

        def plan_for(item: BacklogItem) -> WindowLoopRunPlan:
            return WindowLoopRunPlan(
                executed_recommendation_id=item.recommendation_id,
                autonomy_mode=mode,
                strategy_cycle=cycle.cycle if cycle else 1,
                strategy_objective=cycle.objective if cycle else loop.selected_objective,
                cadence_hours=loop.cadence_hours,
                gate_status=window.gate.status.value,
                gate_reasons=tuple(window.gate.reasons),
                policy=policy,
            )

        return execute_backlog(
            self.store,
            context,
            state.backlog,
            state.governance,
            plan_for,
            state.plan.metrics,
            now,
            max_actions=limit or window.max_actions,
            dry_run=dry_run,
            persist=persist,
            force=force,
        )

    @serialized_per_story
    def close_stale_runs(
        self,
        context: StoryContext,
        metrics: dict[str, Any],
        *,
        mode: Any = AutonomyMode.ASSIST,
        stale_after_hours: int | None = None,
        max_runs: int | None = None,
        dry_run: bool = False,
        persist: bool = True,
        note_prefix: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        validate_context(context)
        self._require("outcome_agent")
        run_mode = parse_mode(mode)
        stale_after = bounded_int("stale_after_hours", stale_after_hours, *STALE_AFTER_RANGE)
        limit = bounded_int("max_runs", max_runs, *MAX_RUNS_RANGE)
        if note_prefix is not None and len(note_prefix.strip()) > NOTE_PREFIX_MAX:
            raise ValidationError("note_prefix", f"must be at most {NOTE_PREFIX_MAX} characters")
        stale_after = stale_after if stale_after is not None else self.params.outcome_stale_after_hours
        limit = limit if limit is not None else self.params.outcome_max_runs
        now = self._now(now)

        recon = self._reconciler(context, metrics, run_mode, now)
        history = self._history(context.story_id)
        state = recon.refresh(history)
        plan = build_outcome_agent_plan(history, state.plan.metrics, state.learning, now, stale_after)
        result = close_candidates(
            self.store,
            context.story_id,
            select_candidates(plan, limit),
            now,
            dry_run=dry_run,
            persist=persist,
            note_prefix=note_prefix,
        )
        if not result.dry_run and any(x.status == "completed" for x in result.closed):
            history = self._history(context.story_id)
            state = recon.refresh(history)
            plan = build_outcome_agent_plan(history, state.plan.metrics, state.learning, now, stale_after)
        payload = {
            "story_id": context.story_id,
            "mode": run_mode.value,
            "stale_after_hours": stale_after,
            "max_runs": limit,
            **result.to_dict(),
            "plan": plan.to_dict(),
            "state": state.to_dict(),
        }
        execution = {
            "records": [
                {"recommendation_id": x.run_id, "status": x.status, "run_id": x.run_id, "error": x.error}
                for x in result.closed
            ]
        }
        return self._emit("close_stale", state, payload, execution)

    @serialized_per_story
    def record_outcome(
        self,
        context: StoryContext,
        metrics: dict[str, Any],
        run_id: str,
        *,
        decision: Any,
        notes: str | None = None,
        outcome_metrics: dict[str, Any] | None = None,
        mode: Any = AutonomyMode.ASSIST,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        validate_context(context)
        if not isinstance(run_id, str) or not run_id.strip():
            raise ValidationError("run_id", "must be a non-empty string")
        outcome = parse_decision(decision)
        run_mode = parse_mode(mode)
        now = self._now(now)
        existing = self.store.get_run(context.story_id, run_id.strip())
        run = self.store.update_outcome(
            context.story_id,
            existing.id,
            decision=outcome,
            notes=notes,
            outcome_metrics=normalize_metrics(outcome_metrics or {}),
            # A revised outcome keeps the original completion time as the cooldown anchor.
            completed_at=None if existing.is_completed else now,
        )
        logger.info("outcome recorded story=%s run=%s decision=%s", context.story_id, run.id, outcome.value)
        state = self._reconciler(context, metrics, run_mode, now).refresh(self._history(context.story_id))
        return self._emit("record_outcome", state, {"story_id": context.story_id, "run": run.to_dict(), "state": state.to_dict()})

    def _refresh_if_written(self, recon: Reconciler, context: StoryContext, state: DerivedState, records) -> DerivedState:
        if any(r.status == "executed" for r in records):
            return recon.refresh(self._history(context.story_id))
        return state
