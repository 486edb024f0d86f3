from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Callable

from economy_engine.data.protocols import RunStoreProtocol
from economy_engine.errors import RunStoreError
from economy_engine.models import (
    Backlog,
    BacklogItem,
    ExecutionRunPlan,
    GovernanceReport,
    NewRun,
    RunStatus,
    StoryContext,
)
from economy_engine.policy.backlog import MAX_ACTIONS_RANGE, select_execution_items


logger = logging.getLogger(__name__)

PlanFactory = Callable[[BacklogItem], ExecutionRunPlan]


@dataclass(slots=True)
class ExecutionRecord:
    recommendation_id: str
    title: str
    status: str  # executed | planned | skipped | failed
    run_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "recommendation_id": self.recommendation_id,
            "title": self.title,
            "status": self.status,
            "run_id": self.run_id,
            "error": self.error,
        }


@dataclass(slots=True)
class ExecutionResult:
    blocked_by_governance: bool
    forced: bool
    dry_run: bool
    persisted: bool
    max_actions: int
    records: list[ExecutionRecord] = field(default_factory=list)

    @property
    def executed(self) -> list[ExecutionRecord]:
        return [x for x in self.records if x.status == "executed"]

    @property
    def failed(self) -> list[ExecutionRecord]:
        return [x for x in self.records if x.status == "failed"]

    def to_dict(self) -> dict:
        return {
            "blocked_by_governance": self.blocked_by_governance,
            "forced": self.forced,
            "dry_run": self.dry_run,
            "persisted": self.persisted,
            "max_actions": self.max_actions,
            "summary": {
                "selected": len(self.records),
                "executed": len(self.executed),
                "failed": len(self.failed),
            },
            "records": [x.to_dict() for x in self.records],
        }


def execute_items(
    store: RunStoreProtocol,
    context: StoryContext,
    items: list[BacklogItem],
    plan_for: PlanFactory,
    baseline_metrics: dict[str, float],
    now: datetime,
    *,
    dry_run: bool = False,
    persist: bool = True,
) -> list[ExecutionRecord]:
    """Create one planned run per item; a failed create is reported on that item only."""
    write = persist and not dry_run
    records: list[ExecutionRecord] = []
    for item in items:
        if not item.is_ready:
            records.append(
                ExecutionRecord(
                    recommendation_id=item.recommendation_id, title=item.title, status="skipped", error=item.reason
                )
            )
            continue
        if not write:
            records.append(ExecutionRecord(recommendation_id=item.recommendation_id, title=item.title, status="planned"))
            continue
        new_run = NewRun(
            story_id=context.story_id,
            created_by_user_id=context.requested_by_user_id,
            sprint_objective=item.execution.sprint_objective,
            horizon_days=item.execution.horizon_days,
            plan=plan_for(item),
            baseline_metrics=dict(baseline_metrics),
            created_at=now,
            status=RunStatus.PLANNED,
        )
        try:
            run = store.create_run(new_run)
        except RunStoreError as exc:
            logger.warning(
                "run create failed story=%s recommendation=%s: %s", context.story_id, item.recommendation_id, exc
            )
            records.append(
                ExecutionRecord(
                    recommendation_id=item.recommendation_id, title=item.title, status="failed", error=str(exc)
                )
            )
            continue
        logger.info("run created story=%s recommendation=%s run=%s", context.story_id, item.recommendation_id, run.id)
        records.append(
            ExecutionRecord(recommendation_id=item.recommendation_id, title=item.title, status="executed", run_id=run.id)
        )
    return records


def execute_selection(
    store: RunStoreProtocol,
    context: StoryContext,
    items: list[BacklogItem],
    governance: GovernanceReport | None,
    plan_for: PlanFactory,
    baseline_metrics: dict[str, float],
    now: datetime,
    *,
    max_actions: int,
    dry_run: bool = False,
    persist: bool = True,
    force: bool = False,
) -> ExecutionResult:
    """Execute the leading `max_actions` of `items` unless governance has paused autonomous runs."""
    paused = governance is not None and governance.paused
    limit = int(max_actions)
    if governance is not None:
        limit = min(limit, governance.max_actions_cap)
    result = ExecutionResult(
        blocked_by_governance=paused and not force,
        forced=paused and force,
        dry_run=dry_run,
        persisted=persist and not dry_run,
        max_actions=max(MAX_ACTIONS_RANGE[0], min(MAX_ACTIONS_RANGE[1], limit)),
    )
    if result.blocked_by_governance:
        logger.info("execution blocked by governance story=%s", context.story_id)
        return result
    if result.forced:
        logger.info("execution forced while governance paused story=%s", context.story_id)
    result.records = execute_items(
        store,
        context,
        [x for x in items if x.is_ready][: result.max_actions],
        plan_for,
        baseline_metrics,
        now,
        dry_run=dry_run,
        persist=persist,
    )
    return result


def execute_backlog(
    store: RunStoreProtocol,
    context: StoryContext,
    backlog: Backlog,
    governance: GovernanceReport | None,
    plan_for: PlanFactory,
    baseline_metrics: dict[str, float],
    now: datetime,
    *,
    max_actions: int | None = None,
    dry_run: bool = False,
    persist: bool = True,
    force: bool = False,
) -> ExecutionResult:
    limit = backlog.policy.max_actions_per_cycle if max_actions is None else max_actions
    return execute_selection(
        store,
        context,
        select_execution_items(backlog, limit),
        governance,
        plan_for,
        baseline_metrics,
        now,
        max_actions=limit,
        dry_run=dry_run,
        persist=persist,
        force=force,
    )
