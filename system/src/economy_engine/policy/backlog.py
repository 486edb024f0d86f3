from __future__ import annotations

from datetime import datetime
import math

from economy_engine.models import (
    PRIORITY_RANK,
    AutomationPlan,
    AutonomyMode,
    Backlog,
    BacklogItem,
    BacklogStatus,
    DecisionPolicy,
    Priority,
    Run,
    after_hours,
    hours_between,
)


PRIORITY_WEIGHT = {Priority.HIGH: 100, Priority.MEDIUM: 72, Priority.LOW: 45}
TRIGGER_WEIGHT = 8
STATUS_BOOST = {BacklogStatus.READY: 12, BacklogStatus.COOLDOWN: -6, BacklogStatus.BLOCKED: -30}
MAX_ACTIONS_RANGE = (1, 5)


def last_execution(recommendation_id: str, history: list[Run]) -> Run | None:
    """Newest run whose plan executed `recommendation_id`; history is newest first."""
    for run in history:
        if run.executed_recommendation_id == recommendation_id:
            return run
    return None


def backlog_sort_key(item: BacklogItem) -> tuple[float, int, str]:
    return (-item.score, PRIORITY_RANK[item.priority], item.recommendation_id)


def build_backlog(
    mode: AutonomyMode,
    plan: AutomationPlan,
    policy: DecisionPolicy,
    history: list[Run],
    now: datetime,
) -> Backlog:
    queue = {q.recommendation_id: q for q in plan.queue}
    items: list[BacklogItem] = []
    for rec in plan.recommendations:
        q = queue.get(rec.id)
        last = last_execution(rec.id, history)
        executed_at = last.anchor_at if last is not None else None
        elapsed = hours_between(now, executed_at) if executed_at is not None else math.inf
        cooling = elapsed < policy.cooldown_hours

        status = BacklogStatus.READY
        reason = "Ready for execution."
        if q is None or q.status == BacklogStatus.BLOCKED:
            status = BacklogStatus.BLOCKED
            reason = q.reason if q is not None else "No queue entry for this recommendation."
        elif rec.execution.require_merch_plan and not rec.execution.merch_candidate_id:
            status = BacklogStatus.BLOCKED
            reason = "Merch plan required but no merch candidate is available."
        elif cooling:
            status = BacklogStatus.COOLDOWN
            reason = f"Cooling down for {math.ceil(policy.cooldown_hours - elapsed)}h."

        score = PRIORITY_WEIGHT[rec.priority] + len(rec.trigger_ids) * TRIGGER_WEIGHT + STATUS_BOOST[status]
        items.append(
            BacklogItem(
                id=f"backlog-{rec.id}",
                recommendation_id=rec.id,
                title=rec.title,
                priority=rec.priority,
                owner_role_agent_id=rec.owner_role_agent_id,
                owner_user_id=q.owner_user_id if q is not None else None,
                status=status,
                score=float(score),
                reason=reason,
                execution=rec.execution,
                trigger_ids=list(rec.trigger_ids),
                last_executed_at=executed_at,
                cooldown_until=after_hours(executed_at, policy.cooldown_hours) if cooling and executed_at else None,
            )
        )
    items.sort(key=backlog_sort_key)
    return Backlog(generated_at=now, mode=mode, policy=policy, items=items)


def select_execution_items(backlog: Backlog, max_actions: int | None = None) -> list[BacklogItem]:
    """Top ready items by score, capped at `max_actions` (default: the backlog policy cap) in [1, 5]."""
    raw = backlog.policy.max_actions_per_cycle if max_actions is None else max_actions
    bounded = max(MAX_ACTIONS_RANGE[0], min(MAX_ACTIONS_RANGE[1], int(round(raw))))
    ready = sorted((x for x in backlog.items if x.is_ready), key=backlog_sort_key)
    return ready[:bounded]
