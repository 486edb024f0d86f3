from __future__ import annotations

from datetime import datetime
from typing import Iterable

from economy_engine.models import AutomationPlan, QueueItem, Run, StoryContext, Trigger, TriggerKind, normalize_metrics
from economy_engine.signal.playbooks import build_queue, build_recommendations
from economy_engine.signal.triggers import DEFAULT_TRIGGER_RULES, LOOP_FRESHNESS_KEY, TriggerRule, evaluate_triggers, loop_freshness


def effective_metrics(current: dict[str, float], history: list[Run], now: datetime) -> dict[str, float]:
    """Latest run metrics overlaid by the current snapshot, plus loop freshness."""
    base: dict[str, float] = {}
    if history:
        latest = history[0]
        base = dict(latest.outcome_metrics if "combinedScore" in latest.outcome_metrics else latest.baseline_metrics)
    merged = {**base, **normalize_metrics(current)}
    merged[LOOP_FRESHNESS_KEY] = loop_freshness(history, now)
    return merged


def build_notes(triggers: list[Trigger], queue: list[QueueItem]) -> list[str]:
    notes: list[str] = []
    high_risk = sum(1 for t in triggers if t.fired and t.kind == TriggerKind.RISK and t.severity == "high")
    if high_risk > 0:
        notes.append(f"{high_risk} high-severity risk trigger(s) active. Prioritize stabilization recommendations first.")
    if any(t.fired and t.kind == TriggerKind.OPPORTUNITY for t in triggers):
        notes.append("Scale window detected. Keep quality gates and continuity checks enabled while scaling.")
    blocked = sum(1 for q in queue if q.status.value == "blocked")
    if blocked > 0:
        notes.append(
            f"{blocked} recommendation(s) blocked by missing role ownership. Use owner overrides before execution."
        )
    if not notes:
        notes.append("Automation is healthy. Refresh triggers after each saved run or major story update.")
    return notes


def build_automation_plan(
    context: StoryContext,
    metrics: dict[str, float],
    history: list[Run],
    now: datetime,
    rules: Iterable[TriggerRule] = DEFAULT_TRIGGER_RULES,
) -> AutomationPlan:
    merged = effective_metrics(metrics, history, now)
    triggers = evaluate_triggers(merged, rules)
    if not history:
        for trig in triggers:
            if trig.metric_key == LOOP_FRESHNESS_KEY and trig.fired:
                trig.reason = "No creator-economy run exists yet; seed one run to start measurable iteration."
    recommendations = build_recommendations(triggers, context)
    queue = build_queue(recommendations, context)
    return AutomationPlan(
        generated_at=now,
        story_id=context.story_id,
        metrics={k: v for k, v in merged.items() if k != LOOP_FRESHNESS_KEY},
        triggers=triggers,
        recommendations=recommendations,
        queue=queue,
        notes=build_notes(triggers, queue),
    )
