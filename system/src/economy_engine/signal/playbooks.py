from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from economy_engine.models import (
    BacklogStatus,
    OutcomeDecision,
    Priority,
    QueueItem,
    Recommendation,
    RecommendationExecution,
    StoryContext,
    Trigger,
)


MIN_HORIZON_DAYS = 3
MAX_HORIZON_DAYS = 30
FALLBACK_PLAYBOOK_ID = "maintain-balanced-loop"


def clamp_horizon(days: float) -> int:
    return max(MIN_HORIZON_DAYS, min(MAX_HORIZON_DAYS, int(round(days))))


@dataclass(slots=True, frozen=True)
class Playbook:
    id: str
    title: str
    priority: Priority
    owner_role_agent_id: str
    trigger_ids: tuple[str, ...]
    summary: str
    rationale: str
    checklist: tuple[str, ...]
    sprint_objective: str
    horizon: Callable[[int], int]
    default_outcome: OutcomeDecision = OutcomeDecision.ITERATE
    require_merch_plan: bool = False
    carries_merch_candidate: bool = False


PLAYBOOKS: tuple[Playbook, ...] = (
    Playbook(
        id="stabilize-core-loop",
        title="Stabilize Core Story Loop",
        priority=Priority.HIGH,
        owner_role_agent_id="continuity_director",
        trigger_ids=("foundation_gap", "retention_drift"),
        summary="Run a stabilization sprint focused on canon reliability and stronger continuation hooks.",
        rationale=(
            "Combined and retention signals are below target. Stabilizing this layer first improves "
            "downstream merch and distribution quality."
        ),
        checklist=(
            "Lock one continuity rule update and ship one narrative cliffhanger within the sprint.",
            "Review all high-severity continuity warnings before each generation batch.",
            "Record outcome metrics and decide iterate/hold at sprint close.",
        ),
        sprint_objective="stabilize_world",
        horizon=lambda h: clamp_horizon(max(5, round(h * 0.85))),
    ),
    Playbook(
        id="run-merch-probe",
        title="Run Triggered Merch Probe",
        priority=Priority.MEDIUM,
        owner_role_agent_id="merch_operator",
        trigger_ids=("merch_signal_gap",),
        summary="Launch a low-risk merch probe with a measurable hypothesis and fast feedback window.",
        rationale=(
            "Merch signal is below readiness. A narrow pilot increases signal quality without heavy "
            "execution overhead."
        ),
        checklist=(
            "Select candidate: {candidate}.",
            "Run prep -> launch -> learn loop and capture objections with demand metrics.",
            "Feed outcomes back into the next operating plan before scaling spend.",
        ),
        sprint_objective="launch_merch_pilot",
        horizon=lambda h: clamp_horizon(max(5, h)),
        require_merch_plan=True,
        carries_merch_candidate=True,
    ),
    Playbook(
        id="rebalance-role-ownership",
        title="Rebalance Role Ownership",
        priority=Priority.MEDIUM,
        owner_role_agent_id="story_architect",
        trigger_ids=("role_coverage_gap",),
        summary="Resolve owner gaps and enforce explicit role handoffs before high-volume operations.",
        rationale=(
            "Role coverage below target increases execution collisions and reduces accountability "
            "across creator-economy loops."
        ),
        checklist=(
            "Assign an explicit owner for each role card and confirm sprint objective alignment.",
            "Run one sync cycle dedicated to lock handoff and conflict-center triage.",
            "Save a fresh operating run once ownership is complete.",
        ),
        sprint_objective="ship_next_drop",
        horizon=lambda h: clamp_horizon(max(3, round(h * 0.7))),
    ),
    Playbook(
        id="close-feedback-loop",
        title="Close Feedback Loop",
        priority=Priority.MEDIUM,
        owner_role_agent_id="distribution_operator",
        trigger_ids=("stale_execution_loop",),
        summary="Create a fresh run and close it with outcome metrics to restore execution cadence.",
        rationale="An idle loop breaks learning momentum. A short-cycle run restores measurable iteration behavior.",
        checklist=(
            "Generate and persist a new operating run for the current sprint objective.",
            "Ship at least one action from each high-priority track.",
            "Record run outcomes within 24 hours of execution completion.",
        ),
        sprint_objective="ship_next_drop",
        horizon=lambda h: 5,
    ),
    Playbook(
        id="scale-distribution-window",
        title="Exploit Scale Window",
        priority=Priority.HIGH,
        owner_role_agent_id="distribution_operator",
        trigger_ids=("scale_window",),
        summary="Metrics are scale-ready. Increase distribution velocity while preserving quality-gate controls.",
        rationale=(
            "All major readiness metrics crossed scale thresholds. This is a high-leverage moment to "
            "compound retention and reach."
        ),
        checklist=(
            "Run autopipeline for all primary channels with quality gates green.",
            "Schedule two follow-up releases within the same horizon window.",
            "Log distribution deltas and decide scale/iterate at sprint close.",
        ),
        sprint_objective="scale_distribution",
        horizon=lambda h: clamp_horizon(max(7, h + 2)),
        default_outcome=OutcomeDecision.SCALE,
        carries_merch_candidate=True,
    ),
)


def _fallback(context: StoryContext) -> Recommendation:
    return Recommendation(
        id=FALLBACK_PLAYBOOK_ID,
        title="Maintain Balanced Operating Loop",
        priority=Priority.LOW,
        owner_role_agent_id="story_architect",
        trigger_ids=[],
        summary="No urgent automation triggers fired. Continue measured execution and monitor for drift.",
        rationale="Metrics are stable enough to maintain current cadence without emergency intervention.",
        checklist=[
            "Keep sprint execution cadence and close feedback loop on schedule.",
            "Run weekly trigger refresh and monitor any movement toward risk thresholds.",
        ],
        execution=RecommendationExecution(
            sprint_objective=context.sprint_objective,
            horizon_days=clamp_horizon(context.horizon_days),
            require_merch_plan=False,
            merch_candidate_id=None,
            merch_channels=[],
            default_outcome_decision=OutcomeDecision.HOLD,
        ),
    )


def build_recommendations(triggers: list[Trigger], context: StoryContext) -> list[Recommendation]:
    """One recommendation per playbook with at least one fired trigger, in playbook order."""
    fired = {t.id for t in triggers if t.fired}
    candidate = context.top_merch_candidate
    out: list[Recommendation] = []
    for book in PLAYBOOKS:
        hits = [tid for tid in book.trigger_ids if tid in fired]
        if not hits:
            continue
        checklist = [
            line.format(candidate=candidate.title if candidate else "define first candidate") for line in book.checklist
        ]
        out.append(
            Recommendation(
                id=book.id,
                title=book.title,
                priority=book.priority,
                owner_role_agent_id=book.owner_role_agent_id,
                trigger_ids=hits,
                summary=book.summary,
                rationale=book.rationale,
                checklist=checklist,
                execution=RecommendationExecution(
                    sprint_objective=book.sprint_objective,
                    horizon_days=book.horizon(int(context.horizon_days)),
                    require_merch_plan=book.require_merch_plan,
                    merch_candidate_id=candidate.id if (candidate and book.carries_merch_candidate) else None,
                    merch_channels=list(candidate.channels[:3]) if (candidate and book.carries_merch_candidate) else [],
                    default_outcome_decision=book.default_outcome,
                ),
            )
        )
    if not out:
        out.append(_fallback(context))
    return out


def build_queue(recommendations: list[Recommendation], context: StoryContext) -> list[QueueItem]:
    queue: list[QueueItem] = []
    for rec in recommendations:
        owner = context.owner_for(rec.owner_role_agent_id)
        queue.append(
            QueueItem(
                id=f"queue-{rec.id}",
                recommendation_id=rec.id,
                owner_role_agent_id=rec.owner_role_agent_id,
                owner_user_id=owner,
                status=BacklogStatus.READY if owner else BacklogStatus.BLOCKED,
                reason=(
                    "Ready to execute."
                    if owner
                    else "No owner assigned for this role; set owner override before execution."
                ),
            )
        )
    return queue
