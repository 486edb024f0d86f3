from __future__ import annotations

from datetime import datetime, timedelta, timezone

from economy_engine.models import (
    AutomationRunPlan,
    AutonomyMode,
    Backlog,
    BacklogItem,
    BacklogStatus,
    DecisionPolicy,
    GovernanceReport,
    GovernanceStatus,
    ManualRunPlan,
    MerchCandidate,
    OutcomeDecision,
    Priority,
    RecommendationExecution,
    Run,
    RunStatus,
    StoryContext,
)


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
STORY_ID = "story-1"

FULL_ROSTER = {
    "story_architect": "u-architect",
    "continuity_director": "u-continuity",
    "visual_art_director": "u-visual",
    "merch_operator": "u-merch",
    "distribution_operator": "u-distribution",
}

# No trigger fires on these once the loop is fresh.
STEADY_METRICS = {
    "combinedScore": 70,
    "ipOverall": 68,
    "retentionPotential": 66,
    "merchSignal": 62,
    "roleCoverage": 90,
}

# foundation_gap (high) and merch_signal_gap (medium) fire.
GAP_METRICS = {
    "combinedScore": 52,
    "ipOverall": 55,
    "retentionPotential": 66,
    "merchSignal": 50,
    "roleCoverage": 90,
}

SCALE_METRICS = {
    "combinedScore": 84,
    "ipOverall": 80,
    "retentionPotential": 74,
    "merchSignal": 70,
    "roleCoverage": 92,
}


def make_context(
    story_id: str = STORY_ID,
    roster: dict[str, str | None] | None = None,
    merch: bool = True,
    horizon_days: int = 14,
) -> StoryContext:
    candidates = [MerchCandidate(id="merch-1", title="Enamel pin drop", channels=["shop", "social", "events", "mail"])]
    return StoryContext(
        story_id=story_id,
        sprint_objective="ship_next_drop",
        horizon_days=horizon_days,
        roster=dict(FULL_ROSTER if roster is None else roster),
        merch_candidates=candidates if merch else [],
        requested_by_user_id="u-operator",
    )


def make_run(
    run_id: str,
    *,
    hours_ago: float,
    rec_id: str | None = None,
    decision: OutcomeDecision | None = None,
    completed_hours_ago: float | None = None,
    baseline: float | None = 60.0,
    outcome: float | None = None,
    mode: AutonomyMode = AutonomyMode.ASSIST,
    story_id: str = STORY_ID,
    now: datetime = NOW,
) -> Run:
    """A run `hours_ago` old; passing `decision` makes it completed (one hour after creation by default)."""
    created_at = now - timedelta(hours=hours_ago)
    completed_at = None
    if decision is not None:
        done = completed_hours_ago if completed_hours_ago is not None else max(0.0, hours_ago - 1)
        completed_at = now - timedelta(hours=done)
    plan = AutomationRunPlan(executed_recommendation_id=rec_id, autonomy_mode=mode) if rec_id else ManualRunPlan()
    return Run(
        id=run_id,
        story_id=story_id,
        created_by_user_id="u-operator",
        sprint_objective="ship_next_drop",
        horizon_days=14,
        status=RunStatus.COMPLETED if decision is not None else RunStatus.PLANNED,
        plan=plan,
        baseline_metrics={} if baseline is None else {"combinedScore": float(baseline)},
        outcome_metrics={} if outcome is None else {"combinedScore": float(outcome)},
        outcome_decision=decision,
        outcome_notes=None,
        created_at=created_at,
        completed_at=completed_at,
    )


def healthy_history(n: int = 5, now: datetime = NOW) -> list[Run]:
    """Newest first: completed automation runs that all closed positively; the latest closed 2h ago."""
    return [
        make_run(
            f"seed-{i + 1}",
            hours_ago=i * 10 + 3,
            completed_hours_ago=i * 10 + 2,
            rec_id="close-feedback-loop",
            decision=OutcomeDecision.ITERATE,
            baseline=60,
            outcome=68,
            now=now,
        )
        for i in range(n)
    ]


def stale_history(now: datetime = NOW) -> list[Run]:
    """Four open runs between 30h and 60h old: enough stale debt to pause governance."""
    return [
        make_run(f"stale-{i + 1}", hours_ago=30 + i * 10, rec_id="close-feedback-loop", now=now) for i in range(4)
    ]


def make_policy(
    max_actions: int = 2,
    cooldown_hours: int = 12,
    mode: AutonomyMode = AutonomyMode.ASSIST,
    confidence: int = 60,
) -> DecisionPolicy:
    return DecisionPolicy(
        mode=mode,
        recommended_outcome=OutcomeDecision.ITERATE,
        confidence=confidence,
        rationale=["test policy"],
        guardrails=["test guardrail"],
        max_actions_per_cycle=max_actions,
        cooldown_hours=cooldown_hours,
    )


def make_item(
    rec_id: str,
    score: float,
    status: BacklogStatus = BacklogStatus.READY,
    priority: Priority = Priority.MEDIUM,
    trigger_ids: tuple[str, ...] = ("foundation_gap",),
) -> BacklogItem:
    return BacklogItem(
        id=f"backlog-{rec_id}",
        recommendation_id=rec_id,
        title=rec_id.replace("-", " ").title(),
        priority=priority,
        owner_role_agent_id="story_architect",
        owner_user_id="u-architect" if status != BacklogStatus.BLOCKED else None,
        status=status,
        score=float(score),
        reason="Ready for execution." if status == BacklogStatus.READY else f"{status.value} in test",
        execution=RecommendationExecution(
            sprint_objective="ship_next_drop",
            horizon_days=10,
            require_merch_plan=False,
            merch_candidate_id=None,
            merch_channels=[],
            default_outcome_decision=OutcomeDecision.ITERATE,
        ),
        trigger_ids=list(trigger_ids),
    )


def make_backlog(items: list[BacklogItem], policy: DecisionPolicy | None = None) -> Backlog:
    policy = policy or make_policy()
    return Backlog(generated_at=NOW, mode=policy.mode, policy=policy, items=list(items))


def make_governance(
    status: GovernanceStatus = GovernanceStatus.HEALTHY,
    *,
    score: int | None = None,
    cap: int | None = None,
    floor: int | None = None,
) -> GovernanceReport:
    defaults = {
        GovernanceStatus.HEALTHY: (85, 5, 6),
        GovernanceStatus.WATCH: (50, 2, 12),
        GovernanceStatus.PAUSED: (20, 1, 18),
    }[status]
    return GovernanceReport(
        generated_at=NOW,
        status=status,
        governance_score=defaults[0] if score is None else score,
        allow_autorun=status != GovernanceStatus.PAUSED,
        max_actions_cap=defaults[1] if cap is None else cap,
        cooldown_floor_hours=defaults[2] if floor is None else floor,
        completed_runs=0,
        positive_rate=0.0,
        stale_open_runs=0,
        risky_outcome_rate=0.0,
        longest_open_run_hours=0.0,
    )
