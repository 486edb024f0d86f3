from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging

from economy_engine.data.protocols import RunStoreProtocol
from economy_engine.errors import RunStoreError
from economy_engine.models import (
    LearningReport,
    OutcomeAgentPlan,
    OutcomeCandidate,
    OutcomeDecision,
    Run,
    RunStatus,
    hours_between,
    normalize_metrics,
)


logger = logging.getLogger(__name__)

STALE_AFTER_RANGE = (6, 240)
MAX_RUNS_RANGE = (1, 10)

CLOSE_NOTES = {
    OutcomeDecision.SCALE: "Auto-close as scale: combined signal improved materially since baseline.",
    OutcomeDecision.ITERATE: "Auto-close as iterate: partial progress detected; continue next cycle with refinements.",
    OutcomeDecision.HOLD: "Auto-close as hold: weak progression signal; pause and rebalance before next run.",
    OutcomeDecision.ARCHIVE: "Auto-close as archive: prolonged stagnation with negative signal drift.",
}


@dataclass(slots=True)
class ClosedRun:
    run_id: str
    decision: OutcomeDecision
    status: str
    note: str
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "decision": self.decision.value,
            "status": self.status,
            "note": self.note,
            "error": self.error,
        }


@dataclass(slots=True)
class CloseResult:
    dry_run: bool
    selected: list[OutcomeCandidate] = field(default_factory=list)
    closed: list[ClosedRun] = field(default_factory=list)

    @property
    def failed(self) -> list[ClosedRun]:
        return [x for x in self.closed if x.status == "failed"]

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "selected_candidates": [c.to_dict() for c in self.selected],
            "closed_runs": [x.to_dict() for x in self.closed],
        }


def suggest_decision(age_hours: float, combined_delta: float | None, learning: LearningReport) -> OutcomeDecision:
    if combined_delta is not None:
        if combined_delta >= 6:
            return OutcomeDecision.SCALE
        if combined_delta <= -10 and age_hours >= 72:
            return OutcomeDecision.ARCHIVE
        if combined_delta <= -4:
            return OutcomeDecision.HOLD
        return OutcomeDecision.ITERATE
    if learning.recommended_outcome_bias == OutcomeDecision.ARCHIVE and age_hours >= 96:
        return OutcomeDecision.ARCHIVE
    if age_hours >= 72 and learning.overall_positive_rate < 0.45:
        return OutcomeDecision.HOLD
    return learning.recommended_outcome_bias


def build_outcome_agent_plan(
    history: list[Run],
    current_metrics: dict[str, float],
    learning: LearningReport,
    now: datetime,
    stale_after_hours: float = 18,
) -> OutcomeAgentPlan:
    current = normalize_metrics(current_metrics)
    current_combined = current.get("combinedScore")
    open_runs = [r for r in history if not r.is_completed]
    stale = [r for r in open_runs if hours_between(now, r.created_at) >= stale_after_hours]

    candidates: list[OutcomeCandidate] = []
    for run in stale:
        baseline = run.baseline_metrics.get("combinedScore")
        delta = None
        if baseline is not None and current_combined is not None:
            delta = round(current_combined - baseline, 2)
        age = round(hours_between(now, run.created_at), 1)
        decision = suggest_decision(age, delta, learning)
        candidates.append(
            OutcomeCandidate(
                run_id=run.id,
                sprint_objective=run.sprint_objective,
                age_hours=age,
                baseline_combined=baseline,
                current_combined=current_combined,
                combined_delta=delta,
                suggested_outcome_decision=decision,
                suggested_outcome_notes=CLOSE_NOTES[decision],
                suggested_outcome_metrics=dict(current),
            )
        )
    candidates.sort(key=lambda c: (-c.age_hours, c.run_id))

    notes: list[str] = []
    if candidates:
        notes.append(f"{len(candidates)} stale run(s) can be auto-closed to keep learning and policy loops current.")
    else:
        notes.append("No stale open runs detected; outcome-closing agent is idle.")
    if learning.stale_open_runs > 0:
        notes.append(
            f"Learning flagged {learning.stale_open_runs} stale run(s); close these before the next autorun cycle."
        )

    return OutcomeAgentPlan(
        generated_at=now,
        candidates=candidates,
        total_open_runs=len(open_runs),
        stale_open_runs=len(stale),
        notes=notes,
    )


def select_candidates(plan: OutcomeAgentPlan, max_runs: int = 3) -> list[OutcomeCandidate]:
    bounded = max(MAX_RUNS_RANGE[0], min(MAX_RUNS_RANGE[1], int(round(max_runs))))
    return plan.candidates[:bounded]


def _note(candidate: OutcomeCandidate, prefix: str | None) -> str:
    if prefix and prefix.strip():
        return f"{prefix.strip()} {candidate.suggested_outcome_notes}".strip()
    return candidate.suggested_outcome_notes


def close_candidates(
    store: RunStoreProtocol,
    story_id: str,
    candidates: list[OutcomeCandidate],
    now: datetime,
    *,
    dry_run: bool = False,
    persist: bool = True,
    note_prefix: str | None = None,
) -> CloseResult:
    """Write the suggested outcome on each candidate run; a store failure only fails that run."""
    write = persist and not dry_run
    result = CloseResult(dry_run=not write, selected=list(candidates))
    for candidate in candidates:
        note = _note(candidate, note_prefix)
        decision = candidate.suggested_outcome_decision
        if not write:
            result.closed.append(ClosedRun(run_id=candidate.run_id, decision=decision, status="dry_run", note=note))
            continue
        try:
            updated = store.update_outcome(
                story_id,
                candidate.run_id,
                decision=decision,
                notes=note,
                outcome_metrics=candidate.suggested_outcome_metrics,
                completed_at=now,
                status=RunStatus.COMPLETED,
            )
        except RunStoreError as exc:
            logger.warning("outcome close failed story=%s run=%s: %s", story_id, candidate.run_id, exc)
            result.closed.append(
                ClosedRun(run_id=candidate.run_id, decision=decision, status="failed", note=note, error=str(exc))
            )
            continue
        logger.info("closed stale run story=%s run=%s decision=%s", story_id, updated.id, decision.value)
        result.closed.append(ClosedRun(run_id=updated.id, decision=decision, status="completed", note=note))
    return result
