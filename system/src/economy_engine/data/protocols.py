from __future__ import annotations

from typing import Protocol

from economy_engine.models import NewRun, OutcomeDecision, Run, RunStatus


class RunStoreProtocol(Protocol):
    """Opaque run-history store. Lists are newest first."""

    def list_runs(self, story_id: str, limit: int = 80) -> list[Run]: ...

    def get_run(self, story_id: str, run_id: str) -> Run: ...

    def create_run(self, new_run: NewRun) -> Run: ...

    def update_outcome(
        self,
        story_id: str,
        run_id: str,
        *,
        decision: OutcomeDecision,
        notes: str | None,
        outcome_metrics: dict[str, float],
        completed_at=None,
        status: RunStatus = RunStatus.COMPLETED,
    ) -> Run: ...
