from __future__ import annotations

from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
import itertools
import json
import logging
import sqlite3
from typing import Any

import pandas as pd

from economy_engine.errors import RunNotFoundError, RunStoreError
from economy_engine.models import (
    NewRun,
    OutcomeDecision,
    Run,
    RunStatus,
    iso,
    normalize_metrics,
    parse_run_plan,
    parse_ts,
)


logger = logging.getLogger(__name__)

RUNS_TABLE = "economy_runs"


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_json(path: Path, payload: Any) -> None:
    ensure_parent(path)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def write_markdown(path: Path, content: str) -> None:
    ensure_parent(path)
    path.write_text(content, encoding="utf-8")


def _utc_text(ts: datetime | None) -> str | None:
    """Fixed-width UTC text, so stored timestamps also sort lexically."""
    if ts is None:
        return None
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _sorted_newest_first(runs: list[Run]) -> list[Run]:
    return sorted(runs, key=lambda r: (r.created_at, r.id), reverse=True)


def _completed_copy(
    run: Run,
    *,
    decision: OutcomeDecision,
    notes: str | None,
    outcome_metrics: dict[str, float],
    completed_at: datetime | None,
    status: RunStatus,
) -> Run:
    # Completed runs only ever change their outcome fields; completed_at is the cooldown anchor.
    if run.is_completed:
        status = RunStatus.COMPLETED
        completed_at = completed_at or run.completed_at
    elif status != RunStatus.COMPLETED:
        completed_at = run.completed_at
    return Run(
        id=run.id,
        story_id=run.story_id,
        created_by_user_id=run.created_by_user_id,
        sprint_objective=run.sprint_objective,
        horizon_days=run.horizon_days,
        status=status,
        plan=run.plan,
        baseline_metrics=dict(run.baseline_metrics),
        outcome_metrics=normalize_metrics(outcome_metrics),
        outcome_decision=decision,
        outcome_notes=notes,
        created_at=run.created_at,
        completed_at=completed_at,
    )


class InMemoryRunStore:
    """Dict-backed store with deterministic ids, used by tests and dry evaluations."""

    def __init__(self, runs: list[Run] | None = None, id_prefix: str = "run") -> None:
        self._runs: dict[str, Run] = {}
        self._ids = itertools.count(1)
        self._id_prefix = id_prefix
        for run in runs or []:
            self._runs[run.id] = run

    def list_runs(self, story_id: str, limit: int = 80) -> list[Run]:
        rows = [r for r in self._runs.values() if r.story_id == story_id]
        return _sorted_newest_first(rows)[: max(0, int(limit))]

    def get_run(self, story_id: str, run_id: str) -> Run:
        run = self._runs.get(run_id)
        if run is None or run.story_id != story_id:
            raise RunNotFoundError(story_id, run_id)
        return run

    def create_run(self, new_run: NewRun) -> Run:
        run_id = f"{self._id_prefix}-{next(self._ids):04d}"
        while run_id in self._runs:
            run_id = f"{self._id_prefix}-{next(self._ids):04d}"
        run = Run(
            id=run_id,
            story_id=new_run.story_id,
            created_by_user_id=new_run.created_by_user_id,
            sprint_objective=new_run.sprint_objective,
            horizon_days=new_run.horizon_days,
            status=new_run.status,
            plan=new_run.plan,
            baseline_metrics=dict(new_run.baseline_metrics),
            outcome_metrics={},
            outcome_decision=None,
            outcome_notes=None,
            created_at=new_run.created_at,
        )
        self._runs[run.id] = run
        return run

    def update_outcome(
        self,
        story_id: str,
        run_id: str,
        *,
        decision: OutcomeDecision,
        notes: str | None,
        outcome_metrics: dict[str, float],
        completed_at: datetime | None = None,
        status: RunStatus = RunStatus.COMPLETED,
    ) -> Run:
        run = self.get_run(story_id, run_id)
        updated = _completed_copy(
            run,
            decision=decision,
            notes=notes,
            outcome_metrics=outcome_metrics,
            completed_at=completed_at,
            status=status,
        )
        self._runs[run_id] = updated
        return updated


class SqliteRunStore:
    """Runs persisted in one sqlite table; plan and metric payloads are JSON columns."""

    COLUMNS = (
        "id",
        "story_id",
        "created_by_user_id",
        "sprint_objective",
        "horizon_days",
        "status",
        "plan",
        "baseline_metrics",
        "outcome_metrics",
        "outcome_decision",
        "outcome_notes",
        "created_at",
        "completed_at",
    )

    def __init__(self, db_path: Path, table: str = RUNS_TABLE) -> None:
        self.db_path = Path(db_path)
        self.table = table
        ensure_parent(self.db_path)
        self._ensure_table()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _ensure_table(self) -> None:
        with closing(self._connect()) as conn:
            conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{self.table}" ('
                "id TEXT PRIMARY KEY, story_id TEXT NOT NULL, created_by_user_id TEXT, "
                "sprint_objective TEXT, horizon_days INTEGER, status TEXT, plan TEXT, "
                "baseline_metrics TEXT, outcome_metrics TEXT, outcome_decision TEXT, "
                "outcome_notes TEXT, created_at TEXT, completed_at TEXT)"
            )
            conn.execute(f'CREATE INDEX IF NOT EXISTS "{self.table}_story_idx" ON "{self.table}" (story_id, created_at)')
            conn.commit()

    @staticmethod
    def _row_to_run(row: dict[str, Any]) -> Run:
        decision = row.get("outcome_decision")
        created_at = parse_ts(row.get("created_at"))
        if created_at is None:
            raise RunStoreError(f"run {row.get('id')} has no created_at", run_id=row.get("id"))
        return Run(
            id=str(row["id"]),
            story_id=str(row["story_id"]),
            created_by_user_id=str(row.get("created_by_user_id") or ""),
            sprint_objective=str(row.get("sprint_objective") or ""),
            horizon_days=int(row.get("horizon_days") or 0),
            status=RunStatus(str(row.get("status") or RunStatus.PLANNED.value)),
            plan=parse_run_plan(json.loads(row.get("plan") or "{}")),
            baseline_metrics=normalize_metrics(json.loads(row.get("baseline_metrics") or "{}")),
            outcome_metrics=normalize_metrics(json.loads(row.get("outcome_metrics") or "{}")),
            outcome_decision=OutcomeDecision(decision) if decision else None,
            outcome_notes=row.get("outcome_notes"),
            created_at=created_at,
            completed_at=parse_ts(row.get("completed_at")),
        )

    @staticmethod
    def _run_to_row(run: Run) -> dict[str, Any]:
        return {
            "id": run.id,
            "story_id": run.story_id,
            "created_by_user_id": run.created_by_user_id,
            "sprint_objective": run.sprint_objective,
            "horizon_days": int(run.horizon_days),
            "status": run.status.value,
            "plan": json.dumps(run.plan.to_dict(), ensure_ascii=False, sort_keys=True),
            "baseline_metrics": json.dumps(run.baseline_metrics, sort_keys=True),
            "outcome_metrics": json.dumps(run.outcome_metrics, sort_keys=True),
            "outcome_decision": run.outcome_decision.value if run.outcome_decision else None,
            "outcome_notes": run.outcome_notes,
            "created_at": _utc_text(run.created_at),
            "completed_at": _utc_text(run.completed_at),
        }

    def _frame(self, sql: str, params: tuple[Any, ...]) -> pd.DataFrame:
        try:
            with closing(self._connect()) as conn:
                return pd.read_sql_query(sql, conn, params=params)
        except (sqlite3.Error, pd.errors.DatabaseError) as exc:
            raise RunStoreError(f"run history read failed: {exc}") from exc

    def list_runs(self, story_id: str, limit: int = 80) -> list[Run]:
        df = self._frame(f'SELECT * FROM "{self.table}" WHERE story_id = ?', (story_id,))
        if df.empty:
            return []
        # Rows written with other UTC offsets must still order by instant, not by text.
        df["_created"] = pd.to_datetime(df["created_at"], utc=True, format="ISO8601")
        df = df.sort_values(["_created", "id"], ascending=False).head(max(0, int(limit)))
        df = df.drop(columns=["_created"])
        df = df.astype(object).where(pd.notna(df), None)
        return [self._row_to_run(row) for row in df.to_dict(orient="records")]

    def get_run(self, story_id: str, run_id: str) -> Run:
        df = self._frame(f'SELECT * FROM "{self.table}" WHERE story_id = ? AND id = ?', (story_id, run_id))
        if df.empty:
            raise RunNotFoundError(story_id, run_id)
        df = df.astype(object).where(pd.notna(df), None)
        return self._row_to_run(df.to_dict(orient="records")[0])

    def _next_id(self, conn: sqlite3.Connection) -> str:
        # Caller holds the write lock, so the highest id cannot move underneath it.
        last = conn.execute(
            f"SELECT MAX(CAST(substr(id, 5) AS INTEGER)) FROM \"{self.table}\" WHERE id LIKE 'run-%'"
        ).fetchone()[0]
        return f"run-{int(last or 0) + 1:06d}"

    def create_run(self, new_run: NewRun) -> Run:
        rec_id = getattr(new_run.plan, "executed_recommendation_id", None)
        try:
            with closing(self._connect()) as conn:
                conn.execute("BEGIN IMMEDIATE")
                run = Run(
                    id=self._next_id(conn),
                    story_id=new_run.story_id,
                    created_by_user_id=new_run.created_by_user_id,
                    sprint_objective=new_run.sprint_objective,
                    horizon_days=new_run.horizon_days,
                    status=new_run.status,
                    plan=new_run.plan,
                    baseline_metrics=dict(new_run.baseline_metrics),
                    outcome_metrics={},
                    outcome_decision=None,
                    outcome_notes=None,
                    created_at=new_run.created_at,
                )
                pd.DataFrame([self._run_to_row(run)], columns=list(self.COLUMNS)).to_sql(
                    self.table, conn, if_exists="append", index=False
                )
                conn.commit()
        except (sqlite3.Error, ValueError) as exc:
            raise RunStoreError(f"create run failed: {exc}", recommendation_id=rec_id) from exc
        logger.debug("run created story=%s run=%s source=%s", run.story_id, run.id, run.plan.source.value)
        return run

    def update_outcome(
        self,
        story_id: str,
        run_id: str,
        *,
        decision: OutcomeDecision,
        notes: str | None,
        outcome_metrics: dict[str, float],
        completed_at: datetime | None = None,
        status: RunStatus = RunStatus.COMPLETED,
    ) -> Run:
        run = self.get_run(story_id, run_id)
        updated = _completed_copy(
            run,
            decision=decision,
            notes=notes,
            outcome_metrics=outcome_metrics,
            completed_at=completed_at,
            status=status,
        )
        row = self._run_to_row(updated)
        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    f'UPDATE "{self.table}" SET status = ?, outcome_metrics = ?, outcome_decision = ?, '
                    "outcome_notes = ?, completed_at = ? WHERE story_id = ? AND id = ?",
                    (
                        row["status"],
                        row["outcome_metrics"],
                        row["outcome_decision"],
                        row["outcome_notes"],
                        row["completed_at"],
                        story_id,
                        run_id,
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise RunStoreError(f"update outcome failed: {exc}", run_id=run_id) from exc
        return updated
