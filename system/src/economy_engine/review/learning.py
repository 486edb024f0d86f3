from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

import numpy as np
import pandas as pd

from economy_engine.models import (
    AutonomyMode,
    DecisionPolicy,
    LearningReport,
    OutcomeDecision,
    Run,
    hours_between,
    plan_autonomy_mode,
)


@dataclass(slots=True, frozen=True)
class LearningParams:
    stale_after_hours: float = 18.0
    base_cooldown_hours: int = 12
    min_cooldown_hours: int = 6
    max_cooldown_hours: int = 24
    auto_min_completed: int = 4
    auto_min_positive_rate: float = 0.68
    manual_max_positive_rate: float = 0.4
    top_recommendations: int = 12

    @classmethod
    def from_config(cls, raw: dict[str, Any]) -> "LearningParams":
        return cls(
            stale_after_hours=float(raw.get("stale_after_hours", 18)),
            base_cooldown_hours=int(raw.get("base_cooldown_hours", 12)),
            min_cooldown_hours=int(raw.get("min_cooldown_hours", 6)),
            max_cooldown_hours=int(raw.get("max_cooldown_hours", 24)),
            auto_min_completed=int(raw.get("auto_min_completed", 4)),
            auto_min_positive_rate=float(raw.get("auto_min_positive_rate", 0.68)),
            manual_max_positive_rate=float(raw.get("manual_max_positive_rate", 0.4)),
            top_recommendations=int(raw.get("top_recommendations", 12)),
        )


def is_positive_outcome(run: Run) -> bool:
    """archive never counts; with a combined-score delta, each decision has its own tolerance."""
    decision = run.outcome_decision
    if decision is None or decision == OutcomeDecision.ARCHIVE:
        return False
    delta = run.combined_delta
    if delta is not None:
        if decision == OutcomeDecision.SCALE:
            return delta >= -2
        if decision == OutcomeDecision.HOLD:
            return delta >= -1
        return delta >= 0
    return decision in (OutcomeDecision.SCALE, OutcomeDecision.ITERATE)


def is_stale_open(run: Run, now: datetime, stale_after_hours: float) -> bool:
    return not run.is_completed and hours_between(now, run.created_at) > stale_after_hours


def history_frame(history: list[Run]) -> pd.DataFrame:
    rows = [
        {
            "id": r.id,
            "mode": plan_autonomy_mode(r.plan).value,
            "recommendation_id": r.executed_recommendation_id,
            "completed": bool(r.is_completed),
            "decision": r.outcome_decision.value if (r.is_completed and r.outcome_decision) else None,
            "positive": bool(r.is_completed and is_positive_outcome(r)),
            "delta": r.combined_delta if r.is_completed else None,
        }
        for r in history
    ]
    df = pd.DataFrame(rows, columns=["id", "mode", "recommendation_id", "completed", "decision", "positive", "delta"])
    df["completed"] = df["completed"].astype(bool)
    df["positive"] = df["positive"].astype(bool)
    df["delta"] = pd.to_numeric(df["delta"], errors="coerce")
    return df


def _performance(df: pd.DataFrame, key: str) -> pd.DataFrame:
    grouped = df.groupby(key, sort=False).agg(
        runs=("id", "size"),
        completed_runs=("completed", "sum"),
        positive=("positive", "sum"),
        avg_combined_delta=("delta", "mean"),
    )
    grouped["positive_rate"] = np.where(
        grouped["completed_runs"] > 0, grouped["positive"] / grouped["completed_runs"].clip(lower=1), 0.0
    )
    grouped["positive_rate"] = grouped["positive_rate"].round(2)
    grouped["avg_combined_delta"] = grouped["avg_combined_delta"].fillna(0.0).round(2)
    return grouped


def _perf_row(name_key: str, name: str, row: Any) -> dict[str, Any]:
    return {
        name_key: name,
        "runs": int(row["runs"]),
        "completed_runs": int(row["completed_runs"]),
        "positive_rate": float(row["positive_rate"]),
        "avg_combined_delta": float(row["avg_combined_delta"]),
    }


def _outcome_bias(df: pd.DataFrame) -> OutcomeDecision:
    done = df[df["completed"] & df["decision"].notna()]
    if done.empty:
        return OutcomeDecision.ITERATE
    stats = done.groupby("decision", sort=False).agg(runs=("id", "size"), positive=("positive", "sum"))
    stats["score"] = stats["positive"] / stats["runs"]
    stats = stats.sort_values(["score", "runs"], ascending=[False, False], kind="mergesort")
    return OutcomeDecision(str(stats.index[0]))


def build_learning_report(history: list[Run], now: datetime, params: LearningParams | None = None) -> LearningReport:
    params = params or LearningParams()
    df = history_frame(history)
    completed = df[df["completed"]]
    stale = sum(1 for r in history if is_stale_open(r, now, params.stale_after_hours))
    positive = int(completed["positive"].sum())
    positive_rate = positive / len(completed) if len(completed) else 0.0
    deltas = completed["delta"].dropna()
    avg_delta = float(deltas.mean()) if len(deltas) else 0.0

    mode_perf = _performance(df, "mode") if not df.empty else None
    mode_performance = []
    for mode in AutonomyMode:
        if mode_perf is not None and mode.value in mode_perf.index:
            mode_performance.append(_perf_row("mode", mode.value, mode_perf.loc[mode.value]))
        else:
            mode_performance.append(
                {"mode": mode.value, "runs": 0, "completed_runs": 0, "positive_rate": 0.0, "avg_combined_delta": 0.0}
            )

    with_rec = df[df["recommendation_id"].notna()]
    recommendation_performance: list[dict[str, Any]] = []
    if not with_rec.empty:
        rec_perf = _performance(with_rec, "recommendation_id")
        rec_perf = rec_perf.sort_values("runs", ascending=False, kind="mergesort").head(params.top_recommendations)
        recommendation_performance = [_perf_row("recommendation_id", str(k), row) for k, row in rec_perf.iterrows()]

    n_completed = len(completed)
    recommended_mode = AutonomyMode.ASSIST
    if n_completed >= params.auto_min_completed and positive_rate >= params.auto_min_positive_rate and stale <= 1:
        recommended_mode = AutonomyMode.AUTO
    elif n_completed >= params.auto_min_completed and positive_rate < params.manual_max_positive_rate:
        recommended_mode = AutonomyMode.MANUAL

    cooldown = params.base_cooldown_hours
    cooldown += -3 if positive_rate >= 0.65 else 0
    cooldown += 4 if positive_rate < 0.45 else 0
    cooldown += 3 if stale >= 2 else 0
    cooldown = int(np.clip(cooldown, params.min_cooldown_hours, params.max_cooldown_hours))

    if recommended_mode == AutonomyMode.MANUAL:
        max_actions = 1
    elif recommended_mode == AutonomyMode.ASSIST:
        max_actions = 2 if positive_rate >= 0.6 else 1
    else:
        max_actions = 3 if positive_rate >= 0.75 else 2

    notes: list[str] = []
    if n_completed < 3:
        notes.append("Learning confidence is low; fewer than 3 completed runs are available.")
    if stale > 0:
        notes.append(f"{stale} open run(s) are stale and should be auto-closed to keep the loop healthy.")
    if positive_rate >= 0.7:
        notes.append("Positive outcome rate is strong; policy can safely increase throughput.")
    elif 0 < positive_rate < 0.45:
        notes.append("Positive outcome rate is weak; reduce autonomy aggressiveness until metrics recover.")
    if not notes:
        notes.append("Policy behavior is stable; continue periodic learning refresh after each cycle.")

    return LearningReport(
        generated_at=now,
        total_runs=len(history),
        completed_runs=n_completed,
        stale_open_runs=stale,
        positive_completed_runs=positive,
        overall_positive_rate=round(positive_rate, 2),
        avg_combined_delta=round(avg_delta, 2),
        recommended_mode=recommended_mode,
        suggested_cooldown_hours=cooldown,
        suggested_max_actions_per_cycle=max_actions,
        recommended_outcome_bias=_outcome_bias(df),
        mode_performance=mode_performance,
        recommendation_performance=recommendation_performance,
        notes=notes,
    )


def apply_learning_to_policy(
    policy: DecisionPolicy,
    learning: LearningReport,
    *,
    max_actions_cap: int,
    cooldown_floor_hours: int,
    lock_mode: AutonomyMode | None = None,
) -> DecisionPolicy:
    """Learning suggestions replace the mode defaults, bounded by the mode's cap and floor."""
    confidence = policy.confidence * 0.7 + learning.overall_positive_rate * 100 * 0.3
    confidence += -5 if learning.stale_open_runs > 0 else 3
    return replace(
        policy,
        mode=lock_mode or learning.recommended_mode,
        confidence=int(np.clip(round(confidence), 30, 97)),
        max_actions_per_cycle=int(np.clip(learning.suggested_max_actions_per_cycle, 1, max(1, max_actions_cap))),
        cooldown_hours=max(int(learning.suggested_cooldown_hours), int(cooldown_floor_hours)),
        rationale=[
            *policy.rationale,
            f"Learning loop: overall positive rate {round(learning.overall_positive_rate * 100)}%.",
            f"Learning loop: stale open runs {learning.stale_open_runs}.",
        ],
        guardrails=[
            *policy.guardrails,
            "If stale open runs exceed 2, run outcome-closing agent before next autonomous cycle.",
        ],
    )
