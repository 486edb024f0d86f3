from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from economy_engine.data.storage import write_json, write_markdown
from economy_engine.orchestration.reconciler import DerivedState


def _bullets(lines: list[str], items: list[str], empty: str = "- NONE") -> None:
    if items:
        lines.extend(f"- {x}" for x in items)
    else:
        lines.append(empty)


def render_cycle_report(state: DerivedState, operation: str = "evaluate", execution: dict[str, Any] | None = None) -> str:
    plan = state.plan
    lines: list[str] = []
    lines.append(f"# Economy cycle | {plan.story_id} | {operation}")
    lines.append("")
    lines.append(f"Generated `{state.generated_at.isoformat()}` in **{state.mode.value}** mode.")
    lines.append("")

    lines.append("## Triggers")
    summary = plan.trigger_summary
    lines.append(
        f"- active `{summary['active']}/{summary['total']}`, "
        f"risk `{summary['risk_active']}`, opportunity `{summary['opportunity_active']}`"
    )
    for t in plan.triggers:
        if t.fired:
            current = "n/a" if t.current is None else f"{t.current:.1f}"
            lines.append(f"- `{t.id}` {t.kind.value}/{t.severity} | {t.metric_key}={current} | {t.reason}")
    lines.append("")

    lines.append("## Policy")
    policy = state.policy
    lines.append(
        f"- mode `{policy.mode.value}`, outcome `{policy.recommended_outcome.value}`, "
        f"confidence `{policy.confidence}`, max actions `{policy.max_actions_per_cycle}`, "
        f"cooldown `{policy.cooldown_hours}h`"
    )
    lines.append("")

    lines.append("## Backlog")
    backlog = state.backlog
    s = backlog.summary
    lines.append(f"- total `{s['total']}`: ready `{s['ready']}`, cooldown `{s['cooldown']}`, blocked `{s['blocked']}`")
    if backlog.items:
        lines.append("")
        lines.append("| Recommendation | Priority | Owner | Status | Score | Reason |")
        lines.append("|---|---|---|---|---:|---|")
        for x in backlog.items:
            lines.append(
                f"| {x.recommendation_id} | {x.priority.value} | {x.owner_user_id or '-'} | "
                f"{x.status.value} | {x.score:.0f} | {x.reason} |"
            )
    lines.append("")

    lines.append("## Governance")
    gov = state.governance
    if gov is None:
        lines.append("- disabled")
    else:
        lines.append(
            f"- status **{gov.status.value}**, score `{gov.governance_score}`, "
            f"cap `{gov.max_actions_cap}`, cooldown floor `{gov.cooldown_floor_hours}h`, "
            f"autorun {'allowed' if gov.allow_autorun else 'paused'}"
        )
        _bullets(lines, gov.reasons)
    lines.append("")

    loop = state.strategy_loop
    if loop is not None:
        lines.append("## Strategy loop")
        lines.append(
            f"- objective `{loop.selected_objective.value}`, cadence `{loop.cadence_hours}h` "
            f"(recommended `{loop.recommended_cadence_hours}h`), safe window `{loop.safe_window}`"
        )
        for c in loop.cycles:
            lines.append(
                f"- cycle {c.cycle}: {c.objective.value} / {c.mode.value}, max `{c.max_actions_per_cycle}`, "
                f"cooldown `{c.cooldown_hours}h`, {c.scheduled_window_start.isoformat()}"
            )
        lines.append("")
    if state.window is not None:
        gate = state.window.gate
        lines.append("## Window gate")
        lines.append(f"- gate **{gate.status.value}**, next cadence `{state.window.adaptation.next_cadence_hours}h`")
        _bullets(lines, gate.reasons)
        lines.append("")
    if state.self_healing is not None:
        heal = state.self_healing
        lines.append("## Self-healing")
        lines.append(
            f"- severity **{heal.severity.value}**, ROI gap `{heal.roi_gap_score}`, "
            f"patch applied `{state.self_healing_patch_applied}`"
        )
        _bullets(lines, heal.notes)
        lines.append("")
    if state.outcome_plan is not None and state.outcome_plan.candidates:
        lines.append("## Stale runs")
        for c in state.outcome_plan.candidates:
            lines.append(f"- `{c.run_id}` {c.age_hours:.1f}h -> {c.suggested_outcome_decision.value}")
        lines.append("")

    if execution is not None:
        lines.append("## Execution")
        if execution.get("blocked_by_governance"):
            lines.append("- blocked by governance")
        for rec in execution.get("records", []):
            run = f" run `{rec['run_id']}`" if rec.get("run_id") else ""
            err = f" ({rec['error']})" if rec.get("error") else ""
            lines.append(f"- `{rec['recommendation_id']}` {rec['status']}{run}{err}")
        lines.append("")

    lines.append("## Notes")
    _bullets(lines, plan.notes)
    return "\n".join(lines) + "\n"


def write_cycle_artifacts(
    output_dir: Path,
    story_id: str,
    operation: str,
    payload: dict[str, Any],
    report: str,
    created_at: datetime,
) -> dict[str, str]:
    """Write `<story>_<op>.json` and `.md` plus a manifest listing both."""
    stem = f"{story_id}_{operation}"
    json_path = output_dir / f"{stem}.json"
    md_path = output_dir / f"{stem}.md"
    write_json(json_path, payload)
    write_markdown(md_path, report)
    artifacts = {"json": str(json_path), "markdown": str(md_path)}
    write_json(
        output_dir / "manifests" / f"{stem}.json",
        {
            "operation": operation,
            "story_id": story_id,
            "created_at": created_at.isoformat(),
            "artifacts": artifacts,
        },
    )
    return artifacts
