from __future__ import annotations

import argparse
from datetime import datetime
import json
import logging
from pathlib import Path
import sys
from typing import Any

from economy_engine.config import load_settings, validate_settings
from economy_engine.data import SqliteRunStore
from economy_engine.engine import EconomyEngine
from economy_engine.errors import EconomyEngineError, ValidationError
from economy_engine.models import MerchCandidate, StoryContext, parse_ts


def _load_json(raw: str | None, default: Any) -> Any:
    """Inline JSON or a path to a JSON file."""
    if raw in {None, ""}:
        return default
    path = Path(raw)
    if path.suffix == ".json" and path.exists():
        return json.loads(path.read_text(encoding="utf-8"))
    return json.loads(raw)


def _parse_now(raw: str | None) -> datetime | None:
    if not raw:
        return None
    ts = parse_ts(raw)
    if ts is None:
        raise SystemExit(f"invalid --now timestamp: {raw}")
    return ts


def _context(args: argparse.Namespace) -> StoryContext:
    merch = [
        MerchCandidate(id=str(x["id"]), title=str(x.get("title", x["id"])), channels=list(x.get("channels", [])))
        for x in _load_json(args.merch, [])
    ]
    horizon = _opt_int("horizon_days", args.horizon_days)
    if horizon is None:
        raise ValidationError("horizon_days", "is required")
    return StoryContext(
        story_id=args.story,
        sprint_objective=args.sprint_objective,
        horizon_days=horizon,
        roster=dict(_load_json(args.roster, {})),
        merch_candidates=merch,
        requested_by_user_id=args.user,
    )


def _add_story_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--story", required=True)
    p.add_argument("--metrics", default=None, help="Metrics JSON (inline or .json path)")
    p.add_argument("--roster", default=None, help="Role -> user id JSON (inline or .json path)")
    p.add_argument("--merch", default=None, help="Merch candidates JSON list (inline or .json path)")
    p.add_argument("--sprint-objective", default="ship_next_drop")
    p.add_argument("--horizon-days", default="14")
    p.add_argument("--user", default="system")
    p.add_argument("--mode", default="assist", help="manual|assist|auto")
    p.add_argument("--now", default=None, help="ISO timestamp used as the evaluation time")


def _add_exec_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--max-actions", default=None)
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--no-persist", action="store_true")
    p.add_argument("--force", action="store_true")


def _opt_int(name: str, raw: str | None) -> int | None:
    if raw in {None, "", "none", "None"}:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(name, f"must be an integer, got {raw!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="economy-engine", description="Creator economy autonomous decision loop")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--db", default=None, help="Path to the sqlite run store")
    parser.add_argument("--output-dir", default=None, help="Write <story>_<op>.json/.md artifacts here")
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("validate-config", help="Validate config schema and trigger table")

    p_ev = sub.add_parser("evaluate", help="Derive the full decision stack (read only)")
    _add_story_args(p_ev)
    p_ev.add_argument("--objective", default=None)
    p_ev.add_argument("--cadence-hours", default=None)

    p_ex = sub.add_parser("execute", help="Execute one named recommendation")
    _add_story_args(p_ex)
    p_ex.add_argument("--recommendation", required=True)
    p_ex.add_argument("--dry-run", action="store_true")
    p_ex.add_argument("--no-persist", action="store_true")

    p_ar = sub.add_parser("autorun", help="Execute the top ready backlog items")
    _add_story_args(p_ar)
    _add_exec_args(p_ar)

    p_sl = sub.add_parser("strategy-loop", help="Strategy loop with optional self-healing and window execution")
    _add_story_args(p_sl)
    _add_exec_args(p_sl)
    p_sl.add_argument("--objective", default=None)
    p_sl.add_argument("--cadence-hours", default=None)
    p_sl.add_argument("--self-heal", action="store_true")
    p_sl.add_argument("--execute-recovery", action="store_true")
    p_sl.add_argument("--execute-window", action="store_true")

    p_cs = sub.add_parser("close-stale", help="Close stale open runs with the outcome agent")
    _add_story_args(p_cs)
    p_cs.add_argument("--stale-after-hours", default=None)
    p_cs.add_argument("--max-runs", default=None)
    p_cs.add_argument("--note-prefix", default=None)
    p_cs.add_argument("--dry-run", action="store_true")
    p_cs.add_argument("--no-persist", action="store_true")

    p_ro = sub.add_parser("record-outcome", help="Record the outcome of one run")
    _add_story_args(p_ro)
    p_ro.add_argument("--run-id", required=True)
    p_ro.add_argument("--decision", required=True, help="scale|iterate|hold|archive")
    p_ro.add_argument("--notes", default=None)
    p_ro.add_argument("--outcome-metrics", default=None)
    return parser


def run(argv: list[str] | None = None) -> dict[str, Any]:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))
    if args.cmd == "validate-config":
        return validate_settings(load_settings(args.config))

    store = SqliteRunStore(Path(args.db)) if args.db else None
    eng = EconomyEngine(
        config_path=args.config,
        store=store,
        output_dir=args.output_dir,
        write_artifacts=bool(args.output_dir),
    )
    context = _context(args)
    metrics = _load_json(args.metrics, {})
    now = _parse_now(args.now)

    if args.cmd == "evaluate":
        return eng.evaluate(
            context,
            metrics,
            mode=args.mode,
            objective=args.objective,
            cadence_hours=_opt_int("cadence_hours", args.cadence_hours),
            now=now,
        )
    if args.cmd == "execute":
        return eng.execute_recommendation(
            context,
            metrics,
            args.recommendation,
            mode=args.mode,
            dry_run=bool(args.dry_run),
            persist=not args.no_persist,
            now=now,
        )
    if args.cmd == "autorun":
        return eng.autorun(
            context,
            metrics,
            mode=args.mode,
            max_actions=_opt_int("max_actions", args.max_actions),
            dry_run=bool(args.dry_run),
            persist=not args.no_persist,
            force=bool(args.force),
            now=now,
        )
    if args.cmd == "strategy-loop":
        return eng.run_strategy_loop(
            context,
            metrics,
            mode=args.mode,
            objective=args.objective,
            cadence_hours=_opt_int("cadence_hours", args.cadence_hours),
            max_actions=_opt_int("max_actions", args.max_actions),
            self_heal=bool(args.self_heal),
            execute_recovery=bool(args.execute_recovery),
            execute_window=bool(args.execute_window),
            dry_run=bool(args.dry_run),
            persist=not args.no_persist,
            force=bool(args.force),
            now=now,
        )
    if args.cmd == "close-stale":
        return eng.close_stale_runs(
            context,
            metrics,
            mode=args.mode,
            stale_after_hours=_opt_int("stale_after_hours", args.stale_after_hours),
            max_runs=_opt_int("max_runs", args.max_runs),
            dry_run=bool(args.dry_run),
            persist=not args.no_persist,
            note_prefix=args.note_prefix,
            now=now,
        )
    if args.cmd == "record-outcome":
        return eng.record_outcome(
            context,
            metrics,
            args.run_id,
            decision=args.decision,
            notes=args.notes,
            outcome_metrics=_load_json(args.outcome_metrics, {}),
            mode=args.mode,
            now=now,
        )
    raise ValueError(f"Unknown command: {args.cmd}")


def main(argv: list[str] | None = None) -> int:
    try:
        out = run(argv)
    except EconomyEngineError as exc:
        print(json.dumps({"ok": False, "error": type(exc).__name__, "message": str(exc)}, ensure_ascii=False))
        return 2
    print(json.dumps(out, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
