from __future__ import annotations

from pathlib import Path
import sys
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from economy_engine.config import load_settings
from economy_engine.errors import ConfigError
from economy_engine.models import BacklogStatus, OutcomeDecision, TriggerStatus
from economy_engine.signal import (
    build_automation_plan,
    evaluate_triggers,
    load_trigger_rules,
    loop_freshness,
)
from tests.helpers import (
    FULL_ROSTER,
    GAP_METRICS,
    NOW,
    SCALE_METRICS,
    STEADY_METRICS,
    make_context,
    make_run,
)


def _fresh_history():
    return [make_run("seed-1", hours_ago=3, completed_hours_ago=2, rec_id="close-feedback-loop", decision=OutcomeDecision.ITERATE)]


class TriggerTests(unittest.TestCase):
    def test_missing_metric_keeps_trigger_idle(self) -> None:
        triggers = {t.id: t for t in evaluate_triggers({"combinedScore": 70.0})}
        self.assertEqual(triggers["retention_drift"].status, TriggerStatus.IDLE)
        self.assertIn("Missing metric", triggers["retention_drift"].reason)
        self.assertIsNone(triggers["retention_drift"].current)
        # primary known but required metrics absent
        self.assertEqual(triggers["scale_window"].status, TriggerStatus.IDLE)
        self.assertIn("retentionPotential", triggers["scale_window"].reason)

    def test_foundation_gap_fires_below_threshold(self) -> None:
        triggers = {t.id: t for t in evaluate_triggers({"combinedScore": 52.0})}
        gap = triggers["foundation_gap"]
        self.assertTrue(gap.fired)
        self.assertEqual(gap.severity, "high")
        self.assertEqual(gap.current, 52.0)

        at_threshold = {t.id: t for t in evaluate_triggers({"combinedScore": 58.0})}
        self.assertFalse(at_threshold["foundation_gap"].fired)

    def test_scale_window_requires_every_condition(self) -> None:
        fired = {t.id: t for t in evaluate_triggers(dict(SCALE_METRICS))}
        self.assertTrue(fired["scale_window"].fired)

        weak_merch = dict(SCALE_METRICS, merchSignal=64)
        idle = {t.id: t for t in evaluate_triggers(weak_merch)}
        self.assertFalse(idle["scale_window"].fired)

    def test_loop_freshness_ages_open_runs_faster(self) -> None:
        self.assertEqual(loop_freshness([], NOW), 0.0)
        self.assertAlmostEqual(loop_freshness([make_run("a", hours_ago=10)], NOW), 70.0)
        done = make_run("b", hours_ago=11, completed_hours_ago=10, decision=OutcomeDecision.ITERATE)
        self.assertAlmostEqual(loop_freshness([done], NOW), 90.0)
        self.assertEqual(loop_freshness([make_run("c", hours_ago=40)], NOW), 0.0)

    def test_load_trigger_rules_from_default_config(self) -> None:
        rules = load_trigger_rules(load_settings().triggers)
        self.assertEqual([r.id for r in rules][:2], ["foundation_gap", "retention_drift"])
        scale = next(r for r in rules if r.id == "scale_window")
        self.assertEqual(len(scale.requires), 3)
        # reasons fall back to the built-in table when the config row omits them
        self.assertTrue(rules[0].fired_reason)

    def test_load_trigger_rules_rejects_bad_rows(self) -> None:
        rows = [{"id": "x", "kind": "bogus", "metric_key": "unknownMetric", "threshold": "high", "direction": "up"}]
        with self.assertRaises(ConfigError) as ctx:
            load_trigger_rules(rows)
        self.assertTrue(any("triggers[0].kind" in x for x in ctx.exception.issues))
        self.assertTrue(any("metric_key" in x for x in ctx.exception.issues))


class AutomationPlanTests(unittest.TestCase):
    def test_foundation_gap_recommends_stabilization(self) -> None:
        metrics = dict(STEADY_METRICS, combinedScore=52)
        plan = build_automation_plan(make_context(), metrics, _fresh_history(), NOW)
        self.assertEqual([r.id for r in plan.recommendations], ["stabilize-core-loop"])
        rec = plan.recommendations[0]
        self.assertEqual(rec.owner_role_agent_id, "continuity_director")
        self.assertEqual(rec.trigger_ids, ["foundation_gap"])
        self.assertEqual(rec.execution.sprint_objective, "stabilize_world")
        self.assertEqual(rec.execution.horizon_days, 12)
        self.assertEqual(plan.queue[0].status, BacklogStatus.READY)
        self.assertEqual(plan.queue[0].owner_user_id, FULL_ROSTER["continuity_director"])
        self.assertEqual(plan.trigger_summary["risk_active"], 1)

    def test_empty_history_seeds_the_loop(self) -> None:
        plan = build_automation_plan(make_context(), STEADY_METRICS, [], NOW)
        stale = next(t for t in plan.triggers if t.id == "stale_execution_loop")
        self.assertTrue(stale.fired)
        self.assertIn("No creator-economy run exists yet", stale.reason)
        self.assertIn("close-feedback-loop", [r.id for r in plan.recommendations])
        self.assertNotIn("loopFreshness", plan.metrics)

    def test_missing_owner_blocks_queue_item(self) -> None:
        roster = {k: v for k, v in FULL_ROSTER.items() if k != "merch_operator"}
        plan = build_automation_plan(make_context(roster=roster), GAP_METRICS, _fresh_history(), NOW)
        queue = {q.recommendation_id: q for q in plan.queue}
        self.assertEqual(queue["run-merch-probe"].status, BacklogStatus.BLOCKED)
        self.assertIsNone(queue["run-merch-probe"].owner_user_id)
        self.assertEqual(queue["stabilize-core-loop"].status, BacklogStatus.READY)
        self.assertTrue(any("blocked by missing role ownership" in n for n in plan.notes))

    def test_scale_window_carries_merch_candidate(self) -> None:
        plan = build_automation_plan(make_context(), SCALE_METRICS, _fresh_history(), NOW)
        rec = plan.recommendation("scale-distribution-window")
        self.assertIsNotNone(rec)
        self.assertEqual(rec.execution.default_outcome_decision, OutcomeDecision.SCALE)
        self.assertEqual(rec.execution.merch_candidate_id, "merch-1")
        self.assertEqual(rec.execution.merch_channels, ["shop", "social", "events"])
        self.assertEqual(rec.execution.horizon_days, 16)

    def test_fallback_when_nothing_fires(self) -> None:
        plan = build_automation_plan(make_context(), STEADY_METRICS, _fresh_history(), NOW)
        self.assertEqual([r.id for r in plan.recommendations], ["maintain-balanced-loop"])
        fallback = plan.recommendations[0]
        self.assertEqual(fallback.trigger_ids, [])
        self.assertEqual(fallback.execution.default_outcome_decision, OutcomeDecision.HOLD)
        self.assertEqual(plan.trigger_summary["active"], 0)

    def test_current_metrics_overlay_latest_run_outcome(self) -> None:
        history = [
            make_run(
                "seed-1", hours_ago=3, completed_hours_ago=2, rec_id="close-feedback-loop",
                decision=OutcomeDecision.ITERATE, outcome=50,
            )
        ]
        plan = build_automation_plan(make_context(), {}, history, NOW)
        self.assertEqual(plan.metrics["combinedScore"], 50.0)
        overlay = build_automation_plan(make_context(), {"combinedScore": 71}, history, NOW)
        self.assertEqual(overlay.metrics["combinedScore"], 71.0)


if __name__ == "__main__":
    unittest.main()
