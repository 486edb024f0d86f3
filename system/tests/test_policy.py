from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from pathlib import Path
import sys
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from economy_engine.models import AutonomyMode, BacklogStatus, OutcomeDecision, Priority
from economy_engine.policy import build_backlog, build_decision_policy, select_execution_items, tighten_policy
from economy_engine.signal import build_automation_plan
from tests.helpers import (
    GAP_METRICS,
    NOW,
    STEADY_METRICS,
    make_backlog,
    make_context,
    make_item,
    make_policy,
    make_run,
)


class DecisionPolicyTests(unittest.TestCase):
    def test_assist_without_history_defaults_to_iterate(self) -> None:
        plan = build_automation_plan(make_context(), GAP_METRICS, [], NOW)
        policy = build_decision_policy(AutonomyMode.ASSIST, plan, [], NOW)
        self.assertEqual(policy.recommended_outcome, OutcomeDecision.ITERATE)
        self.assertEqual(policy.confidence, 40)
        self.assertEqual(policy.max_actions_per_cycle, 2)
        # risk triggers raise the assist cooldown to the risk floor
        self.assertEqual(policy.cooldown_hours, 12)
        self.assertGreater(policy.cooldown_hours, 0)

    def test_majority_outcome_drives_confidence(self) -> None:
        history = [
            make_run(f"seed-{i}", hours_ago=3 + i * 10, rec_id="x", decision=OutcomeDecision.SCALE)
            for i in range(3)
        ]
        plan = build_automation_plan(make_context(), STEADY_METRICS, history, NOW)
        policy = build_decision_policy(AutonomyMode.ASSIST, plan, history, NOW)
        self.assertEqual(policy.recommended_outcome, OutcomeDecision.SCALE)
        self.assertEqual(policy.confidence, 75)
        self.assertTrue(any("Majority" in x for x in policy.rationale))

    def test_two_high_risk_triggers_downgrade_scale(self) -> None:
        history = [
            make_run(f"seed-{i}", hours_ago=3 + i * 10, rec_id="x", decision=OutcomeDecision.SCALE)
            for i in range(3)
        ]
        metrics = dict(GAP_METRICS, retentionPotential=55)
        plan = build_automation_plan(make_context(), metrics, history, NOW)
        policy = build_decision_policy(AutonomyMode.ASSIST, plan, history, NOW)
        self.assertEqual(policy.recommended_outcome, OutcomeDecision.ITERATE)
        self.assertTrue(any("downgraded" in x for x in policy.rationale))

    def test_manual_mode_limits(self) -> None:
        plan = build_automation_plan(make_context(), GAP_METRICS, [], NOW)
        policy = build_decision_policy(AutonomyMode.MANUAL, plan, [], NOW)
        self.assertEqual(policy.max_actions_per_cycle, 1)
        self.assertEqual(policy.cooldown_hours, 18)
        self.assertTrue(any(g.startswith("Manual mode") for g in policy.guardrails))

    def test_tighten_policy_never_loosens(self) -> None:
        policy = make_policy(max_actions=2, cooldown_hours=12)
        loose = tighten_policy(policy, max_actions_cap=5, cooldown_floor_hours=6)
        self.assertEqual((loose.max_actions_per_cycle, loose.cooldown_hours), (2, 12))
        tight = tighten_policy(policy, max_actions_cap=1, cooldown_floor_hours=18)
        self.assertEqual((tight.max_actions_per_cycle, tight.cooldown_hours), (1, 18))
        self.assertEqual(policy.max_actions_per_cycle, 2)


class BacklogTests(unittest.TestCase):
    def _recent_stabilize_history(self):
        return [
            make_run(
                "seed-1", hours_ago=3, completed_hours_ago=2, rec_id="stabilize-core-loop",
                decision=OutcomeDecision.ITERATE,
            )
        ]

    def test_recent_execution_is_cooling_down(self) -> None:
        history = self._recent_stabilize_history()
        plan = build_automation_plan(make_context(), GAP_METRICS, history, NOW)
        backlog = build_backlog(AutonomyMode.ASSIST, plan, make_policy(cooldown_hours=12), history, NOW)
        item = backlog.item("stabilize-core-loop")
        self.assertEqual(item.status, BacklogStatus.COOLDOWN)
        self.assertEqual(item.reason, "Cooling down for 10h.")
        self.assertEqual(item.cooldown_until, NOW - timedelta(hours=2) + timedelta(hours=12))
        self.assertEqual(item.last_executed_at, NOW - timedelta(hours=2))

    def test_zero_cooldown_makes_item_ready(self) -> None:
        history = self._recent_stabilize_history()
        plan = build_automation_plan(make_context(), GAP_METRICS, history, NOW)
        backlog = build_backlog(AutonomyMode.ASSIST, plan, make_policy(cooldown_hours=0), history, NOW)
        item = backlog.item("stabilize-core-loop")
        self.assertEqual(item.status, BacklogStatus.READY)
        self.assertIsNone(item.cooldown_until)

    def test_scores_and_order(self) -> None:
        history = [make_run("seed-1", hours_ago=3, completed_hours_ago=2, rec_id="x", decision=OutcomeDecision.ITERATE)]
        metrics = dict(GAP_METRICS, retentionPotential=55)
        plan = build_automation_plan(make_context(), metrics, history, NOW)
        backlog = build_backlog(AutonomyMode.ASSIST, plan, make_policy(), history, NOW)
        self.assertEqual([x.recommendation_id for x in backlog.items], ["stabilize-core-loop", "run-merch-probe"])
        # high priority + two triggers + ready boost
        self.assertEqual(backlog.items[0].score, 128.0)
        self.assertEqual(backlog.items[1].score, 92.0)

    def test_merch_plan_without_candidate_is_blocked(self) -> None:
        history = self._recent_stabilize_history()
        plan = build_automation_plan(make_context(merch=False), GAP_METRICS, history, NOW)
        backlog = build_backlog(AutonomyMode.ASSIST, plan, make_policy(), history, NOW)
        item = backlog.item("run-merch-probe")
        self.assertEqual(item.status, BacklogStatus.BLOCKED)
        self.assertIn("merch candidate", item.reason)

    def test_summary_counts_every_item_once(self) -> None:
        history = self._recent_stabilize_history()
        roster = {"continuity_director": "u-continuity"}
        metrics = dict(GAP_METRICS, roleCoverage=70)
        plan = build_automation_plan(make_context(roster=roster), metrics, history, NOW)
        backlog = build_backlog(AutonomyMode.ASSIST, plan, make_policy(), history, NOW)
        s = backlog.summary
        self.assertEqual(s["total"], len(backlog.items))
        self.assertEqual(s["total"], s["ready"] + s["blocked"] + s["cooldown"])
        self.assertGreater(s["blocked"], 0)
        self.assertGreater(s["cooldown"], 0)

    def test_select_execution_items_takes_top_ready(self) -> None:
        backlog = make_backlog(
            [
                make_item("a", 120, priority=Priority.HIGH),
                make_item("b", 95),
                make_item("c", 40, status=BacklogStatus.BLOCKED),
            ]
        )
        self.assertEqual([x.recommendation_id for x in select_execution_items(backlog, 1)], ["a"])
        self.assertEqual([x.recommendation_id for x in select_execution_items(backlog, 5)], ["a", "b"])

    def test_select_execution_items_bounds_max_actions(self) -> None:
        items = [make_item(f"r{i}", 100 - i) for i in range(7)]
        backlog = make_backlog(items, make_policy(max_actions=2))
        self.assertEqual(len(select_execution_items(backlog)), 2)
        self.assertEqual(len(select_execution_items(backlog, 9)), 5)
        self.assertEqual(len(select_execution_items(backlog, 0)), 1)

    def test_cooldown_never_selected(self) -> None:
        backlog = make_backlog([make_item("a", 150, status=BacklogStatus.COOLDOWN), make_item("b", 60)])
        self.assertEqual([x.recommendation_id for x in select_execution_items(backlog, 3)], ["b"])

    def test_replacing_policy_cooldown_rescores(self) -> None:
        history = self._recent_stabilize_history()
        plan = build_automation_plan(make_context(), GAP_METRICS, history, NOW)
        policy = make_policy(cooldown_hours=12)
        cooling = build_backlog(AutonomyMode.ASSIST, plan, policy, history, NOW)
        ready = build_backlog(AutonomyMode.ASSIST, plan, replace(policy, cooldown_hours=1), history, NOW)
        self.assertLess(cooling.item("stabilize-core-loop").score, ready.item("stabilize-core-loop").score)


if __name__ == "__main__":
    unittest.main()
