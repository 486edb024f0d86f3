from __future__ import annotations

from pathlib import Path
import sys
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from economy_engine.models import AutonomyMode, OutcomeDecision
from economy_engine.review import (
    apply_learning_to_policy,
    build_learning_report,
    history_frame,
    is_positive_outcome,
    is_stale_open,
)
from tests.helpers import NOW, healthy_history, make_policy, make_run


class PositiveOutcomeTests(unittest.TestCase):
    def test_each_decision_has_its_own_tolerance(self) -> None:
        def run(decision: OutcomeDecision, outcome: float | None):
            return make_run("r", hours_ago=5, rec_id="x", decision=decision, baseline=60, outcome=outcome)

        self.assertTrue(is_positive_outcome(run(OutcomeDecision.ITERATE, 60)))
        self.assertFalse(is_positive_outcome(run(OutcomeDecision.ITERATE, 59)))
        self.assertTrue(is_positive_outcome(run(OutcomeDecision.SCALE, 58)))
        self.assertFalse(is_positive_outcome(run(OutcomeDecision.SCALE, 57.5)))
        self.assertTrue(is_positive_outcome(run(OutcomeDecision.HOLD, 59)))
        self.assertFalse(is_positive_outcome(run(OutcomeDecision.HOLD, 58.5)))
        self.assertFalse(is_positive_outcome(run(OutcomeDecision.ARCHIVE, 90)))
        # without an outcome metric only scale/iterate count
        self.assertTrue(is_positive_outcome(run(OutcomeDecision.SCALE, None)))
        self.assertFalse(is_positive_outcome(run(OutcomeDecision.HOLD, None)))

    def test_stale_open_is_strictly_after_threshold(self) -> None:
        self.assertTrue(is_stale_open(make_run("a", hours_ago=20), NOW, 18))
        self.assertFalse(is_stale_open(make_run("b", hours_ago=18), NOW, 18))
        done = make_run("c", hours_ago=40, decision=OutcomeDecision.ITERATE)
        self.assertFalse(is_stale_open(done, NOW, 18))


class LearningReportTests(unittest.TestCase):
    def test_empty_history(self) -> None:
        report = build_learning_report([], NOW)
        self.assertEqual(report.total_runs, 0)
        self.assertEqual(report.overall_positive_rate, 0.0)
        self.assertEqual(report.recommended_mode, AutonomyMode.ASSIST)
        self.assertEqual(report.suggested_cooldown_hours, 16)
        self.assertEqual(report.suggested_max_actions_per_cycle, 1)
        self.assertEqual(report.recommended_outcome_bias, OutcomeDecision.ITERATE)
        self.assertEqual([x["mode"] for x in report.mode_performance], ["manual", "assist", "auto"])
        self.assertTrue(any("confidence is low" in n for n in report.notes))

    def test_strong_history_recommends_auto(self) -> None:
        report = build_learning_report(healthy_history(5), NOW)
        self.assertEqual(report.completed_runs, 5)
        self.assertEqual(report.overall_positive_rate, 1.0)
        self.assertEqual(report.avg_combined_delta, 8.0)
        self.assertEqual(report.recommended_mode, AutonomyMode.AUTO)
        self.assertEqual(report.suggested_cooldown_hours, 9)
        self.assertEqual(report.suggested_max_actions_per_cycle, 3)
        assist = next(x for x in report.mode_performance if x["mode"] == "assist")
        self.assertEqual(assist["runs"], 5)
        self.assertEqual(assist["positive_rate"], 1.0)
        self.assertEqual(report.recommendation_performance[0]["recommendation_id"], "close-feedback-loop")

    def test_failing_history_recommends_manual(self) -> None:
        history = [
            make_run(f"r{i}", hours_ago=5 + i, rec_id="x", decision=OutcomeDecision.ARCHIVE, outcome=50)
            for i in range(4)
        ]
        report = build_learning_report(history, NOW)
        self.assertEqual(report.recommended_mode, AutonomyMode.MANUAL)
        self.assertEqual(report.suggested_max_actions_per_cycle, 1)
        self.assertEqual(report.suggested_cooldown_hours, 16)

    def test_stale_runs_raise_cooldown(self) -> None:
        history = [make_run("a", hours_ago=30), make_run("b", hours_ago=40), make_run("c", hours_ago=5)]
        report = build_learning_report(history, NOW)
        self.assertEqual(report.stale_open_runs, 2)
        self.assertEqual(report.suggested_cooldown_hours, 19)
        self.assertTrue(any("stale" in n for n in report.notes))

    def test_history_frame_columns(self) -> None:
        df = history_frame(healthy_history(2) + [make_run("open", hours_ago=1)])
        self.assertEqual(list(df.columns), ["id", "mode", "recommendation_id", "completed", "decision", "positive", "delta"])
        self.assertEqual(int(df["completed"].sum()), 2)
        self.assertEqual(df.loc[df["id"] == "open", "mode"].iloc[0], "manual")


class ApplyLearningTests(unittest.TestCase):
    def test_learning_is_bounded_by_mode_limits(self) -> None:
        report = build_learning_report(healthy_history(5), NOW)
        policy = make_policy(max_actions=2, cooldown_hours=12, confidence=60)
        tuned = apply_learning_to_policy(
            policy, report, max_actions_cap=2, cooldown_floor_hours=10, lock_mode=AutonomyMode.ASSIST
        )
        self.assertEqual(tuned.mode, AutonomyMode.ASSIST)
        self.assertEqual(tuned.max_actions_per_cycle, 2)
        self.assertEqual(tuned.cooldown_hours, 10)
        # 60 * 0.7 + 100 * 0.3 + 3
        self.assertEqual(tuned.confidence, 75)
        self.assertEqual(policy.cooldown_hours, 12)

    def test_unlocked_mode_follows_learning(self) -> None:
        report = build_learning_report(healthy_history(5), NOW)
        tuned = apply_learning_to_policy(make_policy(), report, max_actions_cap=5, cooldown_floor_hours=4)
        self.assertEqual(tuned.mode, AutonomyMode.AUTO)
        self.assertEqual(tuned.max_actions_per_cycle, 3)
        self.assertEqual(tuned.cooldown_hours, 9)


if __name__ == "__main__":
    unittest.main()
