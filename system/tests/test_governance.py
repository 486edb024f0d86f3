from __future__ import annotations

from pathlib import Path
import sys
import unittest

import numpy as np

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from economy_engine.models import GovernanceStatus, OutcomeDecision
from economy_engine.orchestration import (
    GovernanceThresholds,
    apply_governance_to_policy,
    build_governance_report,
)
from economy_engine.orchestration.governance import is_risky_outcome
from economy_engine.review import build_learning_report
from tests.helpers import NOW, healthy_history, make_governance, make_policy, make_run, stale_history


def _report(history, thresholds=None):
    learning = build_learning_report(history, NOW)
    return build_governance_report(history, learning, make_policy(), None, NOW, thresholds)


class GovernanceTests(unittest.TestCase):
    def test_empty_history_is_healthy(self) -> None:
        report = _report([])
        self.assertEqual(report.status, GovernanceStatus.HEALTHY)
        self.assertEqual(report.governance_score, 82)
        self.assertTrue(report.allow_autorun)
        self.assertEqual((report.max_actions_cap, report.cooldown_floor_hours), (5, 6))

    def test_stale_debt_pauses_autorun(self) -> None:
        report = _report(stale_history())
        self.assertEqual(report.status, GovernanceStatus.PAUSED)
        self.assertEqual(report.stale_open_runs, 4)
        self.assertLess(report.governance_score, 35)
        self.assertFalse(report.allow_autorun)
        self.assertEqual((report.max_actions_cap, report.cooldown_floor_hours), (1, 18))
        self.assertTrue(any("Hard pause" in r for r in report.reasons))

    def test_two_stale_runs_cap_at_watch(self) -> None:
        history = [make_run("a", hours_ago=30), make_run("b", hours_ago=40)]
        report = _report(history)
        self.assertEqual(report.status, GovernanceStatus.WATCH)
        self.assertEqual(report.governance_score, 69)
        self.assertEqual((report.max_actions_cap, report.cooldown_floor_hours), (2, 12))

    def test_abandoned_run_pauses(self) -> None:
        report = _report([make_run("old", hours_ago=130)])
        self.assertEqual(report.status, GovernanceStatus.PAUSED)
        self.assertEqual(report.longest_open_run_hours, 130.0)

    def test_healthy_history_scores_full(self) -> None:
        report = _report(healthy_history(5))
        self.assertEqual(report.status, GovernanceStatus.HEALTHY)
        self.assertEqual(report.governance_score, 100)
        self.assertEqual(report.risky_outcome_rate, 0.0)
        self.assertTrue(any("controlled scale tests" in r for r in report.recommendations))

    def test_constraints_are_monotonic_in_score(self) -> None:
        rng = np.random.default_rng(11)
        decisions = list(OutcomeDecision)
        reports = []
        for trial in range(60):
            history = []
            for i in range(int(rng.integers(0, 9))):
                hours = float(rng.uniform(1, 150))
                if rng.random() < 0.6:
                    history.append(
                        make_run(
                            f"t{trial}-{i}", hours_ago=hours, rec_id="x",
                            decision=decisions[int(rng.integers(0, 4))],
                            baseline=60, outcome=float(rng.uniform(45, 75)),
                        )
                    )
                else:
                    history.append(make_run(f"t{trial}-{i}", hours_ago=hours, rec_id="x"))
            history.sort(key=lambda r: r.created_at, reverse=True)
            reports.append(_report(history))

        statuses = {r.status for r in reports}
        self.assertGreater(len(statuses), 1)
        for a in reports:
            for b in reports:
                if a.governance_score <= b.governance_score:
                    self.assertLessEqual(a.max_actions_cap, b.max_actions_cap)
                    self.assertGreaterEqual(a.cooldown_floor_hours, b.cooldown_floor_hours)

    def test_thresholds_from_config(self) -> None:
        thr = GovernanceThresholds.from_config({"watch_max_actions_cap": 3, "paused_stale_runs": 6, "unknown": 1})
        self.assertEqual(thr.watch_max_actions_cap, 3)
        self.assertEqual(thr.paused_stale_runs, 6)
        self.assertEqual(thr.healthy_score, 70)
        report = _report(stale_history(), thr)
        self.assertNotEqual(report.status, GovernanceStatus.PAUSED)

    def test_risky_outcomes(self) -> None:
        self.assertTrue(is_risky_outcome(make_run("a", hours_ago=5, decision=OutcomeDecision.HOLD, outcome=70)))
        self.assertTrue(is_risky_outcome(make_run("b", hours_ago=5, decision=OutcomeDecision.ITERATE, outcome=58)))
        self.assertFalse(is_risky_outcome(make_run("c", hours_ago=5, decision=OutcomeDecision.ITERATE, outcome=59)))


class ApplyGovernanceTests(unittest.TestCase):
    def test_watch_tightens_policy(self) -> None:
        policy = make_policy(max_actions=3, cooldown_hours=8, confidence=60)
        governed = apply_governance_to_policy(policy, make_governance(GovernanceStatus.WATCH))
        self.assertEqual(governed.max_actions_per_cycle, 2)
        self.assertEqual(governed.cooldown_hours, 12)
        self.assertEqual(governed.confidence, 54)

    def test_paused_adds_force_guardrail(self) -> None:
        governed = apply_governance_to_policy(make_policy(confidence=20), make_governance(GovernanceStatus.PAUSED))
        self.assertEqual(governed.max_actions_per_cycle, 1)
        self.assertEqual(governed.confidence, 15)
        self.assertTrue(any("force-run" in g for g in governed.guardrails))

    def test_healthy_keeps_tighter_policy(self) -> None:
        policy = make_policy(max_actions=1, cooldown_hours=20)
        governed = apply_governance_to_policy(policy, make_governance(GovernanceStatus.HEALTHY))
        self.assertEqual((governed.max_actions_per_cycle, governed.cooldown_hours), (1, 20))


if __name__ == "__main__":
    unittest.main()
