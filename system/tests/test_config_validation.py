from __future__ import annotations

import copy
import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from economy_engine.config import (
    SystemSettings,
    assert_valid_settings,
    load_settings,
    validate_settings,
    validate_trigger_table,
)
from economy_engine.errors import ConfigError


class ConfigValidationTests(unittest.TestCase):
    def _raw(self) -> dict:
        return copy.deepcopy(load_settings().raw)

    def _error_paths(self, raw: dict) -> list[str]:
        out = validate_settings(SystemSettings(raw=raw))
        return [x["path"] for x in out["errors"]]

    def test_default_config_is_valid(self) -> None:
        out = validate_settings(load_settings())
        self.assertTrue(out["ok"], out["errors"])
        self.assertEqual(out["summary"]["errors"], 0)

    def test_empty_config_falls_back_to_defaults(self) -> None:
        self.assertTrue(validate_settings(SystemSettings(raw={}))["ok"])

    def test_trigger_table_errors(self) -> None:
        rows = [
            {"id": "a", "kind": "risk", "metric_key": "combinedScore", "threshold": 50, "direction": "below", "label": "A"},
            {"id": "a", "kind": "panic", "metric_key": "vibes", "threshold": "low", "direction": "sideways"},
            {
                "id": "b", "kind": "opportunity", "metric_key": "loopFreshness", "threshold": 10, "direction": "above",
                "label": "B", "requires": [{"metric_key": "merchSignal", "threshold": 1, "direction": "up"}],
            },
        ]
        issues = validate_trigger_table(rows)
        errors = {x.path for x in issues if x.level == "error"}
        self.assertEqual(
            errors,
            {
                "triggers[1].id",
                "triggers[1].kind",
                "triggers[1].metric_key",
                "triggers[1].threshold",
                "triggers[1].direction",
                "triggers[2].requires[0].direction",
            },
        )
        self.assertIn("triggers[1].label", {x.path for x in issues if x.level == "warning"})
        self.assertEqual(validate_trigger_table("nope")[0].path, "triggers")

    def test_governance_caps_must_not_loosen(self) -> None:
        raw = self._raw()
        raw["governance"]["watch_max_actions_cap"] = 5
        raw["governance"]["paused_cooldown_floor_hours"] = 4
        paths = self._error_paths(raw)
        self.assertIn("governance.*_max_actions_cap", paths)
        self.assertIn("governance.*_cooldown_floor_hours", paths)

    def test_scalar_ranges(self) -> None:
        raw = self._raw()
        raw["timezone"] = "Mars/Olympus"
        raw["policy"]["modes"]["turbo"] = {"max_actions": 9}
        raw["policy"]["modes"]["assist"]["max_actions"] = 7
        raw["outcome_agent"]["stale_after_hours"] = 3
        raw["outcome_agent"]["max_runs"] = 0
        raw["strategy"]["cadence_options"] = [6, 30]
        raw["strategy"]["default_cadence_hours"] = 48
        raw["features"]["governance"] = "yes"
        paths = self._error_paths(raw)
        for expected in (
            "timezone",
            "policy.modes.turbo",
            "policy.modes.assist.max_actions",
            "outcome_agent.stale_after_hours",
            "outcome_agent.max_runs",
            "strategy.cadence_options[1]",
            "strategy.default_cadence_hours",
            "features.governance",
        ):
            self.assertIn(expected, paths)

    def test_unsorted_cadence_is_a_warning(self) -> None:
        raw = self._raw()
        raw["strategy"]["cadence_options"] = [12, 6, 24]
        out = validate_settings(SystemSettings(raw=raw))
        self.assertTrue(out["ok"])
        self.assertEqual([x["path"] for x in out["warnings"]], ["strategy.cadence_options"])

    def test_assert_valid_settings_raises(self) -> None:
        raw = self._raw()
        raw["learning"]["min_cooldown_hours"] = 30
        with self.assertRaises(ConfigError) as ctx:
            assert_valid_settings(SystemSettings(raw=raw))
        self.assertTrue(any("learning.*_cooldown_hours" in x for x in ctx.exception.issues))
        assert_valid_settings(load_settings())


if __name__ == "__main__":
    unittest.main()
