from __future__ import annotations

import contextlib
import io
import json
from pathlib import Path
import sys
import tempfile
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from economy_engine.cli import main, run
from tests.helpers import FULL_ROSTER, GAP_METRICS


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        self.tmp = Path(td.name)
        self.db = self.tmp / "runs.db"

    def _story_args(self, *extra: str) -> list[str]:
        return [
            "--story", "story-1",
            "--metrics", json.dumps(GAP_METRICS),
            "--roster", json.dumps(FULL_ROSTER),
            "--merch", json.dumps([{"id": "merch-1", "title": "Enamel pin drop", "channels": ["shop"]}]),
            "--now", "2026-03-02T12:00:00Z",
            *extra,
        ]

    def _main(self, argv: list[str]) -> tuple[int, dict]:
        buf = io.StringIO()
        with contextlib.redirect_stdout(buf):
            code = main(argv)
        return code, json.loads(buf.getvalue())

    def test_validate_config(self) -> None:
        code, out = self._main(["validate-config"])
        self.assertEqual(code, 0)
        self.assertTrue(out["ok"])

    def test_evaluate_reads_metrics_file(self) -> None:
        metrics = self.tmp / "metrics.json"
        metrics.write_text(json.dumps(GAP_METRICS), encoding="utf-8")
        out = run(["--db", str(self.db), "evaluate", *self._story_args("--metrics", str(metrics))])
        state = out["state"]
        self.assertEqual(state["automation"]["metrics"]["combinedScore"], 52.0)
        fired = {t["id"] for t in state["automation"]["triggers"] if t["status"] == "fired"}
        self.assertIn("foundation_gap", fired)

    def test_execute_then_close(self) -> None:
        code, out = self._main(
            ["--db", str(self.db), "execute", *self._story_args("--recommendation", "stabilize-core-loop")]
        )
        self.assertEqual(code, 0)
        run_id = out["execution"]["records"][0]["run_id"]
        self.assertEqual(run_id, "run-000001")

        code, out = self._main(
            [
                "--db", str(self.db), "record-outcome",
                *self._story_args("--run-id", run_id, "--decision", "iterate", "--outcome-metrics", '{"combinedScore": 58}'),
            ]
        )
        self.assertEqual(code, 0)
        self.assertEqual(out["run"]["outcome_decision"], "iterate")
        self.assertEqual(out["run"]["outcome_metrics"], {"combinedScore": 58.0})

    def test_artifacts_written_with_output_dir(self) -> None:
        out_dir = self.tmp / "out"
        code, _ = self._main(["--db", str(self.db), "--output-dir", str(out_dir), "evaluate", *self._story_args()])
        self.assertEqual(code, 0)
        self.assertTrue((out_dir / "story-1_evaluate.json").exists())
        self.assertTrue((out_dir / "story-1_evaluate.md").exists())

    def test_engine_errors_exit_with_code_2(self) -> None:
        code, out = self._main(["--db", str(self.db), "autorun", *self._story_args("--mode", "manual")])
        self.assertEqual(code, 2)
        self.assertFalse(out["ok"])
        self.assertEqual(out["error"], "ValidationError")

        code, out = self._main(
            ["--db", str(self.db), "record-outcome", *self._story_args("--run-id", "run-404", "--decision", "hold")]
        )
        self.assertEqual(code, 2)
        self.assertEqual(out["error"], "RunNotFoundError")

    def test_non_integer_arguments_are_validation_errors(self) -> None:
        for extra in (("--horizon-days", "two weeks"), ("--max-actions", "lots")):
            code, out = self._main(["--db", str(self.db), "autorun", *self._story_args(*extra)])
            self.assertEqual(code, 2)
            self.assertEqual(out["error"], "ValidationError")
            self.assertIn(extra[0][2:].replace("-", "_"), out["message"])


if __name__ == "__main__":
    unittest.main()
