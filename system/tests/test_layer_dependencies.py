from __future__ import annotations

import ast
from pathlib import Path
import sys
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))


class LayerDependencyTests(unittest.TestCase):
    def test_internal_dependency_whitelist(self) -> None:
        root = Path(__file__).resolve().parents[1] / "src" / "economy_engine"
        allow: dict[str, set[str]] = {
            "models": {"models"},
            "errors": {"errors"},
            "config": {"config", "models", "errors"},
            "data": {"data", "models", "errors"},
            "signal": {"signal", "models", "config", "errors"},
            "policy": {"policy", "models"},
            "review": {"review", "models"},
            "research": {"research", "models", "policy"},
            "orchestration": {
                "orchestration",
                "models",
                "errors",
                "config",
                "data",
                "signal",
                "policy",
                "review",
                "research",
            },
            "reporting": {"reporting", "models", "data", "orchestration"},
            "engine": {
                "engine",
                "config",
                "data",
                "errors",
                "models",
                "orchestration",
                "policy",
                "reporting",
                "research",
                "review",
                "signal",
            },
            "cli": {"cli", "engine", "config", "data", "models", "errors"},
        }

        violations: list[str] = []
        for path in root.rglob("*.py"):
            if "__pycache__" in path.parts:
                continue
            rel = path.relative_to(root)
            src_layer = rel.stem if len(rel.parts) == 1 else rel.parts[0]
            if src_layer not in allow:
                violations.append(f"{rel}: unknown layer {src_layer}")
                continue

            tree = ast.parse(path.read_text(encoding="utf-8"))
            for node in ast.walk(tree):
                modules: list[str] = []
                if isinstance(node, ast.Import):
                    modules = [alias.name for alias in node.names]
                elif isinstance(node, ast.ImportFrom):
                    modules = [node.module or ""]
                for module in modules:
                    if module.startswith("economy_engine."):
                        dep_layer = module.split(".")[1]
                        if dep_layer not in allow[src_layer]:
                            violations.append(f"{rel}: {src_layer} -> {dep_layer}")

        self.assertEqual([], violations, "cross-layer imports:\n" + "\n".join(violations))

    def test_pure_layers_do_no_io(self) -> None:
        root = Path(__file__).resolve().parents[1] / "src" / "economy_engine"
        banned = {"sqlite3", "pandas", "yaml"}
        for layer in ("signal", "policy", "research"):
            for path in (root / layer).rglob("*.py"):
                tree = ast.parse(path.read_text(encoding="utf-8"))
                for node in ast.walk(tree):
                    names: list[str] = []
                    if isinstance(node, ast.Import):
                        names = [alias.name.split(".")[0] for alias in node.names]
                    elif isinstance(node, ast.ImportFrom) and node.module:
                        names = [node.module.split(".")[0]]
                    self.assertFalse(banned.intersection(names), f"{path.name} imports {names}")


if __name__ == "__main__":
    unittest.main()
