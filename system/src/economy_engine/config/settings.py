from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass(slots=True)
class SystemSettings:
    raw: dict[str, Any]

    @property
    def timezone(self) -> str:
        return self.raw.get("timezone", "UTC")

    @property
    def triggers(self) -> list[dict[str, Any]]:
        return self.raw.get("triggers", [])

    @property
    def policy(self) -> dict[str, Any]:
        return self.raw.get("policy", {})

    @property
    def learning(self) -> dict[str, Any]:
        return self.raw.get("learning", {})

    @property
    def governance(self) -> dict[str, Any]:
        return self.raw.get("governance", {})

    @property
    def strategy(self) -> dict[str, Any]:
        return self.raw.get("strategy", {})

    @property
    def outcome_agent(self) -> dict[str, Any]:
        return self.raw.get("outcome_agent", {})

    @property
    def features(self) -> dict[str, bool]:
        return self.raw.get("features", {})

    @property
    def paths(self) -> dict[str, str]:
        return self.raw.get("paths", {})


DEFAULT_CONFIG = Path(__file__).resolve().parents[3] / "config.yaml"


def load_settings(path: str | Path | None = None) -> SystemSettings:
    config_path = Path(path) if path else DEFAULT_CONFIG
    with config_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return SystemSettings(raw=raw)
