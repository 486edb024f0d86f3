from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping


@dataclass(slots=True, frozen=True)
class FeatureSet:
    """Stage toggles for one pipeline instance.

    Passed into the engine instead of living in module state, so two stories can be
    evaluated side by side under different toggles.
    """

    policy_learning: bool = True
    governance: bool = True
    optimizer: bool = True
    strategy_loop: bool = True
    window_loop: bool = True
    self_healing: bool = True
    outcome_agent: bool = True
    autorun: bool = True

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "FeatureSet":
        raw = raw or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: bool(v) for k, v in raw.items() if k in known})

    def enabled(self, name: str) -> bool:
        return bool(getattr(self, name, False))

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)
