from economy_engine.policy.backlog import build_backlog, last_execution, select_execution_items
from economy_engine.policy.decision import (
    DEFAULT_MODE_LIMITS,
    ModeLimits,
    PolicyParams,
    build_decision_policy,
    clamp_int,
    tighten_policy,
)

__all__ = [
    "DEFAULT_MODE_LIMITS",
    "ModeLimits",
    "PolicyParams",
    "build_backlog",
    "build_decision_policy",
    "clamp_int",
    "last_execution",
    "select_execution_items",
    "tighten_policy",
]
