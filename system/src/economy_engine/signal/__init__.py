from economy_engine.signal.engine import build_automation_plan, effective_metrics
from economy_engine.signal.playbooks import PLAYBOOKS, build_queue, build_recommendations, clamp_horizon
from economy_engine.signal.triggers import (
    DEFAULT_TRIGGER_RULES,
    TriggerCondition,
    TriggerRule,
    evaluate_triggers,
    load_trigger_rules,
    loop_freshness,
)

__all__ = [
    "DEFAULT_TRIGGER_RULES",
    "PLAYBOOKS",
    "TriggerCondition",
    "TriggerRule",
    "build_automation_plan",
    "build_queue",
    "build_recommendations",
    "clamp_horizon",
    "effective_metrics",
    "evaluate_triggers",
    "load_trigger_rules",
    "loop_freshness",
]
