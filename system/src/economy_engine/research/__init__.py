from economy_engine.research.optimizer import (
    OptimizerResult,
    apply_optimizer_profile,
    build_optimizer_report,
    build_profiles,
    optimize,
    recommend_objective,
)

__all__ = [
    "OptimizerResult",
    "apply_optimizer_profile",
    "build_optimizer_report",
    "build_profiles",
    "optimize",
    "recommend_objective",
]
