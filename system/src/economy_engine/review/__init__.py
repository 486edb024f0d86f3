from economy_engine.review.learning import (
    LearningParams,
    apply_learning_to_policy,
    build_learning_report,
    history_frame,
    is_positive_outcome,
    is_stale_open,
)

__all__ = [
    "LearningParams",
    "apply_learning_to_policy",
    "build_learning_report",
    "history_frame",
    "is_positive_outcome",
    "is_stale_open",
]
