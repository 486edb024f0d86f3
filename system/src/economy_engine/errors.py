from __future__ import annotations


class EconomyEngineError(Exception):
    """Base class for every error raised by the decision loop."""


class ValidationError(EconomyEngineError, ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class ConfigError(EconomyEngineError):
    def __init__(self, issues: list[str]) -> None:
        super().__init__("invalid configuration: " + "; ".join(issues))
        self.issues = list(issues)


class FeatureDisabledError(EconomyEngineError):
    def __init__(self, feature: str) -> None:
        super().__init__(f"feature disabled: {feature}")
        self.feature = feature


class RunStoreError(EconomyEngineError):
    """Persistence failure for one run create/update call."""

    def __init__(self, message: str, *, run_id: str | None = None, recommendation_id: str | None = None) -> None:
        super().__init__(message)
        self.run_id = run_id
        self.recommendation_id = recommendation_id


class RunNotFoundError(RunStoreError):
    def __init__(self, story_id: str, run_id: str) -> None:
        super().__init__(f"run not found: story={story_id} run={run_id}", run_id=run_id)
        self.story_id = story_id
