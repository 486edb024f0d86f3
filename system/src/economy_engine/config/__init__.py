from economy_engine.config.features import FeatureSet
from economy_engine.config.settings import DEFAULT_CONFIG, SystemSettings, load_settings
from economy_engine.config.validation import (
    ValidationIssue,
    assert_valid_settings,
    validate_settings,
    validate_trigger_table,
)

__all__ = [
    "DEFAULT_CONFIG",
    "FeatureSet",
    "SystemSettings",
    "ValidationIssue",
    "assert_valid_settings",
    "load_settings",
    "validate_settings",
    "validate_trigger_table",
]
