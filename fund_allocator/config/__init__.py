"""Configuration loading and validation."""

from .validator import (
    ConfigValidator,
    ConfigValidationError,
    load_and_validate_config,
    validate_config,
)

__all__ = [
    "ConfigValidator",
    "ConfigValidationError",
    "load_and_validate_config",
    "validate_config",
]
