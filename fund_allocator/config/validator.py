"""
Portfolio configuration: loading, schema checks and defaults.

A configuration file looks like:

    target_buy: 6000.0
    funds:
      - {symbol: VTI, shares: 200, price: 216.30, target_proportion: 0.7}
      - {symbol: BND, shares: 100, target_proportion: 0.3}
    solver: {time_limit_seconds: 30}

Problems are collected rather than raised one at a time, so a single run
reports everything wrong with a file.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/portfolio.yaml"


class ConfigValidationError(Exception):
    """The configuration file has one or more errors."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


@dataclass
class ValidationResult:
    """Errors make a configuration unusable; warnings are only logged."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid


FUND_SCHEMA = {
    "symbol": {"type": str, "required": True},
    "shares": {"type": int, "default": 0, "min": 0},
    "price": {"type": float, "min_exclusive": 0},
    "target_proportion": {"type": float, "required": True, "min": 0.0, "max": 1.0},
}

# Leaf rules carry a "type"; any other mapping is a nested section
CONFIG_SCHEMA = {
    "target_buy": {"type": float, "required": True, "min": 0.0},
    "funds": {"type": list, "required": True, "min_length": 1, "items": FUND_SCHEMA},
    "proportion_tolerance": {"type": float, "default": 1e-6, "min": 0.0, "max": 0.1},
    "solver": {
        "tolerance": {"type": float, "default": 1e-9, "min": 0.0, "max": 0.01},
        "time_limit_seconds": {"type": float, "default": 30.0, "min_exclusive": 0},
        "max_iterations": {"type": int, "default": 50, "min": 1, "max": 1000},
        "mip_rel_gap": {"type": float, "default": 0.0, "min": 0.0, "max": 1.0},
    },
    "market_data": {
        "history_period": {"type": str, "default": "5d", "choices": ["1d", "5d", "1mo", "3mo"]},
        "max_attempts": {"type": int, "default": 3, "min": 1, "max": 10},
        "base_delay": {"type": float, "default": 1.0, "min": 0.0, "max": 60.0},
        "request_timeout": {"type": float, "default": 10.0, "min_exclusive": 0},
        "alpha_vantage_key": {"type": str, "env_var": "ALPHA_VANTAGE_KEY"},
    },
    "logging": {
        "level": {"type": str, "default": "INFO", "choices": ["DEBUG", "INFO", "WARNING", "ERROR"]},
        "file": {"type": str},
        "json_format": {"type": bool, "default": False},
    },
}


class ConfigValidator:
    """Checks a loaded configuration against a schema."""

    def __init__(self, schema: Optional[dict] = None):
        self.schema = schema or CONFIG_SCHEMA

    def validate(self, config: Any) -> ValidationResult:
        """
        Check every field, then the relationships between funds.

        Args:
            config: Parsed configuration, normally a dict from YAML

        Returns:
            ValidationResult listing every error and warning found
        """
        result = ValidationResult(valid=True)

        if not isinstance(config, dict):
            result.errors.append(
                f"Configuration must be a mapping, got {type(config).__name__}"
            )
        else:
            self._check_mapping(config, self.schema, "", result)
            _check_funds(config, result)

        result.valid = not result.errors
        return result

    def _check_mapping(self, values: Any, schema: dict, path: str, result: ValidationResult) -> None:
        if not isinstance(values, dict):
            result.errors.append(f"{path}: Expected a mapping, got {type(values).__name__}")
            return

        for key, rules in schema.items():
            key_path = _join(path, key)
            if _is_section(rules):
                self._check_mapping(values.get(key) or {}, rules, key_path, result)
            else:
                self._check_value(values.get(key), rules, key_path, result)

        for key in values:
            if key not in schema:
                result.warnings.append(f"{_join(path, key)}: Unknown setting ignored")

    def _check_value(self, value: Any, rules: dict, path: str, result: ValidationResult) -> None:
        if _is_blank(value) and rules.get("env_var"):
            value = os.getenv(rules["env_var"])

        if _is_blank(value):
            if rules.get("required"):
                result.errors.append(f"{path}: Required field is missing")
            return

        value, type_error = _coerce(value, rules["type"])
        if type_error:
            result.errors.append(f"{path}: {type_error}")
            return

        if _is_number(value):
            result.errors.extend(f"{path}: {e}" for e in _range_errors(value, rules))

        if "choices" in rules and value not in rules["choices"]:
            result.errors.append(f"{path}: Value must be one of {rules['choices']}")

        if isinstance(value, list):
            if len(value) < rules.get("min_length", 0):
                result.errors.append(f"{path}: List must have at least {rules['min_length']} items")
            for index, item in enumerate(value if "items" in rules else []):
                self._check_mapping(item, rules["items"], f"{path}[{index}]", result)

    def apply_defaults(self, config: dict) -> dict:
        """Return a copy of config with every missing optional field filled in."""
        return _with_defaults(config, self.schema)


def _check_funds(config: dict, result: ValidationResult) -> None:
    """Checks that need the whole fund list at once."""
    funds = config.get("funds")
    if not isinstance(funds, list):
        return
    funds = [f for f in funds if isinstance(f, dict)]

    seen: set[str] = set()
    for symbol in (str(f["symbol"]).upper() for f in funds if f.get("symbol")):
        if symbol in seen:
            result.errors.append(f"funds: Duplicate symbol {symbol}")
        seen.add(symbol)

    proportions = [f.get("target_proportion") for f in funds]
    if proportions and all(_is_number(p) for p in proportions):
        tolerance = config.get("proportion_tolerance")
        if not _is_number(tolerance):
            tolerance = CONFIG_SCHEMA["proportion_tolerance"]["default"]
        total = sum(proportions)
        if abs(total - 1.0) > tolerance:
            result.errors.append(
                f"funds: expected target_proportions to sum to 1.00, got {total:.6f}"
            )

    for f in funds:
        if f.get("target_proportion") == 0 and f.get("shares"):
            result.warnings.append(
                f"funds: {f.get('symbol')} has a target of 0 but {f['shares']} shares held; "
                f"none will be bought and nothing is sold"
            )

    if any("price" not in f for f in funds):
        result.warnings.append("funds: Some funds have no price; current prices must be downloaded")


def _coerce(value: Any, expected: type) -> tuple[Any, Optional[str]]:
    """Return (value, None), converting ints to floats and whole floats to ints,
    or (value, message) when the type is wrong."""
    if isinstance(value, bool) and expected is not bool:
        return value, f"Expected {expected.__name__}, got bool"
    if expected is float and isinstance(value, int):
        return float(value), None
    if expected is int and isinstance(value, float) and value.is_integer():
        return int(value), None
    if not isinstance(value, expected):
        return value, f"Expected {expected.__name__}, got {type(value).__name__}"
    return value, None


def _range_errors(value: float, rules: dict) -> list[str]:
    errors = []
    if "min" in rules and value < rules["min"]:
        errors.append(f"Value {value} is below minimum {rules['min']}")
    if "min_exclusive" in rules and value <= rules["min_exclusive"]:
        errors.append(f"Value {value} must be greater than {rules['min_exclusive']}")
    if "max" in rules and value > rules["max"]:
        errors.append(f"Value {value} exceeds maximum {rules['max']}")
    return errors


def _with_defaults(values: Optional[dict], schema: dict) -> dict:
    filled = dict(values or {})
    for key, rules in schema.items():
        current = filled.get(key)
        if _is_section(rules):
            filled[key] = _with_defaults(current, rules)
        elif "items" in rules and isinstance(current, list):
            filled[key] = [_with_defaults(item, rules["items"]) for item in current]
        elif current is None and "default" in rules:
            filled[key] = rules["default"]
    return filled


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _is_section(rules: dict) -> bool:
    return "type" not in rules


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict:
    """Read a YAML configuration file; an empty file reads as {}."""
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        return yaml.safe_load(f) or {}


def validate_config(config_path: str = DEFAULT_CONFIG_PATH) -> ValidationResult:
    """Check a configuration file without raising on errors."""
    return ConfigValidator().validate(load_config(config_path))


def load_and_validate_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict:
    """
    Read a configuration file for use.

    Warnings are logged. Returns the configuration with defaults applied.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigValidationError: If the configuration has errors
    """
    config = load_config(config_path)

    validator = ConfigValidator()
    result = validator.validate(config)
    if not result:
        raise ConfigValidationError(result.errors)

    for warning in result.warnings:
        logger.warning(f"Config warning: {warning}")

    return validator.apply_defaults(config)
