"""Tests for configuration validation."""

import pytest
import yaml

from fund_allocator.config.validator import (
    ConfigValidationError,
    ConfigValidator,
    load_and_validate_config,
    validate_config,
)


@pytest.fixture
def valid_config():
    """A minimal valid configuration."""
    return {
        "target_buy": 6000.0,
        "funds": [
            {"symbol": "BND", "shares": 100, "price": 85.40, "target_proportion": 0.15},
            {"symbol": "VTI", "shares": 200, "price": 216.30, "target_proportion": 0.70},
            {"symbol": "VXUS", "shares": 100, "price": 65.66, "target_proportion": 0.15},
        ],
    }


@pytest.fixture
def validator():
    return ConfigValidator()


def write_config(tmp_path, config) -> str:
    path = tmp_path / "portfolio.yaml"
    path.write_text(yaml.safe_dump(config))
    return str(path)


class TestConfigValidator:
    """Tests for schema validation."""

    def test_valid_config(self, validator, valid_config):
        result = validator.validate(valid_config)

        assert result.valid is True
        assert bool(result) is True
        assert result.errors == []

    def test_missing_target_buy(self, validator, valid_config):
        del valid_config["target_buy"]
        result = validator.validate(valid_config)

        assert not result.valid
        assert "target_buy: Required field is missing" in result.errors

    def test_negative_target_buy(self, validator, valid_config):
        valid_config["target_buy"] = -5
        result = validator.validate(valid_config)

        assert any("below minimum" in e for e in result.errors)

    def test_int_allowed_for_float(self, validator, valid_config):
        valid_config["target_buy"] = 6000
        assert validator.validate(valid_config).valid

    def test_bool_rejected_for_float(self, validator, valid_config):
        valid_config["target_buy"] = True
        result = validator.validate(valid_config)

        assert "target_buy: Expected float, got bool" in result.errors

    def test_empty_fund_list(self, validator, valid_config):
        valid_config["funds"] = []
        result = validator.validate(valid_config)

        assert "funds: List must have at least 1 items" in result.errors

    def test_fund_missing_symbol(self, validator, valid_config):
        del valid_config["funds"][1]["symbol"]
        result = validator.validate(valid_config)

        assert "funds[1].symbol: Required field is missing" in result.errors

    def test_fund_zero_price(self, validator, valid_config):
        valid_config["funds"][0]["price"] = 0
        result = validator.validate(valid_config)

        assert any(e.startswith("funds[0].price") for e in result.errors)

    def test_fund_fractional_shares(self, validator, valid_config):
        valid_config["funds"][0]["shares"] = 10.5
        result = validator.validate(valid_config)

        assert "funds[0].shares: Expected int, got float" in result.errors

    def test_fund_whole_float_shares(self, validator, valid_config):
        valid_config["funds"][0]["shares"] = 10.0
        assert validator.validate(valid_config).valid

    def test_fund_not_a_mapping(self, validator, valid_config):
        valid_config["funds"].append("SPY")
        result = validator.validate(valid_config)

        assert "funds[3]: Expected a mapping, got str" in result.errors

    def test_proportion_out_of_range(self, validator, valid_config):
        valid_config["funds"][0]["target_proportion"] = 1.2
        result = validator.validate(valid_config)

        assert any("exceeds maximum" in e for e in result.errors)

    def test_proportions_must_sum_to_one(self, validator, valid_config):
        valid_config["funds"][0]["target_proportion"] = 0.25
        result = validator.validate(valid_config)

        assert any("sum to 1.00" in e for e in result.errors)

    def test_duplicate_symbols(self, validator, valid_config):
        valid_config["funds"][2]["symbol"] = "bnd"
        result = validator.validate(valid_config)

        assert "funds: Duplicate symbol BND" in result.errors

    def test_solver_choices(self, validator, valid_config):
        valid_config["solver"] = {"max_iterations": 0}
        result = validator.validate(valid_config)

        assert any(e.startswith("solver.max_iterations") for e in result.errors)

    def test_invalid_log_level(self, validator, valid_config):
        valid_config["logging"] = {"level": "VERBOSE"}
        result = validator.validate(valid_config)

        assert any("must be one of" in e for e in result.errors)

    def test_zero_target_with_holdings_warns(self, validator, valid_config):
        valid_config["funds"].append(
            {"symbol": "OLD", "shares": 5, "price": 10.0, "target_proportion": 0}
        )
        result = validator.validate(valid_config)

        assert result.valid
        assert any("OLD has a target of 0" in w for w in result.warnings)

    def test_missing_price_warns(self, validator, valid_config):
        del valid_config["funds"][0]["price"]
        result = validator.validate(valid_config)

        assert result.valid
        assert any("no price" in w for w in result.warnings)

    def test_unknown_key_warns(self, validator, valid_config):
        valid_config["colour"] = "blue"
        result = validator.validate(valid_config)

        assert result.valid
        assert "colour: Unknown setting ignored" in result.warnings

    def test_not_a_mapping(self, validator):
        result = validator.validate(["target_buy", 100])
        assert not result.valid


class TestApplyDefaults:
    """Tests for default values."""

    def test_defaults_applied(self, validator, valid_config):
        del valid_config["funds"][0]["shares"]
        config = validator.apply_defaults(valid_config)

        assert config["solver"]["time_limit_seconds"] == 30.0
        assert config["solver"]["tolerance"] == 1e-9
        assert config["market_data"]["max_attempts"] == 3
        assert config["logging"]["level"] == "INFO"
        assert config["proportion_tolerance"] == 1e-6
        assert config["funds"][0]["shares"] == 0
        assert config["funds"][0]["price"] == 85.40
        assert "file" not in config["logging"]

    def test_existing_values_kept(self, validator, valid_config):
        valid_config["solver"] = {"time_limit_seconds": 5}
        config = validator.apply_defaults(valid_config)

        assert config["solver"]["time_limit_seconds"] == 5


class TestLoadConfig:
    """Tests for reading configuration files."""

    def test_load_and_validate(self, tmp_path, valid_config):
        path = write_config(tmp_path, valid_config)
        config = load_and_validate_config(path)

        assert config["target_buy"] == 6000.0
        assert len(config["funds"]) == 3
        assert config["solver"]["max_iterations"] == 50

    def test_load_invalid_raises(self, tmp_path, valid_config):
        valid_config["funds"][0]["target_proportion"] = 0.5
        path = write_config(tmp_path, valid_config)

        with pytest.raises(ConfigValidationError) as exc_info:
            load_and_validate_config(path)

        assert any("sum to 1.00" in e for e in exc_info.value.errors)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_and_validate_config(str(tmp_path / "nope.yaml"))

    def test_validate_config_file(self, tmp_path, valid_config):
        path = write_config(tmp_path, valid_config)
        assert validate_config(path).valid

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        result = validate_config(str(path))
        assert not result.valid
