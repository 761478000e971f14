"""
Tests for configuration, logging and the block environment

Covers:
  - TOML loading, defaults and env overrides
  - Validation errors
  - load_config resolution order
  - Log format validation, terminal sanitizing and reconfiguration
  - BlockEnvironment clock
"""

import logging

import pytest

from marginpool.config import LoggingSectionConfig, MarginPoolConfig, load_config
from marginpool.constants import FEE, LOG_DATE_FORMAT, LOG_FORMAT, LOG_LEVEL, SECONDS_AGO
from marginpool.core.environment import BlockEnvironment
from marginpool.exceptions import ConfigurationError
from marginpool.logger import LogManager, TerminalSafeFormatter, configure_logging, get_logger


class TestMarginPoolConfig:
    """Config loading and validation."""

    def test_defaults(self):
        cfg = MarginPoolConfig()
        assert cfg.pool.fee == FEE
        assert cfg.oracle.seconds_ago == SECONDS_AGO
        assert cfg.validate() is True

    def test_from_file(self, tmp_path):
        path = tmp_path / "marginpool.toml"
        path.write_text(
            "[pool]\nfee = 3000\nmaintenance_tiers = [500000]\n"
            "[oracle]\nseconds_ago = 600\n"
            "[logging]\nlevel = \"DEBUG\"\n"
        )
        cfg = MarginPoolConfig.from_file(str(path))
        assert cfg.pool.fee == 3000
        assert cfg.pool.maintenance_tiers == [500000]
        assert cfg.oracle.seconds_ago == 600
        assert cfg.logging.level == "DEBUG"
        assert cfg.liquidation.gas_liquidate == MarginPoolConfig().liquidation.gas_liquidate

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = MarginPoolConfig.from_file(str(tmp_path / "absent.toml"))
        assert cfg.to_dict() == MarginPoolConfig().to_dict()

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MARGINPOOL_FEE", "500")
        monkeypatch.setenv("MARGINPOOL_MAINTENANCE_TIERS", "250000, 1000000")
        monkeypatch.setenv("MARGINPOOL_FUNDING_PERIOD", "86400")
        cfg = MarginPoolConfig.from_file(str(tmp_path / "absent.toml"))
        assert cfg.pool.fee == 500
        assert cfg.pool.maintenance_tiers == [250000, 1000000]
        assert cfg.oracle.funding_period == 86400

    @pytest.mark.parametrize("section, field, value", [
        ("pool", "fee", 0),
        ("pool", "maintenance_tiers", [0]),
        ("oracle", "seconds_ago", 0),
        ("oracle", "funding_period", 0),
        ("liquidation", "gas_liquidate", -1),
        ("logging", "level", "LOUD"),
    ])
    def test_validation(self, section, field, value):
        cfg = MarginPoolConfig()
        setattr(getattr(cfg, section), field, value)
        with pytest.raises(ConfigurationError):
            cfg.validate()

    def test_load_config_env_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.toml"
        path.write_text("[liquidation]\nbase_fee_min = 5\n")
        monkeypatch.setenv("MARGINPOOL_CONFIG", str(path))
        assert load_config().liquidation.base_fee_min == 5

    def test_load_config_rejects_invalid(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[pool]\nfee = 2000000\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))


class TestLogging:
    """Logger plumbing."""

    def test_singleton(self):
        assert LogManager() is LogManager()
        assert LogManager().is_configured

    def test_get_logger(self):
        log = get_logger("marginpool.core.pool")
        assert isinstance(log, logging.Logger)
        assert log.name == "marginpool.core.pool"

    def test_invalid_format_falls_back(self):
        assert LogManager.validate_log_format("%(nosuchfield)s") == str(LOG_FORMAT.default())
        assert LogManager.validate_log_format("%(message)s") == "%(message)s"

    def test_invalid_date_format_falls_back(self):
        assert LogManager.validate_date_format("not a date") == str(LOG_DATE_FORMAT.default())
        assert LogManager.validate_date_format("%Y-%m-%d") == "%Y-%m-%d"

    def test_sanitize(self):
        assert TerminalSafeFormatter.sanitize("TK0\x1b[31m\r\x07") == "TK0"

    def test_configure_from_config(self):
        root = logging.getLogger()
        handlers = len(root.handlers)
        cfg = MarginPoolConfig(logging=LoggingSectionConfig(level="DEBUG"))
        try:
            cfg.configure_logging()
            assert root.level == logging.DEBUG
            assert len(root.handlers) == handlers
        finally:
            configure_logging()
        assert root.level == getattr(logging, str(LOG_LEVEL).upper(), logging.INFO)


class TestBlockEnvironment:
    """Injected clock."""

    def test_advance(self):
        env = BlockEnvironment(timestamp=100, number=1)
        assert env.advance(12) == 112
        assert env.number == 2

    def test_cannot_rewind(self):
        with pytest.raises(ValueError):
            BlockEnvironment().advance(-1)

    def test_base_fee(self):
        env = BlockEnvironment()
        env.set_base_fee(7)
        assert env.base_fee == 7
        with pytest.raises(ValueError):
            env.set_base_fee(-1)
