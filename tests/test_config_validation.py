"""Tests for config.yaml loading and RunConfig validation."""

import pytest
import yaml
from pydantic import ValidationError

from schemas import CONFIG_PATH, ProviderConfig, RunConfig, load_config


def _write(tmp_path, data):
    p = tmp_path / "config.yaml"
    p.write_text(yaml.safe_dump(data))
    return p


class TestRunConfig:
    def test_shipped_config_is_valid(self):
        cfg = load_config(CONFIG_PATH, env={})
        assert cfg.fund.ts_code == "512890.SH"
        assert cfg.batching.price_window == 10
        assert cfg.batching.factor_window == 5
        assert cfg.batching.inter_batch_delay == pytest.approx(0.8)
        assert cfg.provider.call_delay == pytest.approx(0.1)
        assert cfg.server.port == 3001

    def test_defaults_match_shipped_config(self):
        assert RunConfig() == load_config(CONFIG_PATH, env={})

    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml", env={})
        assert cfg == RunConfig()

    def test_partial_file_merges_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, {"batching": {"price_window": 3}}), env={})
        assert cfg.batching.price_window == 3
        assert cfg.batching.factor_window == 5

    def test_invalid_window(self, tmp_path):
        with pytest.raises(ValidationError):
            load_config(_write(tmp_path, {"batching": {"price_window": 0}}), env={})

    def test_negative_delay(self, tmp_path):
        with pytest.raises(ValidationError):
            load_config(_write(tmp_path, {"provider": {"call_delay": -1}}), env={})

    def test_unqualified_fund_code(self, tmp_path):
        with pytest.raises(ValidationError):
            load_config(_write(tmp_path, {"fund": {"ts_code": "512890"}}), env={})

    def test_unknown_log_level(self, tmp_path):
        with pytest.raises(ValidationError):
            load_config(_write(tmp_path, {"logging": {"level": "chatty"}}), env={})

    def test_log_level_case_insensitive(self, tmp_path):
        cfg = load_config(_write(tmp_path, {"logging": {"level": "debug"}}), env={})
        assert cfg.logging.level == "DEBUG"

    def test_malformed_file(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(p, env={})


class TestEnvironmentOverrides:
    def test_token_from_env(self):
        cfg = load_config(CONFIG_PATH, env={"TUSHARE_TOKEN": "abc123"})
        assert cfg.provider.token == "abc123"
        assert cfg.provider.has_token
        # Other provider settings survive the override
        assert cfg.provider.url == "http://api.tushare.pro"

    def test_port_from_env(self):
        cfg = load_config(CONFIG_PATH, env={"PORT": "8080"})
        assert cfg.server.port == 8080

    def test_env_without_file(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml", env={"TUSHARE_TOKEN": "t"})
        assert cfg.provider.token == "t"

    def test_no_token(self):
        assert not load_config(CONFIG_PATH, env={}).provider.has_token


class TestProviderConfig:
    def test_frozen(self):
        cfg = ProviderConfig(token="a")
        with pytest.raises(ValidationError):
            cfg.token = "b"

    def test_timeout_positive(self):
        with pytest.raises(ValidationError):
            ProviderConfig(timeout=0)
