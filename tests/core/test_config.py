"""Tests for environment-based shopwarden configuration."""

import dataclasses

import pytest

import shopwarden.core.config as _mod
from shopwarden.core.config import (
    AutonomyConfig,
    HealerConfig,
    LaneConfig,
    PricingConfig,
    ShopwardenConfig,
    _env_bool,
    _env_float,
    _env_int,
    _env_str,
)


class TestEnvHelpers:
    def test_env_bool_true_values(self, monkeypatch):
        for val in ["1", "true", "True", "yes", "on"]:
            monkeypatch.setenv("TEST_BOOL", val)
            assert _env_bool("TEST_BOOL") is True

    def test_env_bool_false_values(self, monkeypatch):
        for val in ["0", "false", "off", "random"]:
            monkeypatch.setenv("TEST_BOOL", val)
            assert _env_bool("TEST_BOOL", True) is False

    def test_env_int_clamps_to_minimum(self, monkeypatch):
        monkeypatch.setenv("TEST_INT", "0")
        assert _env_int("TEST_INT", 3, minimum=1) == 1

    def test_env_int_allows_negative_without_minimum(self, monkeypatch):
        monkeypatch.setenv("TEST_INT", "-25")
        assert _env_int("TEST_INT", -10, minimum=None) == -25

    def test_env_float_default(self, monkeypatch):
        monkeypatch.delenv("TEST_FLOAT_MISS", raising=False)
        assert _env_float("TEST_FLOAT_MISS", 0.05) == 0.05

    def test_env_str_blank_uses_default(self, monkeypatch):
        monkeypatch.setenv("TEST_STR", "   ")
        assert _env_str("TEST_STR", "fallback") == "fallback"


class TestSections:
    def test_defaults(self):
        assert AutonomyConfig().threshold == -10
        assert LaneConfig().inter_task_delay == 0.05
        healer = HealerConfig()
        assert (healer.max_retries, healer.backoff_delay) == (3, 30.0)
        assert PricingConfig().max_decisions == 200

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            LaneConfig().inter_task_delay = 1.0  # type: ignore[misc]

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SHOPWARDEN_AUTONOMY_THRESHOLD", "-20")
        monkeypatch.setenv("SHOPWARDEN_LANE_DELAY_SEC", "0")
        monkeypatch.setenv("SHOPWARDEN_HEAL_MAX_RETRIES", "5")
        assert AutonomyConfig.from_env().threshold == -20
        assert LaneConfig.from_env().inter_task_delay == 0.0
        assert HealerConfig.from_env().max_retries == 5


class TestShopwardenConfig:
    def test_paths_under_state_dir(self, tmp_path):
        cfg = ShopwardenConfig.load(str(tmp_path))
        assert cfg.autonomy_file == tmp_path / "memory" / "autonomy.json"
        assert cfg.error_log_file == tmp_path / "memory" / "error-log.json"
        assert cfg.kill_switch_file == tmp_path / "memory" / "kill-switch.json"
        assert cfg.jobs_file == tmp_path / "cron" / "jobs.json"
        assert cfg.snapshot_dir == tmp_path / "snapshots"

    def test_state_dir_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHOPWARDEN_STATE_DIR", str(tmp_path / "state"))
        assert ShopwardenConfig.load().state_dir == tmp_path / "state"

    def test_to_dict_has_all_sections(self, tmp_path):
        data = ShopwardenConfig.load(str(tmp_path)).to_dict()
        for section in ["autonomy", "lane", "healer", "snapshots", "scheduler", "pricing"]:
            assert section in data
        assert data["state_dir"] == str(tmp_path)

    def test_singleton_and_reload(self, tmp_path, monkeypatch):
        monkeypatch.setattr(_mod, "_config", None)
        monkeypatch.setenv("SHOPWARDEN_STATE_DIR", str(tmp_path))
        first = _mod.get_config()
        assert _mod.get_config() is first
        assert _mod.reload_config() is not first
