"""
Unit tests for the configuration layer: static env settings (Config),
YAML tunables (ConfigManager) and the typed accessors.
"""

import pytest

from src.core.config import (
    Config,
    ConfigManager,
    config_bool,
    config_float,
    config_int,
    config_list,
    config_str,
)

# ============================================================================
# STATIC CONFIG
# ============================================================================


@pytest.mark.unit
class TestConfig:
    def test_safe_int_reads_environment(self, monkeypatch):
        monkeypatch.setenv("WAYPOINT_TEST_INT", "42")

        assert Config._safe_int("WAYPOINT_TEST_INT", 5, min_val=1) == 42

    @pytest.mark.parametrize("raw", ["abc", "0", "999"])
    def test_safe_int_falls_back_on_bad_values(self, monkeypatch, raw):
        monkeypatch.setenv("WAYPOINT_TEST_INT", raw)

        assert Config._safe_int("WAYPOINT_TEST_INT", 5, min_val=1, max_val=100) == 5

    @pytest.mark.parametrize("raw,expected", [("yes", True), ("off", False), ("maybe", True)])
    def test_safe_bool(self, monkeypatch, raw, expected):
        monkeypatch.setenv("WAYPOINT_TEST_BOOL", raw)

        assert Config._safe_bool("WAYPOINT_TEST_BOOL", True) is expected

    def test_summary_hides_secrets(self):
        summary = Config.get_config_summary()

        assert summary["database_url_set"] in (True, False)
        assert "DATABASE_URL" not in summary
        assert "redis_password" not in summary
        assert summary["load"]["total_configs"] > 0


# ============================================================================
# TUNABLES
# ============================================================================


@pytest.mark.unit
class TestConfigManager:
    def test_packaged_defaults_loaded(self):
        assert ConfigManager.get("progression.level.max_level") == 1000
        assert "progression" in ConfigManager.get_all_keys()

    def test_missing_key_returns_default(self):
        assert ConfigManager.get("no.such.key", "fallback") == "fallback"

    def test_set_creates_nested_keys(self):
        ConfigManager.set("brand.new.key", 3)

        assert ConfigManager.get("brand.new.key") == 3

    def test_reset_drops_overrides(self):
        ConfigManager.set("progression.level.max_level", 10)

        ConfigManager.reset()

        assert ConfigManager.get("progression.level.max_level") == 1000

    def test_returned_containers_are_copies(self):
        ConfigManager.set("tmp.items", [1, 2])

        ConfigManager.get("tmp.items").append(3)

        assert ConfigManager.get("tmp.items") == [1, 2]

    def test_metrics_count_hits_and_misses(self):
        ConfigManager.reset()

        ConfigManager.get("progression.level.max_level")
        ConfigManager.get("no.such.key")

        metrics = ConfigManager.get_metrics()
        assert (metrics["cache_hits"], metrics["cache_misses"]) == (1, 1)
        assert metrics["hit_rate"] == 50.0


# ============================================================================
# TYPED ACCESSORS
# ============================================================================


@pytest.mark.unit
class TestAccessors:
    def test_typed_values(self):
        ConfigManager.set("tmp.int", 7)
        ConfigManager.set("tmp.float", 2)
        ConfigManager.set("tmp.flag", False)
        ConfigManager.set("tmp.name", "alpha")
        ConfigManager.set("tmp.list", ["a"])

        assert config_int("tmp.int", 0) == 7
        assert config_float("tmp.float", 0.0) == 2.0
        assert config_bool("tmp.flag", True) is False
        assert config_str("tmp.name", "beta") == "alpha"
        assert config_list("tmp.list", []) == ["a"]

    def test_mistyped_values_fall_back(self):
        ConfigManager.set("tmp.int", "seven")
        ConfigManager.set("tmp.bool_int", True)
        ConfigManager.set("tmp.list", "a,b")

        assert config_int("tmp.int", 3) == 3
        assert config_int("tmp.bool_int", 3) == 3
        assert config_list("tmp.list", ["x"]) == ["x"]

    def test_missing_values_use_default(self):
        assert config_int("tmp.absent", 9) == 9
        assert config_str("tmp.absent", "d") == "d"
