"""
Hospital Wait Monitor - Configuration Unit Tests

Tests settings validation, derived values and target loading.
"""

import pytest
from pydantic import ValidationError

from config.settings import Settings, get_settings
from config.targets import TargetConfigError, load_targets, parse_targets
from scrapers.base import ScrapeTarget


# =============================================================================
# Settings
# =============================================================================

class TestSettings:
    """Tests for Settings."""

    def test_environment_from_conftest(self):
        settings = get_settings()
        assert settings.environment == "test"
        assert settings.store_backend == "memory"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SCRAPING_INTERVAL_MINUTES", "15")
        monkeypatch.setenv("BROWSER_TYPE", "Firefox")

        settings = Settings()

        assert settings.scraping_interval_minutes == 15
        assert settings.scraping_schedule == "*/15 * * * *"
        assert settings.browser_type == "firefox"

    def test_values_are_normalised(self):
        settings = Settings(log_level="debug", environment="PRODUCTION", store_backend="Memory")

        assert settings.log_level == "DEBUG"
        assert settings.is_production
        assert settings.store_backend == "memory"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"log_level": "verbose"},
            {"environment": "qa"},
            {"browser_type": "chrome"},
            {"store_backend": "redis"},
            {"scraping_interval_minutes": 0},
            {"scraping_interval_minutes": 60},
            {"max_retries": 11},
            {"retry_base_delay_ms": -1},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValidationError):
            Settings(**kwargs)

    def test_proxy_configured(self):
        assert not Settings(proxy_server=None).is_proxy_configured
        assert Settings(proxy_server="http://proxy:3128").is_proxy_configured

    def test_relative_paths_resolve_from_project_root(self, tmp_path):
        settings = Settings(log_file="logs/app.log", targets_file=str(tmp_path / "targets.yaml"))

        assert settings.get_log_file_path() == settings.project_root / "logs" / "app.log"
        assert settings.get_targets_path() == tmp_path / "targets.yaml"

    def test_empty_paths(self):
        settings = Settings(log_file="", targets_file="")

        assert settings.get_log_file_path() is None
        assert settings.get_targets_path() is None


# =============================================================================
# Targets
# =============================================================================

class TestParseTargets:
    """Tests for parse_targets."""

    def test_keeps_order_and_skips_inactive(self):
        config = {
            "targets": [
                {"url": "https://a.example/er", "department": "ER A"},
                {"url": "https://b.example/er", "department": "ER B", "is_active": False},
                {"url": " https://c.example/er ", "department": "ER C", "is_active": True},
            ]
        }

        assert parse_targets(config) == [
            ScrapeTarget("https://a.example/er", "ER A"),
            ScrapeTarget("https://c.example/er", "ER C"),
        ]

    @pytest.mark.parametrize("config", [None, {}, {"targets": None}])
    def test_empty(self, config):
        assert parse_targets(config) == []

    @pytest.mark.parametrize(
        "config",
        [
            {"targets": [{"url": "https://a.example/er"}]},
            {"targets": [{"department": "ER"}]},
            {"targets": ["https://a.example/er"]},
            {"targets": "https://a.example/er"},
            ["https://a.example/er"],
        ],
    )
    def test_invalid(self, config):
        with pytest.raises(TargetConfigError):
            parse_targets(config)


class TestLoadTargets:
    """Tests for load_targets."""

    def test_loads_yaml_file(self, tmp_path):
        path = tmp_path / "targets.yaml"
        path.write_text(
            "targets:\n"
            "  - url: https://a.example/er\n"
            "    department: Notaufnahme\n",
            encoding="utf-8",
        )

        assert load_targets(path) == [ScrapeTarget("https://a.example/er", "Notaufnahme")]

    def test_missing_file_falls_back_to_settings(self, tmp_path):
        settings = Settings(target_url="https://fallback.example/er", target_department="ZNA")

        targets = load_targets(tmp_path / "missing.yaml", settings=settings)

        assert targets == [ScrapeTarget("https://fallback.example/er", "ZNA")]

    def test_all_inactive_falls_back(self, tmp_path):
        path = tmp_path / "targets.yaml"
        path.write_text(
            "targets:\n"
            "  - url: https://a.example/er\n"
            "    department: ER\n"
            "    is_active: false\n",
            encoding="utf-8",
        )
        settings = Settings(target_url="https://fallback.example/er")

        assert load_targets(path, settings=settings)[0].url == "https://fallback.example/er"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "targets.yaml"
        path.write_text("targets: [unclosed\n", encoding="utf-8")

        with pytest.raises(TargetConfigError, match="Invalid YAML"):
            load_targets(path)

    def test_bundled_targets_file(self):
        targets = load_targets(settings=Settings(targets_file="config/targets.yaml"))

        assert len(targets) >= 1
        assert all(target.url.startswith("https://") for target in targets)
