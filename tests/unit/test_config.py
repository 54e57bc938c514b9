"""Tests for process settings and dashboard configuration parsing."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from stravadash.config import DashboardConfig, Settings


class TestSettings:
    def test_defaults(self, tmp_path):
        settings = Settings(data_dir=tmp_path)
        assert settings.tokens_file == tmp_path / "tokens.json"
        assert settings.cache_dir == tmp_path / "cache"
        assert settings.short_term_limit == 600
        assert settings.long_term_limit == 30000
        assert settings.token_refresh_margin == 300

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("STRAVADASH_DATA_DIR", "/var/lib/stravadash")
        monkeypatch.setenv("STRAVADASH_DETAIL_CONCURRENCY", "4")
        settings = Settings()
        assert settings.data_dir == Path("/var/lib/stravadash")
        assert settings.detail_concurrency == 4


class TestDashboardConfig:
    def test_defaults(self):
        config = DashboardConfig()
        assert config.identifier == "default"
        assert config.units == "metric"
        assert config.period == "recent"
        assert config.fetch_interval == 15 * 60 * 1000
        assert config.goals == {"run": 750.0}
        assert config.rankings.batch_size == 50
        assert config.segments.transport_retries == 2
        assert config.uses_legacy_auth is False

    def test_widget_envelope_and_camel_case(self):
        config = DashboardConfig.model_validate(
            {
                "identifier": "module_3_MMM-Strava",
                "config": {
                    "client_id": "12345",
                    "client_secret": "s3cret",
                    "fetchInterval": 60000,
                    "updateInterval": 10000,
                    "runningGoal": 1000,
                    "mode": "Table",
                    "period": "YTD",
                    "auto_rotate": True,
                },
            }
        )
        assert config.identifier == "module_3_MMM-Strava"
        assert config.client_id == "12345"
        assert config.fetch_interval == 60000
        assert config.update_interval == 10000
        assert config.goals["run"] == 1000
        assert config.mode == "table"
        assert config.period == "ytd"
        assert config.auto_rotate is True

    def test_snake_case_accepted(self):
        config = DashboardConfig(fetch_interval=120000)
        assert config.fetch_interval == 120000

    def test_running_goal_merges_with_other_goals(self):
        config = DashboardConfig.model_validate({"goals": {"ride": 5000}, "runningGoal": 800})
        assert config.goals == {"ride": 5000, "run": 800}

    def test_legacy_auth_detected(self):
        assert DashboardConfig(access_token="abc", strava_id=42).uses_legacy_auth is True

    def test_invalid_units_rejected(self):
        with pytest.raises(ValidationError):
            DashboardConfig(units="furlongs")

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValidationError):
            DashboardConfig(fetchInterval=0)

    def test_public_dict_hides_secrets(self):
        public = DashboardConfig(client_id="1", client_secret="s", access_token="t").public_dict()
        assert "client_secret" not in public
        assert "access_token" not in public
        assert public["client_id"] == "1"
