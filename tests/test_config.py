"""Tests for environment-driven configuration."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from continuity_conductor.config import Settings


class TestSettingsDefaults:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.rule_cache_ttl_seconds == 300.0
        assert s.context_threshold == 0.85
        assert s.token_capacity == 200_000
        assert s.intelligence_max_age_hours == 24.0
        assert s.next_check_interval_ms == 30_000
        assert s.analytics_database_url is None

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, context_threshold=1.5)


class TestEnvironmentOverrides:
    """Settings pick up CONTINUITY_ prefixed variables."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("CONTINUITY_RULE_CACHE_TTL_SECONDS", "60")
        monkeypatch.setenv("CONTINUITY_PROJECT_NAME", "from-env")
        s = Settings(_env_file=None)
        assert s.rule_cache_ttl_seconds == 60.0
        assert s.project_name == "from-env"

    def test_unprefixed_ignored(self, monkeypatch):
        monkeypatch.setenv("PROJECT_NAME", "ignored")
        assert Settings(_env_file=None).project_name == "default"


class TestAnalyticsUrl:
    def test_explicit_url_wins(self, tmp_path):
        s = Settings(_env_file=None, analytics_database_url="sqlite+aiosqlite:///x.db")
        assert s.get_analytics_database_url() == "sqlite+aiosqlite:///x.db"

    def test_default_under_working_directory(self, tmp_path):
        s = Settings(_env_file=None, working_directory=str(tmp_path))
        url = s.get_analytics_database_url()
        storage = tmp_path.resolve() / ".continuity" / "storage"
        assert url == f"sqlite+aiosqlite:///{storage / 'analytics.db'}"
        assert storage.is_dir()

    def test_working_directory_is_absolute(self, tmp_path):
        s = Settings(_env_file=None, working_directory=str(tmp_path))
        assert Path(s.get_working_directory()).is_absolute()
