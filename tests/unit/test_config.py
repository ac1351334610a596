"""
Unit tests for worker configuration.
"""

import pytest

from clipworker.config import Settings, load_settings
from clipworker.exceptions import ConfigurationError


class TestSettings:
    """Tests for Settings and load_settings."""

    def test_defaults(self):
        """Test the documented defaults."""
        settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///jobs.db")

        assert settings.max_attempts == 3
        assert settings.retry_backoff_seconds == 5.0
        assert settings.heartbeat_interval_seconds == 60.0
        assert settings.shutdown_grace_seconds == 1.0
        assert settings.worker_idle_interval_seconds == 30.0
        assert settings.claim_strategy == "atomic"
        assert settings.worker_type == "combined"
        assert settings.worker_id

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch):
        """Test values are read from the environment."""
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://db/jobs")
        monkeypatch.setenv("MAX_ATTEMPTS", "5")
        monkeypatch.setenv("CLAIM_STRATEGY", "read_update")
        monkeypatch.setenv("WORKER_ID", "render-1")

        settings = load_settings(_env_file=None)

        assert settings.database_url == "postgresql+asyncpg://db/jobs"
        assert settings.max_attempts == 5
        assert settings.claim_strategy == "read_update"
        assert settings.worker_id == "render-1"

    def test_missing_database_url_is_fatal(self, monkeypatch: pytest.MonkeyPatch):
        """Test that a missing DATABASE_URL raises ConfigurationError."""
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(ConfigurationError, match="database_url"):
            load_settings(_env_file=None)

    def test_blank_worker_id_rejected(self):
        """Test that an empty worker id is rejected."""
        with pytest.raises(ConfigurationError, match="worker_id"):
            load_settings(_env_file=None, database_url="sqlite+aiosqlite:///jobs.db", worker_id="  ")

    def test_unknown_claim_strategy_rejected(self):
        """Test that only the two claim strategies are accepted."""
        with pytest.raises(ConfigurationError):
            load_settings(_env_file=None, database_url="sqlite+aiosqlite:///jobs.db", claim_strategy="optimistic")

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            load_settings(_env_file=None, database_url="sqlite+aiosqlite:///jobs.db", max_attempts=0)
