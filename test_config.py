"""
Settings tests.
"""

import os

import pytest

from core.config import Settings


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in [
        "ENVIRONMENT", "LOG_LEVEL", "LOG_JSON", "SYNC_ENCRYPTION_KEY", "SYNC_DB_PATH",
        "HUBSPOT_BASE_URL", "HUBSPOT_TIMEOUT_SECONDS", "RATE_LIMIT_DELAY_MS", "MAX_RETRIES",
        "RETRY_BASE_DELAY_MS", "MAX_CONSECUTIVE_PAGE_FAILURES", "HEALTH_CHECK_INTERVAL_SECONDS",
        "SCHEDULER_TICK_SECONDS", "MAX_CONCURRENT_SYNCS", "TEMPORAL_ENDPOINT",
        "TEMPORAL_NAMESPACE", "TEMPORAL_API_KEY", "TEMPORAL_TASK_QUEUE",
    ]:
        monkeypatch.delenv(name, raising=False)
    return tmp_path / "missing.env"


class TestSettings:

    def test_defaults(self, clean_env):
        settings = Settings.from_env(clean_env)
        assert settings.environment == "development"
        assert settings.hubspot_base_url == "https://api.hubapi.com"
        assert settings.max_consecutive_page_failures == 5
        assert settings.health_check_interval_seconds == 300
        assert settings.temporal_task_queue == "crm-sync"
        assert settings.encryption_key is None
        assert not settings.is_production

    def test_environment_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("LOG_JSON", "true")
        monkeypatch.setenv("HUBSPOT_BASE_URL", "https://hubspot.example/")
        monkeypatch.setenv("MAX_RETRIES", "5")
        monkeypatch.setenv("RATE_LIMIT_DELAY_MS", "250")

        settings = Settings.from_env(clean_env)

        assert settings.is_production
        assert settings.log_json is True
        assert settings.hubspot_base_url == "https://hubspot.example"
        policy = settings.retry_policy()
        assert policy.max_retries == 5
        assert policy.min_delay == 0.25
        assert policy.base_delay == 1.0

    def test_env_file_is_loaded(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SYNC_DB_PATH=/data/sync.db\nMAX_CONCURRENT_SYNCS=8\n")

        try:
            settings = Settings.from_env(env_file)
        finally:
            os.environ.pop("SYNC_DB_PATH", None)
            os.environ.pop("MAX_CONCURRENT_SYNCS", None)

        assert settings.db_path == "/data/sync.db"
        assert settings.max_concurrent_syncs == 8

    def test_existing_environment_wins_over_env_file(self, clean_env, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SYNC_DB_PATH=/from/file.db\n")
        monkeypatch.setenv("SYNC_DB_PATH", "/from/env.db")

        assert Settings.from_env(env_file).db_path == "/from/env.db"

    def test_non_integer_is_rejected(self, clean_env, monkeypatch):
        monkeypatch.setenv("MAX_RETRIES", "three")
        with pytest.raises(ValueError, match="MAX_RETRIES"):
            Settings.from_env(clean_env)

    def test_require_encryption_key(self):
        with pytest.raises(ValueError, match="SYNC_ENCRYPTION_KEY"):
            Settings().require_encryption_key()
        assert Settings(encryption_key="abc").require_encryption_key() == "abc"
