"""Runtime configuration from environment variables.

A ``.env`` file next to the project root is loaded when present.

Usage:
    from core.config import Settings

    settings = Settings.from_env()
    cipher = CredentialCipher(settings.require_encryption_key())
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from core.retry import RetryPolicy


ENV_PATH = Path(__file__).resolve().parents[1] / ".env"


def load_env_file(path: Optional[Path] = None) -> bool:
    """Load a .env file into os.environ without overriding existing values."""
    env_path = path or ENV_PATH
    if env_path.exists():
        return load_dotenv(env_path)
    return False


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass
class Settings:
    """Engine settings. Durations in the environment are milliseconds or seconds as named."""
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    encryption_key: Optional[str] = None
    db_path: str = "crm_sync.db"

    # HubSpot
    hubspot_base_url: str = "https://api.hubapi.com"
    hubspot_timeout_seconds: int = 30

    # Requests
    rate_limit_delay_ms: int = 100
    max_retries: int = 3
    retry_base_delay_ms: int = 1000

    # Sync / health
    max_consecutive_page_failures: int = 5
    health_check_interval_seconds: int = 300
    scheduler_tick_seconds: int = 60
    max_concurrent_syncs: int = 4

    # Temporal
    temporal_endpoint: Optional[str] = None
    temporal_namespace: str = "default"
    temporal_api_key: Optional[str] = None
    temporal_task_queue: str = "crm-sync"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        """Build settings from the process environment.

        Raises:
            ValueError: If a numeric variable is not an integer
        """
        load_env_file(env_file)
        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_get_bool("LOG_JSON", False),
            encryption_key=os.getenv("SYNC_ENCRYPTION_KEY") or None,
            db_path=os.getenv("SYNC_DB_PATH", "crm_sync.db"),
            hubspot_base_url=os.getenv("HUBSPOT_BASE_URL", "https://api.hubapi.com").rstrip("/"),
            hubspot_timeout_seconds=_get_int("HUBSPOT_TIMEOUT_SECONDS", 30),
            rate_limit_delay_ms=_get_int("RATE_LIMIT_DELAY_MS", 100),
            max_retries=_get_int("MAX_RETRIES", 3),
            retry_base_delay_ms=_get_int("RETRY_BASE_DELAY_MS", 1000),
            max_consecutive_page_failures=_get_int("MAX_CONSECUTIVE_PAGE_FAILURES", 5),
            health_check_interval_seconds=_get_int("HEALTH_CHECK_INTERVAL_SECONDS", 300),
            scheduler_tick_seconds=_get_int("SCHEDULER_TICK_SECONDS", 60),
            max_concurrent_syncs=_get_int("MAX_CONCURRENT_SYNCS", 4),
            temporal_endpoint=os.getenv("TEMPORAL_ENDPOINT") or None,
            temporal_namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
            temporal_api_key=os.getenv("TEMPORAL_API_KEY") or None,
            temporal_task_queue=os.getenv("TEMPORAL_TASK_QUEUE", "crm-sync"),
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def require_encryption_key(self) -> str:
        """Return the credential encryption key or explain how to set it."""
        if not self.encryption_key:
            raise ValueError(
                "SYNC_ENCRYPTION_KEY environment variable not set. "
                "Generate one with core.security.generate_encryption_key()"
            )
        return self.encryption_key

    def retry_policy(self) -> RetryPolicy:
        """RetryPolicy built from the request settings."""
        return RetryPolicy(
            max_retries=self.max_retries,
            min_delay=self.rate_limit_delay_ms / 1000.0,
            base_delay=self.retry_base_delay_ms / 1000.0,
        )
