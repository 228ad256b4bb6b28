"""Integration records exchanged with the host application.

The host owns creation and deletion; the sync engine only mutates status,
timestamps and rolling statistics. Configuration is accepted in camelCase
(as the host stores it) or snake_case.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class IntegrationStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"
    WARNING = "warning"
    UNKNOWN = "unknown"


class EntityType(str, Enum):
    CONTACTS = "contacts"
    COMPANIES = "companies"
    DEALS = "deals"


class SyncType(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"
    ERROR = "error"


class SyncLogStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ConflictResolution(str, Enum):
    """Which side wins when a synced record already exists locally."""
    REMOTE_WINS = "hubspot_wins"
    LOCAL_WINS = "local_wins"


# =============================================================================
# Base Model
# =============================================================================

class CamelModel(BaseModel):
    """Accepts snake_case or camelCase keys; dumps camelCase with by_alias=True."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# =============================================================================
# Configuration
# =============================================================================

class IntegrationSettings(CamelModel):
    batch_size: int = Field(default=100, ge=1)
    timeout: int = Field(default=30000, ge=0)  # milliseconds
    conflict_resolution: ConflictResolution = ConflictResolution.REMOTE_WINS
    bidirectional_sync: bool = False


class IntegrationConfiguration(CamelModel):
    """Per-integration configuration.

    Platform-specific fields (e.g. ``portalId``) are kept as extras.
    """
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="allow")

    api_key_encrypted: Optional[str] = None
    sync_frequency: str = "hourly"
    data_types: List[EntityType] = Field(
        default_factory=lambda: [EntityType.CONTACTS, EntityType.COMPANIES, EntityType.DEALS]
    )
    settings: IntegrationSettings = Field(default_factory=IntegrationSettings)

    def as_lookup(self) -> Dict[str, Any]:
        """Flat view used for required-field validation (snake_case and camelCase keys)."""
        data = self.model_dump(by_alias=False, exclude={"settings", "data_types"})
        data.update(self.model_extra or {})
        lookup = dict(data)
        for key, value in data.items():
            lookup.setdefault(to_camel(key), value)
        return lookup


class SyncStats(CamelModel):
    """Rolling counters kept on the integration."""
    total_synced: int = 0
    errors: int = 0
    warnings: int = 0
    last_sync_duration_ms: Optional[int] = None


class Integration(CamelModel):
    id: str
    user_id: Optional[str] = None
    platform: str
    name: str = ""
    status: IntegrationStatus = IntegrationStatus.ACTIVE
    error_message: Optional[str] = None
    configuration: IntegrationConfiguration = Field(default_factory=IntegrationConfiguration)
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    sync_stats: SyncStats = Field(default_factory=SyncStats)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Sync logs and statistics
# =============================================================================

class SyncLog(CamelModel):
    """One sync attempt. Completed exactly once."""
    id: str
    integration_id: str
    sync_type: SyncType = SyncType.SCHEDULED
    status: SyncLogStatus = SyncLogStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class SyncStatistics(CamelModel):
    syncs_last_24_hours: int = 0
    syncs_last_7_days: int = 0
    last_successful_sync: Optional[datetime] = None
    failed_syncs_last_24_hours: int = 0
    success_rate: float = 100.0

    @classmethod
    def from_logs(cls, logs: List[SyncLog], now: Optional[datetime] = None) -> "SyncStatistics":
        """Aggregate statistics over an integration's sync logs."""
        now = now or utcnow()
        day_ago = now - timedelta(hours=24)
        week_ago = now - timedelta(days=7)

        recent = [log for log in logs if _aware(log.started_at) >= day_ago]
        weekly = [log for log in logs if _aware(log.started_at) >= week_ago]
        failed = [log for log in recent if log.status == SyncLogStatus.FAILED]
        successful = [
            _aware(log.completed_at or log.started_at)
            for log in logs
            if log.status == SyncLogStatus.COMPLETED
        ]

        return cls(
            syncs_last_24_hours=len(recent),
            syncs_last_7_days=len(weekly),
            last_successful_sync=max(successful) if successful else None,
            failed_syncs_last_24_hours=len(failed),
            success_rate=success_rate(len(recent), len(failed)),
        )


def success_rate(recent: int, failed: int) -> float:
    """Percentage of recent syncs that did not fail; 100 when nothing ran."""
    if recent <= 0:
        return 100.0
    return round((recent - failed) / recent * 100, 2)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
