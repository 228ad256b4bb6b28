"""Core data models - platform-neutral types.

This package contains the integration records shared with the host
application, normalized remote entities, health results and sync results.
None of them depend on a specific CRM platform.
"""

from core.models.integration import (
    # Enums
    IntegrationStatus,
    EntityType,
    SyncType,
    SyncLogStatus,
    ConflictResolution,

    # Integration records
    CamelModel,
    IntegrationSettings,
    IntegrationConfiguration,
    SyncStats,
    Integration,
    SyncLog,
    SyncStatistics,
    success_rate,
    utcnow,
)

from core.models.entities import (
    RemoteEntity,
    RemoteContact,
    RemoteCompany,
    RemoteDeal,
)

from core.models.health import (
    HealthState,
    HealthMetrics,
    HealthStatus,
    HealthSummary,
    HealthReport,
)

from core.models.results import (
    ProcessingError,
    SkippedRecord,
    BatchResult,
    EntitySyncResult,
    SyncResult,
)

__all__ = [
    # Enums
    "IntegrationStatus",
    "EntityType",
    "SyncType",
    "SyncLogStatus",
    "ConflictResolution",

    # Integration records
    "CamelModel",
    "IntegrationSettings",
    "IntegrationConfiguration",
    "SyncStats",
    "Integration",
    "SyncLog",
    "SyncStatistics",
    "success_rate",
    "utcnow",

    # Entities
    "RemoteEntity",
    "RemoteContact",
    "RemoteCompany",
    "RemoteDeal",

    # Health
    "HealthState",
    "HealthMetrics",
    "HealthStatus",
    "HealthSummary",
    "HealthReport",

    # Results
    "ProcessingError",
    "SkippedRecord",
    "BatchResult",
    "EntitySyncResult",
    "SyncResult",
]
