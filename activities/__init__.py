"""Activity definitions module."""

from activities.sync import (
    SyncActivities,
    RunSyncInput,
    RunSyncOutput,
    HealthCheckInput,
    HealthCheckOutput,
    to_application_error,
)

__all__ = [
    "SyncActivities",
    "RunSyncInput",
    "RunSyncOutput",
    "HealthCheckInput",
    "HealthCheckOutput",
    "to_application_error",
]
