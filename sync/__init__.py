"""Sync engine - normalization, orchestration, scheduling and health monitoring."""

from sync.processor import RemoteEntityProcessor, FieldMap, FIELD_MAPS
from sync.orchestrator import (
    SyncOrchestrator,
    SyncOptions,
    SyncInProgressError,
    calculate_next_sync,
    SYNC_FREQUENCIES,
)
from sync.health import HealthMonitor, calculate_health_score, derive_status
from sync.scheduler import SyncScheduler
from sync.engine import SyncEngine

__all__ = [
    "RemoteEntityProcessor",
    "FieldMap",
    "FIELD_MAPS",
    "SyncOrchestrator",
    "SyncOptions",
    "SyncInProgressError",
    "calculate_next_sync",
    "SYNC_FREQUENCIES",
    "HealthMonitor",
    "calculate_health_score",
    "derive_status",
    "SyncScheduler",
    "SyncEngine",
]
