"""Core storage - integration, sync log and entity persistence."""

from core.storage.integration_store import (
    IntegrationStore,
    InMemoryIntegrationStore,
    SQLiteIntegrationStore,
)

__all__ = [
    "IntegrationStore",
    "InMemoryIntegrationStore",
    "SQLiteIntegrationStore",
]
