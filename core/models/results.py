"""Results of processing batches and running syncs."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.errors import ErrorInfo
from core.models.entities import RemoteEntity


@dataclass
class ProcessingError:
    """A record that could not be normalized."""
    index: int
    message: str
    external_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "externalId": self.external_id, "message": self.message}


@dataclass
class SkippedRecord:
    """A record dropped because it had nothing to identify it by."""
    index: int
    external_id: Optional[str]
    reason: str


@dataclass
class BatchResult:
    """Outcome of normalizing one page. ``normalized`` keeps input order."""
    normalized: List[RemoteEntity] = field(default_factory=list)
    errors: List[ProcessingError] = field(default_factory=list)
    skipped: List[SkippedRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.normalized) + len(self.errors) + len(self.skipped)


@dataclass
class EntitySyncResult:
    """Counters for one entity type within a sync."""
    entity_type: str
    synced_count: int = 0
    error_count: int = 0
    total_fetched: int = 0
    skipped_count: int = 0
    page_count: int = 0
    aborted: bool = False
    error: Optional[ErrorInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "syncedCount": self.synced_count,
            "errorCount": self.error_count,
            "totalFetched": self.total_fetched,
            "skippedCount": self.skipped_count,
            "pageCount": self.page_count,
        }
        if self.aborted:
            data["aborted"] = True
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass
class SyncResult:
    """Outcome of syncing every configured entity type of one integration."""
    integration_id: str
    success: bool = True
    synced_count: int = 0
    error_count: int = 0
    duration_ms: int = 0
    results: Dict[str, EntitySyncResult] = field(default_factory=dict)
    sync_log_id: Optional[str] = None
    next_sync_at: Optional[datetime] = None
    skipped_entity_types: List[str] = field(default_factory=list)
    error: Optional[ErrorInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "integrationId": self.integration_id,
            "success": self.success,
            "syncedCount": self.synced_count,
            "errorCount": self.error_count,
            "durationMs": self.duration_ms,
            "results": {name: result.to_dict() for name, result in self.results.items()},
        }
        if self.sync_log_id:
            data["syncLogId"] = self.sync_log_id
        if self.next_sync_at is not None:
            data["nextSyncAt"] = self.next_sync_at.isoformat()
        if self.skipped_entity_types:
            data["skippedEntityTypes"] = list(self.skipped_entity_types)
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data
