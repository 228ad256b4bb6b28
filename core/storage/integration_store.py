"""Integration persistence backends.

The store is the seam to the host application's database. The engine reads
integrations and writes back status, timestamps, sync logs and normalized
entities through it.

Backends:
- InMemoryIntegrationStore: For development/testing
- SQLiteIntegrationStore: For single-server deployments
"""

import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type

from core.models import (
    ConflictResolution,
    EntityType,
    Integration,
    IntegrationStatus,
    RemoteCompany,
    RemoteContact,
    RemoteDeal,
    RemoteEntity,
    SyncLog,
    SyncLogStatus,
    SyncStatistics,
    SyncType,
    success_rate,
    utcnow,
)

ENTITY_CLASSES: Dict[EntityType, Type[RemoteEntity]] = {
    EntityType.CONTACTS: RemoteContact,
    EntityType.COMPANIES: RemoteCompany,
    EntityType.DEALS: RemoteDeal,
}


class IntegrationStore(ABC):
    """Abstract base class for integration storage."""

    # -------------------------------------------------------------------------
    # Integrations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_integration(self, integration_id: str) -> Optional[Integration]:
        """Retrieve an integration by id."""
        pass

    @abstractmethod
    async def list_integrations(
        self,
        statuses: Optional[Iterable[IntegrationStatus]] = None,
    ) -> List[Integration]:
        """List integrations, optionally only those in the given statuses."""
        pass

    @abstractmethod
    async def save_integration(self, integration: Integration) -> None:
        """Insert or replace an integration."""
        pass

    @abstractmethod
    async def delete_integration(self, integration_id: str) -> bool:
        """Delete an integration and everything recorded for it."""
        pass

    # -------------------------------------------------------------------------
    # Sync logs
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_sync_log(
        self,
        integration_id: str,
        sync_type: SyncType = SyncType.SCHEDULED,
    ) -> SyncLog:
        """Append a running sync log."""
        pass

    @abstractmethod
    async def complete_sync_log(
        self,
        log_id: str,
        status: SyncLogStatus,
        records_processed: int = 0,
        error_message: Optional[str] = None,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SyncLog:
        """Complete a running sync log.

        Raises:
            KeyError: If the log does not exist
            ValueError: If the log was already completed
        """
        pass

    @abstractmethod
    async def list_sync_logs(
        self,
        integration_id: str,
        since: Optional[datetime] = None,
    ) -> List[SyncLog]:
        """List an integration's sync logs, oldest first."""
        pass

    async def get_sync_statistics(
        self,
        integration_id: str,
        now: Optional[datetime] = None,
    ) -> SyncStatistics:
        """Rolling 24h / 7d statistics for an integration."""
        now = now or utcnow()
        logs = await self.list_sync_logs(integration_id)
        return SyncStatistics.from_logs(logs, now)

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_entities(
        self,
        integration_id: str,
        entities: Sequence[RemoteEntity],
        conflict_resolution: ConflictResolution = ConflictResolution.REMOTE_WINS,
    ) -> int:
        """Upsert normalized entities.

        With REMOTE_WINS existing rows are overwritten; with LOCAL_WINS they
        are left untouched and only new rows are written.

        Returns:
            Number of rows written
        """
        pass

    @abstractmethod
    async def list_entities(
        self,
        integration_id: str,
        entity_type: Optional[EntityType] = None,
    ) -> List[RemoteEntity]:
        """List stored entities for an integration."""
        pass


def _new_sync_log(integration_id: str, sync_type: SyncType) -> SyncLog:
    return SyncLog(
        id=uuid.uuid4().hex,
        integration_id=integration_id,
        sync_type=sync_type,
        status=SyncLogStatus.RUNNING,
        started_at=utcnow(),
    )


def _check_completable(log: Optional[SyncLog], log_id: str) -> SyncLog:
    if log is None:
        raise KeyError(f"Sync log not found: {log_id}")
    if log.status != SyncLogStatus.RUNNING:
        raise ValueError(f"Sync log {log_id} is already {log.status.value}")
    return log


# =============================================================================
# In-memory
# =============================================================================

class InMemoryIntegrationStore(IntegrationStore):
    """In-memory storage for development/testing.

    WARNING: Data is lost on restart. Use only for development.
    """

    def __init__(self, integrations: Optional[Iterable[Integration]] = None):
        self._integrations: Dict[str, Integration] = {}
        self._logs: Dict[str, SyncLog] = {}
        self._entities: Dict[tuple, RemoteEntity] = {}
        self._lock = threading.Lock()
        for integration in integrations or []:
            self._integrations[integration.id] = integration.model_copy(deep=True)

    async def get_integration(self, integration_id: str) -> Optional[Integration]:
        with self._lock:
            integration = self._integrations.get(integration_id)
            return integration.model_copy(deep=True) if integration else None

    async def list_integrations(
        self,
        statuses: Optional[Iterable[IntegrationStatus]] = None,
    ) -> List[Integration]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return [
                integration.model_copy(deep=True)
                for integration in self._integrations.values()
                if wanted is None or integration.status in wanted
            ]

    async def save_integration(self, integration: Integration) -> None:
        with self._lock:
            self._integrations[integration.id] = integration.model_copy(deep=True)

    async def delete_integration(self, integration_id: str) -> bool:
        with self._lock:
            if integration_id not in self._integrations:
                return False
            del self._integrations[integration_id]
            self._logs = {k: v for k, v in self._logs.items() if v.integration_id != integration_id}
            self._entities = {k: v for k, v in self._entities.items() if k[0] != integration_id}
            return True

    async def create_sync_log(
        self,
        integration_id: str,
        sync_type: SyncType = SyncType.SCHEDULED,
    ) -> SyncLog:
        log = _new_sync_log(integration_id, sync_type)
        with self._lock:
            self._logs[log.id] = log
            return log.model_copy(deep=True)

    async def complete_sync_log(
        self,
        log_id: str,
        status: SyncLogStatus,
        records_processed: int = 0,
        error_message: Optional[str] = None,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SyncLog:
        with self._lock:
            log = _check_completable(self._logs.get(log_id), log_id)
            completed = log.model_copy(update={
                "status": status,
                "completed_at": utcnow(),
                "records_processed": records_processed,
                "error_message": error_message,
                "error_type": error_type,
                "details": dict(details or {}),
            })
            self._logs[log_id] = completed
            return completed.model_copy(deep=True)

    async def list_sync_logs(
        self,
        integration_id: str,
        since: Optional[datetime] = None,
    ) -> List[SyncLog]:
        with self._lock:
            logs = [
                log.model_copy(deep=True)
                for log in self._logs.values()
                if log.integration_id == integration_id
                and (since is None or log.started_at >= since)
            ]
        return sorted(logs, key=lambda log: log.started_at)

    async def save_entities(
        self,
        integration_id: str,
        entities: Sequence[RemoteEntity],
        conflict_resolution: ConflictResolution = ConflictResolution.REMOTE_WINS,
    ) -> int:
        written = 0
        with self._lock:
            for entity in entities:
                key = (integration_id, entity.entity_type, entity.external_id)
                if conflict_resolution == ConflictResolution.LOCAL_WINS and key in self._entities:
                    continue
                self._entities[key] = entity.model_copy(deep=True)
                written += 1
        return written

    async def list_entities(
        self,
        integration_id: str,
        entity_type: Optional[EntityType] = None,
    ) -> List[RemoteEntity]:
        with self._lock:
            return [
                entity.model_copy(deep=True)
                for key, entity in self._entities.items()
                if key[0] == integration_id and (entity_type is None or key[1] == entity_type)
            ]


# =============================================================================
# SQLite
# =============================================================================

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC timestamp so SQL string comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class SQLiteIntegrationStore(IntegrationStore):
    """SQLite-backed storage.

    Integrations and entities are stored as JSON documents next to the
    columns queries filter on. Pass ``":memory:"`` for a throwaway database.
    """

    def __init__(self, db_path: str = "crm_sync.db"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            cursor = self._conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS integrations (
                    id TEXT PRIMARY KEY,
                    user_id TEXT,
                    platform TEXT NOT NULL,
                    status TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_integrations_status
                ON integrations(status)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_logs (
                    id TEXT PRIMARY KEY,
                    integration_id TEXT NOT NULL,
                    sync_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    records_processed INTEGER DEFAULT 0,
                    error_message TEXT,
                    error_type TEXT,
                    details TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_sync_logs_integration
                ON sync_logs(integration_id, started_at)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS synced_entities (
                    integration_id TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    source_platform TEXT NOT NULL,
                    modified_at TEXT,
                    data TEXT NOT NULL,
                    synced_at TEXT NOT NULL,
                    PRIMARY KEY (integration_id, entity_type, external_id)
                )
            """)

            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -------------------------------------------------------------------------
    # Integrations
    # -------------------------------------------------------------------------

    async def get_integration(self, integration_id: str) -> Optional[Integration]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM integrations WHERE id = ?", (integration_id,)
            ).fetchone()
        return Integration.model_validate_json(row["data"]) if row else None

    async def list_integrations(
        self,
        statuses: Optional[Iterable[IntegrationStatus]] = None,
    ) -> List[Integration]:
        query = "SELECT data FROM integrations"
        params: List[str] = []
        if statuses is not None:
            values = [IntegrationStatus(s).value for s in statuses]
            if not values:
                return []
            query += f" WHERE status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        query += " ORDER BY id"

        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [Integration.model_validate_json(row["data"]) for row in rows]

    async def save_integration(self, integration: Integration) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO integrations (id, user_id, platform, status, data, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    user_id = excluded.user_id,
                    platform = excluded.platform,
                    status = excluded.status,
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (
                    integration.id,
                    integration.user_id,
                    integration.platform,
                    integration.status.value,
                    integration.model_dump_json(),
                    _ts(integration.updated_at),
                ),
            )
            self._conn.commit()

    async def delete_integration(self, integration_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM integrations WHERE id = ?", (integration_id,))
            deleted = cursor.rowcount > 0
            self._conn.execute("DELETE FROM sync_logs WHERE integration_id = ?", (integration_id,))
            self._conn.execute("DELETE FROM synced_entities WHERE integration_id = ?", (integration_id,))
            self._conn.commit()
        return deleted

    # -------------------------------------------------------------------------
    # Sync logs
    # -------------------------------------------------------------------------

    async def create_sync_log(
        self,
        integration_id: str,
        sync_type: SyncType = SyncType.SCHEDULED,
    ) -> SyncLog:
        log = _new_sync_log(integration_id, sync_type)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO sync_logs (id, integration_id, sync_type, status, started_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (log.id, integration_id, log.sync_type.value, log.status.value, _ts(log.started_at)),
            )
            self._conn.commit()
        return log

    async def complete_sync_log(
        self,
        log_id: str,
        status: SyncLogStatus,
        records_processed: int = 0,
        error_message: Optional[str] = None,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SyncLog:
        with self._lock:
            row = self._conn.execute("SELECT * FROM sync_logs WHERE id = ?", (log_id,)).fetchone()
            log = _check_completable(self._row_to_sync_log(row) if row else None, log_id)
            completed = log.model_copy(update={
                "status": status,
                "completed_at": utcnow(),
                "records_processed": records_processed,
                "error_message": error_message,
                "error_type": error_type,
                "details": dict(details or {}),
            })
            self._conn.execute(
                """
                UPDATE sync_logs
                SET status = ?, completed_at = ?, records_processed = ?,
                    error_message = ?, error_type = ?, details = ?
                WHERE id = ? AND status = ?
                """,
                (
                    completed.status.value,
                    _ts(completed.completed_at),
                    records_processed,
                    error_message,
                    error_type,
                    json.dumps(completed.details, default=str),
                    log_id,
                    SyncLogStatus.RUNNING.value,
                ),
            )
            self._conn.commit()
        return completed

    async def list_sync_logs(
        self,
        integration_id: str,
        since: Optional[datetime] = None,
    ) -> List[SyncLog]:
        query = "SELECT * FROM sync_logs WHERE integration_id = ?"
        params: List[Any] = [integration_id]
        if since is not None:
            query += " AND started_at >= ?"
            params.append(_ts(since))
        query += " ORDER BY started_at"

        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_sync_log(row) for row in rows]

    async def get_sync_statistics(
        self,
        integration_id: str,
        now: Optional[datetime] = None,
    ) -> SyncStatistics:
        now = now or utcnow()
        day_ago = _ts(now - timedelta(hours=24))
        week_ago = _ts(now - timedelta(days=7))

        with self._lock:
            row = self._conn.execute(
                """
                SELECT
                    SUM(CASE WHEN started_at >= :day THEN 1 ELSE 0 END) AS recent,
                    SUM(CASE WHEN started_at >= :week THEN 1 ELSE 0 END) AS weekly,
                    SUM(CASE WHEN started_at >= :day AND status = 'failed' THEN 1 ELSE 0 END) AS failed,
                    MAX(CASE WHEN status = 'completed' THEN COALESCE(completed_at, started_at) END)
                        AS last_success
                FROM sync_logs
                WHERE integration_id = :integration_id
                """,
                {"day": day_ago, "week": week_ago, "integration_id": integration_id},
            ).fetchone()

        recent = row["recent"] or 0
        failed = row["failed"] or 0
        return SyncStatistics(
            syncs_last_24_hours=recent,
            syncs_last_7_days=row["weekly"] or 0,
            last_successful_sync=_parse_ts(row["last_success"]),
            failed_syncs_last_24_hours=failed,
            success_rate=success_rate(recent, failed),
        )

    @staticmethod
    def _row_to_sync_log(row: sqlite3.Row) -> SyncLog:
        return SyncLog(
            id=row["id"],
            integration_id=row["integration_id"],
            sync_type=SyncType(row["sync_type"]),
            status=SyncLogStatus(row["status"]),
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            records_processed=row["records_processed"] or 0,
            error_message=row["error_message"],
            error_type=row["error_type"],
            details=json.loads(row["details"]) if row["details"] else {},
        )

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    async def save_entities(
        self,
        integration_id: str,
        entities: Sequence[RemoteEntity],
        conflict_resolution: ConflictResolution = ConflictResolution.REMOTE_WINS,
    ) -> int:
        if conflict_resolution == ConflictResolution.LOCAL_WINS:
            statement = """
                INSERT OR IGNORE INTO synced_entities
                    (integration_id, entity_type, external_id, source_platform, modified_at, data, synced_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """
        else:
            statement = """
                INSERT INTO synced_entities
                    (integration_id, entity_type, external_id, source_platform, modified_at, data, synced_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(integration_id, entity_type, external_id) DO UPDATE SET
                    source_platform = excluded.source_platform,
                    modified_at = excluded.modified_at,
                    data = excluded.data,
                    synced_at = excluded.synced_at
            """

        synced_at = _ts(utcnow())
        written = 0
        with self._lock:
            for entity in entities:
                cursor = self._conn.execute(
                    statement,
                    (
                        integration_id,
                        entity.entity_type.value,
                        entity.external_id,
                        entity.source_platform,
                        _ts(entity.modified_at),
                        entity.model_dump_json(),
                        synced_at,
                    ),
                )
                written += max(cursor.rowcount, 0)
            self._conn.commit()
        return written

    async def list_entities(
        self,
        integration_id: str,
        entity_type: Optional[EntityType] = None,
    ) -> List[RemoteEntity]:
        query = "SELECT entity_type, data FROM synced_entities WHERE integration_id = ?"
        params: List[Any] = [integration_id]
        if entity_type is not None:
            query += " AND entity_type = ?"
            params.append(EntityType(entity_type).value)
        query += " ORDER BY entity_type, external_id"

        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [
            ENTITY_CLASSES[EntityType(row["entity_type"])].model_validate_json(row["data"])
            for row in rows
        ]
