"""Sync orchestration.

Paginates each configured entity type of an integration, normalizes every
page, hands the normalized records to the store and keeps the integration's
timestamps, rolling statistics and sync log up to date.

Per entity type the loop is:

    FETCHING_PAGE -> PROCESSING_PAGE -> (next cursor ? FETCHING_PAGE : DONE)

A page that still fails after the requester's own retries is fetched again
for the same cursor after a linear pause. More than
MAX_CONSECUTIVE_PAGE_FAILURES failures in a row abort that entity type.
Authentication failures abort at once, put the integration into ``error``
and skip the entity types that have not run yet.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from connectors.crm_base import CRMConnector, ServiceRegistry
from core.errors import (
    ErrorInfo,
    ErrorType,
    IntegrationError,
    SyncAbortedError,
    classify,
)
from core.models import (
    EntitySyncResult,
    EntityType,
    Integration,
    IntegrationStatus,
    SyncLogStatus,
    SyncResult,
    SyncType,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import MetricsCollector
from core.storage import IntegrationStore
from sync.processor import RemoteEntityProcessor

logger = get_logger(__name__)

MAX_CONSECUTIVE_PAGE_FAILURES = 5
PAGE_RETRY_BASE_DELAY = 1.0  # seconds, multiplied by the failure count

SYNC_FREQUENCIES: Dict[str, timedelta] = {
    "every5min": timedelta(minutes=5),
    "every15min": timedelta(minutes=15),
    "every30min": timedelta(minutes=30),
    "hourly": timedelta(hours=1),
    "every2hours": timedelta(hours=2),
    "every6hours": timedelta(hours=6),
    "every12hours": timedelta(hours=12),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
    "monthly": timedelta(days=30),
}
DEFAULT_SYNC_INTERVAL = timedelta(hours=1)


def calculate_next_sync(frequency: Optional[str], now: Optional[datetime] = None) -> datetime:
    """When the next scheduled sync is due. Unknown frequencies mean hourly."""
    now = now or datetime.now(timezone.utc)
    return now + SYNC_FREQUENCIES.get(frequency or "", DEFAULT_SYNC_INTERVAL)


class SyncInProgressError(RuntimeError):
    """A sync of the same integration is already running."""

    def __init__(self, integration_id: str):
        super().__init__(f"Sync already in progress for integration {integration_id}")
        self.integration_id = integration_id


@dataclass
class SyncOptions:
    """Per-call sync options.

    Attributes:
        sync_type: Recorded on the sync log
        modified_since: Only fetch records modified since this time
        incremental: Use the integration's last_sync_at as modified_since
        entity_types: Override the configured data types
        batch_size: Override the configured page size
    """
    sync_type: SyncType = SyncType.SCHEDULED
    modified_since: Optional[datetime] = None
    incremental: bool = False
    entity_types: Optional[List[EntityType]] = None
    batch_size: Optional[int] = None


class SyncOrchestrator:
    """Runs syncs for integrations.

    Usage:
        orchestrator = SyncOrchestrator(store, registry, metrics=metrics)
        result = await orchestrator.sync_integration(integration)
    """

    def __init__(
        self,
        store: IntegrationStore,
        registry: ServiceRegistry,
        processor: Optional[RemoteEntityProcessor] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_consecutive_failures: int = MAX_CONSECUTIVE_PAGE_FAILURES,
        page_retry_delay: float = PAGE_RETRY_BASE_DELAY,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.registry = registry
        self.processor = processor or RemoteEntityProcessor()
        self.metrics = metrics
        self._sleep = sleep
        self.max_consecutive_failures = max_consecutive_failures
        self.page_retry_delay = page_retry_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._running: Set[str] = set()

    def is_running(self, integration_id: str) -> bool:
        return integration_id in self._running

    # =========================================================================
    # Entity type
    # =========================================================================

    async def sync_entity_type(
        self,
        integration: Integration,
        connector: CRMConnector,
        entity_type: EntityType,
        options: Optional[SyncOptions] = None,
    ) -> EntitySyncResult:
        """Paginate one entity type to completion.

        Raises:
            SyncAbortedError: Too many consecutive page failures
            IntegrationError: Authentication failure while fetching a page
        """
        entity_type = EntityType(entity_type)
        result = EntitySyncResult(entity_type=entity_type.value)
        await self._paginate(integration, connector, entity_type, options or SyncOptions(), result)
        return result

    async def _paginate(
        self,
        integration: Integration,
        connector: CRMConnector,
        entity_type: EntityType,
        options: SyncOptions,
        result: EntitySyncResult,
    ) -> None:
        settings = integration.configuration.settings
        batch_size = options.batch_size or settings.batch_size
        modified_since = options.modified_since
        if modified_since is None and options.incremental:
            modified_since = integration.last_sync_at

        cursor: Optional[str] = None
        consecutive_failures = 0

        with with_correlation(entity_type=entity_type.value):
            while True:
                # FETCHING_PAGE
                try:
                    page = await connector.fetch_page(
                        entity_type,
                        after=cursor,
                        limit=batch_size,
                        modified_since=modified_since,
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    info = classify(e, integration.platform)
                    if info.type == ErrorType.AUTHENTICATION:
                        if isinstance(e, IntegrationError):
                            raise
                        raise IntegrationError(info) from e

                    consecutive_failures += 1
                    if self.metrics:
                        self.metrics.record_page_failure(integration.platform, entity_type.value)
                    logger.warning(
                        f"Page fetch failed ({consecutive_failures} in a row): {info.message}",
                        extra_fields={"error_type": info.type.value, "cursor": cursor},
                    )
                    if consecutive_failures > self.max_consecutive_failures:
                        raise SyncAbortedError(info, entity_type.value, consecutive_failures) from e
                    await self._sleep(consecutive_failures * self.page_retry_delay)
                    continue

                consecutive_failures = 0
                result.page_count += 1

                # PROCESSING_PAGE
                result.total_fetched += len(page.records)
                batch = self.processor.process_batch(page.records, integration.platform, entity_type)
                if batch.normalized:
                    await self.store.save_entities(
                        integration.id,
                        batch.normalized,
                        settings.conflict_resolution,
                    )
                result.synced_count += len(batch.normalized)
                result.error_count += len(batch.errors)
                result.skipped_count += len(batch.skipped)
                if self.metrics:
                    self.metrics.record_records(
                        integration.platform,
                        entity_type.value,
                        synced=len(batch.normalized),
                        skipped=len(batch.skipped),
                        errors=len(batch.errors),
                    )

                logger.debug(
                    f"Processed page {result.page_count} of {entity_type.value}",
                    extra_fields={"records": len(page.records), "normalized": len(batch.normalized)},
                )

                if not page.next_cursor:
                    break
                if page.next_cursor == cursor:
                    logger.warning(f"Remote returned the same cursor twice, stopping at page {result.page_count}")
                    break
                cursor = page.next_cursor

    # =========================================================================
    # Integration
    # =========================================================================

    async def sync_integration(
        self,
        integration: Integration,
        options: Optional[SyncOptions] = None,
    ) -> SyncResult:
        """Sync every configured entity type of an integration.

        Entity types run one after another and fail independently.

        Raises:
            SyncInProgressError: The integration is already being synced
        """
        if integration.id in self._running:
            raise SyncInProgressError(integration.id)

        self._running.add(integration.id)
        try:
            return await self._sync_integration(integration, options or SyncOptions())
        finally:
            self._running.discard(integration.id)

    async def _sync_integration(self, integration: Integration, options: SyncOptions) -> SyncResult:
        started = time.monotonic()
        platform = integration.platform
        sync_log = await self.store.create_sync_log(integration.id, options.sync_type)
        if self.metrics:
            self.metrics.record_sync_started(platform)

        with with_correlation(
            integration_id=integration.id,
            platform=platform,
            user_id=integration.user_id,
            sync_log_id=sync_log.id,
            component="sync",
        ):
            logger.info(f"Starting {options.sync_type.value} sync")
            try:
                result = await self._run_entity_types(integration, options)
            except Exception as e:
                info = classify(e, platform)
                logger.exception(f"Sync crashed: {info.message}")
                await self.store.complete_sync_log(
                    sync_log.id,
                    SyncLogStatus.FAILED,
                    error_message=info.message,
                    error_type=info.type.value,
                )
                if self.metrics:
                    self.metrics.record_sync_failed(platform)
                raise

            result.sync_log_id = sync_log.id
            result.duration_ms = int((time.monotonic() - started) * 1000)
            finished_at = self._clock()
            result.next_sync_at = calculate_next_sync(
                integration.configuration.sync_frequency, finished_at
            )

            await self._write_back(integration, result, finished_at)

            failed_types = [r for r in result.results.values() if r.error is not None]
            log_failed = result.error is not None or bool(failed_types)
            first_error = result.error or (failed_types[0].error if failed_types else None)
            await self.store.complete_sync_log(
                sync_log.id,
                SyncLogStatus.FAILED if log_failed else SyncLogStatus.COMPLETED,
                records_processed=result.synced_count,
                error_message=first_error.message if first_error else None,
                error_type=first_error.type.value if first_error else None,
                details=result.to_dict()["results"],
            )

            if self.metrics:
                if log_failed:
                    self.metrics.record_sync_failed(platform, result.duration_ms)
                else:
                    self.metrics.record_sync_completed(platform, result.duration_ms)

            logger.info(
                f"Sync finished: {result.synced_count} synced, {result.error_count} errors",
                extra_fields={"duration_ms": result.duration_ms, "success": result.success},
            )
            return result

    async def _run_entity_types(self, integration: Integration, options: SyncOptions) -> SyncResult:
        result = SyncResult(integration_id=integration.id)

        try:
            connector = self.registry.for_integration(integration)
        except ValueError as e:
            # Unsupported platform or incomplete configuration
            result.error = classify(e, integration.platform)
            result.success = False
            result.error_count = 1
            logger.error(f"Cannot build connector: {result.error.message}")
            return result

        entity_types = options.entity_types or integration.configuration.data_types
        auth_error: Optional[ErrorInfo] = None

        try:
            for entity_type in entity_types:
                entity_type = EntityType(entity_type)
                if auth_error is not None:
                    result.skipped_entity_types.append(entity_type.value)
                    continue

                type_result = EntitySyncResult(entity_type=entity_type.value)
                result.results[entity_type.value] = type_result
                try:
                    await self._paginate(integration, connector, entity_type, options, type_result)
                except SyncAbortedError as e:
                    type_result.aborted = True
                    type_result.error = e.info
                    type_result.error_count += 1
                    logger.error(str(e))
                except Exception as e:
                    info = classify(e, integration.platform)
                    type_result.error = info
                    type_result.error_count += 1
                    if info.type == ErrorType.AUTHENTICATION:
                        auth_error = info
                        logger.error(f"Authentication failed, skipping remaining entity types: {info.message}")
                    else:
                        logger.exception(f"Sync of {entity_type.value} failed: {info.message}")
        finally:
            await connector.close()

        if auth_error is not None:
            result.error = auth_error
        result.synced_count = sum(r.synced_count for r in result.results.values())
        result.error_count = sum(r.error_count for r in result.results.values())
        result.success = result.error_count == 0 and result.error is None
        return result

    async def _write_back(self, integration: Integration, result: SyncResult, finished_at: datetime) -> None:
        """Persist timestamps, rolling statistics and an auth-driven status change."""
        current = await self.store.get_integration(integration.id) or integration
        skipped = sum(r.skipped_count for r in result.results.values())

        stats = current.sync_stats.model_copy(update={
            "total_synced": current.sync_stats.total_synced + result.synced_count,
            "errors": current.sync_stats.errors + result.error_count,
            "warnings": current.sync_stats.warnings + skipped,
            "last_sync_duration_ms": result.duration_ms,
        })
        update: Dict[str, Any] = {
            "last_sync_at": finished_at,
            "next_sync_at": result.next_sync_at,
            "sync_stats": stats,
            "updated_at": finished_at,
        }
        if result.error is not None and result.error.type == ErrorType.AUTHENTICATION:
            update["status"] = IntegrationStatus.ERROR
            update["error_message"] = result.error.message

        await self.store.save_integration(current.model_copy(update=update))
