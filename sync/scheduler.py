"""Periodic sync scheduler.

Every tick, integrations that are due are synced concurrently up to a
bound. Pages within one integration stay sequential (the orchestrator's
job) and one integration is never synced twice at the same time.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from core.models import Integration, IntegrationStatus, SyncResult, SyncType
from core.observability.logging import get_logger
from core.storage import IntegrationStore
from sync.orchestrator import SyncInProgressError, SyncOptions, SyncOrchestrator

logger = get_logger(__name__)

DEFAULT_TICK_SECONDS = 60
SCHEDULABLE_STATUSES = (IntegrationStatus.ACTIVE, IntegrationStatus.WARNING)


def is_due(integration: Integration, now: datetime) -> bool:
    if integration.status not in SCHEDULABLE_STATUSES:
        return False
    if integration.next_sync_at is None:
        return True
    next_sync_at = integration.next_sync_at
    if next_sync_at.tzinfo is None:
        next_sync_at = next_sync_at.replace(tzinfo=timezone.utc)
    return next_sync_at <= now


class SyncScheduler:
    """Runs scheduled syncs for due integrations.

    Usage:
        scheduler = SyncScheduler(store, orchestrator, max_concurrent=4)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        store: IntegrationStore,
        orchestrator: SyncOrchestrator,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        max_concurrent: int = 4,
        incremental: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.tick_seconds = tick_seconds
        self.max_concurrent = max(1, max_concurrent)
        self.incremental = incremental
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Sync scheduler already running")
            return
        logger.info(
            f"Starting sync scheduler (tick {self.tick_seconds}s, up to {self.max_concurrent} concurrent syncs)"
        )
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="sync-scheduler")

    async def stop(self) -> None:
        """Stop ticking. A tick already in progress finishes its syncs first."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Sync scheduler stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Sync scheduler tick failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass

    async def due_integrations(self, now: Optional[datetime] = None) -> List[Integration]:
        now = now or self._clock()
        integrations = await self.store.list_integrations(SCHEDULABLE_STATUSES)
        return [
            integration
            for integration in integrations
            if is_due(integration, now) and not self.orchestrator.is_running(integration.id)
        ]

    async def tick(self) -> Dict[str, SyncResult]:
        """Sync every due integration once. Returns results keyed by integration id."""
        due = await self.due_integrations()
        if not due:
            return {}

        logger.info(f"{len(due)} integrations due for sync")
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run(integration: Integration) -> Optional[SyncResult]:
            async with semaphore:
                options = SyncOptions(sync_type=SyncType.SCHEDULED, incremental=self.incremental)
                try:
                    return await self.orchestrator.sync_integration(integration, options)
                except SyncInProgressError:
                    logger.info(f"Skipping {integration.id}: sync already running")
                    return None

        outcomes = await asyncio.gather(*(run(i) for i in due), return_exceptions=True)

        results: Dict[str, SyncResult] = {}
        for integration, outcome in zip(due, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Scheduled sync of {integration.id} failed: {outcome}",
                    exc_info=outcome,
                )
            elif outcome is not None:
                results[integration.id] = outcome
        return results
