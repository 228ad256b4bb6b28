"""Sync engine wiring.

Builds every long-lived component once, from settings, and owns their
lifecycle: the shared HTTP session, the credential cipher, the platform
registry, the orchestrator and the two periodic actors.

Usage:
    settings = Settings.from_env()
    async with SyncEngine(settings) as engine:
        result = await engine.sync_now("int-001")
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from connectors.crm_base import ConnectionResult, ServiceRegistry
from connectors.hubspot import HubSpotApiConfig
from connectors.registry import build_default_registry
from core.config import Settings
from core.models import HealthReport, HealthStatus, SyncResult, SyncType
from core.observability.logging import get_logger
from core.observability.metrics import MetricsCollector
from core.security import CredentialCipher
from core.storage import IntegrationStore, SQLiteIntegrationStore
from sync.health import HealthMonitor
from sync.orchestrator import SyncOptions, SyncOrchestrator
from sync.scheduler import SyncScheduler

logger = get_logger(__name__)


class SyncEngine:
    """One per process. Construct at startup, then start() / stop()."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[IntegrationStore] = None,
        session: Optional[aiohttp.ClientSession] = None,
        metrics: Optional[MetricsCollector] = None,
        registry: Optional[ServiceRegistry] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.metrics = metrics or MetricsCollector()
        self.store = store or SQLiteIntegrationStore(settings.db_path)
        self.cipher = CredentialCipher(settings.require_encryption_key())

        self._session = session
        self._owns_session = session is None

        self.registry = registry or build_default_registry(
            session_provider=self._get_session,
            decrypt=self.cipher.decrypt,
            retry_policy=settings.retry_policy(),
            hubspot_config=HubSpotApiConfig(
                base_url=settings.hubspot_base_url,
                timeout_seconds=settings.hubspot_timeout_seconds,
            ),
            metrics=self.metrics,
            sleep=sleep,
        )
        self.orchestrator = SyncOrchestrator(
            self.store,
            self.registry,
            metrics=self.metrics,
            sleep=sleep,
            max_consecutive_failures=settings.max_consecutive_page_failures,
            page_retry_delay=settings.retry_base_delay_ms / 1000.0,
        )
        self.scheduler = SyncScheduler(
            self.store,
            self.orchestrator,
            tick_seconds=settings.scheduler_tick_seconds,
            max_concurrent=settings.max_concurrent_syncs,
        )
        self.monitor = HealthMonitor(
            self.store,
            self.registry,
            interval_seconds=settings.health_check_interval_seconds,
            metrics=self.metrics,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, run_scheduler: bool = True, run_monitor: bool = True) -> None:
        logger.info(f"Starting sync engine ({self.settings.environment})")
        if run_monitor:
            await self.monitor.start()
        if run_scheduler:
            await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.monitor.stop()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None if self._owns_session else self._session
        logger.info("Sync engine stopped")

    async def __aenter__(self) -> "SyncEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Operations for the host application
    # -------------------------------------------------------------------------

    async def sync_now(
        self,
        integration_id: str,
        sync_type: SyncType = SyncType.MANUAL,
        incremental: bool = False,
    ) -> SyncResult:
        """Sync one integration right away.

        Raises:
            KeyError: If the integration does not exist
            SyncInProgressError: If it is already being synced
        """
        integration = await self.store.get_integration(integration_id)
        if integration is None:
            raise KeyError(f"Integration not found: {integration_id}")
        options = SyncOptions(sync_type=sync_type, incremental=incremental)
        return await self.orchestrator.sync_integration(integration, options)

    async def get_sync_status(self, integration_id: str) -> Dict[str, Any]:
        """Current sync state of one integration, camelCase keyed.

        Raises:
            KeyError: If the integration does not exist
        """
        integration = await self.store.get_integration(integration_id)
        if integration is None:
            raise KeyError(f"Integration not found: {integration_id}")
        data = integration.model_dump(
            mode="json",
            by_alias=True,
            include={"id", "platform", "status", "last_sync_at", "next_sync_at", "sync_stats"},
        )
        return {
            "integrationId": data["id"],
            "platform": data["platform"],
            "status": data["status"],
            "lastSyncAt": data["lastSyncAt"],
            "nextSyncAt": data["nextSyncAt"],
            "syncStats": data["syncStats"],
            "syncFrequency": integration.configuration.sync_frequency,
            "dataTypes": [t.value for t in integration.configuration.data_types],
        }

    async def test_connection(self, integration_id: str) -> ConnectionResult:
        integration = await self.store.get_integration(integration_id)
        if integration is None:
            raise KeyError(f"Integration not found: {integration_id}")
        connector = self.registry.for_integration(integration)
        try:
            return await connector.test_connection()
        finally:
            await connector.close()

    async def check_health(self, integration_id: str) -> HealthStatus:
        return await self.monitor.force_check(integration_id)

    def health_report(self) -> HealthReport:
        return self.monitor.generate_report()

    def encrypt_api_key(self, api_key: str, integration_id: str = "") -> str:
        """Blob to store as the integration's apiKeyEncrypted."""
        return self.cipher.encrypt(api_key, associated_data=integration_id).to_blob()
