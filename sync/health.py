"""Integration health monitoring.

A periodic actor that probes every monitored integration, scores it and
writes status transitions back to the store. One failing check never
affects the others and never stops the loop.

Score (0-100):
- connectivity: 40
- probe response time: 20 / 15 / 10 / 0 at <1s / <5s / <10s / slower
- 24h success rate: 25 / 20 / 15 / 10 / 0 at >=95 / >=80 / >=60 / >=40 / lower
- last successful sync: 15 / 12 / 8 / 4 / 0 at <1h / <6h / <24h / <72h / older or never
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from connectors.crm_base import ServiceRegistry
from core.errors import ErrorType, classify
from core.models import (
    HealthMetrics,
    HealthReport,
    HealthState,
    HealthStatus,
    HealthSummary,
    Integration,
    IntegrationStatus,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import MetricsCollector
from core.storage import IntegrationStore

logger = get_logger(__name__)

DEFAULT_CHECK_INTERVAL_SECONDS = 300
SLOW_RESPONSE_MS = 10_000
WARNING_SCORE_THRESHOLD = 50

MONITORED_STATUSES = (
    IntegrationStatus.ACTIVE,
    IntegrationStatus.ERROR,
    IntegrationStatus.WARNING,
)

_PERSISTED_STATUS = {
    HealthState.HEALTHY: IntegrationStatus.ACTIVE,
    HealthState.WARNING: IntegrationStatus.WARNING,
    HealthState.ERROR: IntegrationStatus.ERROR,
}


# =============================================================================
# Scoring
# =============================================================================

def calculate_health_score(
    connected: bool,
    response_time_ms: Optional[float],
    success_rate: float,
    last_sync_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> int:
    """Weighted health score clamped to 0-100."""
    score = 0

    if connected:
        score += 40

    if response_time_ms is not None:
        if response_time_ms < 1000:
            score += 20
        elif response_time_ms < 5000:
            score += 15
        elif response_time_ms < 10000:
            score += 10

    if success_rate >= 95:
        score += 25
    elif success_rate >= 80:
        score += 20
    elif success_rate >= 60:
        score += 15
    elif success_rate >= 40:
        score += 10

    if last_sync_at is not None:
        now = now or datetime.now(timezone.utc)
        if last_sync_at.tzinfo is None:
            last_sync_at = last_sync_at.replace(tzinfo=timezone.utc)
        hours = (now - last_sync_at).total_seconds() / 3600
        if hours < 1:
            score += 15
        elif hours < 6:
            score += 12
        elif hours < 24:
            score += 8
        elif hours < 72:
            score += 4

    return max(0, min(100, score))


def derive_status(connected: bool, health_score: int, response_time_ms: Optional[float]) -> HealthState:
    if not connected:
        return HealthState.ERROR
    if health_score < WARNING_SCORE_THRESHOLD:
        return HealthState.WARNING
    if response_time_ms is not None and response_time_ms > SLOW_RESPONSE_MS:
        return HealthState.WARNING
    return HealthState.HEALTHY


def summarize(statuses: List[HealthStatus]) -> HealthSummary:
    total = len(statuses)
    counts = {state: 0 for state in HealthState}
    for status in statuses:
        counts[status.status] += 1
    healthy = counts[HealthState.HEALTHY]
    return HealthSummary(
        total=total,
        healthy=healthy,
        warning=counts[HealthState.WARNING],
        error=counts[HealthState.ERROR],
        unknown=counts[HealthState.UNKNOWN],
        health_percentage=round(healthy / total * 100, 2) if total else 100.0,
    )


# =============================================================================
# Monitor
# =============================================================================

class HealthMonitor:
    """Periodic health checker for integrations.

    Usage:
        monitor = HealthMonitor(store, registry, metrics=metrics)
        await monitor.start()   # runs one check immediately
        ...
        await monitor.stop()
    """

    def __init__(
        self,
        store: IntegrationStore,
        registry: ServiceRegistry,
        interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        metrics: Optional[MetricsCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.metrics = metrics
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._statuses: Dict[str, HealthStatus] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._started_at: Optional[float] = None
        self._last_check_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Run one check now, then keep checking every interval."""
        if self.is_running:
            logger.warning("Health monitor already running")
            return

        logger.info(f"Starting health monitor (interval {self.interval_seconds}s)")
        self._stop_event = asyncio.Event()
        self._started_at = time.monotonic()
        await self._tick()
        self._task = asyncio.create_task(self._run(), name="health-monitor")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self._started_at = None
        logger.info("Health monitor stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            await self._tick()

    async def _tick(self) -> None:
        try:
            await self.check_all()
        except Exception:
            logger.exception("Health check tick failed")

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    async def check_all(self) -> HealthReport:
        """Check every monitored integration concurrently."""
        integrations = await self.store.list_integrations(MONITORED_STATUSES)
        outcomes = await asyncio.gather(
            *(self.check_one(integration) for integration in integrations),
            return_exceptions=True,
        )

        statuses: Dict[str, HealthStatus] = {}
        for integration, outcome in zip(integrations, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                outcome = self._failed_status(integration, outcome)
            statuses[integration.id] = outcome

        self._statuses = statuses
        self._last_check_at = self._clock()

        report = self._build_report(list(statuses.values()))
        summary = report.summary
        if summary.warning or summary.error:
            logger.warning(
                f"Integration health alert: {summary.error} error, {summary.warning} warning "
                f"of {summary.total} integrations",
                extra_fields={
                    "healthy": summary.healthy,
                    "health_percentage": summary.health_percentage,
                    "unhealthy": [
                        status.integration_id
                        for status in statuses.values()
                        if status.status in (HealthState.WARNING, HealthState.ERROR)
                    ],
                },
            )
        return report

    async def check_one(self, integration: Integration) -> HealthStatus:
        """Probe, score and persist the health of one integration. Never raises."""
        with with_correlation(
            integration_id=integration.id,
            platform=integration.platform,
            component="health",
        ):
            try:
                status = await self._check(integration)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Health check failed: {e}")
                status = self._failed_status(integration, e)

            if self.metrics:
                response_time = status.metrics.response_time_ms if status.metrics else None
                self.metrics.record_health_check(status.status.value, response_time)

            try:
                await self._write_back(integration, status)
            except Exception:
                logger.exception("Could not persist health status")
            return status

    async def _check(self, integration: Integration) -> HealthStatus:
        now = self._clock()
        if not self.registry.is_supported(integration.platform):
            return HealthStatus(
                integration_id=integration.id,
                platform=integration.platform,
                status=HealthState.UNKNOWN,
                message=f"No service available for platform: {integration.platform}",
                timestamp=now,
            )

        connector = self.registry.for_integration(integration)
        try:
            started = time.monotonic()
            probe = await connector.test_connection()
            response_time_ms = probe.response_time_ms
            if response_time_ms is None:
                response_time_ms = round((time.monotonic() - started) * 1000, 2)
        finally:
            await connector.close()

        stats = await self.store.get_sync_statistics(integration.id, now)
        # A throttled platform answered, so it counts as reachable
        throttled = probe.error is not None and probe.error.type == ErrorType.RATE_LIMIT
        connected = probe.success or throttled
        score = calculate_health_score(
            connected,
            response_time_ms,
            stats.success_rate,
            stats.last_successful_sync,
            now,
        )
        state = derive_status(connected, score, response_time_ms)

        if state == HealthState.ERROR:
            message = f"Connection failed: {probe.message}"
        elif throttled:
            message = f"Rate limited: {probe.message}"
        elif score < WARNING_SCORE_THRESHOLD:
            message = f"Low health score: {score}"
        elif state == HealthState.WARNING:
            message = f"Slow response time: {response_time_ms:.0f}ms"
        else:
            message = "Integration is healthy"

        return HealthStatus(
            integration_id=integration.id,
            platform=integration.platform,
            status=state,
            message=message,
            timestamp=now,
            error_type=probe.error.type.value if probe.error else None,
            metrics=HealthMetrics(
                response_time_ms=response_time_ms,
                health_score=score,
                connected=connected,
                sync_statistics=stats,
            ),
        )

    def _failed_status(self, integration: Integration, error: BaseException) -> HealthStatus:
        info = classify(error, integration.platform)
        return HealthStatus(
            integration_id=integration.id,
            platform=integration.platform,
            status=HealthState.ERROR,
            message=f"Health check failed: {info.message}",
            timestamp=self._clock(),
            error_type=info.type.value,
            metrics=HealthMetrics(connected=False, health_score=0),
        )

    async def _write_back(self, integration: Integration, status: HealthStatus) -> None:
        """Record the check; change the persisted status only on a real transition."""
        current = await self.store.get_integration(integration.id)
        if current is None:
            return

        update: Dict[str, Any] = {"last_checked_at": status.timestamp}
        target = _PERSISTED_STATUS.get(status.status)
        entering_problem = (
            status.status in (HealthState.ERROR, HealthState.WARNING)
            and current.status != target
        )
        recovering = (
            status.status == HealthState.HEALTHY
            and current.status in (IntegrationStatus.ERROR, IntegrationStatus.WARNING)
        )

        if entering_problem:
            update["status"] = target
            update["error_message"] = status.message
            update["updated_at"] = status.timestamp
            logger.info(f"Integration status {current.status.value} -> {target.value}: {status.message}")
        elif recovering:
            update["status"] = IntegrationStatus.ACTIVE
            update["error_message"] = None
            update["updated_at"] = status.timestamp
            logger.info(f"Integration recovered ({current.status.value} -> active)")

        await self.store.save_integration(current.model_copy(update=update))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_status(self, integration_id: str) -> Optional[HealthStatus]:
        status = self._statuses.get(integration_id)
        return status.model_copy(deep=True) if status else None

    def get_all_statuses(self) -> Dict[str, HealthStatus]:
        return {key: status.model_copy(deep=True) for key, status in self._statuses.items()}

    async def force_check(self, integration_id: str) -> HealthStatus:
        """Check one integration right away.

        Raises:
            KeyError: If the integration does not exist
        """
        integration = await self.store.get_integration(integration_id)
        if integration is None:
            raise KeyError(f"Integration not found: {integration_id}")
        status = await self.check_one(integration)
        self._statuses[integration_id] = status
        return status.model_copy(deep=True)

    def generate_report(self) -> HealthReport:
        """Report over the latest known statuses."""
        return self._build_report(list(self._statuses.values()))

    def _build_report(self, statuses: List[HealthStatus]) -> HealthReport:
        return HealthReport(
            timestamp=self._clock(),
            summary=summarize(statuses),
            details={status.integration_id: status.model_copy(deep=True) for status in statuses},
        )

    def get_service_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "last_check_at": self._last_check_at.isoformat() if self._last_check_at else None,
            "monitored_integrations": len(self._statuses),
            "uptime_seconds": (
                round(time.monotonic() - self._started_at, 1) if self._started_at is not None else 0
            ),
        }
