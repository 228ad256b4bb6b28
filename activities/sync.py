"""Sync activities for durable scheduling.

The activities wrap a SyncEngine so the Temporal worker runs exactly the
same code path as the in-process scheduler. Integration failures are
surfaced as ApplicationError with the ErrorType name as the error type, so
workflow retry policies can switch on it.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from temporalio import activity
from temporalio.exceptions import ApplicationError

from core.errors import ErrorInfo, ErrorType, IntegrationError
from core.models import SyncType
from sync.engine import SyncEngine
from sync.orchestrator import SyncInProgressError


NON_RETRYABLE_TYPES = (ErrorType.AUTHENTICATION, ErrorType.VALIDATION)

# Error types raised by these activities that are not ErrorType values
INTEGRATION_NOT_FOUND = "INTEGRATION_NOT_FOUND"
SYNC_IN_PROGRESS = "SYNC_IN_PROGRESS"


@dataclass
class RunSyncInput:
    """Input for run_integration_sync activity.

    Attributes:
        integration_id: Integration to sync
        sync_type: manual, scheduled, webhook or error
        incremental: Only fetch records modified since the last sync
    """
    integration_id: str
    sync_type: str = SyncType.SCHEDULED.value
    incremental: bool = False


@dataclass
class RunSyncOutput:
    """Output from run_integration_sync activity.

    Attributes:
        integration_id: Integration that was synced
        success: True when no entity type reported an error
        synced_count: Normalized records written across all entity types
        error_count: Records that failed normalization or pages that aborted
        duration_ms: Wall-clock duration of the sync
        next_sync_at: ISO timestamp of the next scheduled sync
        error_type: ErrorType name of a sync-level failure, if any
        results: Per entity type counters in camelCase
    """
    integration_id: str
    success: bool
    synced_count: int
    error_count: int
    duration_ms: int
    next_sync_at: Optional[str] = None
    error_type: Optional[str] = None
    results: Dict[str, dict] = field(default_factory=dict)


@dataclass
class HealthCheckInput:
    integration_id: str


@dataclass
class HealthCheckOutput:
    """Output from check_integration_health activity.

    Attributes:
        integration_id: Integration that was probed
        status: healthy, warning, error or unknown
        message: Short description of the outcome
        health_score: 0-100 score, 0 when the check could not run
    """
    integration_id: str
    status: str
    message: str
    health_score: int = 0


def to_application_error(info: ErrorInfo) -> ApplicationError:
    """Convert a classified failure into a Temporal ApplicationError."""
    next_retry_delay = None
    if info.type == ErrorType.RATE_LIMIT and info.retry_after:
        next_retry_delay = timedelta(seconds=info.retry_after)
    return ApplicationError(
        info.message,
        info.to_dict(),
        type=info.type.value,
        non_retryable=info.type in NON_RETRYABLE_TYPES,
        next_retry_delay=next_retry_delay,
    )


class SyncActivities:
    """Activities bound to one engine.

    Usage:
        activities = SyncActivities(engine)
        Worker(client, task_queue=..., activities=[
            activities.run_integration_sync,
            activities.check_integration_health,
        ])
    """

    def __init__(self, engine: SyncEngine):
        self.engine = engine

    @activity.defn(name="run_integration_sync")
    async def run_integration_sync(self, input: RunSyncInput) -> RunSyncOutput:
        activity.logger.info(f"Syncing integration {input.integration_id} ({input.sync_type})")

        try:
            result = await self.engine.sync_now(
                input.integration_id,
                sync_type=SyncType(input.sync_type),
                incremental=input.incremental,
            )
        except KeyError as e:
            raise ApplicationError(
                f"Integration not found: {input.integration_id}",
                type=INTEGRATION_NOT_FOUND,
                non_retryable=True,
            ) from e
        except SyncInProgressError as e:
            raise ApplicationError(str(e), type=SYNC_IN_PROGRESS) from e
        except IntegrationError as e:
            raise to_application_error(e.info) from e

        activity.logger.info(
            f"Integration {input.integration_id} synced: {result.synced_count} records, "
            f"{result.error_count} errors in {result.duration_ms}ms"
        )
        return RunSyncOutput(
            integration_id=result.integration_id,
            success=result.success,
            synced_count=result.synced_count,
            error_count=result.error_count,
            duration_ms=result.duration_ms,
            next_sync_at=result.next_sync_at.isoformat() if result.next_sync_at else None,
            error_type=result.error.type.value if result.error else None,
            results={name: r.to_dict() for name, r in result.results.items()},
        )

    @activity.defn(name="check_integration_health")
    async def check_integration_health(self, input: HealthCheckInput) -> HealthCheckOutput:
        try:
            status = await self.engine.check_health(input.integration_id)
        except KeyError as e:
            raise ApplicationError(
                f"Integration not found: {input.integration_id}",
                type=INTEGRATION_NOT_FOUND,
                non_retryable=True,
            ) from e

        return HealthCheckOutput(
            integration_id=input.integration_id,
            status=status.status.value,
            message=status.message,
            health_score=status.metrics.health_score if status.metrics else 0,
        )
