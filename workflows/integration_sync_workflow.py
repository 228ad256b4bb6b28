"""Durable per-integration sync loop.

One workflow execution per integration: sync, sleep until the next sync is
due, then continue-as-new so history stays bounded.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.sync import (
        INTEGRATION_NOT_FOUND,
        RunSyncInput,
        RunSyncOutput,
        SyncActivities,
    )


TASK_QUEUE = "crm-sync"

SYNC_TIMEOUT = timedelta(minutes=30)
MIN_SLEEP = timedelta(minutes=1)
DEFAULT_SLEEP = timedelta(hours=1)

SYNC_RETRY_POLICY = RetryPolicy(
    initial_interval=timedelta(seconds=30),
    backoff_coefficient=2.0,
    maximum_interval=timedelta(minutes=10),
    maximum_attempts=3,
    non_retryable_error_types=["AUTHENTICATION", "VALIDATION", INTEGRATION_NOT_FOUND],
)


@dataclass
class IntegrationSyncInput:
    """Input for IntegrationSyncWorkflow.

    Attributes:
        integration_id: Integration to keep in sync
        incremental: Only fetch records modified since the last sync
        run_once: Sync a single time instead of looping
    """
    integration_id: str
    incremental: bool = False
    run_once: bool = False


def sleep_until(next_sync_at: Optional[str], now: datetime) -> timedelta:
    """Time to wait before the next sync, never less than MIN_SLEEP."""
    if not next_sync_at:
        return DEFAULT_SLEEP
    due = datetime.fromisoformat(next_sync_at)
    if due.tzinfo is None:
        due = due.replace(tzinfo=timezone.utc)
    return max(due - now, MIN_SLEEP)


@workflow.defn
class IntegrationSyncWorkflow:
    """Keeps one integration synced on its configured frequency.

    The loop stops on an authentication failure. The integration is marked
    as errored by then and needs new credentials before syncing again.
    """

    @workflow.run
    async def run(self, input: IntegrationSyncInput) -> RunSyncOutput:
        workflow.logger.info(f"Starting sync loop for integration {input.integration_id}")

        output = await workflow.execute_activity_method(
            SyncActivities.run_integration_sync,
            RunSyncInput(integration_id=input.integration_id, incremental=input.incremental),
            start_to_close_timeout=SYNC_TIMEOUT,
            retry_policy=SYNC_RETRY_POLICY,
        )

        if input.run_once:
            return output

        if output.error_type == "AUTHENTICATION":
            workflow.logger.warning(
                f"Stopping sync loop for {input.integration_id}: authentication failed"
            )
            return output

        delay = sleep_until(output.next_sync_at, workflow.now())
        workflow.logger.info(f"Next sync of {input.integration_id} in {delay}")
        await asyncio.sleep(delay.total_seconds())

        workflow.continue_as_new(input)
