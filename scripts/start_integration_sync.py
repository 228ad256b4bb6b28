"""Start IntegrationSyncWorkflow for one or all active integrations.

Each integration gets a single long-running workflow with a stable id, so
starting it twice is a no-op.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.client import WorkflowExecutionStatus
from temporalio.exceptions import WorkflowAlreadyStartedError

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import Settings
from core.models import IntegrationStatus
from core.observability.logging import configure_logging, get_logger
from core.storage import SQLiteIntegrationStore
from temporal_client import get_temporal_client
from workflows.integration_sync_workflow import IntegrationSyncInput, IntegrationSyncWorkflow


logger = get_logger(__name__)


def workflow_id_for(integration_id: str) -> str:
    return f"integration-sync-{integration_id}"


async def start_integration_sync(integration_ids=None, incremental: bool = False) -> int:
    """Start sync workflows and return how many were started.

    Args:
        integration_ids: Integrations to start; all active ones when empty
        incremental: Only fetch records modified since the last sync
    """
    settings = Settings.from_env()
    store = SQLiteIntegrationStore(settings.db_path)
    try:
        if not integration_ids:
            integrations = await store.list_integrations([IntegrationStatus.ACTIVE])
            integration_ids = [i.id for i in integrations]
    finally:
        store.close()

    if not integration_ids:
        logger.info("No active integrations to sync")
        return 0

    client = await get_temporal_client(settings)
    logger.info(f"Connected to Temporal: {client.namespace}")

    started = 0
    for integration_id in integration_ids:
        workflow_id = workflow_id_for(integration_id)
        try:
            await client.start_workflow(
                IntegrationSyncWorkflow.run,
                IntegrationSyncInput(integration_id=integration_id, incremental=incremental),
                id=workflow_id,
                task_queue=settings.temporal_task_queue,
            )
            started += 1
            logger.info(f"Started {workflow_id}")
        except WorkflowAlreadyStartedError:
            handle = client.get_workflow_handle(workflow_id)
            description = await handle.describe()
            if description.status == WorkflowExecutionStatus.RUNNING:
                logger.info(f"{workflow_id} already running")
            else:
                logger.warning(f"{workflow_id} exists with status {description.status}")

    return started


def main():
    parser = argparse.ArgumentParser(description="Start CRM sync workflows")
    parser.add_argument("integration_ids", nargs="*", help="Integration ids (default: all active)")
    parser.add_argument("--incremental", action="store_true", help="Incremental syncs")
    args = parser.parse_args()

    configure_logging()
    started = asyncio.run(start_integration_sync(args.integration_ids, args.incremental))
    print(f"Started {started} workflow(s)")


if __name__ == "__main__":
    main()
