"""Worker for the CRM sync engine.

Two ways to run:
- local: in-process scheduler and health monitor, no Temporal server needed
- temporal: Temporal worker executing IntegrationSyncWorkflow and the sync
  activities, plus the in-process health monitor

Run with --mode local (default) or --mode temporal.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from activities.sync import SyncActivities
from core.config import Settings
from core.observability.logging import configure_logging, get_logger
from sync.engine import SyncEngine
from temporal_client import get_temporal_client
from workflows.integration_sync_workflow import IntegrationSyncWorkflow


logger = get_logger(__name__)

MODE_LOCAL = "local"
MODE_TEMPORAL = "temporal"


async def run_local(settings: Settings):
    """Run the scheduler and monitor in this process until cancelled."""
    engine = SyncEngine(settings)
    try:
        await engine.start()
        logger.info("Sync engine running... (Ctrl+C to stop)")
        await asyncio.Event().wait()
    finally:
        await engine.stop()


async def run_temporal_worker(settings: Settings):
    """Poll the sync task queue on Temporal.

    Raises:
        Exception: If connection to Temporal fails
    """
    engine = SyncEngine(settings)
    activities = SyncActivities(engine)

    try:
        client = await get_temporal_client(settings)
        logger.info(f"Connected to Temporal: {client.namespace}")

        await engine.start(run_scheduler=False, run_monitor=True)

        worker = Worker(
            client,
            task_queue=settings.temporal_task_queue,
            workflows=[IntegrationSyncWorkflow],
            activities=[
                activities.run_integration_sync,
                activities.check_integration_health,
            ],
        )
        logger.info(f"Worker running on queue '{settings.temporal_task_queue}'... (Ctrl+C to stop)")
        await worker.run()
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise
    finally:
        await engine.stop()


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="CRM Sync Worker")
    parser.add_argument(
        "--mode", "-m",
        choices=[MODE_LOCAL, MODE_TEMPORAL],
        default=MODE_LOCAL,
        help="local: in-process scheduler; temporal: Temporal worker (default: local)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL"
    )

    args = parser.parse_args()
    settings = Settings.from_env()
    configure_logging(level=args.log_level or settings.log_level, json_format=settings.log_json)

    runner = run_local if args.mode == MODE_LOCAL else run_temporal_worker
    try:
        asyncio.run(runner(settings))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
