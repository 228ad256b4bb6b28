"""Workflow definitions module."""

from workflows.integration_sync_workflow import (
    IntegrationSyncWorkflow,
    IntegrationSyncInput,
    TASK_QUEUE,
)

__all__ = ["IntegrationSyncWorkflow", "IntegrationSyncInput", "TASK_QUEUE"]
