"""
Observability Module for the CRM sync engine

Provides:
- Structured logging with correlation IDs
- Metrics collection (syncs, records, retries, health checks, timings)
"""

from core.observability.metrics import MetricsCollector

from core.observability.logging import (
    configure_logging,
    get_logger,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    # Logging
    "configure_logging",
    "get_logger",
    "CorrelationContext",
    "with_correlation",
]
