"""
Metrics Collection for the CRM sync engine

Collects and exposes metrics for:
- Sync lifecycle (started, completed, failed) per platform
- Records synced, skipped and rejected per entity type
- Request retries by error type and page fetch failures
- Health checks by resulting status
- Processing times (average, p95)

Metrics are held in memory. One collector is owned by the engine and
injected into the components that report to it.
"""

import statistics
from collections import defaultdict, deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Deque, Dict, Optional


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class SyncMetrics:
    """Metrics for sync execution."""
    started: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0

    # By platform
    by_platform: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "failed": 0})
    )


@dataclass
class RecordMetrics:
    """Per-record outcomes, keyed by entity type."""
    synced: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    skipped: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    errors: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class RequestMetrics:
    """Outbound request retries and page failures."""
    retries: int = 0
    retries_by_type: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    page_failures: int = 0
    page_failures_by_entity: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


class TimingMetrics:
    """Rolling window of timing samples, overall and per stage."""

    def __init__(self, max_samples: int = 1000):
        self.max_samples = max_samples
        self.samples: Deque[float] = deque(maxlen=max_samples)
        self.by_stage: Dict[str, Deque[float]] = {}

    def add_sample(self, duration_ms: float, stage: Optional[str] = None):
        self.samples.append(duration_ms)
        if stage:
            self.by_stage.setdefault(stage, deque(maxlen=self.max_samples)).append(duration_ms)

    def stats(self, stage: Optional[str] = None) -> Dict[str, float]:
        """Average, p95 and sample count for one stage, or for every sample."""
        window = sorted(self.by_stage.get(stage, ()) if stage else self.samples)
        if not window:
            return {"average_ms": 0.0, "p95_ms": 0.0, "sample_count": 0}
        p95_index = min(int(len(window) * 0.95), len(window) - 1)
        return {
            "average_ms": statistics.mean(window),
            "p95_ms": window[p95_index],
            "sample_count": len(window),
        }


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for the sync engine.

    Usage:
        metrics = MetricsCollector()
        metrics.record_sync_started("hubspot")
        metrics.record_records("hubspot", "contacts", synced=98, skipped=2, errors=0)
    """

    def __init__(self):
        self.syncs = SyncMetrics()
        self.records = RecordMetrics()
        self.requests = RequestMetrics()
        self.timings = TimingMetrics()
        self.health_checks: Dict[str, int] = defaultdict(int)
        self._lock = Lock()

    # =========================================================================
    # Sync Metrics
    # =========================================================================

    def record_sync_started(self, platform: str):
        """Record a sync start."""
        with self._lock:
            self.syncs.started += 1
            self.syncs.in_progress += 1
            self.syncs.by_platform[platform]["started"] += 1

    def record_sync_completed(self, platform: str, duration_ms: float = None):
        """Record a sync completion."""
        with self._lock:
            self.syncs.completed += 1
            self.syncs.in_progress = max(0, self.syncs.in_progress - 1)
            self.syncs.by_platform[platform]["completed"] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, f"sync.{platform}")

    def record_sync_failed(self, platform: str, duration_ms: float = None):
        """Record a sync that finished with errors."""
        with self._lock:
            self.syncs.failed += 1
            self.syncs.in_progress = max(0, self.syncs.in_progress - 1)
            self.syncs.by_platform[platform]["failed"] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, f"sync.{platform}")

    def record_records(self, platform: str, entity_type: str, synced: int = 0, skipped: int = 0, errors: int = 0):
        """Record per-record outcomes of one page or entity type."""
        key = f"{platform}.{entity_type}"
        with self._lock:
            self.records.synced[key] += synced
            self.records.skipped[key] += skipped
            self.records.errors[key] += errors

    # =========================================================================
    # Request Metrics
    # =========================================================================

    def record_retry(self, platform: str, error_type: str):
        """Record a retried outbound request."""
        with self._lock:
            self.requests.retries += 1
            self.requests.retries_by_type[f"{platform}.{error_type}"] += 1

    def record_page_failure(self, platform: str, entity_type: str):
        """Record a page fetch that failed after the requester's retries."""
        with self._lock:
            self.requests.page_failures += 1
            self.requests.page_failures_by_entity[f"{platform}.{entity_type}"] += 1

    # =========================================================================
    # Health Metrics
    # =========================================================================

    def record_health_check(self, status: str, response_time_ms: float = None):
        """Record a health check result."""
        with self._lock:
            self.health_checks[status] += 1
            if response_time_ms is not None:
                self.timings.add_sample(response_time_ms, "health.probe")

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return self.timings.stats(stage)

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of every counter. Safe to serialize as JSON."""
        with self._lock:
            return {
                "syncs": {
                    "started": self.syncs.started,
                    "completed": self.syncs.completed,
                    "failed": self.syncs.failed,
                    "in_progress": self.syncs.in_progress,
                    "by_platform": {k: dict(v) for k, v in self.syncs.by_platform.items()},
                },
                "records": {
                    "synced": dict(self.records.synced),
                    "skipped": dict(self.records.skipped),
                    "errors": dict(self.records.errors),
                },
                "requests": {
                    "retries": self.requests.retries,
                    "retries_by_type": dict(self.requests.retries_by_type),
                    "page_failures": self.requests.page_failures,
                    "page_failures_by_entity": dict(self.requests.page_failures_by_entity),
                },
                "health_checks": dict(self.health_checks),
                "timings": {
                    "overall": self.timings.stats(),
                    "by_stage": {stage: self.timings.stats(stage) for stage in self.timings.by_stage},
                },
            }
