"""Health check results. Held in memory by the monitor, never persisted directly."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from core.models.integration import CamelModel, SyncStatistics, utcnow


class HealthState(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"
    UNKNOWN = "unknown"


class HealthMetrics(CamelModel):
    response_time_ms: Optional[float] = None
    health_score: int = 0
    connected: bool = False
    sync_statistics: Optional[SyncStatistics] = None


class HealthStatus(CamelModel):
    integration_id: str
    platform: Optional[str] = None
    status: HealthState
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    metrics: Optional[HealthMetrics] = None
    error_type: Optional[str] = None


class HealthSummary(CamelModel):
    total: int = 0
    healthy: int = 0
    warning: int = 0
    error: int = 0
    unknown: int = 0
    health_percentage: float = 100.0


class HealthReport(CamelModel):
    timestamp: datetime = Field(default_factory=utcnow)
    summary: HealthSummary = Field(default_factory=HealthSummary)
    details: Dict[str, HealthStatus] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict in the host's camelCase shape."""
        return self.model_dump(mode="json", by_alias=True)
