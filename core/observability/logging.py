"""
Structured Logging with Correlation IDs

Provides logging utilities that automatically include:
- integration_id: Links logs to a specific integration
- platform: Remote platform being talked to (hubspot, ...)
- sync_log_id: Links logs to one sync attempt
- entity_type: contacts / companies / deals while paginating

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(integration_id="int-001", platform="hubspot"):
        logger.info("Fetching contacts")  # Automatically includes correlation IDs
"""

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from contextlib import contextmanager


REDACTED = "[REDACTED]"
_SECRET_MARKERS = ("api_key", "apikey", "token", "authorization", "secret", "password")


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass
class CorrelationContext:
    """Context for correlating logs across a sync or health check."""
    integration_id: Optional[str] = None
    platform: Optional[str] = None
    user_id: Optional[str] = None
    sync_log_id: Optional[str] = None
    entity_type: Optional[str] = None
    component: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        """Create a new context with merged values."""
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)


# Context variable for async/thread-safe correlation
_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    """Get the current correlation context."""
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs):
    """
    Context manager to set correlation IDs for logging.

    Usage:
        with with_correlation(integration_id="int-001", entity_type="deals"):
            logger.info("Processing")  # Will include integration_id and entity_type
    """
    old_ctx = get_correlation_context()
    new_ctx = old_ctx.merge(**kwargs)
    token = _correlation_context.set(new_ctx)
    try:
        yield new_ctx
    finally:
        _correlation_context.reset(token)


def redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Mask values whose key looks like a credential."""
    cleaned = {}
    for key, value in fields.items():
        lowered = key.lower()
        if any(marker in lowered for marker in _SECRET_MARKERS):
            cleaned[key] = REDACTED
        elif isinstance(value, dict):
            cleaned[key] = redact(value)
        else:
            cleaned[key] = value
    return cleaned


# =============================================================================
# Structured JSON Formatter
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter that includes correlation context.

    Output format:
    {
        "timestamp": "2025-01-09T12:00:00.000000Z",
        "level": "INFO",
        "logger": "sync.orchestrator",
        "message": "Fetched page 2 of contacts",
        "integration_id": "int-001",
        "platform": "hubspot",
        "records": 100
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        ctx = get_correlation_context()
        log_data.update(ctx.to_dict())

        if hasattr(record, "extra_fields"):
            log_data.update(redact(record.extra_fields))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter that includes key correlation IDs.

    Output format:
    2025-01-09 12:00:00 [INFO ] sync.orchestrator [hubspot/int-001/contacts]: Fetched page 2
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()

        correlation_parts = []
        if ctx.platform:
            correlation_parts.append(ctx.platform)
        if ctx.integration_id:
            correlation_parts.append(ctx.integration_id)
        if ctx.entity_type:
            correlation_parts.append(ctx.entity_type)
        correlation = "/".join(correlation_parts) if correlation_parts else "-"

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} [{record.levelname:5}] {record.name} [{correlation}]: {record.getMessage()}"

        extra = getattr(record, "extra_fields", None)
        if extra:
            pairs = " ".join(f"{k}={v}" for k, v in redact(extra).items() if v is not None)
            if pairs:
                msg += f" ({pairs})"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


# =============================================================================
# Logger with Correlation Support
# =============================================================================

class CorrelatedLogger(logging.LoggerAdapter):
    """Adapter that carries per-call ``extra_fields`` onto the record.

    Correlation IDs are read from the context variable by the formatters, so
    nothing needs to be captured here.

        logger.info("Fetched page", extra_fields={"records": 100, "cursor": after})
    """

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["extra_fields"] = kwargs.pop("extra_fields", None) or {}
        kwargs["extra"] = extra
        return msg, kwargs


# =============================================================================
# Setup
# =============================================================================

_loggers: Dict[str, CorrelatedLogger] = {}
_configured = False

APP_LOGGERS = ("activities", "workflows", "workers", "connectors", "sync", "core")
QUIET_LOGGERS = ("aiohttp", "asyncio")


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    include_temporal: bool = True,
    force: bool = False,
):
    """
    Install one stdout handler on the root logger.

    Args:
        level: Logging level (int or name such as "DEBUG")
        json_format: JSON lines for log shipping; human-readable otherwise
        include_temporal: Keep Temporal SDK loggers at INFO
        force: Replace the handler installed by an earlier call
    """
    global _configured

    if _configured and not force:
        return

    level = _resolve_level(level)
    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, "_crm_sync_handler", False)]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())
    handler._crm_sync_handler = True
    root.addHandler(handler)
    root.setLevel(level)

    for name in APP_LOGGERS:
        logging.getLogger(name).setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if include_temporal:
        logging.getLogger("temporalio").setLevel(logging.INFO)

    _configured = True


def get_logger(name: str) -> CorrelatedLogger:
    """Correlated logger for ``name`` (typically ``__name__``).

    Configures logging with defaults on first use.
    """
    if not _configured:
        configure_logging()
    if name not in _loggers:
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]
