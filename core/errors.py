"""Integration error taxonomy and classification.

Every failure that crosses the HTTP boundary is converted into an ErrorInfo
before anything else sees it. The taxonomy is flat and platform-agnostic so
retry and status decisions only ever switch on ErrorType; platform detail is
carried in the prefixed ``code`` for logging.

Usage:
    from core.errors import classify, IntegrationError

    try:
        await client.get_contacts()
    except aiohttp.ClientError as e:
        raise IntegrationError(classify(e, platform="hubspot")) from e
"""

import asyncio
import errno
import math
import socket
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import aiohttp


DEFAULT_RETRY_AFTER_SECONDS = 60


# =============================================================================
# Taxonomy
# =============================================================================

class ErrorType(str, Enum):
    """Kinds of integration failure."""
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    NETWORK = "NETWORK"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ErrorInfo:
    """Canonical description of a failure.

    Attributes:
        type: Platform-agnostic error kind
        message: Human-readable message (never contains credentials)
        status_code: Recommended HTTP status for upstream reporting
        code: Platform-prefixed sub-code for logging (e.g. HUBSPOT_INVALID_API_KEY)
        retry_after: Seconds to wait before retrying (rate limits only)
        http_status: Status returned by the remote API, when there was one
        platform: Platform that produced the failure
    """
    type: ErrorType
    message: str
    status_code: int
    code: str
    retry_after: Optional[int] = None
    http_status: Optional[int] = None
    platform: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type.value,
            "message": self.message,
            "status_code": self.status_code,
            "code": self.code,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        if self.http_status is not None:
            data["http_status"] = self.http_status
        if self.platform:
            data["platform"] = self.platform
        return data


@dataclass
class HTTPFailure:
    """Raw facts of a non-2xx response, captured at the HTTP boundary."""
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    url: str = ""


# =============================================================================
# Exceptions
# =============================================================================

class IntegrationError(Exception):
    """A classified failure of an outbound integration call."""

    def __init__(self, info: ErrorInfo):
        super().__init__(info.message)
        self.info = info

    @property
    def type(self) -> ErrorType:
        return self.info.type


class SyncAbortedError(IntegrationError):
    """Too many consecutive page fetches failed for one entity type."""

    def __init__(self, info: ErrorInfo, entity_type: str, consecutive_failures: int):
        super().__init__(info)
        self.entity_type = entity_type
        self.consecutive_failures = consecutive_failures

    def __str__(self) -> str:
        return (
            f"Sync of {self.entity_type} aborted after {self.consecutive_failures} "
            f"consecutive page failures: {self.info.message}"
        )


class UnsupportedPlatformError(ValueError):
    """No platform is registered under the requested key."""

    def __init__(self, platform: str, available: List[str]):
        super().__init__(
            f"Unsupported integration platform: {platform}. Available: {available}"
        )
        self.platform = platform
        self.available = available


class MissingConfigurationError(ValueError):
    """Required configuration fields are absent or blank."""

    def __init__(self, platform: str, fields: List[str]):
        super().__init__(
            f"Missing required configuration for {platform}: {', '.join(fields)}"
        )
        self.platform = platform
        self.fields = fields


# =============================================================================
# Classification
# =============================================================================

_ERRNO_CODES = {
    errno.ECONNRESET: "ECONNRESET",
    errno.ETIMEDOUT: "ETIMEDOUT",
    errno.ECONNREFUSED: "ECONNREFUSED",
    errno.ECONNABORTED: "ECONNABORTED",
    errno.EPIPE: "EPIPE",
    errno.EHOSTUNREACH: "EHOSTUNREACH",
    errno.ENETUNREACH: "ENETUNREACH",
}

NETWORK_ERROR_CODES = frozenset(_ERRNO_CODES.values()) | {"ENOTFOUND", "EAI_AGAIN"}


def classify(error: Any, platform: Optional[str] = None) -> ErrorInfo:
    """Map any failure to an ErrorInfo. Never raises.

    Args:
        error: HTTPFailure, IntegrationError, aiohttp/OS exception or anything else
        platform: Platform key used to prefix the sub-code

    Returns:
        ErrorInfo for the failure
    """
    if isinstance(error, IntegrationError):
        return error.info

    if isinstance(error, UnsupportedPlatformError):
        return _info(ErrorType.VALIDATION, str(error), 400, "UNSUPPORTED_PLATFORM", platform)
    if isinstance(error, MissingConfigurationError):
        return _info(ErrorType.VALIDATION, str(error), 400, "MISSING_CONFIGURATION", platform)

    status = _http_status(error)
    if status is not None:
        headers = _headers(error)
        body = getattr(error, "body", None)
        if body is None and isinstance(error, aiohttp.ClientResponseError):
            body = error.message
        return _classify_status(status, headers, body, platform)

    transport_code = _transport_code(error)
    if transport_code:
        return _info(
            ErrorType.NETWORK,
            f"Network error: {transport_code}",
            503,
            transport_code,
            platform,
        )

    message = str(error) if str(error) else "An unexpected error occurred"
    return _info(ErrorType.UNKNOWN, message, 500, "UNKNOWN", platform)


def _classify_status(
    status: int,
    headers: Mapping[str, str],
    body: Any,
    platform: Optional[str],
) -> ErrorInfo:
    label = _platform_label(platform)

    if status == 429:
        retry_after = parse_retry_after(_header(headers, "retry-after"))
        return _info(
            ErrorType.RATE_LIMIT,
            f"{label} rate limit exceeded. Retry after {retry_after} seconds",
            429,
            "RATE_LIMIT_EXCEEDED",
            platform,
            retry_after=retry_after,
            http_status=status,
        )

    if status == 401:
        return _info(
            ErrorType.AUTHENTICATION,
            f"{label} API key is invalid or expired",
            400,
            "INVALID_API_KEY",
            platform,
            http_status=status,
        )

    if status == 403:
        return _info(
            ErrorType.AUTHENTICATION,
            f"Insufficient permissions for {label} API",
            400,
            "INSUFFICIENT_PERMISSIONS",
            platform,
            http_status=status,
        )

    if status == 404:
        return _info(
            ErrorType.NOT_FOUND,
            f"{label} resource not found",
            404,
            "RESOURCE_NOT_FOUND",
            platform,
            http_status=status,
        )

    if 400 <= status < 500:
        message = _provider_message(body) or f"Invalid request to {label} API"
        return _info(
            ErrorType.VALIDATION,
            message,
            400,
            "BAD_REQUEST",
            platform,
            http_status=status,
        )

    if status >= 500:
        return _info(
            ErrorType.SERVER_ERROR,
            f"{label} server error. Please try again later",
            503,
            "SERVER_ERROR",
            platform,
            http_status=status,
        )

    return _info(
        ErrorType.UNKNOWN,
        f"Unexpected {label} API response: {status}",
        500,
        "API_ERROR",
        platform,
        http_status=status,
    )


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> int:
    """Parse a Retry-After header (delta seconds or HTTP-date).

    Returns DEFAULT_RETRY_AFTER_SECONDS when the header is absent or unparsable.
    """
    if value is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    text = str(value).strip()
    if not text:
        return DEFAULT_RETRY_AFTER_SECONDS

    try:
        seconds = float(text)
        if math.isfinite(seconds) and seconds >= 0:
            return int(math.ceil(seconds))
        return DEFAULT_RETRY_AFTER_SECONDS
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, int(math.ceil((when - now).total_seconds())))


def _info(
    error_type: ErrorType,
    message: str,
    status_code: int,
    code: str,
    platform: Optional[str],
    retry_after: Optional[int] = None,
    http_status: Optional[int] = None,
) -> ErrorInfo:
    if platform:
        code = f"{platform.upper()}_{code}"
    return ErrorInfo(
        type=error_type,
        message=message,
        status_code=status_code,
        code=code,
        retry_after=retry_after,
        http_status=http_status,
        platform=platform,
    )


def _platform_label(platform: Optional[str]) -> str:
    if not platform:
        return "Remote"
    if platform.lower() == "hubspot":
        return "HubSpot"
    return platform.replace("_", " ").title()


def _http_status(error: Any) -> Optional[int]:
    if isinstance(error, HTTPFailure):
        return error.status
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
            return value
    return None


def _headers(error: Any) -> Mapping[str, str]:
    headers = getattr(error, "headers", None)
    if isinstance(headers, Mapping):
        return headers
    if isinstance(headers, (list, tuple)):
        return {
            pair[0]: pair[1]
            for pair in headers
            if isinstance(pair, (list, tuple)) and len(pair) == 2 and isinstance(pair[0], str)
        }
    return {}


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    for key, val in headers.items():
        if str(key).lower() == name:
            return val
    return None


def _provider_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
        return None
    if isinstance(body, str) and body.strip():
        return body.strip()[:500]
    return None


def _transport_code(error: Any) -> Optional[str]:
    """Find a transport-level code on the error or its cause chain."""
    seen = set()
    current = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))

        code = getattr(current, "code", None)
        if isinstance(code, str) and code.upper() in NETWORK_ERROR_CODES:
            return code.upper()

        if isinstance(current, aiohttp.ClientConnectorError):
            # The underlying OSError says whether this was DNS, refused, reset...
            nested = _transport_code(current.os_error)
            if nested:
                return nested

        if isinstance(current, (asyncio.TimeoutError, TimeoutError)):
            return "ETIMEDOUT"
        if isinstance(current, socket.gaierror):
            return "ENOTFOUND"
        if isinstance(current, (aiohttp.ServerDisconnectedError, ConnectionResetError)):
            return "ECONNRESET"
        if isinstance(current, ConnectionRefusedError):
            return "ECONNREFUSED"
        if isinstance(current, ConnectionAbortedError):
            return "ECONNABORTED"
        if isinstance(current, BrokenPipeError):
            return "EPIPE"

        err_no = getattr(current, "errno", None)
        if isinstance(err_no, int) and err_no in _ERRNO_CODES:
            return _ERRNO_CODES[err_no]

        if isinstance(current, aiohttp.ClientPayloadError):
            return "ECONNRESET"
        if isinstance(current, aiohttp.ClientConnectionError):
            return "ECONNABORTED"

        current = getattr(current, "__cause__", None)
    return None


# =============================================================================
# Caller-facing payloads
# =============================================================================

def error_payload(error: BaseException, environment: str = "production") -> Dict[str, Any]:
    """Build the structured failure payload handed to the host application.

    Stack traces are attached only outside production.
    """
    info = classify(error)
    payload: Dict[str, Any] = {
        "success": False,
        "error": {
            "type": info.type.value,
            "message": info.message,
            "code": info.code,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if environment.lower() != "production":
        payload["stack"] = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
    return payload
