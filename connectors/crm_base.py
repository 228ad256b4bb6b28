"""Abstract CRM Connector Interface and the platform registry.

This module defines the interface every CRM connector implements and the
registry that turns an integration record into a ready connector. It is
intentionally platform-agnostic: no HubSpot specifics here.

Connectors implement this interface to:
1. Probe connectivity with a lightweight call (not a sync)
2. Fetch one page of raw records for an entity type

Key Design Principles:
- Every outbound failure surfaces as IntegrationError carrying an ErrorInfo
- Records are returned raw; normalization happens in sync/processor.py
- The registry is built once at startup and never mutated afterwards
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from core.errors import ErrorInfo, MissingConfigurationError, UnsupportedPlatformError
from core.models import EntityType, Integration, IntegrationConfiguration


# =============================================================================
# Enums and results
# =============================================================================

class ConnectionStatus(str, Enum):
    """Connection status to a CRM platform."""
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    FAILED = "FAILED"
    RATE_LIMITED = "RATE_LIMITED"


class PlatformType(str, Enum):
    CRM = "crm"
    ACCOUNTING = "accounting"
    PAYMENT = "payment"


@dataclass
class ConnectionResult:
    """Outcome of a connectivity probe."""
    success: bool
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ErrorInfo] = None
    response_time_ms: Optional[float] = None


@dataclass
class Page:
    """One page of raw remote records."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None


# =============================================================================
# Connector interface
# =============================================================================

class CRMConnector(ABC):
    """Abstract base class for CRM connectors.

    Implementations must:
    1. Implement all abstract methods
    2. Raise IntegrationError for every failed remote call
    3. Never cache decrypted credentials
    """

    platform: str = ""

    def __init__(self, integration_id: Optional[str] = None):
        self.integration_id = integration_id
        self._status = ConnectionStatus.DISCONNECTED

    @abstractmethod
    async def test_connection(self) -> ConnectionResult:
        """Probe connectivity. Classified failures are returned, not raised."""
        pass

    @abstractmethod
    async def fetch_page(
        self,
        entity_type: EntityType,
        after: Optional[str] = None,
        limit: int = 100,
        modified_since=None,
    ) -> Page:
        """Fetch one page of raw records.

        Args:
            entity_type: Collection to read
            after: Cursor returned by the previous page
            limit: Page size
            modified_since: Only records modified at or after this datetime

        Raises:
            IntegrationError: The fetch failed after the requester's retries
        """
        pass

    async def close(self) -> None:
        """Release connector resources. The shared HTTP session is not owned here."""
        self._status = ConnectionStatus.DISCONNECTED

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status


# =============================================================================
# Platform registry
# =============================================================================

ConnectorFactory = Callable[[IntegrationConfiguration, Optional[str]], CRMConnector]

# Input types for configuration templates; anything else renders as text
CONFIG_FIELD_TYPES = {
    "apiKey": "password",
    "apiKeyEncrypted": "password",
    "apiSecret": "password",
    "accessToken": "password",
    "clientSecret": "password",
    "webhookSecret": "password",
    "portalId": "number",
    "instanceUrl": "url",
    "domain": "url",
    "sandbox": "boolean",
}


@dataclass(frozen=True)
class PlatformSpec:
    """Static description of a supported platform."""
    key: str
    name: str
    platform_type: PlatformType
    description: str
    factory: ConnectorFactory
    required_config: Tuple[str, ...] = ()
    optional_config: Tuple[str, ...] = ()

    def to_info(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "type": self.platform_type.value,
            "description": self.description,
            "requiredConfig": list(self.required_config),
            "optionalConfig": list(self.optional_config),
        }


class ServiceRegistry:
    """Maps platform keys to connector factories.

    Usage:
        registry = ServiceRegistry([hubspot_spec])
        connector = registry.for_integration(integration)
    """

    def __init__(self, specs: Iterable[PlatformSpec]):
        registry: Dict[str, PlatformSpec] = {}
        for spec in specs:
            key = spec.key.lower()
            if key in registry:
                raise ValueError(f"Platform registered twice: {key}")
            registry[key] = spec
        self._specs: Mapping[str, PlatformSpec] = MappingProxyType(registry)

    def _get_spec(self, platform_key: str) -> PlatformSpec:
        key = (platform_key or "").lower()
        if key not in self._specs:
            raise UnsupportedPlatformError(platform_key, list(self._specs.keys()))
        return self._specs[key]

    def create(
        self,
        platform_key: str,
        config: Union[IntegrationConfiguration, Mapping[str, Any], None],
        integration_id: Optional[str] = None,
    ) -> CRMConnector:
        """Build a connector for a platform.

        Raises:
            UnsupportedPlatformError: If the platform key is not registered
            MissingConfigurationError: Listing every absent or blank required field
        """
        spec = self._get_spec(platform_key)
        if isinstance(config, IntegrationConfiguration):
            configuration = config
        else:
            configuration = IntegrationConfiguration.model_validate(dict(config or {}))

        missing = self.validate_config(spec.key, configuration)
        if missing:
            raise MissingConfigurationError(spec.key, missing)

        return spec.factory(configuration, integration_id)

    def for_integration(self, integration: Integration) -> CRMConnector:
        return self.create(integration.platform, integration.configuration, integration.id)

    def validate_config(
        self,
        platform_key: str,
        config: Union[IntegrationConfiguration, Mapping[str, Any]],
    ) -> List[str]:
        """Names of required fields that are absent or blank."""
        spec = self._get_spec(platform_key)
        if isinstance(config, IntegrationConfiguration):
            lookup = config.as_lookup()
        else:
            lookup = dict(config)
        return [name for name in spec.required_config if _is_blank(_lookup(lookup, name))]

    def list_platforms(self) -> List[Dict[str, Any]]:
        return [spec.to_info() for spec in self._specs.values()]

    def platforms_by_type(self, platform_type: Union[PlatformType, str]) -> List[Dict[str, Any]]:
        wanted = PlatformType(platform_type)
        return [spec.to_info() for spec in self._specs.values() if spec.platform_type == wanted]

    def is_supported(self, platform_key: str) -> bool:
        return (platform_key or "").lower() in self._specs

    def get_platform_info(self, platform_key: str) -> Optional[Dict[str, Any]]:
        spec = self._specs.get((platform_key or "").lower())
        return spec.to_info() if spec else None

    def get_config_template(self, platform_key: str) -> Dict[str, Any]:
        """Form description for configuring a platform.

        Raises:
            UnsupportedPlatformError: If the platform key is not registered
        """
        spec = self._get_spec(platform_key)
        fields = [
            _template_field(name, required=True) for name in spec.required_config
        ] + [
            _template_field(name, required=False) for name in spec.optional_config
        ]
        return {"platform": spec.key, "name": spec.name, "fields": fields}


def _lookup(config: Mapping[str, Any], name: str) -> Any:
    if name in config:
        return config[name]
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()
    return config.get(snake)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def _template_field(name: str, required: bool) -> Dict[str, Any]:
    label = re.sub(r"([A-Z])", r" \1", name).strip()
    return {
        "name": name,
        "label": label[:1].upper() + label[1:],
        "type": CONFIG_FIELD_TYPES.get(name, "text"),
        "required": required,
    }
