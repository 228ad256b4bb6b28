"""CRM Connectors - Pluggable third-party CRM integrations.

This package contains the abstract connector interface, the platform
registry and concrete implementations for specific platforms (HubSpot).

Key Design Principle:
- The sync orchestrator and health monitor depend ONLY on CRMConnector
- Connectors return raw records; normalization is platform-neutral
- Every remote failure is an IntegrationError carrying an ErrorInfo

To add a new platform:
1. Create a new folder (e.g., salesforce/)
2. Implement CRMConnector
3. Add a PlatformSpec to build_default_registry
"""

from connectors.crm_base import (
    CRMConnector,
    ConnectionResult,
    ConnectionStatus,
    Page,
    PlatformSpec,
    PlatformType,
    ServiceRegistry,
)
from connectors.registry import build_default_registry

__all__ = [
    "CRMConnector",
    "ConnectionResult",
    "ConnectionStatus",
    "Page",
    "PlatformSpec",
    "PlatformType",
    "ServiceRegistry",
    "build_default_registry",
]
