"""Shared fixtures and fakes for the sync engine tests."""

from typing import Any, Dict, List, Optional

import pytest

from connectors.crm_base import (
    ConnectionResult,
    CRMConnector,
    Page,
    PlatformSpec,
    PlatformType,
    ServiceRegistry,
)
from core.models import EntityType, Integration
from core.security import CredentialCipher, generate_encryption_key
from core.storage import InMemoryIntegrationStore


# =============================================================================
# Sleep
# =============================================================================

class RecordedSleep:
    """Stand-in for asyncio.sleep that returns at once and remembers delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def recorded_sleep():
    return RecordedSleep()


# =============================================================================
# Connectors
# =============================================================================

class FakeConnector(CRMConnector):
    """Scripted connector.

    ``pages`` maps an entity type to the outcomes of successive fetches: a
    Page is returned, an exception is raised. Once a script runs out, empty
    final pages are returned.
    """

    platform = "hubspot"

    def __init__(
        self,
        pages: Optional[Dict[EntityType, List[Any]]] = None,
        probe: Optional[ConnectionResult] = None,
        probe_error: Optional[BaseException] = None,
        integration_id: Optional[str] = None,
    ):
        super().__init__(integration_id)
        self.pages = {EntityType(k): list(v) for k, v in (pages or {}).items()}
        self.probe = probe or ConnectionResult(success=True, message="ok")
        self.probe_error = probe_error
        self.fetch_calls: List[Dict[str, Any]] = []
        self.closed = 0

    async def test_connection(self) -> ConnectionResult:
        if self.probe_error is not None:
            raise self.probe_error
        return self.probe

    async def fetch_page(self, entity_type, after=None, limit=100, modified_since=None) -> Page:
        entity_type = EntityType(entity_type)
        self.fetch_calls.append({
            "entity_type": entity_type,
            "after": after,
            "limit": limit,
            "modified_since": modified_since,
        })
        script = self.pages.get(entity_type, [])
        if not script:
            return Page()
        outcome = script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed += 1
        await super().close()


def make_registry(connectors, key: str = "hubspot") -> ServiceRegistry:
    """Registry whose factory hands out ``connectors`` by integration id.

    ``connectors`` is a single connector or a dict keyed by integration id.
    """

    def factory(config, integration_id):
        if isinstance(connectors, dict):
            return connectors[integration_id]
        return connectors

    return ServiceRegistry([
        PlatformSpec(
            key=key,
            name="HubSpot",
            platform_type=PlatformType.CRM,
            description="Test platform",
            factory=factory,
            required_config=("apiKeyEncrypted",),
            optional_config=("portalId",),
        ),
    ])


def hubspot_contact(record_id: str, email: Optional[str] = None, **properties) -> Dict[str, Any]:
    props = {"email": email, "createdate": "2024-01-15T10:00:00Z"}
    props.update(properties)
    return {"id": record_id, "properties": props}


# =============================================================================
# Integrations and stores
# =============================================================================

def make_integration(
    integration_id: str = "int-001",
    platform: str = "hubspot",
    data_types=None,
    **overrides,
) -> Integration:
    configuration = {
        "apiKeyEncrypted": "v1:placeholder",
        "syncFrequency": "hourly",
        "dataTypes": data_types or ["contacts"],
    }
    configuration.update(overrides.pop("configuration", {}))
    return Integration(
        id=integration_id,
        user_id="user-1",
        platform=platform,
        name=f"{platform} {integration_id}",
        configuration=configuration,
        **overrides,
    )


@pytest.fixture
def integration():
    return make_integration()


@pytest.fixture
def store(integration):
    return InMemoryIntegrationStore([integration])


# =============================================================================
# Credentials
# =============================================================================

@pytest.fixture
def encryption_key():
    return generate_encryption_key()


@pytest.fixture
def cipher(encryption_key):
    return CredentialCipher(encryption_key)


# =============================================================================
# aiohttp session
# =============================================================================

class FakeResponse:
    def __init__(self, status: int = 200, text: str = "", headers: Optional[Dict[str, str]] = None):
        self.status = status
        self._text = text
        self.headers = headers or {}

    async def text(self) -> str:
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Replays responses (or raises exceptions) in order and records requests."""

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def request(self, method, url, headers=None, params=None, json=None, timeout=None):
        self.requests.append({
            "method": method,
            "url": url,
            "headers": headers,
            "params": params,
            "json": json,
        })
        outcome = self.responses.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True
