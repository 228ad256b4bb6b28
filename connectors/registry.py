"""Default platform registry.

Factories are closures over the shared HTTP session, the credential cipher
and the retry policy, so connectors never reach for globals.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from connectors.crm_base import PlatformSpec, PlatformType, ServiceRegistry
from connectors.hubspot import HubSpotApiClient, HubSpotApiConfig, HubSpotConnector
from core.models import IntegrationConfiguration
from core.observability.metrics import MetricsCollector
from core.retry import RateLimitedRequester, RetryPolicy


def build_default_registry(
    session_provider: Callable[[], aiohttp.ClientSession],
    decrypt: Callable[[str], str],
    retry_policy: Optional[RetryPolicy] = None,
    hubspot_config: Optional[HubSpotApiConfig] = None,
    metrics: Optional[MetricsCollector] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ServiceRegistry:
    """Registry of every platform this engine supports.

    Args:
        session_provider: Returns the process-wide aiohttp session
        decrypt: Turns an encrypted credential blob into plaintext
        retry_policy: Policy for the per-connector requester
        hubspot_config: HubSpot base URL and timeout
        metrics: Collector for retry counts
        sleep: Injected for tests
    """
    policy = retry_policy or RetryPolicy()
    hs_config = hubspot_config or HubSpotApiConfig()

    def create_hubspot(
        config: IntegrationConfiguration,
        integration_id: Optional[str],
    ) -> HubSpotConnector:
        blob = config.api_key_encrypted
        timeout_ms = config.settings.timeout
        api_config = HubSpotApiConfig(
            base_url=hs_config.base_url,
            timeout_seconds=timeout_ms / 1000.0 if timeout_ms else hs_config.timeout_seconds,
        )
        client = HubSpotApiClient(
            session_provider=session_provider,
            api_key_provider=lambda: decrypt(blob),
            requester=RateLimitedRequester(policy, sleep=sleep, metrics=metrics, platform="hubspot"),
            api_config=api_config,
        )
        portal_id = (config.model_extra or {}).get("portalId")
        return HubSpotConnector(
            client,
            integration_id=integration_id,
            portal_id=str(portal_id) if portal_id is not None else None,
        )

    return ServiceRegistry([
        PlatformSpec(
            key="hubspot",
            name="HubSpot",
            platform_type=PlatformType.CRM,
            description="Sync contacts, companies and deals from HubSpot CRM",
            factory=create_hubspot,
            required_config=("apiKeyEncrypted",),
            optional_config=("portalId",),
        ),
    ])
