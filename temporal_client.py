"""Temporal client factory.

Connects to Temporal Cloud (API key over TLS) or, when no API key is
configured, to a local development server.
"""

import ssl
from typing import Optional

from temporalio.client import Client

from core.config import Settings


async def get_temporal_client(settings: Optional[Settings] = None) -> Client:
    """Create and return a Temporal client.

    Reads TEMPORAL_ENDPOINT, TEMPORAL_NAMESPACE and TEMPORAL_API_KEY through
    Settings. Without an API key the connection is plaintext, which is what
    `temporal server start-dev` expects.

    Raises:
        ValueError: If TEMPORAL_ENDPOINT is not set
    """
    settings = settings or Settings.from_env()

    if not settings.temporal_endpoint:
        raise ValueError(
            "TEMPORAL_ENDPOINT environment variable not set. "
            "Set to your Temporal endpoint (e.g., 'localhost:7233')"
        )

    if not settings.temporal_api_key:
        return await Client.connect(
            settings.temporal_endpoint,
            namespace=settings.temporal_namespace,
        )

    return await Client.connect(
        target_host=settings.temporal_endpoint,
        namespace=settings.temporal_namespace,
        tls=ssl.create_default_context(),
        api_key=settings.temporal_api_key,
    )
