"""HubSpot HTTP Client.

Low-level HTTP client for HubSpot CRM API calls.
Handles authentication headers, JSON bodies and the conversion of every
failure into an IntegrationError. Retries and request spacing are delegated
to RateLimitedRequester.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import aiohttp

from core.errors import ErrorInfo, ErrorType, HTTPFailure, IntegrationError, classify
from core.retry import RateLimitedRequester

PLATFORM = "hubspot"


@dataclass
class HubSpotApiConfig:
    """Configuration for HubSpot API client."""
    base_url: str = "https://api.hubapi.com"
    timeout_seconds: float = 30.0

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


class HubSpotApiClient:
    """HTTP client for the HubSpot API.

    The API key is obtained from ``api_key_provider`` on every request and
    never stored on the client.

    Usage:
        client = HubSpotApiClient(lambda: session, lambda: cipher.decrypt(blob), requester)
        contacts = await client.get("/crm/v3/objects/contacts", params={"limit": "100"})
    """

    def __init__(
        self,
        session_provider: Callable[[], aiohttp.ClientSession],
        api_key_provider: Callable[[], str],
        requester: RateLimitedRequester,
        api_config: Optional[HubSpotApiConfig] = None,
    ):
        self._session_provider = session_provider
        self._api_key_provider = api_key_provider
        self.requester = requester
        self.api_config = api_config or HubSpotApiConfig()
        # Round trip of the most recent request, excluding requester sleeps
        self.last_response_ms: Optional[float] = None

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests."""
        try:
            api_key = self._api_key_provider()
        except ValueError as e:
            raise IntegrationError(ErrorInfo(
                type=ErrorType.AUTHENTICATION,
                message="Stored HubSpot credential could not be decrypted",
                status_code=400,
                code="HUBSPOT_CREDENTIAL_UNREADABLE",
                platform=PLATFORM,
            )) from e

        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make a single request.

        Raises:
            IntegrationError: For any non-2xx response or transport failure
        """
        url = self.api_config.url(path)
        headers = self._get_headers()
        timeout = aiohttp.ClientTimeout(total=self.api_config.timeout_seconds)

        started = time.monotonic()
        try:
            session = self._session_provider()
            async with session.request(
                method,
                url,
                headers=headers,
                params=params,
                json=data,
                timeout=timeout,
            ) as response:
                response_text = await response.text()
                self.last_response_ms = round((time.monotonic() - started) * 1000, 2)

                if response.status < 400:
                    if response.status == 204 or not response_text:
                        return {}
                    body = json.loads(response_text)
                    if not isinstance(body, dict):
                        raise IntegrationError(classify(
                            TypeError(f"Unexpected HubSpot response body: {type(body).__name__}"),
                            PLATFORM,
                        ))
                    return body

                raise IntegrationError(classify(
                    HTTPFailure(
                        status=response.status,
                        headers=response.headers,
                        body=_parse_body(response_text),
                        url=url,
                    ),
                    PLATFORM,
                ))
        except IntegrationError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, json.JSONDecodeError) as e:
            raise IntegrationError(classify(e, PLATFORM)) from e

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Make a request through the rate-limited requester."""
        return await self.requester.execute(
            lambda: self._send(method, path, params=params, data=data),
            max_retries=max_retries,
        )

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, str]] = None,
        max_retries: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await self.request("GET", path, params=params, max_retries=max_retries)

    async def post(
        self,
        path: str,
        data: Dict[str, Any],
        max_retries: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await self.request("POST", path, data=data, max_retries=max_retries)


def _parse_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text
