"""HubSpot Connector Implementation.

Implements the CRMConnector interface for HubSpot CRM v3 objects.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from connectors.crm_base import ConnectionResult, ConnectionStatus, CRMConnector, Page
from connectors.hubspot.hs_client import HubSpotApiClient, PLATFORM
from core.errors import ErrorType, IntegrationError
from core.models import EntityType
from core.observability.logging import get_logger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100
ACCOUNT_INFO_PATH = "/account-info/v3/details"

# Properties requested per object type
HUBSPOT_PROPERTIES: Dict[EntityType, List[str]] = {
    EntityType.CONTACTS: [
        "firstname", "lastname", "email", "phone", "company",
        "createdate", "lastmodifieddate",
    ],
    EntityType.COMPANIES: [
        "name", "domain", "industry", "phone", "city", "state", "country",
        "createdate", "hs_lastmodifieddate",
    ],
    EntityType.DEALS: [
        "dealname", "amount", "dealstage", "pipeline", "closedate",
        "createdate", "hs_lastmodifieddate",
    ],
}

LAST_MODIFIED_PROPERTY: Dict[EntityType, str] = {
    EntityType.CONTACTS: "lastmodifieddate",
    EntityType.COMPANIES: "hs_lastmodifieddate",
    EntityType.DEALS: "hs_lastmodifieddate",
}


class HubSpotConnector(CRMConnector):
    """HubSpot CRM connector.

    Usage:
        connector = HubSpotConnector(client, integration_id="int-1")
        result = await connector.test_connection()
        page = await connector.fetch_page(EntityType.CONTACTS, limit=100)
    """

    platform = PLATFORM

    def __init__(
        self,
        client: HubSpotApiClient,
        integration_id: Optional[str] = None,
        portal_id: Optional[str] = None,
    ):
        super().__init__(integration_id)
        self.client = client
        self.portal_id = portal_id

    async def test_connection(self) -> ConnectionResult:
        """Call the account-info endpoint once, without retrying.

        A throttled account is reported as RATE_LIMITED rather than waited
        out. ``response_time_ms`` covers the HTTP round trip only.
        """
        self.client.last_response_ms = None
        try:
            data = await self.client.get(ACCOUNT_INFO_PATH, max_retries=0)
        except IntegrationError as e:
            self._status = (
                ConnectionStatus.RATE_LIMITED
                if e.info.type == ErrorType.RATE_LIMIT
                else ConnectionStatus.FAILED
            )
            logger.warning(
                f"HubSpot connection test failed: {e.info.message}",
                extra_fields={"error_code": e.info.code},
            )
            return ConnectionResult(
                success=False,
                message=e.info.message,
                error=e.info,
                response_time_ms=self.client.last_response_ms,
            )

        self._status = ConnectionStatus.CONNECTED
        return ConnectionResult(
            success=True,
            message="Successfully connected to HubSpot",
            details={
                "portal_id": data.get("portalId"),
                "account_type": data.get("accountType"),
                "time_zone": data.get("timeZone"),
                "currency": data.get("companyCurrency"),
            },
            response_time_ms=self.client.last_response_ms,
        )

    async def validate_api_key(self) -> bool:
        """True if the stored key authenticates against HubSpot."""
        result = await self.test_connection()
        return result.success

    async def fetch_page(
        self,
        entity_type: EntityType,
        after: Optional[str] = None,
        limit: int = 100,
        modified_since: Optional[datetime] = None,
    ) -> Page:
        """Fetch one page of contacts, companies or deals.

        A full listing uses GET on the object collection; an incremental
        sync uses the search endpoint filtered on the last-modified property.
        """
        entity_type = EntityType(entity_type)
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        properties = HUBSPOT_PROPERTIES[entity_type]
        path = f"/crm/v3/objects/{entity_type.value}"

        if modified_since is None:
            params = {"limit": str(limit), "properties": ",".join(properties)}
            if after:
                params["after"] = after
            data = await self.client.get(path, params=params)
        else:
            data = await self.client.post(
                f"{path}/search",
                data=_search_body(entity_type, properties, limit, after, modified_since),
            )

        return Page(
            records=list(data.get("results") or []),
            next_cursor=_next_cursor(data),
        )


def _search_body(
    entity_type: EntityType,
    properties: List[str],
    limit: int,
    after: Optional[str],
    modified_since: datetime,
) -> Dict[str, Any]:
    if modified_since.tzinfo is None:
        modified_since = modified_since.replace(tzinfo=timezone.utc)
    modified_property = LAST_MODIFIED_PROPERTY[entity_type]

    body: Dict[str, Any] = {
        "filterGroups": [{
            "filters": [{
                "propertyName": modified_property,
                "operator": "GTE",
                "value": str(int(modified_since.timestamp() * 1000)),
            }],
        }],
        "sorts": [{"propertyName": modified_property, "direction": "ASCENDING"}],
        "properties": properties,
        "limit": limit,
    }
    if after:
        body["after"] = after
    return body


def _next_cursor(data: Dict[str, Any]) -> Optional[str]:
    after = ((data.get("paging") or {}).get("next") or {}).get("after")
    return str(after) if after else None
