"""HubSpot CRM connector."""

from connectors.hubspot.hs_client import HubSpotApiClient, HubSpotApiConfig
from connectors.hubspot.hs_connector import HubSpotConnector, HUBSPOT_PROPERTIES

__all__ = [
    "HubSpotApiClient",
    "HubSpotApiConfig",
    "HubSpotConnector",
    "HUBSPOT_PROPERTIES",
]
