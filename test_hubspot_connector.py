"""
HubSpot connector tests against a replayed aiohttp session.
"""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from conftest import FakeResponse, FakeSession
from connectors.crm_base import ConnectionStatus
from connectors.hubspot import HubSpotApiClient, HubSpotApiConfig, HubSpotConnector
from core.errors import ErrorType, IntegrationError
from core.models import EntityType
from core.retry import RateLimitedRequester, RetryPolicy


def json_response(payload, status=200, headers=None):
    return FakeResponse(status=status, text=json.dumps(payload), headers=headers)


def build_connector(session, recorded_sleep, api_key_provider=lambda: "pat-secret", max_retries=3):
    client = HubSpotApiClient(
        session_provider=lambda: session,
        api_key_provider=api_key_provider,
        requester=RateLimitedRequester(
            RetryPolicy(max_retries=max_retries, min_delay=0.1),
            sleep=recorded_sleep,
            platform="hubspot",
        ),
        api_config=HubSpotApiConfig(base_url="https://api.hubapi.test"),
    )
    return HubSpotConnector(client, integration_id="int-001", portal_id="4242")


class TestConnection:

    async def test_successful_probe(self, recorded_sleep):
        session = FakeSession([json_response({
            "portalId": 4242,
            "accountType": "STANDARD",
            "timeZone": "US/Eastern",
            "companyCurrency": "USD",
        })])
        connector = build_connector(session, recorded_sleep)

        result = await connector.test_connection()

        assert result.success is True
        assert result.details["portal_id"] == 4242
        assert result.details["currency"] == "USD"
        assert result.response_time_ms is not None
        assert connector.connection_status == ConnectionStatus.CONNECTED

        request = session.requests[0]
        assert request["method"] == "GET"
        assert request["url"] == "https://api.hubapi.test/account-info/v3/details"
        assert request["headers"]["Authorization"] == "Bearer pat-secret"

    async def test_invalid_key_is_returned_not_raised(self, recorded_sleep):
        session = FakeSession([json_response({"message": "expired"}, status=401)])
        connector = build_connector(session, recorded_sleep)

        result = await connector.test_connection()

        assert result.success is False
        assert result.error.type == ErrorType.AUTHENTICATION
        assert result.error.code == "HUBSPOT_INVALID_API_KEY"
        assert connector.connection_status == ConnectionStatus.FAILED

    async def test_validate_api_key(self, recorded_sleep):
        session = FakeSession([json_response({}, status=403), json_response({"portalId": 1})])
        connector = build_connector(session, recorded_sleep)

        assert await connector.validate_api_key() is False
        assert await connector.validate_api_key() is True

    async def test_rate_limited_check_is_not_waited_out(self, recorded_sleep):
        limited = FakeResponse(status=429, text="", headers={"Retry-After": "60"})
        session = FakeSession([limited, json_response({"portalId": 4242})])
        connector = build_connector(session, recorded_sleep)

        result = await connector.test_connection()

        assert result.success is False
        assert result.error.type == ErrorType.RATE_LIMIT
        assert len(session.requests) == 1
        assert recorded_sleep.calls == [0.1]
        assert connector.connection_status == ConnectionStatus.RATE_LIMITED

    async def test_response_time_excludes_request_spacing(self, recorded_sleep):
        async def slow_sleep(delay):
            recorded_sleep.calls.append(delay)
            await asyncio.sleep(0.2)

        session = FakeSession([json_response({"portalId": 4242})])
        connector = build_connector(session, slow_sleep)

        result = await connector.test_connection()

        assert result.success is True
        assert recorded_sleep.calls == [0.1]
        assert result.response_time_ms < 200

    async def test_undecryptable_credential_is_authentication(self, recorded_sleep):
        def broken_key():
            raise ValueError("Credential decryption failed")

        session = FakeSession([])
        connector = build_connector(session, recorded_sleep, api_key_provider=broken_key)

        result = await connector.test_connection()

        assert result.success is False
        assert result.error.type == ErrorType.AUTHENTICATION
        assert result.error.code == "HUBSPOT_CREDENTIAL_UNREADABLE"
        assert session.requests == []


class TestFetchPage:

    async def test_full_listing_uses_get(self, recorded_sleep):
        session = FakeSession([json_response({
            "results": [{"id": "1", "properties": {"email": "a@example.com"}}],
            "paging": {"next": {"after": "101"}},
        })])
        connector = build_connector(session, recorded_sleep)

        page = await connector.fetch_page(EntityType.CONTACTS, after="50", limit=500)

        assert page.next_cursor == "101"
        assert page.records[0]["id"] == "1"
        request = session.requests[0]
        assert request["method"] == "GET"
        assert request["url"] == "https://api.hubapi.test/crm/v3/objects/contacts"
        assert request["params"]["limit"] == "100"
        assert request["params"]["after"] == "50"
        assert "email" in request["params"]["properties"].split(",")

    async def test_last_page_has_no_cursor(self, recorded_sleep):
        session = FakeSession([json_response({"results": []})])
        connector = build_connector(session, recorded_sleep)

        page = await connector.fetch_page(EntityType.DEALS)
        assert page.records == []
        assert page.next_cursor is None

    async def test_incremental_uses_search(self, recorded_sleep):
        session = FakeSession([json_response({"results": [], "paging": {"next": {"after": "2"}}})])
        connector = build_connector(session, recorded_sleep)
        since = datetime(2024, 1, 1, tzinfo=timezone.utc)

        page = await connector.fetch_page(EntityType.COMPANIES, limit=10, modified_since=since)

        assert page.next_cursor == "2"
        request = session.requests[0]
        assert request["method"] == "POST"
        assert request["url"] == "https://api.hubapi.test/crm/v3/objects/companies/search"
        body = request["json"]
        assert body["limit"] == 10
        assert body["filterGroups"][0]["filters"][0] == {
            "propertyName": "hs_lastmodifieddate",
            "operator": "GTE",
            "value": "1704067200000",
        }

    async def test_server_error_is_raised_without_retry(self, recorded_sleep):
        session = FakeSession([FakeResponse(status=502, text="Bad Gateway")])
        connector = build_connector(session, recorded_sleep)

        with pytest.raises(IntegrationError) as exc_info:
            await connector.fetch_page(EntityType.CONTACTS)
        assert exc_info.value.type == ErrorType.SERVER_ERROR
        assert len(session.requests) == 1

    async def test_rate_limit_is_retried_after_the_header(self, recorded_sleep):
        session = FakeSession([
            FakeResponse(status=429, text="", headers={"Retry-After": "4"}),
            json_response({"results": [{"id": "9"}]}),
        ])
        connector = build_connector(session, recorded_sleep)

        page = await connector.fetch_page(EntityType.CONTACTS)

        assert page.records == [{"id": "9"}]
        assert recorded_sleep.calls == [0.1, 4.0, 0.1]

    async def test_transport_error_is_network(self, recorded_sleep):
        session = FakeSession([ConnectionResetError() for _ in range(4)])
        connector = build_connector(session, recorded_sleep)

        with pytest.raises(IntegrationError) as exc_info:
            await connector.fetch_page(EntityType.CONTACTS)
        assert exc_info.value.type == ErrorType.NETWORK
        assert len(session.requests) == 4

    async def test_bad_request_carries_provider_message(self, recorded_sleep):
        session = FakeSession([json_response({"message": "Invalid property"}, status=400)])
        connector = build_connector(session, recorded_sleep)

        with pytest.raises(IntegrationError) as exc_info:
            await connector.fetch_page(EntityType.CONTACTS)
        assert exc_info.value.type == ErrorType.VALIDATION
        assert exc_info.value.info.message == "Invalid property"

    @pytest.mark.parametrize("text", ["[]", "null", "\"ok\""])
    async def test_non_object_body_is_unknown_error(self, recorded_sleep, text):
        session = FakeSession([FakeResponse(status=200, text=text)])
        connector = build_connector(session, recorded_sleep)

        with pytest.raises(IntegrationError) as exc_info:
            await connector.fetch_page(EntityType.CONTACTS)
        assert exc_info.value.type == ErrorType.UNKNOWN
        assert exc_info.value.info.code == "HUBSPOT_UNKNOWN"
        assert len(session.requests) == 1
