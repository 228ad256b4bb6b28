"""
Remote entity normalization tests.

A page never fails as a whole: bad records become error entries, records
with nothing to identify them by are skipped, and unparsable values fall
back with a warning.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.models import EntityType, RemoteCompany, RemoteContact, RemoteDeal
from sync.processor import (
    RemoteEntityProcessor,
    clean_phone,
    parse_amount,
    parse_timestamp,
)

NOW = datetime(2025, 1, 9, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def processor():
    return RemoteEntityProcessor(clock=lambda: NOW)


class TestContacts:

    def test_normalizes_hubspot_contact(self, processor):
        raw = {
            "id": "101",
            "properties": {
                "email": "  Jane.Doe@Example.COM ",
                "firstname": "Jane",
                "lastname": "Doe",
                "phone": "(555) 123-4567",
                "company": "Acme",
                "createdate": "2024-01-15T10:00:00Z",
                "lastmodifieddate": "2024-02-01T08:30:00.000Z",
            },
        }
        result = processor.process_batch([raw], "hubspot", EntityType.CONTACTS)

        assert result.errors == [] and result.skipped == [] and result.warnings == []
        contact = result.normalized[0]
        assert isinstance(contact, RemoteContact)
        assert contact.external_id == "101"
        assert contact.email == "jane.doe@example.com"
        assert contact.phone == "5551234567"
        assert contact.source_platform == "hubspot"
        assert contact.created_at == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert contact.modified_at == datetime(2024, 2, 1, 8, 30, tzinfo=timezone.utc)
        assert contact.raw == raw

    def test_invalid_email_is_kept_with_warning(self, processor):
        raw = {"id": "1", "properties": {"email": "not-an-email"}}
        result = processor.process_batch([raw], "hubspot", EntityType.CONTACTS)

        assert len(result.normalized) == 1
        assert result.normalized[0].email == "not-an-email"
        assert len(result.warnings) == 1
        assert "invalid email" in result.warnings[0]

    def test_contact_without_identifying_fields_is_skipped(self, processor):
        raw = {"id": "7", "properties": {"phone": "555", "company": "Acme"}}
        result = processor.process_batch([raw], "hubspot", EntityType.CONTACTS)

        assert result.normalized == []
        assert result.errors == []
        assert len(result.skipped) == 1
        assert result.skipped[0].external_id == "7"

    def test_missing_dates_default_to_now(self, processor):
        raw = {"id": "1", "properties": {"firstname": "Ann"}}
        contact = processor.process_batch([raw], "hubspot", EntityType.CONTACTS).normalized[0]
        assert contact.created_at == NOW
        assert contact.modified_at == NOW

    def test_top_level_timestamps_are_used_as_fallback(self, processor):
        raw = {
            "id": "1",
            "properties": {"firstname": "Ann"},
            "createdAt": "2024-03-01T00:00:00Z",
            "updatedAt": "2024-03-02T00:00:00Z",
        }
        contact = processor.process_batch([raw], "hubspot", EntityType.CONTACTS).normalized[0]
        assert contact.created_at == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert contact.modified_at == datetime(2024, 3, 2, tzinfo=timezone.utc)

    def test_missing_modified_date_defaults_to_now_not_created(self, processor):
        raw = {"id": "1", "properties": {"firstname": "Ann", "createdate": "2024-01-15T10:00:00Z"}}
        contact = processor.process_batch([raw], "hubspot", EntityType.CONTACTS).normalized[0]
        assert contact.created_at == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert contact.modified_at == NOW

    def test_unparsable_modified_date_warns(self, processor):
        raw = {"id": "1", "properties": {"firstname": "Ann", "lastmodifieddate": "yesterday-ish"}}
        result = processor.process_batch([raw], "hubspot", EntityType.CONTACTS)

        assert result.normalized[0].modified_at == NOW
        assert len(result.warnings) == 1
        assert "unparsable modified date" in result.warnings[0]

    def test_platform_key_is_case_insensitive(self, processor):
        raw = {"id": "5", "properties": {"email": "mixed@example.com"}}
        result = processor.process_batch([raw], "HubSpot", EntityType.CONTACTS)

        assert result.skipped == []
        assert result.normalized[0].email == "mixed@example.com"
        assert result.normalized[0].source_platform == "hubspot"


class TestCompanies:

    def test_normalizes_company(self, processor):
        raw = {
            "id": "c1",
            "properties": {"name": " Acme Corp ", "domain": "ACME.com", "city": "Austin"},
        }
        company = processor.process_batch([raw], "hubspot", EntityType.COMPANIES).normalized[0]
        assert isinstance(company, RemoteCompany)
        assert company.name == "Acme Corp"
        assert company.domain == "acme.com"
        assert company.city == "Austin"

    def test_invalid_domain_warns(self, processor):
        raw = {"id": "c1", "properties": {"domain": "not a domain"}}
        result = processor.process_batch([raw], "hubspot", EntityType.COMPANIES)
        assert len(result.normalized) == 1
        assert "invalid domain" in result.warnings[0]

    def test_company_without_name_or_domain_is_skipped(self, processor):
        raw = {"id": "c1", "properties": {"industry": "Software"}}
        result = processor.process_batch([raw], "hubspot", EntityType.COMPANIES)
        assert len(result.skipped) == 1


class TestDeals:

    def test_normalizes_deal(self, processor):
        raw = {
            "id": "d1",
            "properties": {
                "dealname": "Big Deal",
                "amount": "$1,250.50",
                "dealstage": "closedwon",
                "pipeline": "default",
                "closedate": "2025-03-31T00:00:00Z",
            },
        }
        deal = processor.process_batch([raw], "hubspot", EntityType.DEALS).normalized[0]
        assert isinstance(deal, RemoteDeal)
        assert deal.amount == Decimal("1250.50")
        assert deal.stage == "closedwon"
        assert deal.close_date == datetime(2025, 3, 31, tzinfo=timezone.utc)

    def test_unparsable_amount_becomes_zero_with_warning(self, processor):
        raw = {"id": "d1", "properties": {"dealname": "Deal", "amount": "lots"}}
        result = processor.process_batch([raw], "hubspot", EntityType.DEALS)
        assert result.normalized[0].amount == Decimal("0")
        assert "unparsable amount" in result.warnings[0]

    def test_missing_amount_is_none(self, processor):
        raw = {"id": "d1", "properties": {"dealname": "Deal"}}
        assert processor.process_batch([raw], "hubspot", EntityType.DEALS).normalized[0].amount is None

    def test_unparsable_close_date_is_none_with_warning(self, processor):
        raw = {"id": "d1", "properties": {"dealname": "Deal", "closedate": "next quarter"}}
        result = processor.process_batch([raw], "hubspot", EntityType.DEALS)
        assert result.normalized[0].close_date is None
        assert "unparsable close date" in result.warnings[0]


class TestBatchIsolation:

    def test_bad_records_do_not_fail_the_batch(self, processor):
        records = [
            {"id": "1", "properties": {"email": "a@example.com"}},
            {"properties": {"email": "b@example.com"}},
            "not a record",
            {"id": "4", "properties": {}},
            {"id": "5", "properties": {"email": "e@example.com"}},
        ]
        result = processor.process_batch(records, "hubspot", EntityType.CONTACTS)

        assert [c.external_id for c in result.normalized] == ["1", "5"]
        assert [e.index for e in result.errors] == [1, 2]
        assert [s.index for s in result.skipped] == [3]
        assert result.total == 5

    def test_empty_page(self, processor):
        result = processor.process_batch([], "hubspot", EntityType.DEALS)
        assert result.total == 0

    def test_unknown_platform_uses_canonical_names(self, processor):
        raw = {"id": "x1", "email": "x@example.com", "first_name": "X"}
        contact = processor.process_batch([raw], "pipedrive", EntityType.CONTACTS).normalized[0]
        assert contact.email == "x@example.com"
        assert contact.first_name == "X"


class TestValueParsers:

    @pytest.mark.parametrize("value, expected", [
        ("+1 (555) 123-4567", "+15551234567"),
        ("555.123.4567", "5551234567"),
        ("ext", None),
        (None, None),
    ])
    def test_clean_phone(self, value, expected):
        assert clean_phone(value) == expected

    def test_parse_timestamp_epoch_millis(self):
        assert parse_timestamp(1704067200000) == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp("1704067200000") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_parse_timestamp_naive_iso_is_utc(self):
        assert parse_timestamp("2024-01-01T00:00:00") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "garbage", None, True])
    def test_parse_timestamp_rejects(self, value):
        assert parse_timestamp(value) is None

    @pytest.mark.parametrize("value, expected", [
        ("1,000", (Decimal("1000"), True)),
        (42, (Decimal("42"), True)),
        ("", (None, True)),
        ("NaN", (Decimal("0"), False)),
        ("abc", (Decimal("0"), False)),
    ])
    def test_parse_amount(self, value, expected):
        assert parse_amount(value) == expected
