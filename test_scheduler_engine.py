"""
Scheduler and engine wiring tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from conftest import FakeConnector, hubspot_contact, make_integration, make_registry
from connectors.crm_base import Page
from core.config import Settings
from core.models import EntityType, IntegrationStatus, SyncType
from core.security import generate_encryption_key
from core.storage import InMemoryIntegrationStore
from sync.engine import SyncEngine
from sync.orchestrator import SyncOrchestrator
from sync.scheduler import SyncScheduler, is_due

NOW = datetime(2025, 1, 9, 12, 0, 0, tzinfo=timezone.utc)


class TestIsDue:

    def test_never_synced_is_due(self):
        assert is_due(make_integration(), NOW)

    def test_future_sync_is_not_due(self):
        integration = make_integration(next_sync_at=NOW + timedelta(minutes=5))
        assert not is_due(integration, NOW)

    def test_past_sync_is_due(self):
        integration = make_integration(next_sync_at=NOW - timedelta(seconds=1))
        assert is_due(integration, NOW)

    def test_naive_timestamp_is_utc(self):
        integration = make_integration(next_sync_at=datetime(2025, 1, 9, 11, 0, 0))
        assert is_due(integration, NOW)

    @pytest.mark.parametrize("status", [IntegrationStatus.ERROR, IntegrationStatus.UNKNOWN])
    def test_unhealthy_integrations_are_not_scheduled(self, status):
        assert not is_due(make_integration(status=status), NOW)

    def test_warning_integrations_are_still_scheduled(self):
        assert is_due(make_integration(status=IntegrationStatus.WARNING), NOW)


class TestSchedulerTick:

    def build(self, connectors, integrations, recorded_sleep):
        store = InMemoryIntegrationStore(integrations)
        orchestrator = SyncOrchestrator(store, make_registry(connectors), sleep=recorded_sleep)
        return store, SyncScheduler(store, orchestrator, max_concurrent=2, clock=lambda: NOW)

    async def test_syncs_only_due_integrations(self, recorded_sleep):
        connectors = {
            "due": FakeConnector(pages={EntityType.CONTACTS: [Page(records=[hubspot_contact("1", "a@example.com")])]}),
            "later": FakeConnector(),
        }
        store, scheduler = self.build(connectors, [
            make_integration("due"),
            make_integration("later", next_sync_at=NOW + timedelta(hours=1)),
        ], recorded_sleep)

        results = await scheduler.tick()

        assert list(results) == ["due"]
        assert results["due"].synced_count == 1
        assert connectors["later"].fetch_calls == []
        logs = await store.list_sync_logs("due")
        assert logs[0].sync_type == SyncType.SCHEDULED

    async def test_one_failure_does_not_stop_the_tick(self, recorded_sleep):
        connectors = {"a": FakeConnector(), "b": FakeConnector()}
        store, scheduler = self.build(connectors, [make_integration("a"), make_integration("b")], recorded_sleep)
        original = store.create_sync_log

        async def flaky_create(integration_id, *args, **kwargs):
            if integration_id == "a":
                raise RuntimeError("disk full")
            return await original(integration_id, *args, **kwargs)

        with patch.object(store, "create_sync_log", side_effect=flaky_create) as create:
            results = await scheduler.tick()

        assert list(results) == ["b"]
        assert create.await_count == 2

    async def test_nothing_due(self, recorded_sleep):
        _, scheduler = self.build(FakeConnector(), [
            make_integration(next_sync_at=NOW + timedelta(days=1)),
        ], recorded_sleep)
        assert await scheduler.tick() == {}

    async def test_start_and_stop(self, recorded_sleep):
        _, scheduler = self.build(FakeConnector(), [], recorded_sleep)

        await scheduler.start()
        assert scheduler.is_running
        await scheduler.stop()
        assert not scheduler.is_running


class TestSyncEngine:

    @pytest.fixture
    def engine(self, store, recorded_sleep):
        connector = FakeConnector(pages={
            EntityType.CONTACTS: [Page(records=[hubspot_contact("1", "a@example.com")])],
        })
        return SyncEngine(
            Settings(encryption_key=generate_encryption_key()),
            store=store,
            registry=make_registry(connector),
            sleep=recorded_sleep,
        )

    async def test_sync_now(self, engine, store):
        result = await engine.sync_now("int-001")

        assert result.success is True
        assert result.synced_count == 1
        logs = await store.list_sync_logs("int-001")
        assert logs[0].sync_type == SyncType.MANUAL

    async def test_sync_now_unknown_integration(self, engine):
        with pytest.raises(KeyError):
            await engine.sync_now("missing")

    async def test_get_sync_status(self, engine):
        before = await engine.get_sync_status("int-001")
        assert before["lastSyncAt"] is None
        assert before["syncStats"]["totalSynced"] == 0

        await engine.sync_now("int-001")
        status = await engine.get_sync_status("int-001")

        assert status["integrationId"] == "int-001"
        assert status["status"] == IntegrationStatus.ACTIVE.value
        assert status["lastSyncAt"] is not None
        assert status["nextSyncAt"] is not None
        assert status["syncStats"]["totalSynced"] == 1
        assert status["syncFrequency"] == "hourly"
        assert status["dataTypes"] == ["contacts"]

    async def test_get_sync_status_unknown_integration(self, engine):
        with pytest.raises(KeyError):
            await engine.get_sync_status("missing")

    async def test_test_connection_closes_connector(self, engine):
        result = await engine.test_connection("int-001")
        assert result.success is True
        assert engine.registry.for_integration(make_integration()).closed == 1

    async def test_check_health_updates_report(self, engine):
        status = await engine.check_health("int-001")

        report = engine.health_report()
        assert report.summary.total == 1
        assert report.details["int-001"].status == status.status

    def test_encrypt_api_key_round_trip(self, engine):
        blob = engine.encrypt_api_key("pat-na1-secret", integration_id="int-001")
        assert blob.startswith("v1:")
        assert engine.cipher.decrypt(blob) == "pat-na1-secret"

    def test_requires_encryption_key(self, store):
        with pytest.raises(ValueError):
            SyncEngine(Settings(), store=store, registry=make_registry(FakeConnector()))

    async def test_stop_without_start(self, engine):
        async with engine:
            pass
        assert not engine.scheduler.is_running
        assert not engine.monitor.is_running
