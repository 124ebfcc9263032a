"""Tests for alert stores, recipient directories, and storage clients."""

import json
from datetime import timedelta

import pytest

from guardwatch.config.models import PostgresConnectionConfig, RedisConnectionConfig
from guardwatch.models.alerts import AlertPriority
from guardwatch.models.delivery import Recipient
from guardwatch.pipeline.recipients import PostgresRecipientDirectory, StaticRecipientDirectory
from guardwatch.pipeline.storage import (
    AlertNotFoundError,
    AlertStoreError,
    NOTIFY_PRIORITIES,
    PostgresAlertStore,
)
from guardwatch.storage.postgres_client import (
    PostgresClient,
    PostgresConnectionException,
    PostgresOperationError,
    _row_to_alert,
)
from guardwatch.storage.redis_client import RedisClient, RedisConnectionException


class FakePostgresClient:
    """Stands in for PostgresClient at the method level."""

    def __init__(self, fail=False, rows_updated=True):
        self.fail = fail
        self.rows_updated = rows_updated
        self.inserted = []
        self.updates = []
        self.queries = []
        self.user_alerts = []
        self.recipients = {}
        self.recipient_lookups = 0

    async def insert_alert(self, alert):
        if self.fail:
            raise PostgresOperationError("insert failed")
        self.inserted.append(alert)

    async def update_alert_flags(self, alert_id, read=None, email_sent=None, push_sent=None):
        if self.fail:
            raise PostgresOperationError("update failed")
        self.updates.append((alert_id, read, email_sent, push_sent))
        return self.rows_updated

    async def query_undelivered_alerts(self, since, priorities, limit=500):
        self.queries.append((since, priorities))
        return []

    async def query_user_alerts(self, user_id, since, limit=1000):
        return self.user_alerts

    async def get_recipient(self, user_id):
        self.recipient_lookups += 1
        return self.recipients.get(user_id)

    async def list_recipient_user_ids(self):
        return sorted(self.recipients)


class TestInMemoryAlertStore:
    @pytest.mark.asyncio
    async def test_update_flags(self, store, make_alert):
        alert = await store.create_alert(make_alert())

        await store.update_alert_status(alert.id, push_sent=True)

        updated = await store.get_alert(alert.id)
        assert updated.push_sent is True
        assert updated.email_sent is False

    @pytest.mark.asyncio
    async def test_unknown_alert(self, store):
        with pytest.raises(AlertNotFoundError):
            await store.update_alert_status("missing", email_sent=True)
        with pytest.raises(AlertNotFoundError):
            await store.mark_read("missing")

    @pytest.mark.asyncio
    async def test_mark_read_and_count_unread(self, store, make_alert):
        first = await store.create_alert(make_alert())
        await store.create_alert(make_alert())
        await store.create_alert(make_alert(user_id="user-2"))

        await store.mark_read(first.id)

        assert await store.count_unread("user-1") == 1
        assert await store.count_unread("user-2") == 1

    @pytest.mark.asyncio
    async def test_find_alerts_for_notification(self, store, clock, make_alert):
        wanted = await store.create_alert(make_alert(priority=AlertPriority.CRITICAL))
        await store.create_alert(make_alert(priority=AlertPriority.MEDIUM))
        await store.create_alert(make_alert(priority=AlertPriority.HIGH, email_sent=True))
        await store.create_alert(
            make_alert(priority=AlertPriority.HIGH, created_at=clock.now() - timedelta(hours=3))
        )

        found = await store.find_alerts_for_notification(clock.now() - timedelta(hours=1))

        assert [a.id for a in found] == [wanted.id]

    @pytest.mark.asyncio
    async def test_fail_creates(self, store, make_alert):
        store.fail_creates = True

        with pytest.raises(AlertStoreError):
            await store.create_alert(make_alert())
        assert store.alerts == {}


class TestPostgresAlertStore:
    @pytest.mark.asyncio
    async def test_create_delegates_to_client(self, make_alert):
        client = FakePostgresClient()
        alert = make_alert()

        stored = await PostgresAlertStore(client).create_alert(alert)

        assert stored == alert
        assert client.inserted == [alert]

    @pytest.mark.asyncio
    async def test_client_errors_become_store_errors(self, make_alert):
        store = PostgresAlertStore(FakePostgresClient(fail=True))

        with pytest.raises(AlertStoreError, match="insert failed"):
            await store.create_alert(make_alert())
        with pytest.raises(AlertStoreError):
            await store.update_alert_status("a-1", email_sent=True)

    @pytest.mark.asyncio
    async def test_update_of_missing_row(self):
        store = PostgresAlertStore(FakePostgresClient(rows_updated=False))

        with pytest.raises(AlertNotFoundError):
            await store.update_alert_status("a-1", push_sent=True)
        with pytest.raises(AlertNotFoundError):
            await store.mark_read("a-1")

    @pytest.mark.asyncio
    async def test_flag_update_passes_only_given_flags(self):
        client = FakePostgresClient()

        await PostgresAlertStore(client).update_alert_status("a-1", email_sent=True)
        await PostgresAlertStore(client).mark_read("a-1")

        assert client.updates == [("a-1", None, True, None), ("a-1", True, None, None)]

    @pytest.mark.asyncio
    async def test_pending_query_uses_notify_priorities(self, clock):
        client = FakePostgresClient()

        await PostgresAlertStore(client).find_alerts_for_notification(clock.now())

        assert client.queries == [(clock.now(), NOTIFY_PRIORITIES)]

    @pytest.mark.asyncio
    async def test_stats_aggregated_from_rows(self, clock, make_alert):
        client = FakePostgresClient()
        client.user_alerts = [make_alert(), make_alert(priority=AlertPriority.LOW, read=True)]

        stats = await PostgresAlertStore(client).get_alert_stats("user-1", clock.now())

        assert stats.total == 2
        assert stats.unread == 1
        assert stats.by_type == {"risky_location": 2}

    @pytest.mark.asyncio
    async def test_unconnected_client_raises_store_error(self, make_alert):
        store = PostgresAlertStore(PostgresClient(PostgresConnectionConfig()))

        with pytest.raises(AlertStoreError, match="not connected"):
            await store.create_alert(make_alert())


class TestRecipientDirectories:
    @pytest.mark.asyncio
    async def test_static_directory(self, guardian):
        directory = StaticRecipientDirectory()
        directory.add(guardian)
        directory.add(Recipient(user_id="user-0", email="other@example.com"))

        assert await directory.get_recipient("user-1") == guardian
        assert await directory.get_recipient("user-9") is None
        assert await directory.list_user_ids() == ["user-0", "user-1"]

    @pytest.mark.asyncio
    async def test_postgres_directory_caches_hits(self, guardian):
        client = FakePostgresClient()
        client.recipients["user-1"] = guardian
        directory = PostgresRecipientDirectory(client)

        assert await directory.get_recipient("user-1") == guardian
        assert await directory.get_recipient("user-1") == guardian
        assert client.recipient_lookups == 1

        directory.invalidate("user-1")
        await directory.get_recipient("user-1")
        assert client.recipient_lookups == 2

    @pytest.mark.asyncio
    async def test_postgres_directory_does_not_cache_misses(self):
        client = FakePostgresClient()
        directory = PostgresRecipientDirectory(client)

        assert await directory.get_recipient("user-9") is None
        assert await directory.get_recipient("user-9") is None
        assert client.recipient_lookups == 2


class TestPostgresClient:
    def test_url_sanitized_for_logs(self):
        client = PostgresClient(PostgresConnectionConfig())

        sanitized = client._sanitize_url("postgresql://guardwatch:hunter2@db:5432/guardwatch")

        assert "hunter2" not in sanitized
        assert sanitized == "postgresql://guardwatch:***@db:5432/guardwatch"

    @pytest.mark.asyncio
    async def test_operations_require_connection(self):
        client = PostgresClient(PostgresConnectionConfig())

        assert not client.is_connected
        with pytest.raises(PostgresConnectionException):
            await client.update_alert_flags("a-1", read=True)

    def test_row_to_alert_accepts_json_evidence(self, make_alert):
        alert = make_alert(email_sent=True)
        row = alert.model_dump(mode="python")
        row["alert_type"] = alert.alert_type.value
        row["priority"] = alert.priority.value
        row["evidence"] = json.dumps(alert.evidence.model_dump())

        assert _row_to_alert(row) == alert


class TestRedisClient:
    @pytest.mark.asyncio
    async def test_publish_requires_connection(self, make_alert):
        client = RedisClient(RedisConnectionConfig())

        with pytest.raises(RedisConnectionException):
            await client.publish_alert(make_alert())
