"""End-to-end tests for the alert pipeline."""

from datetime import timedelta

import pytest

from guardwatch.config.models import (
    AlertsConfig,
    AppConfig,
    DangerZoneConfig,
    DetectorsConfig,
    FeaturesConfig,
    HousekeepingConfig,
    LocationDetectorConfig,
    ZoneRisk,
)
from guardwatch.models.alerts import Alert, AlertPriority, AlertType, Suppressed
from guardwatch.models.delivery import CourierChannel
from guardwatch.models.telemetry import CallEvent, LocationEvent, MessageEvent
from guardwatch.pipeline.manager import create_pipeline

from tests.fakes import (
    FlakyAlertStore,
    RecordingPublisher,
    RecordingSummaryCourier,
    ScriptedCourier,
)


@pytest.fixture
def email():
    return ScriptedCourier()


@pytest.fixture
def push():
    return ScriptedCourier()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def pipeline(app_config, store, recipients, email, push, clock, publisher):
    return create_pipeline(
        app_config,
        store,
        recipients,
        {CourierChannel.EMAIL: email, CourierChannel.PUSH: push},
        clock=clock,
        publisher=publisher,
    )


def suspicious_message(clock, event_id="msg-1"):
    return MessageEvent(
        event_id=event_id,
        user_id="user-1",
        device_id="device-1",
        occurred_at=clock.now(),
        phone_number="+5511987654321",
        content="let's meet and smoke maconha tonight",
    )


def location(clock, latitude=-23.5505, longitude=-46.6333):
    return LocationEvent(
        event_id="fix-1",
        user_id="user-1",
        device_id="device-1",
        occurred_at=clock.now(),
        latitude=latitude,
        longitude=longitude,
    )


async def drain(worker):
    while await worker.process_next() is not None:
        pass


class TestSubmitEvent:
    @pytest.mark.asyncio
    async def test_message_admitted_published_and_queued(
        self, pipeline, store, publisher, email, push, clock
    ):
        results = await pipeline.submit_event(suspicious_message(clock))

        assert len(results) == 1
        alert = results[0]
        assert isinstance(alert, Alert)
        assert alert.alert_type == AlertType.SUSPICIOUS_MESSAGE
        assert alert.priority == AlertPriority.HIGH
        assert store.alerts[alert.id] == alert
        assert publisher.published == [alert.id]
        assert alert.id in pipeline.worker.queue

        await drain(pipeline.worker)

        assert len(email.calls) == 1
        assert len(push.calls) == 1
        assert store.alerts[alert.id].email_sent is True

    @pytest.mark.asyncio
    async def test_quiet_event_yields_nothing(self, pipeline, store, clock):
        results = await pipeline.submit_event(location(clock))

        assert results == []
        assert store.alerts == {}
        assert pipeline.get_stats()["events_processed"] == 1

    @pytest.mark.asyncio
    async def test_repeat_is_suppressed(self, pipeline, publisher, clock):
        first = await pipeline.submit_event(suspicious_message(clock, "msg-1"))
        clock.advance(minutes=5)
        second = await pipeline.submit_event(suspicious_message(clock, "msg-2"))

        assert isinstance(first[0], Alert)
        assert isinstance(second[0], Suppressed)
        assert len(publisher.published) == 1
        assert pipeline.get_stats()["suppressed"] == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_skips_only_that_candidate(
        self, app_config, recipients, email, push, clock
    ):
        store = FlakyAlertStore(failures=1)
        pipeline = create_pipeline(
            app_config,
            store,
            recipients,
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push},
            clock=clock,
        )
        # A long call at 02:00 raises a long-call and a late-night candidate
        clock.set(clock.now().replace(hour=2))
        call = CallEvent(
            event_id="call-1",
            user_id="user-1",
            device_id="device-1",
            occurred_at=clock.now(),
            phone_number="+5511988887777",
            contact_name="Tio",
            duration_seconds=4000,
        )

        results = await pipeline.submit_event(call)

        assert len(results) == 1
        assert results[0].evidence.kind == "late_night_call"
        stats = pipeline.get_stats()
        assert stats["persistence_failures"] == 1
        assert stats["admitted"] == 1
        assert len(pipeline.history.sightings()) == 1

    @pytest.mark.asyncio
    async def test_store_outage_does_not_raise(self, pipeline, store, clock):
        store.fail_creates = True

        results = await pipeline.submit_event(suspicious_message(clock))

        assert results == []
        assert pipeline.get_stats()["persistence_failures"] == 1
        assert len(pipeline.worker.queue) == 0

    @pytest.mark.asyncio
    async def test_publisher_failure_does_not_block_delivery(
        self, app_config, store, recipients, email, push, clock
    ):
        pipeline = create_pipeline(
            app_config,
            store,
            recipients,
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push},
            clock=clock,
            publisher=RecordingPublisher(fail=True),
        )

        results = await pipeline.submit_event(suspicious_message(clock))

        assert isinstance(results[0], Alert)
        assert len(pipeline.worker.queue) == 1

    def test_publishing_can_be_disabled(self, app_config, store, recipients, clock):
        config = app_config.model_copy(update={"features": FeaturesConfig(publish_alerts=False)})

        pipeline = create_pipeline(config, store, recipients, {}, clock=clock, publisher=RecordingPublisher())

        assert pipeline.publisher is None


class TestCriticalAlerts:
    @pytest.mark.asyncio
    async def test_delivered_before_admit_returns(self, pipeline, store, email, push, make_candidate):
        alert = await pipeline.admit(make_candidate(priority=AlertPriority.CRITICAL))

        assert len(email.calls) == 1
        assert len(push.calls) == 1
        assert len(pipeline.worker.queue) == 0
        assert store.alerts[alert.id].email_sent is True
        assert store.alerts[alert.id].push_sent is True

    @pytest.mark.asyncio
    async def test_failed_inline_delivery_is_queued_for_retry(
        self, app_config, store, recipients, push, clock, make_candidate
    ):
        pipeline = create_pipeline(
            app_config,
            store,
            recipients,
            {CourierChannel.EMAIL: ScriptedCourier(fail_times=-1), CourierChannel.PUSH: push},
            clock=clock,
        )

        await pipeline.admit(make_candidate(priority=AlertPriority.CRITICAL))

        queued = pipeline.worker.queue.snapshot()
        assert len(queued) == 1
        assert queued[0].retries == 1

    @pytest.mark.asyncio
    async def test_danger_zone_event_delivered_inline(
        self, app_config, store, recipients, email, push, clock
    ):
        zone = DangerZoneConfig(
            name="Terminal",
            risk=ZoneRisk.HIGH,
            latitude=-23.5163,
            longitude=-46.6252,
            radius_km=0.5,
        )
        config = app_config.model_copy(
            update={
                "detectors": DetectorsConfig(location=LocationDetectorConfig(danger_zones=[zone])),
            }
        )
        pipeline = create_pipeline(
            config,
            store,
            recipients,
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push},
            clock=clock,
        )

        results = await pipeline.submit_event(location(clock, -23.5165, -46.6250))

        assert results[0].priority == AlertPriority.CRITICAL
        assert len(email.calls) == 1
        assert len(pipeline.worker.queue) == 0


class TestPendingAlerts:
    @pytest.mark.asyncio
    async def test_sweep_enqueues_unsent_recent_alerts_once(self, pipeline, store, clock, make_alert):
        pending = await store.create_alert(make_alert(priority=AlertPriority.HIGH))
        await store.create_alert(make_alert(priority=AlertPriority.MEDIUM))
        await store.create_alert(
            make_alert(priority=AlertPriority.HIGH, created_at=clock.now() - timedelta(hours=2))
        )
        await store.create_alert(make_alert(priority=AlertPriority.CRITICAL, email_sent=True))

        assert await pipeline.process_pending_alerts() == 1
        assert await pipeline.process_pending_alerts() == 0
        assert [item.alert_id for item in pipeline.worker.queue.snapshot()] == [pending.id]

        await drain(pipeline.worker)

        assert store.alerts[pending.id].email_sent is True
        assert await pipeline.process_pending_alerts() == 0


class TestDeviceOffline:
    @pytest.mark.asyncio
    async def test_silent_device_raises_one_alert(self, pipeline, clock):
        await pipeline.submit_event(location(clock))
        clock.advance(minutes=45)

        first = await pipeline.check_device_offline()
        second = await pipeline.check_device_offline()

        assert len(first) == 1
        assert first[0].alert_type == AlertType.DEVICE_OFFLINE
        assert first[0].evidence.offline_minutes == 45
        assert isinstance(second[0], Suppressed)

    @pytest.mark.asyncio
    async def test_reporting_device_is_fine(self, pipeline, clock):
        await pipeline.submit_event(location(clock))
        clock.advance(minutes=10)

        assert await pipeline.check_device_offline() == []


class TestDailySummary:
    @pytest.fixture
    def summary(self):
        return RecordingSummaryCourier()

    @pytest.fixture
    def summary_pipeline(self, app_config, store, recipients, clock, summary):
        config = app_config.model_copy(
            update={
                "alerts": AlertsConfig(
                    delivery=app_config.alerts.delivery,
                    housekeeping=HousekeepingConfig(daily_summary_enabled=True, daily_summary_hour=20),
                )
            }
        )
        return create_pipeline(config, store, recipients, {}, clock=clock, summary_courier=summary)

    @pytest.mark.asyncio
    async def test_summary_counts_last_day(self, summary_pipeline, store, summary, clock, make_alert):
        await store.create_alert(make_alert(priority=AlertPriority.HIGH))
        await store.create_alert(make_alert(priority=AlertPriority.LOW, read=True))
        await store.create_alert(make_alert(created_at=clock.now() - timedelta(days=2)))

        assert await summary_pipeline.send_daily_summary("user-1") is True

        address, stats, name = summary.sent[0]
        assert address == "parent@example.com"
        assert name == "Ana"
        assert stats.total == 2
        assert stats.unread == 1
        assert stats.by_priority == {"high": 1, "low": 1}

    @pytest.mark.asyncio
    async def test_unknown_user_gets_no_summary(self, summary_pipeline, summary):
        assert await summary_pipeline.send_daily_summary("user-9") is False
        assert summary.sent == []

    @pytest.mark.asyncio
    async def test_no_summary_courier(self, pipeline):
        assert await pipeline.send_daily_summary("user-1") is False

    @pytest.mark.asyncio
    async def test_tick_sends_once_per_day_at_configured_hour(self, summary_pipeline, summary, clock):
        assert await summary_pipeline._daily_summary_tick() == 0

        clock.set(clock.now().replace(hour=20, minute=5))
        assert await summary_pipeline._daily_summary_tick() == 1
        clock.advance(minutes=5)
        assert await summary_pipeline._daily_summary_tick() == 0

        clock.advance(days=1)
        assert await summary_pipeline._daily_summary_tick() == 1
        assert len(summary.sent) == 2


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_shutdown_drains_queue(self, pipeline, email, push, clock):
        pipeline.start()
        await pipeline.submit_event(suspicious_message(clock))

        drained = await pipeline.shutdown()

        assert drained is True
        assert len(email.calls) == 1
        assert len(push.calls) == 1
        assert not pipeline.worker.is_running
        assert not pipeline.sweeper.is_running

    @pytest.mark.asyncio
    async def test_shutdown_without_start(self, pipeline, clock):
        await pipeline.submit_event(suspicious_message(clock))

        assert await pipeline.shutdown(drain_timeout=0.1) is True
        assert len(pipeline.worker.queue) == 1

    @pytest.mark.asyncio
    async def test_stats(self, pipeline, clock):
        await pipeline.submit_event(suspicious_message(clock))

        stats = pipeline.get_stats()

        assert stats["events_processed"] == 1
        assert stats["candidates"] == 1
        assert stats["admitted"] == 1
        assert stats["throttle_keys"] == 1
        assert stats["queue_size"] == 1
        assert stats["delivered"] == 0
