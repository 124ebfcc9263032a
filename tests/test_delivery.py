"""Tests for the courier dispatcher, retry policy, and delivery worker."""

import asyncio
import random

import pytest

from guardwatch.models.alerts import AlertPriority
from guardwatch.models.delivery import CourierChannel, DeliveryState, QueueItem, Recipient
from guardwatch.pipeline.delivery import DeliveryQueue, DeliveryWorker, RetryPolicy
from guardwatch.pipeline.dispatcher import CourierDispatcher, channels_for_priority
from guardwatch.pipeline.recipients import StaticRecipientDirectory

from tests.fakes import START, RaisingCourier, ScriptedCourier


def build_worker(couriers, store, recipients, clock, max_retries=3, retry_policy=None):
    return DeliveryWorker(
        queue=DeliveryQueue(),
        dispatcher=CourierDispatcher(couriers, timeout_seconds=1.0),
        store=store,
        recipients=recipients,
        clock=clock,
        max_retries=max_retries,
        poll_interval=0.01,
        retry_policy=retry_policy or RetryPolicy(base_seconds=0),
    )


async def drain(worker):
    """Process items until the queue is empty; return every processed item."""
    processed = []
    while True:
        item = await worker.process_next()
        if item is None:
            return processed
        processed.append(item)


async def stored(store, alert):
    await store.create_alert(alert)
    return alert


# =============================================================================
# DISPATCHER
# =============================================================================


class TestChannelsForPriority:
    @pytest.mark.parametrize(
        "priority,channels",
        [
            (AlertPriority.LOW, []),
            (AlertPriority.MEDIUM, [CourierChannel.PUSH]),
            (AlertPriority.HIGH, [CourierChannel.EMAIL, CourierChannel.PUSH]),
            (AlertPriority.CRITICAL, [CourierChannel.EMAIL, CourierChannel.PUSH]),
        ],
    )
    def test_channels(self, priority, channels):
        assert channels_for_priority(priority) == channels


class TestCourierDispatcher:
    @pytest.mark.asyncio
    async def test_fans_out_to_applicable_couriers(self, make_alert, guardian):
        email, push = ScriptedCourier(), ScriptedCourier()
        dispatcher = CourierDispatcher({CourierChannel.EMAIL: email, CourierChannel.PUSH: push})
        alert = make_alert(priority=AlertPriority.HIGH)

        outcomes = await dispatcher.dispatch(alert, guardian)

        assert all(o.success for o in outcomes.values())
        assert email.calls == [("parent@example.com", alert.id)]
        assert push.calls == [("push-token-1", alert.id)]

    @pytest.mark.asyncio
    async def test_skip_set_excludes_channels(self, make_alert, guardian):
        email, push = ScriptedCourier(), ScriptedCourier()
        dispatcher = CourierDispatcher({CourierChannel.EMAIL: email, CourierChannel.PUSH: push})

        outcomes = await dispatcher.dispatch(
            make_alert(priority=AlertPriority.HIGH),
            guardian,
            skip=frozenset({CourierChannel.PUSH}),
        )

        assert list(outcomes) == [CourierChannel.EMAIL]
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_timeout_becomes_failure(self, make_alert, guardian):
        slow = ScriptedCourier(delay=1.0)
        dispatcher = CourierDispatcher({CourierChannel.PUSH: slow}, timeout_seconds=0.01)

        outcomes = await dispatcher.dispatch(make_alert(priority=AlertPriority.MEDIUM), guardian)

        outcome = outcomes[CourierChannel.PUSH]
        assert outcome.is_failure
        assert "timed out" in outcome.error

    @pytest.mark.asyncio
    async def test_raising_courier_becomes_failure(self, make_alert, guardian):
        dispatcher = CourierDispatcher({CourierChannel.PUSH: RaisingCourier()})

        outcomes = await dispatcher.dispatch(make_alert(priority=AlertPriority.MEDIUM), guardian)

        assert outcomes[CourierChannel.PUSH].is_failure
        assert outcomes[CourierChannel.PUSH].error == "courier exploded"

    @pytest.mark.asyncio
    async def test_missing_courier_is_skipped(self, make_alert, guardian):
        dispatcher = CourierDispatcher({})

        outcomes = await dispatcher.dispatch(make_alert(priority=AlertPriority.MEDIUM), guardian)

        assert outcomes[CourierChannel.PUSH].skipped
        assert not outcomes[CourierChannel.PUSH].is_failure

    @pytest.mark.asyncio
    async def test_missing_address_is_skipped(self, make_alert):
        push = ScriptedCourier()
        dispatcher = CourierDispatcher({CourierChannel.PUSH: push})

        outcomes = await dispatcher.dispatch(
            make_alert(priority=AlertPriority.MEDIUM),
            Recipient(user_id="user-1", email="parent@example.com"),
        )

        assert outcomes[CourierChannel.PUSH].skipped
        assert push.calls == []


# =============================================================================
# RETRY POLICY
# =============================================================================


class TestRetryPolicy:
    def test_exponential_delays(self):
        policy = RetryPolicy(base_seconds=5, multiplier=2, max_seconds=300)

        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [5.0, 10.0, 20.0, 40.0]

    def test_delay_capped(self):
        policy = RetryPolicy(base_seconds=5, multiplier=2, max_seconds=30)

        assert policy.delay_for(10) == 30.0

    def test_jitter_stays_within_fraction(self):
        policy = RetryPolicy(base_seconds=10, multiplier=1, jitter=0.2, rng=random.Random(7))

        delays = [policy.delay_for(1) for _ in range(50)]

        assert all(8.0 <= d <= 12.0 for d in delays)
        assert len(set(delays)) > 1

    def test_zero_base_means_immediate(self):
        assert RetryPolicy(base_seconds=0).delay_for(3) == 0.0


# =============================================================================
# WORKER
# =============================================================================


class TestDeliveryWorker:
    @pytest.mark.asyncio
    async def test_fails_k_times_then_succeeds(self, store, recipients, clock, make_alert):
        email, push = ScriptedCourier(fail_times=2), ScriptedCourier()
        worker = build_worker(
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push}, store, recipients, clock
        )
        alert = await stored(store, make_alert(priority=AlertPriority.HIGH))
        worker.enqueue(alert)

        processed = await drain(worker)

        assert [item.state for item in processed] == [
            DeliveryState.RETRYING,
            DeliveryState.RETRYING,
            DeliveryState.DELIVERED,
        ]
        assert len(email.calls) == 3
        assert len(push.calls) == 1
        assert store.alerts[alert.id].email_sent is True
        assert store.alerts[alert.id].push_sent is True
        assert worker.get_stats()["retried"] == 2
        assert worker.get_stats()["delivered"] == 1

    @pytest.mark.asyncio
    async def test_always_failing_courier_exhausts(self, store, recipients, clock, make_alert):
        email, push = ScriptedCourier(fail_times=-1), ScriptedCourier()
        worker = build_worker(
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push}, store, recipients, clock
        )
        alert = await stored(store, make_alert(priority=AlertPriority.HIGH))
        worker.enqueue(alert)

        processed = await drain(worker)

        assert processed[-1].state == DeliveryState.EXHAUSTED
        assert [item.retries for item in processed] == [0, 1, 2, 3]
        assert len(email.calls) == 4
        assert len(push.calls) == 1
        assert store.alerts[alert.id].email_sent is False
        assert store.alerts[alert.id].push_sent is True
        assert len(worker.queue) == 0
        assert worker.is_idle
        assert worker.get_stats()["exhausted"] == 1

    @pytest.mark.asyncio
    async def test_no_retries_configured(self, store, recipients, clock, make_alert):
        email = ScriptedCourier(fail_times=-1)
        worker = build_worker({CourierChannel.EMAIL: email}, store, recipients, clock, max_retries=0)
        worker.enqueue(await stored(store, make_alert(priority=AlertPriority.HIGH)))

        processed = await drain(worker)

        assert [item.state for item in processed] == [DeliveryState.EXHAUSTED]
        assert len(email.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_recipient_is_dropped(self, store, recipients, clock, make_alert):
        push = ScriptedCourier()
        worker = build_worker({CourierChannel.PUSH: push}, store, recipients, clock)
        worker.enqueue(await stored(store, make_alert(priority=AlertPriority.MEDIUM, user_id="user-9")))

        processed = await drain(worker)

        assert [item.state for item in processed] == [DeliveryState.EXHAUSTED]
        assert push.calls == []
        assert worker.get_stats()["dropped"] == 1

    @pytest.mark.asyncio
    async def test_low_priority_delivered_without_couriers(self, store, recipients, clock, make_alert):
        email, push = ScriptedCourier(), ScriptedCourier()
        worker = build_worker(
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push}, store, recipients, clock
        )
        alert = await stored(store, make_alert(priority=AlertPriority.LOW))
        worker.enqueue(alert)

        processed = await drain(worker)

        assert processed[0].state == DeliveryState.DELIVERED
        assert email.calls == [] and push.calls == []
        assert store.alerts[alert.id] == alert

    @pytest.mark.asyncio
    async def test_medium_priority_is_push_only(self, store, recipients, clock, make_alert):
        email, push = ScriptedCourier(), ScriptedCourier()
        worker = build_worker(
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push}, store, recipients, clock
        )
        alert = await stored(store, make_alert(priority=AlertPriority.MEDIUM))
        worker.enqueue(alert)

        await drain(worker)

        assert email.calls == []
        assert len(push.calls) == 1
        assert store.alerts[alert.id].push_sent is True
        assert store.alerts[alert.id].email_sent is False

    @pytest.mark.asyncio
    async def test_missing_address_does_not_retry(self, store, clock, make_alert):
        push = ScriptedCourier()
        directory = StaticRecipientDirectory([Recipient(user_id="user-1", email="parent@example.com")])
        worker = build_worker({CourierChannel.PUSH: push}, store, directory, clock)
        alert = await stored(store, make_alert(priority=AlertPriority.MEDIUM))
        worker.enqueue(alert)

        processed = await drain(worker)

        assert [item.state for item in processed] == [DeliveryState.DELIVERED]
        assert store.alerts[alert.id].push_sent is False

    @pytest.mark.asyncio
    async def test_retried_items_go_to_the_tail(self, store, recipients, clock, make_alert):
        push = ScriptedCourier(fail_times=1)
        worker = build_worker({CourierChannel.PUSH: push}, store, recipients, clock)
        first = await stored(store, make_alert(priority=AlertPriority.MEDIUM))
        second = await stored(store, make_alert(priority=AlertPriority.MEDIUM))
        worker.enqueue(first)
        worker.enqueue(second)

        await drain(worker)

        assert [alert_id for _, alert_id in push.calls] == [first.id, second.id, first.id]

    @pytest.mark.asyncio
    async def test_already_delivered_flags_not_resent(self, store, recipients, clock, make_alert):
        email, push = ScriptedCourier(), ScriptedCourier()
        worker = build_worker(
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push}, store, recipients, clock
        )
        alert = await stored(store, make_alert(priority=AlertPriority.HIGH, push_sent=True))
        worker.enqueue(alert)

        await drain(worker)

        assert len(email.calls) == 1
        assert push.calls == []
        assert store.alerts[alert.id].email_sent is True

    @pytest.mark.asyncio
    async def test_store_update_failure_is_not_fatal(self, store, recipients, clock, make_alert):
        push = ScriptedCourier()
        worker = build_worker({CourierChannel.PUSH: push}, store, recipients, clock)
        # Never persisted, so the flag update raises AlertNotFoundError
        worker.enqueue(make_alert(priority=AlertPriority.MEDIUM))

        processed = await drain(worker)

        assert processed[0].state == DeliveryState.DELIVERED
        assert processed[0].alert.push_sent is True

    @pytest.mark.asyncio
    async def test_backoff_schedules_requeue(self, store, recipients, clock, make_alert):
        push = ScriptedCourier(fail_times=1)
        worker = build_worker(
            {CourierChannel.PUSH: push},
            store,
            recipients,
            clock,
            retry_policy=RetryPolicy(base_seconds=0.02),
        )
        alert = await stored(store, make_alert(priority=AlertPriority.MEDIUM))
        worker.enqueue(alert)

        await worker.process_next()

        assert len(worker.queue) == 0
        assert worker.is_tracking(alert.id)
        assert worker.get_stats()["scheduled_retries"] == 1
        assert not worker.is_idle

        await asyncio.sleep(0.1)

        assert alert.id in worker.queue
        assert worker.queue.snapshot()[0].retries == 1
        await drain(worker)
        assert store.alerts[alert.id].push_sent is True

    @pytest.mark.asyncio
    async def test_deliver_inline_success(self, store, recipients, clock, make_alert):
        email, push = ScriptedCourier(), ScriptedCourier()
        worker = build_worker(
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push}, store, recipients, clock
        )
        alert = await stored(store, make_alert(priority=AlertPriority.CRITICAL))

        result = await worker.deliver_inline(alert)

        assert result.state == DeliveryState.DELIVERED
        assert len(worker.queue) == 0
        assert store.alerts[alert.id].email_sent is True

    @pytest.mark.asyncio
    async def test_deliver_inline_failure_requeues_with_one_retry(
        self, store, recipients, clock, make_alert
    ):
        email, push = ScriptedCourier(fail_times=-1), ScriptedCourier()
        worker = build_worker(
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push}, store, recipients, clock
        )
        alert = await stored(store, make_alert(priority=AlertPriority.CRITICAL))

        result = await worker.deliver_inline(alert)

        assert result.state == DeliveryState.RETRYING
        queued = worker.queue.snapshot()
        assert len(queued) == 1
        assert queued[0].retries == 1
        assert queued[0].delivered == frozenset({CourierChannel.PUSH})

    @pytest.mark.asyncio
    async def test_deliver_inline_failure_waits_for_backoff(
        self, store, recipients, clock, make_alert
    ):
        email, push = ScriptedCourier(fail_times=1), ScriptedCourier()
        worker = build_worker(
            {CourierChannel.EMAIL: email, CourierChannel.PUSH: push},
            store,
            recipients,
            clock,
            retry_policy=RetryPolicy(base_seconds=0.02),
        )
        alert = await stored(store, make_alert(priority=AlertPriority.CRITICAL))

        result = await worker.deliver_inline(alert)

        assert result.state == DeliveryState.RETRYING
        assert len(worker.queue) == 0
        assert worker.is_tracking(alert.id)
        assert worker.get_stats()["scheduled_retries"] == 1

        await asyncio.sleep(0.1)

        assert worker.queue.snapshot()[0].retries == 1
        await drain(worker)
        assert len(email.calls) == 2
        assert len(push.calls) == 1
        assert store.alerts[alert.id].email_sent is True

    @pytest.mark.asyncio
    async def test_loop_drains_until_idle(self, store, recipients, clock, make_alert):
        push = ScriptedCourier()
        worker = build_worker({CourierChannel.PUSH: push}, store, recipients, clock)
        worker.start()
        try:
            for _ in range(3):
                worker.enqueue(await stored(store, make_alert(priority=AlertPriority.MEDIUM)))

            assert await worker.wait_idle(timeout=1.0)
        finally:
            await worker.stop()

        assert len(push.calls) == 3
        assert not worker.is_running


class TestDeliveryQueue:
    def test_fifo_and_membership(self, make_alert):
        queue = DeliveryQueue()
        first, second = make_alert(), make_alert()
        queue.append(QueueItem.for_alert(first, enqueued_at=START))
        queue.append(QueueItem.for_alert(second, enqueued_at=START))

        assert first.id in queue
        assert queue.popleft().alert_id == first.id
        assert first.id not in queue
        assert queue.popleft().alert_id == second.id
        assert queue.popleft() is None
