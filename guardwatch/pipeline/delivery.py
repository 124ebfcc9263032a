"""
Delivery queue and worker.

Admitted, non-critical alerts wait in a FIFO DeliveryQueue. A single
DeliveryWorker loop drains it: for each item it looks up the guardian,
fans the alert out to the couriers for its priority, persists the delivery
flags, and re-enqueues the item at the tail after a backoff delay if any
courier failed. Critical alerts skip the queue and are delivered inline.

Key Features:
    - Strict FIFO, retried items go to the tail
    - Channels already delivered are not re-sent on retry
    - Explicit RetryPolicy (base, multiplier, cap, jitter)
    - One failing item never stops the loop

Example:
    >>> worker = DeliveryWorker(
    ...     queue=DeliveryQueue(),
    ...     dispatcher=dispatcher,
    ...     store=store,
    ...     recipients=directory,
    ...     clock=SystemClock(),
    ... )
    >>> worker.enqueue(alert)
    >>> worker.start()
"""

import asyncio
import random
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

import structlog

from guardwatch.clock import Clock
from guardwatch.config.models import DeliveryConfig, RetryBackoffConfig
from guardwatch.models.alerts import Alert
from guardwatch.models.delivery import CourierChannel, DeliveryState, QueueItem
from guardwatch.pipeline.dispatcher import CourierDispatcher
from guardwatch.pipeline.recipients import RecipientDirectory
from guardwatch.pipeline.storage import AlertStore

logger = structlog.get_logger(__name__)


class DeliveryQueue:
    """
    In-memory FIFO of alerts awaiting delivery.

    Touched only from the event loop, so no locking is needed.
    """

    def __init__(self) -> None:
        self._items: Deque[QueueItem] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, alert_id: object) -> bool:
        return any(item.alert_id == alert_id for item in self._items)

    def append(self, item: QueueItem) -> None:
        self._items.append(item)

    def popleft(self) -> Optional[QueueItem]:
        """Remove and return the head item, or None if empty."""
        if not self._items:
            return None
        return self._items.popleft()

    def snapshot(self) -> List[QueueItem]:
        """Items in queue order."""
        return list(self._items)


class RetryPolicy:
    """
    Backoff before a failed item is re-enqueued.

    The n-th retry waits base * multiplier ** (n - 1) seconds, capped at
    max_seconds, then spread by +/- jitter as a fraction of the delay.

    Example:
        >>> policy = RetryPolicy(base_seconds=5, multiplier=2, max_seconds=300)
        >>> [policy.delay_for(n) for n in (1, 2, 3)]
        [5.0, 10.0, 20.0]
    """

    def __init__(
        self,
        base_seconds: float = 5.0,
        multiplier: float = 2.0,
        max_seconds: float = 300.0,
        jitter: float = 0.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.base_seconds = base_seconds
        self.multiplier = multiplier
        self.max_seconds = max_seconds
        self.jitter = jitter
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: RetryBackoffConfig) -> "RetryPolicy":
        return cls(
            base_seconds=config.base_seconds,
            multiplier=config.multiplier,
            max_seconds=config.max_seconds,
            jitter=config.jitter,
        )

    def delay_for(self, retry: int) -> float:
        """
        Delay before the given retry.

        Args:
            retry: Retry number, starting at 1.

        Returns:
            float: Delay in seconds, never negative.
        """
        delay = self.base_seconds * (self.multiplier ** max(retry - 1, 0))
        delay = min(delay, self.max_seconds)
        if self.jitter:
            delay += delay * self.jitter * self._rng.uniform(-1.0, 1.0)
        return max(delay, 0.0)


class DeliveryWorker:
    """
    Drains the delivery queue.

    Attributes:
        queue: The delivery queue.
        dispatcher: Courier fan-out.
        store: Alert store for flag updates.
        recipients: Guardian contact lookup.
        clock: Time source.
        max_retries: Failed attempts after which an item is dropped.
        poll_interval: Sleep when the queue is empty, in seconds.
        retry_policy: Backoff before re-enqueueing.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        dispatcher: CourierDispatcher,
        store: AlertStore,
        recipients: RecipientDirectory,
        clock: Clock,
        max_retries: int = 3,
        poll_interval: float = 5.0,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Initialize the worker.

        Args:
            queue: The delivery queue.
            dispatcher: Courier fan-out.
            store: Alert store for flag updates.
            recipients: Guardian contact lookup.
            clock: Time source.
            max_retries: Failed attempts after which an item is dropped.
            poll_interval: Sleep when the queue is empty, in seconds.
            retry_policy: Backoff before re-enqueueing (default RetryPolicy()).
        """
        self.queue = queue
        self.dispatcher = dispatcher
        self.store = store
        self.recipients = recipients
        self.clock = clock
        self.max_retries = max_retries
        self.poll_interval = poll_interval
        self.retry_policy = retry_policy or RetryPolicy()

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._retry_tasks: Set[asyncio.Task] = set()
        self._in_flight: Set[str] = set()
        self._scheduled: Set[str] = set()

        self._delivered_count = 0
        self._retried_count = 0
        self._exhausted_count = 0
        self._dropped_count = 0

        logger.info(
            "delivery_worker_initialized",
            max_retries=max_retries,
            poll_interval=poll_interval,
        )

    @classmethod
    def from_config(
        cls,
        config: DeliveryConfig,
        queue: DeliveryQueue,
        dispatcher: CourierDispatcher,
        store: AlertStore,
        recipients: RecipientDirectory,
        clock: Clock,
    ) -> "DeliveryWorker":
        return cls(
            queue=queue,
            dispatcher=dispatcher,
            store=store,
            recipients=recipients,
            clock=clock,
            max_retries=config.max_retries,
            poll_interval=config.poll_interval_seconds,
            retry_policy=RetryPolicy.from_config(config.backoff),
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_idle(self) -> bool:
        """Check if nothing is queued, being delivered, or waiting to retry."""
        return not self.queue and not self._in_flight and not self._scheduled

    def is_tracking(self, alert_id: str) -> bool:
        """Check if an alert is queued, in flight, or waiting to retry."""
        return (
            alert_id in self._in_flight
            or alert_id in self._scheduled
            or alert_id in self.queue
        )

    def enqueue(self, alert: Alert, retries: int = 0) -> QueueItem:
        """
        Append an alert to the tail of the queue.

        Args:
            alert: Persisted alert.
            retries: Starting retry count.

        Returns:
            QueueItem: The queued item.
        """
        item = QueueItem.for_alert(alert, enqueued_at=self.clock.now(), retries=retries)
        self.queue.append(item)

        logger.debug(
            "alert_enqueued",
            alert_id=alert.id,
            retries=retries,
            queue_size=len(self.queue),
        )
        return item

    async def deliver(self, item: QueueItem) -> QueueItem:
        """
        Make one delivery attempt.

        Invokes the couriers that have not yet succeeded for this alert and
        persists the resulting flags. Does not re-enqueue.

        Args:
            item: Item to deliver.

        Returns:
            QueueItem: The item after the attempt, in state delivered,
                retrying (some courier failed), or exhausted (no recipient).
        """
        item = item.model_copy(update={"state": DeliveryState.DELIVERING})
        alert = item.alert

        recipient = await self.recipients.get_recipient(alert.user_id)
        if recipient is None:
            logger.error(
                "delivery_dropped_no_recipient",
                alert_id=alert.id,
                user_id=alert.user_id,
            )
            self._dropped_count += 1
            return item.model_copy(update={"state": DeliveryState.EXHAUSTED})

        outcomes = await self.dispatcher.dispatch(alert, recipient, skip=item.delivered)

        succeeded = {channel for channel, outcome in outcomes.items() if outcome.success}
        delivered = item.delivered | succeeded

        email_sent = (CourierChannel.EMAIL in delivered) if CourierChannel.EMAIL in outcomes else None
        push_sent = (CourierChannel.PUSH in delivered) if CourierChannel.PUSH in outcomes else None
        if email_sent is not None or push_sent is not None:
            alert = alert.with_delivery_flags(email_sent=email_sent, push_sent=push_sent)
            try:
                await self.store.update_alert_status(
                    alert.id,
                    email_sent=email_sent,
                    push_sent=push_sent,
                )
            except Exception as e:
                logger.error(
                    "delivery_status_update_failed",
                    alert_id=alert.id,
                    error=str(e),
                )

        failed = [channel.value for channel, outcome in outcomes.items() if outcome.is_failure]
        state = DeliveryState.RETRYING if failed else DeliveryState.DELIVERED

        if state == DeliveryState.DELIVERED:
            self._delivered_count += 1
            logger.info(
                "alert_delivered",
                alert_id=alert.id,
                priority=alert.priority.value,
                channels=sorted(c.value for c in delivered),
                retries=item.retries,
            )

        return item.model_copy(
            update={
                "alert": alert,
                "delivered": frozenset(delivered),
                "state": state,
            }
        )

    async def process(self, item: QueueItem) -> QueueItem:
        """
        Deliver an item and schedule a retry if it failed.

        Args:
            item: Item taken from the queue.

        Returns:
            QueueItem: The item in its post-attempt state.
        """
        self._in_flight.add(item.alert_id)
        try:
            result = await self.deliver(item)
        finally:
            self._in_flight.discard(item.alert_id)

        if result.state != DeliveryState.RETRYING:
            return result

        if result.retries < self.max_retries:
            self._schedule_retry(result)
            return result

        self._exhausted_count += 1
        logger.warning(
            "delivery_exhausted",
            alert_id=result.alert_id,
            retries=result.retries,
            email_sent=result.alert.email_sent,
            push_sent=result.alert.push_sent,
        )
        return result.model_copy(update={"state": DeliveryState.EXHAUSTED})

    def _schedule_retry(self, item: QueueItem) -> None:
        retries = item.retries + 1
        delay = self.retry_policy.delay_for(retries)
        self._retried_count += 1

        logger.info(
            "delivery_retry_scheduled",
            alert_id=item.alert_id,
            retries=retries,
            delay_seconds=round(delay, 3),
        )

        if delay <= 0:
            self._requeue(item, retries)
            return

        self._scheduled.add(item.alert_id)
        task = asyncio.create_task(self._requeue_after(item, retries, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _requeue_after(self, item: QueueItem, retries: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            self._requeue(item, retries)
        finally:
            self._scheduled.discard(item.alert_id)

    def _requeue(self, item: QueueItem, retries: int) -> None:
        self.queue.append(
            item.model_copy(
                update={
                    "retries": retries,
                    "enqueued_at": self.clock.now(),
                    "state": DeliveryState.PENDING,
                }
            )
        )

    async def deliver_inline(self, alert: Alert) -> QueueItem:
        """
        Deliver a critical alert on the caller's path, bypassing the queue.

        If the attempt fails, the alert goes to the tail of the queue with
        one retry counted, after the retry policy's first backoff delay.

        Args:
            alert: Persisted critical alert.

        Returns:
            QueueItem: The item after the inline attempt.
        """
        item = QueueItem.for_alert(alert, enqueued_at=self.clock.now())
        self._in_flight.add(alert.id)
        try:
            result = await self.deliver(item)
        except Exception as e:
            logger.error("inline_delivery_failed", alert_id=alert.id, error=str(e))
            result = item.model_copy(update={"state": DeliveryState.RETRYING})
        finally:
            self._in_flight.discard(alert.id)

        if result.state == DeliveryState.RETRYING:
            if self.max_retries > 0:
                self._schedule_retry(result)
            else:
                self._exhausted_count += 1
                result = result.model_copy(update={"state": DeliveryState.EXHAUSTED})

        return result

    async def process_next(self) -> Optional[QueueItem]:
        """
        Process the head of the queue.

        Returns:
            Optional[QueueItem]: The processed item, or None if the queue
                was empty.
        """
        item = self.queue.popleft()
        if item is None:
            return None

        try:
            return await self.process(item)
        except Exception as e:
            logger.error(
                "delivery_item_failed",
                alert_id=item.alert_id,
                retries=item.retries,
                error=str(e),
            )
            if item.retries < self.max_retries:
                self._schedule_retry(item)
            return item

    async def run(self) -> None:
        """Drain the queue until stopped."""
        self._running = True
        logger.info("delivery_worker_started")

        try:
            while self._running:
                item = await self.process_next()
                if item is None:
                    await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            logger.debug("delivery_worker_cancelled")
        finally:
            self._running = False

    def start(self) -> None:
        """Start the worker loop as a background task."""
        if self._task is not None and not self._task.done():
            logger.warning("delivery_worker_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self.run())

    async def wait_idle(self, timeout: float) -> bool:
        """
        Wait for the queue to drain.

        Args:
            timeout: Maximum seconds to wait.

        Returns:
            bool: True if the worker went idle within the timeout.
        """
        async def _wait() -> None:
            while not self.is_idle:
                await asyncio.sleep(min(self.poll_interval, 0.05))

        try:
            await asyncio.wait_for(_wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self) -> None:
        """Stop the loop and cancel pending retries."""
        self._running = False

        tasks = list(self._retry_tasks)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._task = None
        self._retry_tasks.clear()

        logger.info(
            "delivery_worker_stopped",
            remaining=len(self.queue),
            **self.get_stats(),
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "queue_size": len(self.queue),
            "in_flight": len(self._in_flight),
            "scheduled_retries": len(self._scheduled),
            "delivered": self._delivered_count,
            "retried": self._retried_count,
            "exhausted": self._exhausted_count,
            "dropped": self._dropped_count,
        }
