"""
Alert pipeline: detection, admission, and delivery wired together.

This module provides the AlertPipeline class which orchestrates the complete
alert path for telemetry events: detectors produce candidates, the throttle
gate admits or suppresses them, admitted alerts are published and handed to
the delivery worker (critical ones inline).

Key Features:
    - Single entry point for telemetry (submit_event)
    - Per-candidate isolation of persistence failures
    - Pending-alert sweep re-enqueues alerts whose email never went out
    - Timer-driven device-offline check and daily guardian summary
    - Graceful shutdown that drains the delivery queue

Example:
    >>> pipeline = create_pipeline(config, store, recipients, couriers)
    >>> pipeline.start()
    >>> results = await pipeline.submit_event(event)
    >>> await pipeline.shutdown()
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Protocol
from zoneinfo import ZoneInfo

import structlog

from guardwatch.clock import Clock, SystemClock
from guardwatch.config.models import AlertsConfig, AppConfig
from guardwatch.detection.context import ContextProvider, TelemetryHistory
from guardwatch.detection.offline import OfflineDetector
from guardwatch.detection.suite import DetectorSuite, create_detector_suite
from guardwatch.models.alerts import (
    AdmissionResult,
    Alert,
    AlertStats,
    CandidateAlert,
    Suppressed,
)
from guardwatch.models.delivery import CourierChannel, DeliveryOutcome
from guardwatch.models.telemetry import TelemetryEvent
from guardwatch.pipeline.delivery import DeliveryQueue, DeliveryWorker
from guardwatch.pipeline.dispatcher import Courier, CourierDispatcher
from guardwatch.pipeline.housekeeping import PeriodicTask, ThrottleSweeper
from guardwatch.pipeline.recipients import RecipientDirectory
from guardwatch.pipeline.storage import AlertStore, AlertStoreError
from guardwatch.pipeline.throttle import ThrottleGate

logger = structlog.get_logger(__name__)

# How often the daily-summary job checks whether it is time to send
SUMMARY_CHECK_INTERVAL_SECONDS = 300


class AlertPublisher(Protocol):
    """Live fan-out of admitted alerts (e.g. Redis pub/sub)."""

    async def publish_alert(self, alert: Alert) -> int:
        ...


class SummaryCourier(Protocol):
    """Courier able to send a daily summary."""

    async def send_summary(
        self,
        address: str,
        stats: AlertStats,
        recipient_name: Optional[str] = None,
    ) -> DeliveryOutcome:
        ...


class AlertPipeline:
    """
    Orchestrates the alert path from telemetry to guardian.

    Attributes:
        detectors: Detector suite.
        history: Context provider (telemetry history).
        gate: Throttle gate.
        worker: Delivery worker.
        store: Alert store.
        recipients: Guardian contact lookup.
        clock: Time source.
        config: Alerts configuration.
        offline_detector: Device-offline check, if enabled.
        publisher: Live alert publisher, if any.
        summary_courier: Courier for daily summaries, if any.
    """

    def __init__(
        self,
        detectors: DetectorSuite,
        history: ContextProvider,
        gate: ThrottleGate,
        worker: DeliveryWorker,
        store: AlertStore,
        recipients: RecipientDirectory,
        clock: Clock,
        config: AlertsConfig,
        offline_detector: Optional[OfflineDetector] = None,
        publisher: Optional[AlertPublisher] = None,
        summary_courier: Optional[SummaryCourier] = None,
        timezone: str = "UTC",
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            detectors: Detector suite.
            history: Context provider (telemetry history).
            gate: Throttle gate.
            worker: Delivery worker.
            store: Alert store.
            recipients: Guardian contact lookup.
            clock: Time source.
            config: Alerts configuration.
            offline_detector: Device-offline check.
            publisher: Live alert publisher.
            summary_courier: Courier for daily summaries.
            timezone: IANA timezone for the daily-summary hour.
        """
        self.detectors = detectors
        self.history = history
        self.gate = gate
        self.worker = worker
        self.store = store
        self.recipients = recipients
        self.clock = clock
        self.config = config
        self.offline_detector = offline_detector
        self.publisher = publisher
        self.summary_courier = summary_courier
        self.timezone = timezone
        self._tzinfo = ZoneInfo(timezone)

        housekeeping = config.housekeeping
        self.sweeper = ThrottleSweeper(
            gate.windows,
            clock,
            interval_seconds=housekeeping.throttle_sweep_interval_seconds,
        )
        self._jobs: List[PeriodicTask] = [
            self.sweeper,
            PeriodicTask(
                "pending_alert_sweep",
                housekeeping.pending_sweep_interval_seconds,
                self.process_pending_alerts,
            ),
        ]
        if offline_detector is not None:
            self._jobs.append(
                PeriodicTask(
                    "device_offline_check",
                    housekeeping.offline_check_interval_seconds,
                    self.check_device_offline,
                )
            )
        if housekeeping.daily_summary_enabled:
            self._jobs.append(
                PeriodicTask(
                    "daily_summary",
                    SUMMARY_CHECK_INTERVAL_SECONDS,
                    self._daily_summary_tick,
                )
            )

        self._last_summary_date: Optional[date] = None
        self._events_processed = 0
        self._candidates = 0
        self._admitted = 0
        self._suppressed = 0
        self._persistence_failures = 0

        logger.info(
            "alert_pipeline_initialized",
            jobs=[job.name for job in self._jobs],
            publishes=publisher is not None,
        )

    # =========================================================================
    # INTAKE
    # =========================================================================

    async def submit_event(self, event: TelemetryEvent) -> List[AdmissionResult]:
        """
        Run an event through detection and admission.

        The event is recorded in history after detection, so detectors see
        only prior events. A candidate whose persistence fails is logged and
        skipped; the rest are still admitted.

        Args:
            event: Telemetry event.

        Returns:
            List[AdmissionResult]: One result per persisted or suppressed
                candidate, in detector order.
        """
        now = self.clock.now()
        context = self.history.context_for(event, now)
        candidates = self.detectors.detect(event, context)

        results: List[AdmissionResult] = []
        try:
            for candidate in candidates:
                try:
                    results.append(await self.admit(candidate))
                except AlertStoreError as e:
                    self._persistence_failures += 1
                    logger.error(
                        "alert_persistence_failed",
                        event_id=event.event_id,
                        alert_type=candidate.alert_type.value,
                        error=str(e),
                    )
        finally:
            self.history.record(event)
            self._events_processed += 1

        logger.debug(
            "event_processed",
            event_id=event.event_id,
            kind=event.kind,
            candidates=len(candidates),
            admitted=sum(1 for r in results if isinstance(r, Alert)),
        )

        return results

    async def admit(self, candidate: CandidateAlert) -> AdmissionResult:
        """
        Admit one candidate and start its delivery.

        Critical alerts are delivered before this returns; other alerts are
        appended to the delivery queue.

        Args:
            candidate: Detector output.

        Returns:
            AdmissionResult: The stored Alert, or a Suppressed decision.

        Raises:
            AlertStoreError: If persistence fails.
        """
        self._candidates += 1
        result = await self.gate.admit(candidate)

        if isinstance(result, Suppressed):
            self._suppressed += 1
            return result

        self._admitted += 1
        await self._publish(result)

        if result.priority.is_critical:
            await self.worker.deliver_inline(result)
        else:
            self.worker.enqueue(result)

        return result

    async def _publish(self, alert: Alert) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish_alert(alert)
        except Exception as e:
            logger.warning("alert_publish_failed", alert_id=alert.id, error=str(e))

    # =========================================================================
    # PERIODIC JOBS
    # =========================================================================

    async def process_pending_alerts(self) -> int:
        """
        Re-enqueue recent alerts whose email was never sent.

        Alerts already queued, in flight, or waiting to retry are left alone.
        Nothing is re-created.

        Returns:
            int: Number of alerts enqueued.
        """
        since = self.clock.now() - timedelta(minutes=self.config.housekeeping.pending_lookback_minutes)
        pending = await self.store.find_alerts_for_notification(since)

        enqueued = 0
        for alert in pending:
            if self.worker.is_tracking(alert.id):
                continue
            self.worker.enqueue(alert)
            enqueued += 1

        logger.info(
            "pending_alerts_processed",
            found=len(pending),
            enqueued=enqueued,
        )
        return enqueued

    async def check_device_offline(self) -> List[AdmissionResult]:
        """
        Raise device-offline alerts for devices that stopped reporting.

        Returns:
            List[AdmissionResult]: Results for devices found offline.
        """
        if self.offline_detector is None:
            return []

        now = self.clock.now()
        results: List[AdmissionResult] = []
        for sighting in self.history.sightings():
            candidate = self.offline_detector.detect(sighting, now)
            if candidate is None:
                continue
            try:
                results.append(await self.admit(candidate))
            except AlertStoreError as e:
                self._persistence_failures += 1
                logger.error(
                    "alert_persistence_failed",
                    device_id=sighting.device_id,
                    alert_type=candidate.alert_type.value,
                    error=str(e),
                )
        return results

    async def send_daily_summary(self, user_id: str) -> bool:
        """
        Email a guardian the alert counts of the last day.

        Args:
            user_id: Monitored user.

        Returns:
            bool: True if the summary was sent.
        """
        if self.summary_courier is None:
            logger.warning("daily_summary_unavailable", user_id=user_id)
            return False

        recipient = await self.recipients.get_recipient(user_id)
        address = recipient.address_for(CourierChannel.EMAIL) if recipient else None
        if recipient is None or not address:
            logger.warning("daily_summary_no_address", user_id=user_id)
            return False

        since = self.clock.now() - timedelta(days=1)
        stats = await self.store.get_alert_stats(user_id, since)
        outcome = await self.summary_courier.send_summary(address, stats, recipient.name)

        logger.info(
            "daily_summary_sent" if outcome.success else "daily_summary_failed",
            user_id=user_id,
            total=stats.total,
            unread=stats.unread,
            error=outcome.error,
        )
        return outcome.success

    async def send_daily_summaries(self) -> int:
        """
        Send the daily summary to every guardian on file.

        Returns:
            int: Number of summaries sent.
        """
        sent = 0
        for user_id in await self.recipients.list_user_ids():
            try:
                if await self.send_daily_summary(user_id):
                    sent += 1
            except Exception as e:
                logger.error("daily_summary_failed", user_id=user_id, error=str(e))
        return sent

    async def _daily_summary_tick(self) -> int:
        local_now = self.clock.now().astimezone(self._tzinfo)
        if local_now.hour != self.config.housekeeping.daily_summary_hour:
            return 0
        if self._last_summary_date == local_now.date():
            return 0
        self._last_summary_date = local_now.date()
        return await self.send_daily_summaries()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Start the delivery worker and periodic jobs."""
        self.worker.start()
        for job in self._jobs:
            job.start()
        logger.info("alert_pipeline_started")

    async def shutdown(self, drain_timeout: Optional[float] = None) -> bool:
        """
        Stop the pipeline, draining the delivery queue first.

        Args:
            drain_timeout: Seconds to wait for the queue to drain
                (defaults to delivery.drain_timeout_seconds).

        Returns:
            bool: True if the queue drained before the timeout.
        """
        if drain_timeout is None:
            drain_timeout = self.config.delivery.drain_timeout_seconds

        drained = True
        if self.worker.is_running:
            drained = await self.worker.wait_idle(drain_timeout)
        if not drained:
            logger.warning(
                "delivery_queue_not_drained",
                remaining=len(self.worker.queue),
                timeout_seconds=drain_timeout,
            )

        for job in self._jobs:
            await job.stop()
        await self.worker.stop()

        logger.info("alert_pipeline_stopped", drained=drained, **self.get_stats())
        return drained

    def get_stats(self) -> Dict[str, Any]:
        """
        Pipeline counters.

        Returns:
            Dict[str, Any]: Intake, admission, and delivery counters.
        """
        stats: Dict[str, Any] = {
            "events_processed": self._events_processed,
            "candidates": self._candidates,
            "admitted": self._admitted,
            "suppressed": self._suppressed,
            "persistence_failures": self._persistence_failures,
            "throttle_keys": len(self.gate.windows),
        }
        stats.update(self.worker.get_stats())
        return stats


def create_pipeline(
    config: AppConfig,
    store: AlertStore,
    recipients: RecipientDirectory,
    couriers: Dict[CourierChannel, Courier],
    clock: Optional[Clock] = None,
    publisher: Optional[AlertPublisher] = None,
    summary_courier: Optional[SummaryCourier] = None,
) -> AlertPipeline:
    """
    Factory function to create an AlertPipeline from configuration.

    Args:
        config: Application configuration.
        store: Alert store.
        recipients: Guardian contact lookup.
        couriers: Courier per channel.
        clock: Time source (defaults to SystemClock).
        publisher: Live alert publisher.
        summary_courier: Courier for daily summaries.

    Returns:
        AlertPipeline: Configured, not yet started pipeline.
    """
    clock = clock or SystemClock()
    alerts = config.alerts
    history_config = config.features.history

    history = TelemetryHistory(
        timezone=config.detectors.timezone,
        max_calls=history_config.max_calls_per_device,
        max_locations=history_config.max_locations_per_device,
    )
    gate = ThrottleGate(store, alerts.throttle, clock)
    dispatcher = CourierDispatcher(
        couriers,
        timeout_seconds=alerts.delivery.courier_timeout_seconds,
    )
    worker = DeliveryWorker.from_config(
        alerts.delivery,
        queue=DeliveryQueue(),
        dispatcher=dispatcher,
        store=store,
        recipients=recipients,
        clock=clock,
    )

    return AlertPipeline(
        detectors=create_detector_suite(config.detectors),
        history=history,
        gate=gate,
        worker=worker,
        store=store,
        recipients=recipients,
        clock=clock,
        config=alerts,
        offline_detector=OfflineDetector(config.detectors.offline),
        publisher=publisher if config.features.publish_alerts else None,
        summary_courier=summary_courier,
        timezone=config.detectors.timezone,
    )
