"""
Alert Processor Service entry point.

This service is responsible for:
- Subscribing to Redis pub/sub for telemetry events from the collector
- Running detectors and the throttle gate on every event
- Persisting admitted alerts to PostgreSQL and publishing them on Redis
- Delivering alerts to guardians by email and push, with retries
- Sweeping undelivered alerts, offline devices, and throttle windows

Usage:
    python services/alert-processor/main.py

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379)
    DATABASE_URL: PostgreSQL connection URL
    LOG_LEVEL: Logging level (default: INFO)
    CONFIG_PATH: Path to config directory (default: config)
    SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM: SMTP settings
    FCM_SERVER_KEY: FCM server key for push notifications
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from guardwatch.couriers import create_couriers, summary_courier
from guardwatch.couriers.push import PushCourier
from guardwatch.models.telemetry import parse_event
from guardwatch.pipeline import (
    AlertPipeline,
    PostgresAlertStore,
    PostgresRecipientDirectory,
    create_pipeline,
)
from guardwatch.services import ServiceRunner, setup_logging
from guardwatch.storage.redis_client import RedisClient

logger = structlog.get_logger(__name__)


class AlertProcessorService(ServiceRunner):
    """
    Alert processing service.

    Subscribes to telemetry events and drives them through the alert
    pipeline.

    Attributes:
        pipeline: The alert pipeline.
    """

    def __init__(self, config_path: str = "config") -> None:
        """Initialize the alert processor service."""
        super().__init__(config_path)
        self.pipeline: Optional[AlertPipeline] = None
        self._couriers: Dict[Any, Any] = {}

    @property
    def service_name(self) -> str:
        """Return service name."""
        return "alert-processor"

    async def _initialize(self) -> None:
        """Initialize pipeline components."""
        if self.config is None or self.redis_client is None or self.postgres_client is None:
            raise RuntimeError("Service not properly initialized")

        self._couriers = create_couriers(self.config.alerts.couriers)

        self.pipeline = create_pipeline(
            config=self.config,
            store=PostgresAlertStore(self.postgres_client),
            recipients=PostgresRecipientDirectory(self.postgres_client),
            couriers=self._couriers,
            publisher=self.redis_client,
            summary_courier=summary_courier(self._couriers),
        )

        # Pick up alerts left undelivered by a previous run
        await self.pipeline.process_pending_alerts()
        self.pipeline.start()

        self.logger.info(
            "alert_components_initialized",
            couriers=[channel.value for channel in self._couriers],
            throttled_types=sorted(self.config.alerts.throttle),
            timezone=self.config.detectors.timezone,
        )

    async def _run(self) -> None:
        """Main service loop - subscribe to telemetry and process events."""
        if self.redis_client is None or self.pipeline is None:
            raise RuntimeError("Service not properly initialized")

        try:
            async with self.redis_client.subscribe([RedisClient.CHANNEL_TELEMETRY]) as messages:
                async for message in messages:
                    if self.shutdown_event.is_set():
                        break

                    try:
                        await self._process_event(message)
                    except Exception as e:
                        self.logger.error(
                            "event_processing_error",
                            error=str(e),
                        )

        except asyncio.CancelledError:
            self.logger.info("pubsub_cancelled")

    async def _process_event(self, message: Dict[str, Any]) -> None:
        """
        Process a telemetry message.

        Args:
            message: Pub/sub message containing event data.
        """
        if self.pipeline is None:
            return

        if message.get("channel") != RedisClient.CHANNEL_TELEMETRY:
            return

        try:
            event = parse_event(message.get("data", {}))
        except ValidationError as e:
            self.logger.warning(
                "telemetry_event_invalid",
                errors=e.error_count(),
                error=str(e),
            )
            return

        await self.pipeline.submit_event(event)

    async def _cleanup(self) -> None:
        """Drain deliveries and close couriers."""
        if self.pipeline is not None:
            await self.pipeline.shutdown()

        for courier in self._couriers.values():
            if isinstance(courier, PushCourier):
                await courier.close()


async def main() -> None:
    """Main entry point."""
    # Set up initial logging
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    config_path = os.getenv("CONFIG_PATH", "config")

    logger.info(
        "alert_processor_service_starting",
        version="0.1.0",
        config_path=config_path,
    )

    service = AlertProcessorService(config_path=config_path)

    try:
        await service.run()
    except Exception as e:
        logger.error("service_failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
