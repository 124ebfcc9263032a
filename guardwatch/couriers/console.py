"""
Console courier for development.

Logs each notification instead of sending it, so the pipeline can run end
to end without SMTP or FCM credentials.
"""

import structlog

from guardwatch.models.alerts import Alert
from guardwatch.models.delivery import CourierChannel, DeliveryOutcome

logger = structlog.get_logger(__name__)


class ConsoleCourier:
    """Courier that writes notifications to the log and always succeeds."""

    def __init__(self, channel: CourierChannel) -> None:
        self.channel = channel
        self.delivered = 0

    async def deliver(self, address: str, alert: Alert) -> DeliveryOutcome:
        self.delivered += 1
        logger.info(
            "console_notification",
            channel=self.channel.value,
            to=address,
            alert_id=alert.id,
            priority=alert.priority.value,
            alert_type=alert.alert_type.value,
            title=alert.title,
            description=alert.description,
        )
        return DeliveryOutcome.ok()
