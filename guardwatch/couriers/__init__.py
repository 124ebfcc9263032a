"""
Notification couriers.

Each courier exposes `deliver(address, alert) -> DeliveryOutcome` and never
raises for delivery failures.

Components:
    email: SMTP email courier (also sends daily summaries)
    push: FCM push courier over aiohttp
    console: Log-only courier for development
"""

from typing import Dict, Optional

from guardwatch.config.models import CouriersConfig
from guardwatch.couriers.console import ConsoleCourier
from guardwatch.couriers.email import EmailCourier
from guardwatch.couriers.push import PushCourier
from guardwatch.models.delivery import CourierChannel
from guardwatch.pipeline.dispatcher import Courier


def create_couriers(config: CouriersConfig) -> Dict[CourierChannel, Courier]:
    """
    Factory function to build the courier for each channel.

    With `console` set, both channels log instead of sending. Otherwise a
    disabled courier is left out and its channel is skipped.

    Args:
        config: Courier configuration.

    Returns:
        Dict[CourierChannel, Courier]: Courier per channel.
    """
    if config.console:
        return {
            CourierChannel.EMAIL: ConsoleCourier(CourierChannel.EMAIL),
            CourierChannel.PUSH: ConsoleCourier(CourierChannel.PUSH),
        }

    couriers: Dict[CourierChannel, Courier] = {}
    if config.email.enabled:
        couriers[CourierChannel.EMAIL] = EmailCourier(config.email)
    if config.push.enabled:
        couriers[CourierChannel.PUSH] = PushCourier(config.push)
    return couriers


def summary_courier(couriers: Dict[CourierChannel, Courier]) -> Optional[EmailCourier]:
    """Return the email courier if it can send summaries."""
    courier = couriers.get(CourierChannel.EMAIL)
    return courier if isinstance(courier, EmailCourier) else None


__all__ = [
    "ConsoleCourier",
    "EmailCourier",
    "PushCourier",
    "create_couriers",
    "summary_courier",
]
