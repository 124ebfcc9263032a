"""
Courier dispatcher for fanning an alert out to notification couriers.

This module provides the CourierDispatcher class which selects the couriers
that apply to an alert's priority and invokes them concurrently, each
bounded by a timeout.

Key Features:
    - Priority-based courier selection (email: high/critical, push: not low)
    - Concurrent invocation with asyncio.gather
    - Per-courier timeout and exception isolation
    - Channels already delivered can be skipped on retry

Example:
    >>> dispatcher = CourierDispatcher(
    ...     couriers={CourierChannel.EMAIL: email, CourierChannel.PUSH: push},
    ...     timeout_seconds=10.0,
    ... )
    >>> outcomes = await dispatcher.dispatch(alert, recipient)
"""

import asyncio
from typing import AbstractSet, Dict, List, Protocol

import structlog

from guardwatch.models.alerts import Alert, AlertPriority
from guardwatch.models.delivery import CourierChannel, DeliveryOutcome, Recipient

logger = structlog.get_logger(__name__)


class Courier(Protocol):
    """
    Protocol for notification couriers.

    deliver() must be safe to call again for the same alert: delivery is
    at-least-once.
    """

    async def deliver(self, address: str, alert: Alert) -> DeliveryOutcome:
        """Deliver an alert to an address (email or push token)."""
        ...


def channels_for_priority(priority: AlertPriority) -> List[CourierChannel]:
    """
    Couriers that apply to a priority.

    Args:
        priority: Alert priority.

    Returns:
        List[CourierChannel]: Email for high and critical, push for
            anything above low. Empty for low.
    """
    channels = []
    if priority.wants_email:
        channels.append(CourierChannel.EMAIL)
    if priority.wants_push:
        channels.append(CourierChannel.PUSH)
    return channels


class CourierDispatcher:
    """
    Routes alerts to the couriers for their priority.

    Attributes:
        couriers: Courier per channel. A channel with no courier is skipped.
        timeout_seconds: Bound on each courier call.

    Example:
        >>> dispatcher = CourierDispatcher({CourierChannel.PUSH: push})
        >>> outcomes = await dispatcher.dispatch(alert, recipient)
        >>> outcomes[CourierChannel.PUSH].success
        True
    """

    def __init__(
        self,
        couriers: Dict[CourierChannel, Courier],
        timeout_seconds: float = 10.0,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            couriers: Courier per channel.
            timeout_seconds: Bound on each courier call.
        """
        self.couriers = couriers
        self.timeout_seconds = timeout_seconds

        logger.info(
            "courier_dispatcher_initialized",
            available_couriers=[channel.value for channel in couriers],
            timeout_seconds=timeout_seconds,
        )

    async def dispatch(
        self,
        alert: Alert,
        recipient: Recipient,
        skip: AbstractSet[CourierChannel] = frozenset(),
    ) -> Dict[CourierChannel, DeliveryOutcome]:
        """
        Deliver an alert through every applicable courier.

        Args:
            alert: The Alert to deliver.
            recipient: Guardian contact addresses.
            skip: Channels already delivered on an earlier attempt.

        Returns:
            Dict[CourierChannel, DeliveryOutcome]: Outcome per channel
                invoked. Channels in `skip` are absent.
        """
        channels = [c for c in channels_for_priority(alert.priority) if c not in skip]
        if not channels:
            return {}

        results = await asyncio.gather(
            *(self._deliver_one(channel, alert, recipient) for channel in channels)
        )
        outcomes = dict(zip(channels, results))

        logger.info(
            "alert_dispatch_complete",
            alert_id=alert.id,
            priority=alert.priority.value,
            outcomes={c.value: ("ok" if o.success else "skipped" if o.skipped else "failed")
                      for c, o in outcomes.items()},
        )

        return outcomes

    async def _deliver_one(
        self,
        channel: CourierChannel,
        alert: Alert,
        recipient: Recipient,
    ) -> DeliveryOutcome:
        courier = self.couriers.get(channel)
        if courier is None:
            logger.warning(
                "courier_not_configured",
                channel=channel.value,
                alert_id=alert.id,
            )
            return DeliveryOutcome.skip(f"no {channel.value} courier configured")

        address = recipient.address_for(channel)
        if not address:
            logger.warning(
                "recipient_address_missing",
                channel=channel.value,
                alert_id=alert.id,
                user_id=recipient.user_id,
            )
            return DeliveryOutcome.skip(f"no {channel.value} address")

        try:
            outcome = await asyncio.wait_for(
                courier.deliver(address, alert),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            outcome = DeliveryOutcome.failed(
                f"{channel.value} courier timed out after {self.timeout_seconds}s"
            )
        except Exception as e:
            outcome = DeliveryOutcome.failed(str(e))

        if outcome.is_failure:
            logger.warning(
                "courier_delivery_failed",
                channel=channel.value,
                alert_id=alert.id,
                error=outcome.error,
            )
        else:
            logger.debug(
                "courier_delivery_succeeded",
                channel=channel.value,
                alert_id=alert.id,
            )

        return outcome
