"""
Delivery data models.

Models:
    CourierChannel: Notification channel names (email, push)
    DeliveryState: Per-item delivery state machine
    Recipient: Guardian addresses for one monitored user
    DeliveryOutcome: Result of one courier invocation
    QueueItem: In-memory wrapper around an Alert awaiting delivery
"""

from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, Field

from guardwatch.models.alerts import Alert


class CourierChannel(str, Enum):
    """Notification channels a courier can serve."""

    EMAIL = "email"
    PUSH = "push"


class DeliveryState(str, Enum):
    """
    Delivery state of a queue item.

    Transitions:
        pending -> delivering -> delivered
        pending -> delivering -> retrying -> delivering -> ... -> exhausted
    """

    PENDING = "pending"
    DELIVERING = "delivering"
    RETRYING = "retrying"
    DELIVERED = "delivered"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        """Check if no further delivery attempts will be made."""
        return self in (DeliveryState.DELIVERED, DeliveryState.EXHAUSTED)


class Recipient(BaseModel):
    """Guardian contact addresses for a monitored user."""

    model_config = {"frozen": True, "extra": "forbid"}

    user_id: str = Field(..., description="Monitored user")
    name: Optional[str] = Field(default=None, description="Guardian display name")
    email: Optional[str] = Field(default=None, description="Guardian email address")
    push_token: Optional[str] = Field(default=None, description="Guardian device push token")

    def address_for(self, channel: CourierChannel) -> Optional[str]:
        """Return the address used by the given channel, if any."""
        if channel == CourierChannel.EMAIL:
            return self.email
        return self.push_token


class DeliveryOutcome(BaseModel):
    """
    Result of one courier invocation.

    A skipped outcome (no address on file, courier disabled) is neither a
    success nor a failure: it does not set the delivery flag and does not
    drive a retry.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    success: bool = Field(..., description="Courier accepted the notification")
    error: Optional[str] = Field(default=None, description="Failure reason")
    skipped: bool = Field(default=False, description="Courier did not apply")

    @classmethod
    def ok(cls) -> "DeliveryOutcome":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "DeliveryOutcome":
        return cls(success=False, error=error)

    @classmethod
    def skip(cls, reason: str) -> "DeliveryOutcome":
        return cls(success=False, skipped=True, error=reason)

    @property
    def is_failure(self) -> bool:
        """Check if this outcome should drive a retry."""
        return not self.success and not self.skipped


class QueueItem(BaseModel):
    """
    An Alert awaiting delivery.

    Exists only in memory. Each attempt produces a new item via model_copy
    so the queue never holds a half-updated record.

    Attributes:
        alert: The persisted alert (with its latest delivery flags).
        retries: Failed attempts so far.
        enqueued_at: When the item was (re-)enqueued.
        delivered: Channels that have already succeeded.
        state: Current delivery state.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    alert: Alert = Field(..., description="Alert to deliver")
    retries: int = Field(default=0, description="Failed attempts so far", ge=0)
    enqueued_at: datetime = Field(..., description="When the item was enqueued")
    delivered: FrozenSet[CourierChannel] = Field(
        default_factory=frozenset,
        description="Channels already delivered",
    )
    state: DeliveryState = Field(default=DeliveryState.PENDING, description="Delivery state")

    @property
    def alert_id(self) -> str:
        return self.alert.id

    @classmethod
    def for_alert(cls, alert: Alert, enqueued_at: datetime, retries: int = 0) -> "QueueItem":
        """
        Build a fresh item, treating already-set flags as delivered channels.

        Args:
            alert: Alert to deliver.
            enqueued_at: Enqueue time.
            retries: Starting retry count.

        Returns:
            QueueItem: New pending item.
        """
        delivered = set()
        if alert.email_sent:
            delivered.add(CourierChannel.EMAIL)
        if alert.push_sent:
            delivered.add(CourierChannel.PUSH)
        return cls(
            alert=alert,
            retries=retries,
            enqueued_at=enqueued_at,
            delivered=frozenset(delivered),
        )
