"""
Alert store: durable persistence of admitted alerts.

The store is append-only. Alerts are created once by the throttle gate and
afterwards only their read and delivery flags change.

Implementations:
    - InMemoryAlertStore: dict-backed, for tests and single-process demos
    - PostgresAlertStore: asyncpg-backed via PostgresClient

Example:
    >>> store = PostgresAlertStore(postgres_client)
    >>> alert = await store.create_alert(alert)
    >>> await store.update_alert_status(alert.id, email_sent=True)
"""

from datetime import datetime
from typing import Dict, List, Optional, Protocol

import structlog

from guardwatch.models.alerts import Alert, AlertPriority, AlertStats
from guardwatch.storage.postgres_client import PostgresClient, PostgresClientError

logger = structlog.get_logger(__name__)

# Priorities whose alerts must reach the guardian by email
NOTIFY_PRIORITIES = [AlertPriority.HIGH, AlertPriority.CRITICAL]


class AlertStoreError(Exception):
    """Raised when the alert store cannot complete an operation."""

    pass


class AlertNotFoundError(AlertStoreError):
    """Raised when an alert id is unknown to the store."""

    def __init__(self, alert_id: str) -> None:
        super().__init__(f"Alert not found: {alert_id}")
        self.alert_id = alert_id


class AlertStore(Protocol):
    """
    Protocol for alert persistence backends.

    Any backend must support these async methods.
    """

    async def create_alert(self, alert: Alert) -> Alert:
        """Persist a new alert and return it as stored."""
        ...

    async def update_alert_status(
        self,
        alert_id: str,
        email_sent: Optional[bool] = None,
        push_sent: Optional[bool] = None,
    ) -> None:
        """Update delivery flags; None leaves a flag unchanged."""
        ...

    async def find_alerts_for_notification(self, since: datetime) -> List[Alert]:
        """Alerts created since `since` that still need an email."""
        ...

    async def count_unread(self, user_id: str) -> int:
        """Number of unread alerts for a user."""
        ...

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        """Fetch one alert by id."""
        ...

    async def mark_read(self, alert_id: str) -> None:
        """Mark an alert as read by the guardian."""
        ...

    async def get_alert_stats(self, user_id: str, since: datetime) -> AlertStats:
        """Alert counts for a user since a point in time."""
        ...


class InMemoryAlertStore:
    """
    Dict-backed alert store.

    Keeps insertion order, so queries return alerts oldest first.

    Attributes:
        alerts: Alert id to stored alert.
        fail_creates: When set, create_alert raises AlertStoreError.
    """

    def __init__(self) -> None:
        self.alerts: Dict[str, Alert] = {}
        self.fail_creates = False

    async def create_alert(self, alert: Alert) -> Alert:
        if self.fail_creates:
            raise AlertStoreError("Alert store unavailable")
        self.alerts[alert.id] = alert
        logger.debug("alert_saved", alert_id=alert.id, alert_type=alert.alert_type.value)
        return alert

    async def update_alert_status(
        self,
        alert_id: str,
        email_sent: Optional[bool] = None,
        push_sent: Optional[bool] = None,
    ) -> None:
        alert = self.alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        self.alerts[alert_id] = alert.with_delivery_flags(
            email_sent=email_sent,
            push_sent=push_sent,
        )

    async def find_alerts_for_notification(self, since: datetime) -> List[Alert]:
        return [
            alert
            for alert in self.alerts.values()
            if alert.priority in NOTIFY_PRIORITIES
            and not alert.email_sent
            and alert.created_at >= since
        ]

    async def count_unread(self, user_id: str) -> int:
        return sum(
            1 for alert in self.alerts.values()
            if alert.user_id == user_id and not alert.read
        )

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self.alerts.get(alert_id)

    async def mark_read(self, alert_id: str) -> None:
        alert = self.alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        self.alerts[alert_id] = alert.mark_read()

    async def get_alert_stats(self, user_id: str, since: datetime) -> AlertStats:
        alerts = [
            alert for alert in self.alerts.values()
            if alert.user_id == user_id and alert.created_at >= since
        ]
        return AlertStats.from_alerts(user_id, since, alerts)


class PostgresAlertStore:
    """
    Alert store backed by PostgreSQL.

    Translates PostgresClientError into AlertStoreError so callers depend
    only on the store's error hierarchy.

    Attributes:
        postgres_client: Connected PostgreSQL client.

    Example:
        >>> store = PostgresAlertStore(postgres_client)
        >>> pending = await store.find_alerts_for_notification(since)
    """

    def __init__(self, postgres_client: PostgresClient) -> None:
        """
        Initialize the store.

        Args:
            postgres_client: Connected PostgreSQL client.
        """
        self.postgres_client = postgres_client

        logger.debug("postgres_alert_store_initialized")

    async def create_alert(self, alert: Alert) -> Alert:
        """
        Persist a new alert.

        Args:
            alert: The Alert to persist.

        Returns:
            Alert: The stored alert.

        Raises:
            AlertStoreError: If the insert fails.
        """
        try:
            await self.postgres_client.insert_alert(alert)
        except PostgresClientError as e:
            logger.error(
                "alert_save_failed",
                alert_id=alert.id,
                error=str(e),
            )
            raise AlertStoreError(f"Failed to save alert {alert.id}: {e}") from e

        logger.info(
            "alert_saved",
            alert_id=alert.id,
            alert_type=alert.alert_type.value,
            priority=alert.priority.value,
        )
        return alert

    async def update_alert_status(
        self,
        alert_id: str,
        email_sent: Optional[bool] = None,
        push_sent: Optional[bool] = None,
    ) -> None:
        """
        Update delivery flags of a stored alert.

        Raises:
            AlertNotFoundError: If no row matched.
            AlertStoreError: If the update fails.
        """
        try:
            updated = await self.postgres_client.update_alert_flags(
                alert_id,
                email_sent=email_sent,
                push_sent=push_sent,
            )
        except PostgresClientError as e:
            logger.error("alert_update_failed", alert_id=alert_id, error=str(e))
            raise AlertStoreError(f"Failed to update alert {alert_id}: {e}") from e

        if not updated:
            raise AlertNotFoundError(alert_id)

    async def find_alerts_for_notification(self, since: datetime) -> List[Alert]:
        """
        Alerts of high or critical priority whose email is still unsent.

        Args:
            since: Only alerts created at or after this time.

        Returns:
            List[Alert]: Matching alerts, oldest first.
        """
        try:
            return await self.postgres_client.query_undelivered_alerts(
                since=since,
                priorities=NOTIFY_PRIORITIES,
            )
        except PostgresClientError as e:
            logger.error("pending_alerts_query_failed", error=str(e))
            raise AlertStoreError(f"Failed to query pending alerts: {e}") from e

    async def count_unread(self, user_id: str) -> int:
        try:
            return await self.postgres_client.count_unread_alerts(user_id)
        except PostgresClientError as e:
            raise AlertStoreError(f"Failed to count unread alerts: {e}") from e

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        try:
            return await self.postgres_client.get_alert(alert_id)
        except PostgresClientError as e:
            raise AlertStoreError(f"Failed to fetch alert {alert_id}: {e}") from e

    async def mark_read(self, alert_id: str) -> None:
        try:
            updated = await self.postgres_client.update_alert_flags(alert_id, read=True)
        except PostgresClientError as e:
            raise AlertStoreError(f"Failed to mark alert {alert_id} read: {e}") from e

        if not updated:
            raise AlertNotFoundError(alert_id)

    async def get_alert_stats(self, user_id: str, since: datetime) -> AlertStats:
        """
        Alert counts for a user since a point in time.

        Args:
            user_id: Monitored user.
            since: Start of the period.

        Returns:
            AlertStats: Totals by priority and type.
        """
        try:
            alerts = await self.postgres_client.query_user_alerts(user_id, since)
        except PostgresClientError as e:
            raise AlertStoreError(f"Failed to query alert stats: {e}") from e

        return AlertStats.from_alerts(user_id, since, alerts)
