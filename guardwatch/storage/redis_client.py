"""
Async Redis client for pub/sub messaging.

The collector publishes telemetry events on a Redis channel; the alert
processor subscribes to it and publishes every admitted alert on a second
channel for live consumers (guardian apps, dashboards).

Channels:
    - telemetry:events: Inbound telemetry events (JSON, discriminated by "kind")
    - updates:alerts: Admitted alerts (JSON)

Example:
    >>> from guardwatch.config.models import RedisConnectionConfig
    >>> from guardwatch.storage.redis_client import RedisClient
    >>>
    >>> client = RedisClient(RedisConnectionConfig(url="redis://localhost:6379"))
    >>> await client.connect()
    >>> async with client.subscribe([RedisClient.CHANNEL_TELEMETRY]) as messages:
    ...     async for message in messages:
    ...         print(message["data"]["kind"])
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from guardwatch.config.models import RedisConnectionConfig
from guardwatch.models.alerts import Alert

logger = structlog.get_logger(__name__)


class RedisClientError(Exception):
    """Base exception for Redis client errors."""

    pass


class RedisConnectionException(RedisClientError):
    """Raised when Redis connection fails."""

    pass


class RedisOperationError(RedisClientError):
    """Raised when a Redis operation fails."""

    pass


class RedisClient:
    """
    Async Redis client for telemetry intake and alert fan-out.

    Attributes:
        config: Redis connection configuration.
        _pool: Connection pool for efficient connection reuse.
        _client: Redis client instance.
        _connected: Whether the client is connected.
    """

    # Pub/sub channels
    CHANNEL_TELEMETRY = "telemetry:events"
    CHANNEL_ALERTS = "updates:alerts"

    def __init__(self, config: RedisConnectionConfig) -> None:
        """
        Initialize the Redis client.

        Args:
            config: Redis connection configuration containing URL, db, and pool settings.
        """
        self.config = config
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None  # type: ignore[type-arg]
        self._connected: bool = False

        logger.info(
            "redis_client_initialized",
            url=config.url,
            db=config.db,
            max_connections=config.max_connections,
        )

    @property
    def is_connected(self) -> bool:
        """
        Check if the client is connected to Redis.

        Returns:
            bool: True if connected, False otherwise.
        """
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            RedisConnectionException: If connection fails.
        """
        if self._connected:
            logger.warning("redis_already_connected")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self.config.url,
                db=self.config.db,
                max_connections=self.config.max_connections,
                socket_connect_timeout=self.config.socket_timeout,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            # Verify connection with ping
            await self._client.ping()
            self._connected = True

            logger.info(
                "redis_connected",
                url=self.config.url,
                db=self.config.db,
            )

        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            self._connected = False
            logger.error(
                "redis_connection_failed",
                url=self.config.url,
                error=str(e),
            )
            raise RedisConnectionException(
                f"Failed to connect to Redis at {self.config.url}: {e}"
            ) from e

    async def disconnect(self) -> None:
        """
        Close Redis connection and release resources.

        Safe to call multiple times.
        """
        if self._client is not None:
            try:
                await self._client.aclose()
            except RedisError as e:
                logger.warning("redis_close_error", error=str(e))
            finally:
                self._client = None

        if self._pool is not None:
            try:
                await self._pool.aclose()
            except Exception as e:
                logger.warning("redis_pool_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info("redis_disconnected")

    def _require_connection(self) -> Redis:  # type: ignore[type-arg]
        """
        Ensure client is connected and return the Redis instance.

        Raises:
            RedisConnectionException: If not connected.
        """
        if not self._connected or self._client is None:
            raise RedisConnectionException("Redis client is not connected")
        return self._client

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish_alert(self, alert: Alert) -> int:
        """
        Publish an admitted alert to subscribers.

        Args:
            alert: The Alert to publish.

        Returns:
            int: Number of subscribers that received the message.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()

        try:
            count = await client.publish(self.CHANNEL_ALERTS, alert.model_dump_json())

            logger.debug(
                "alert_published",
                alert_id=alert.id,
                alert_type=alert.alert_type.value,
                subscribers=count,
            )

            return int(count)

        except RedisError as e:
            logger.error(
                "alert_publish_failed",
                alert_id=alert.id,
                error=str(e),
            )
            raise RedisOperationError(f"Failed to publish alert: {e}") from e

    @asynccontextmanager
    async def subscribe(
        self, channels: List[str]
    ) -> AsyncIterator[AsyncIterator[Dict[str, Any]]]:
        """
        Subscribe to Redis pub/sub channels.

        Context manager that yields an async iterator of messages, each a
        dict with "channel" and the JSON-decoded "data". Messages that are
        not valid JSON are logged and skipped.

        Args:
            channels: List of channel names to subscribe to.

        Yields:
            AsyncIterator[Dict[str, Any]]: Async iterator of parsed messages.

        Raises:
            RedisConnectionException: If not connected.

        Example:
            >>> async with client.subscribe(["telemetry:events"]) as messages:
            ...     async for message in messages:
            ...         print(f"Received: {message}")
        """
        client = self._require_connection()
        pubsub: PubSub = client.pubsub()

        try:
            await pubsub.subscribe(*channels)

            logger.info(
                "pubsub_subscribed",
                channels=channels,
            )

            async def message_iterator() -> AsyncIterator[Dict[str, Any]]:
                """Iterate over messages from subscribed channels."""
                async for message in pubsub.listen():
                    if message["type"] == "message":
                        try:
                            data = json.loads(message["data"])
                            yield {
                                "channel": message["channel"],
                                "data": data,
                            }
                        except json.JSONDecodeError as e:
                            logger.warning(
                                "pubsub_message_parse_failed",
                                channel=message["channel"],
                                error=str(e),
                            )

            yield message_iterator()

        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()

            logger.info(
                "pubsub_unsubscribed",
                channels=channels,
            )
