"""
Async PostgreSQL client for alert persistence.

This module provides a PostgreSQL client for the durable alert log and
the guardian contact directory. Alerts are append-only: rows are inserted
once and afterwards only the read and delivery flags are updated.

Key Tables:
    - alerts: Admitted alerts with evidence (JSONB) and read/delivery flags
    - guardians: Guardian contact addresses per monitored user

See migrations/001_create_alerts.sql for the schema.

Example:
    >>> from guardwatch.config.models import PostgresConnectionConfig
    >>> from guardwatch.storage.postgres_client import PostgresClient
    >>>
    >>> client = PostgresClient(PostgresConnectionConfig(url="postgresql://..."))
    >>> await client.connect()
    >>> await client.insert_alert(alert)
    >>> unread = await client.count_unread_alerts("user-1")
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

try:
    import asyncpg
    from asyncpg import Connection, Pool, Record
    from asyncpg.exceptions import (
        PostgresError,
        InterfaceError,
        ConnectionDoesNotExistError,
        TooManyConnectionsError,
    )
except ImportError as e:
    raise ImportError(
        "asyncpg is required for PostgresClient. Install with: pip install asyncpg"
    ) from e

from guardwatch.config.models import PostgresConnectionConfig
from guardwatch.models.alerts import Alert, AlertPriority, AlertType, evidence_adapter
from guardwatch.models.delivery import Recipient

logger = structlog.get_logger(__name__)


class PostgresClientError(Exception):
    """Base exception for PostgreSQL client errors."""

    pass


class PostgresConnectionException(PostgresClientError):
    """Raised when PostgreSQL connection fails."""

    pass


class PostgresOperationError(PostgresClientError):
    """Raised when a PostgreSQL operation fails."""

    pass


_ALERT_COLUMNS = """
    id, user_id, device_id, alert_type, priority, title, description,
    evidence, read, email_sent, push_sent, occurred_at, created_at
"""


def _row_to_alert(row: Record) -> Alert:
    """
    Convert an alerts row back to an Alert.

    Args:
        row: asyncpg Record from the alerts table.

    Returns:
        Alert: Reconstructed alert.
    """
    evidence = row["evidence"]
    if isinstance(evidence, str):
        evidence = json.loads(evidence)

    return Alert(
        id=row["id"],
        user_id=row["user_id"],
        device_id=row["device_id"],
        alert_type=AlertType(row["alert_type"]),
        priority=AlertPriority(row["priority"]),
        title=row["title"],
        description=row["description"],
        evidence=evidence_adapter.validate_python(evidence),
        read=row["read"],
        email_sent=row["email_sent"],
        push_sent=row["push_sent"],
        occurred_at=row["occurred_at"],
        created_at=row["created_at"],
    )


class PostgresClient:
    """
    Async PostgreSQL client for alerts and guardian contacts.

    Attributes:
        config: PostgreSQL connection configuration.
        _pool: Connection pool for efficient connection reuse.
        _connected: Whether the client is connected.

    Example:
        >>> client = PostgresClient(PostgresConnectionConfig(url="postgresql://..."))
        >>> await client.connect()
        >>> try:
        ...     await client.insert_alert(alert)
        ... finally:
        ...     await client.disconnect()
    """

    # Maximum retries for transient errors
    MAX_RETRIES = 3

    # Retry delay in seconds
    RETRY_DELAY = 0.5

    def __init__(self, config: PostgresConnectionConfig) -> None:
        """
        Initialize the PostgreSQL client.

        Args:
            config: PostgreSQL connection configuration containing URL and pool settings.
        """
        self.config = config
        self._pool: Optional[Pool] = None
        self._connected: bool = False

        logger.info(
            "postgres_client_initialized",
            url=self._sanitize_url(config.url),
            pool_size=config.pool_size,
        )

    def _sanitize_url(self, url: str) -> str:
        """Sanitize URL for logging (remove password)."""
        if "@" in url:
            parts = url.split("@")
            if ":" in parts[0]:
                user_part = parts[0].rsplit(":", 1)[0]
                return f"{user_part}:***@{parts[1]}"
        return url

    @property
    def is_connected(self) -> bool:
        """
        Check if the client is connected to PostgreSQL.

        Returns:
            bool: True if connected, False otherwise.
        """
        return self._connected and self._pool is not None

    async def connect(self) -> None:
        """
        Establish connection pool to PostgreSQL.

        Raises:
            PostgresConnectionException: If connection fails.
        """
        if self._connected:
            logger.warning("postgres_already_connected")
            return

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.url,
                min_size=1,
                max_size=self.config.pool_size + self.config.max_overflow,
                command_timeout=self.config.pool_timeout,
                init=self._init_connection,
            )

            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")

            self._connected = True

            logger.info(
                "postgres_connected",
                url=self._sanitize_url(self.config.url),
            )

        except (PostgresError, OSError, asyncio.TimeoutError) as e:
            self._connected = False
            logger.error(
                "postgres_connection_failed",
                url=self._sanitize_url(self.config.url),
                error=str(e),
            )
            raise PostgresConnectionException(
                f"Failed to connect to PostgreSQL: {e}"
            ) from e

    async def _init_connection(self, conn: Connection) -> None:
        """
        Initialize connection with custom type handling.

        Args:
            conn: asyncpg Connection to initialize.
        """
        # Set timezone to UTC for consistent timestamps
        await conn.execute("SET timezone = 'UTC'")
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )

    async def disconnect(self) -> None:
        """
        Close PostgreSQL connection pool and release resources.

        Safe to call multiple times.
        """
        if self._pool is not None:
            try:
                await self._pool.close()
            except Exception as e:
                logger.warning("postgres_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info("postgres_disconnected")

    @asynccontextmanager
    async def _acquire_connection(self) -> AsyncIterator[Connection]:
        """
        Acquire a connection from the pool with error handling.

        Yields:
            Connection: asyncpg connection from the pool.

        Raises:
            PostgresConnectionException: If not connected or pool exhausted.
        """
        if not self._connected or self._pool is None:
            raise PostgresConnectionException("PostgreSQL client is not connected")

        try:
            async with self._pool.acquire() as conn:
                yield conn
        except TooManyConnectionsError as e:
            logger.error("postgres_pool_exhausted", error=str(e))
            raise PostgresConnectionException(
                f"Connection pool exhausted: {e}"
            ) from e
        except (ConnectionDoesNotExistError, InterfaceError) as e:
            logger.error("postgres_connection_lost", error=str(e))
            self._connected = False
            raise PostgresConnectionException(
                f"Connection lost: {e}"
            ) from e

    async def _execute_with_retry(
        self,
        operation: str,
        func: Any,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute a database operation with retry logic for transient errors.

        Args:
            operation: Name of the operation for logging.
            func: Async function to execute.
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.

        Returns:
            Any: Result of the function call.

        Raises:
            PostgresOperationError: If all retries fail.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.MAX_RETRIES):
            try:
                return await func(*args, **kwargs)
            except (PostgresError, ConnectionDoesNotExistError, InterfaceError) as e:
                last_error = e
                if attempt < self.MAX_RETRIES - 1:
                    logger.warning(
                        "postgres_operation_retry",
                        operation=operation,
                        attempt=attempt + 1,
                        max_retries=self.MAX_RETRIES,
                        error=str(e),
                    )
                    await asyncio.sleep(self.RETRY_DELAY * (attempt + 1))
                else:
                    logger.error(
                        "postgres_operation_failed",
                        operation=operation,
                        error=str(e),
                    )

        raise PostgresOperationError(
            f"Operation '{operation}' failed after {self.MAX_RETRIES} attempts: {last_error}"
        )

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def insert_alert(self, alert: Alert) -> None:
        """
        Insert a newly admitted alert.

        The insert is idempotent on id: re-inserting an existing alert is a
        no-op so a retried admission cannot duplicate rows.

        Args:
            alert: The Alert to insert.

        Raises:
            PostgresConnectionException: If not connected.
            PostgresOperationError: If the operation fails.
        """
        start_time = time.monotonic()

        async def _insert() -> None:
            async with self._acquire_connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO alerts (
                        id, user_id, device_id, alert_type, priority,
                        title, description, evidence,
                        read, email_sent, push_sent,
                        occurred_at, created_at
                    ) VALUES (
                        $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13
                    )
                    ON CONFLICT (id) DO NOTHING
                    """,
                    alert.id,
                    alert.user_id,
                    alert.device_id,
                    alert.alert_type.value,
                    alert.priority.value,
                    alert.title,
                    alert.description,
                    alert.evidence.model_dump(mode="json"),
                    alert.read,
                    alert.email_sent,
                    alert.push_sent,
                    alert.occurred_at,
                    alert.created_at,
                )

        await self._execute_with_retry("insert_alert", _insert)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "alert_inserted",
            alert_id=alert.id,
            alert_type=alert.alert_type.value,
            priority=alert.priority.value,
            elapsed_ms=round(elapsed_ms, 2),
        )

    async def update_alert_flags(
        self,
        alert_id: str,
        read: Optional[bool] = None,
        email_sent: Optional[bool] = None,
        push_sent: Optional[bool] = None,
    ) -> bool:
        """
        Update the mutable flags of an alert.

        Args:
            alert_id: Alert identifier.
            read: New read flag, or None to leave unchanged.
            email_sent: New email flag, or None to leave unchanged.
            push_sent: New push flag, or None to leave unchanged.

        Returns:
            bool: True if a row was updated.

        Raises:
            PostgresConnectionException: If not connected.
            PostgresOperationError: If the operation fails.
        """
        updates = ["updated_at = NOW()"]
        params: List[Any] = []

        for column, value in (("read", read), ("email_sent", email_sent), ("push_sent", push_sent)):
            if value is not None:
                params.append(value)
                updates.append(f"{column} = ${len(params)}")

        params.append(alert_id)
        query = f"""
            UPDATE alerts
            SET {', '.join(updates)}
            WHERE id = ${len(params)}
        """

        async def _update() -> str:
            async with self._acquire_connection() as conn:
                return await conn.execute(query, *params)

        status = await self._execute_with_retry("update_alert_flags", _update)

        logger.debug(
            "alert_flags_updated",
            alert_id=alert_id,
            read=read,
            email_sent=email_sent,
            push_sent=push_sent,
        )

        return str(status).endswith(" 1")

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        """
        Fetch one alert by id.

        Returns:
            Optional[Alert]: The alert, or None if not found.
        """
        async def _query() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    f"SELECT {_ALERT_COLUMNS} FROM alerts WHERE id = $1",
                    alert_id,
                )

        row = await self._execute_with_retry("get_alert", _query)
        return _row_to_alert(row) if row is not None else None

    async def query_undelivered_alerts(
        self,
        since: datetime,
        priorities: List[AlertPriority],
        limit: int = 500,
    ) -> List[Alert]:
        """
        Query recent alerts whose email has not been sent.

        Args:
            since: Only alerts created at or after this time.
            priorities: Priorities to include.
            limit: Maximum number of results.

        Returns:
            List[Alert]: Matching alerts, oldest first.
        """
        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    f"""
                    SELECT {_ALERT_COLUMNS}
                    FROM alerts
                    WHERE email_sent = FALSE
                      AND priority = ANY($1::text[])
                      AND created_at >= $2
                    ORDER BY created_at ASC
                    LIMIT $3
                    """,
                    [p.value for p in priorities],
                    since,
                    limit,
                )

        rows = await self._execute_with_retry("query_undelivered_alerts", _query)
        return self._parse_rows(rows)

    async def query_user_alerts(
        self,
        user_id: str,
        since: datetime,
        limit: int = 1000,
    ) -> List[Alert]:
        """
        Query a user's alerts created since a point in time.

        Returns:
            List[Alert]: Matching alerts, newest first.
        """
        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    f"""
                    SELECT {_ALERT_COLUMNS}
                    FROM alerts
                    WHERE user_id = $1 AND created_at >= $2
                    ORDER BY created_at DESC
                    LIMIT $3
                    """,
                    user_id,
                    since,
                    limit,
                )

        rows = await self._execute_with_retry("query_user_alerts", _query)
        return self._parse_rows(rows)

    async def count_unread_alerts(self, user_id: str) -> int:
        """
        Count a user's unread alerts.

        Returns:
            int: Number of unread alerts.
        """
        async def _query() -> int:
            async with self._acquire_connection() as conn:
                return await conn.fetchval(
                    "SELECT COUNT(*) FROM alerts WHERE user_id = $1 AND read = FALSE",
                    user_id,
                )

        count = await self._execute_with_retry("count_unread_alerts", _query)
        return int(count or 0)

    def _parse_rows(self, rows: List[Record]) -> List[Alert]:
        alerts = []
        for row in rows:
            try:
                alerts.append(_row_to_alert(row))
            except Exception as e:
                logger.warning(
                    "alert_parse_failed",
                    alert_id=row.get("id"),
                    error=str(e),
                )
        return alerts

    # =========================================================================
    # GUARDIANS
    # =========================================================================

    async def get_recipient(self, user_id: str) -> Optional[Recipient]:
        """
        Look up guardian contact addresses for a monitored user.

        Returns:
            Optional[Recipient]: Contact addresses, or None if unknown.
        """
        async def _query() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    """
                    SELECT user_id, name, email, push_token
                    FROM guardians
                    WHERE user_id = $1
                    """,
                    user_id,
                )

        row = await self._execute_with_retry("get_recipient", _query)
        if row is None:
            return None
        return Recipient(
            user_id=row["user_id"],
            name=row["name"],
            email=row["email"],
            push_token=row["push_token"],
        )

    async def list_recipient_user_ids(self) -> List[str]:
        """Return every monitored user with a guardian on file."""
        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch("SELECT user_id FROM guardians ORDER BY user_id")

        rows = await self._execute_with_retry("list_recipient_user_ids", _query)
        return [row["user_id"] for row in rows]

