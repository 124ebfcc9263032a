"""
Storage clients for the alert pipeline.

Components:
    redis_client: Async Redis client for telemetry intake and alert pub/sub
    postgres_client: Async PostgreSQL client for alerts and guardian contacts
"""

from guardwatch.storage.redis_client import (
    RedisClient,
    RedisClientError,
    RedisConnectionException,
    RedisOperationError,
)
from guardwatch.storage.postgres_client import (
    PostgresClient,
    PostgresClientError,
    PostgresConnectionException,
    PostgresOperationError,
)

__all__: list[str] = [
    # Redis
    "RedisClient",
    "RedisClientError",
    "RedisConnectionException",
    "RedisOperationError",
    # PostgreSQL
    "PostgresClient",
    "PostgresClientError",
    "PostgresConnectionException",
    "PostgresOperationError",
]
