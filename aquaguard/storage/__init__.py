"""
Storage clients for the alerting core.

This module provides clients for Redis (cooldown windows and telemetry
pub/sub) and PostgreSQL (alert history), plus an in-process alert store.

Components:
    redis_client: Async Redis client for cooldowns and pub/sub
    postgres_client: Async PostgreSQL client for alerts
    memory: In-process alert store with the same contract
"""

from aquaguard.storage.redis_client import (
    RedisClient,
    RedisClientError,
    RedisConnectionException,
    RedisOperationError,
)
from aquaguard.storage.postgres_client import (
    PostgresClient,
    PostgresClientError,
    PostgresConnectionException,
    PostgresOperationError,
    PostgresUniqueViolation,
)
from aquaguard.storage.memory import InMemoryAlertStore

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
    "PostgresUniqueViolation",
    # In-process
    "InMemoryAlertStore",
]
