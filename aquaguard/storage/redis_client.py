"""
Async Redis client for cooldown state and telemetry pub/sub.

This module provides a Redis client for storing cooldown windows shared
between alert-processor instances, and for publishing and subscribing to
the telemetry readings channel.

Key Patterns:
    - Cooldowns: `cooldown:{device_id}:{parameter}:{severity}` (JSON string
      with TTL equal to the cooldown duration)
    - Pub/Sub channels: `telemetry:readings`

Example:
    >>> from aquaguard.config.models import RedisConnectionConfig
    >>> from aquaguard.storage.redis_client import RedisClient
    >>>
    >>> config = RedisConnectionConfig(url="redis://localhost:6379")
    >>> client = RedisClient(config)
    >>> await client.connect()
    >>> started = await client.start_cooldown(entry, now, ttl_seconds=1800)
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from aquaguard.config.models import RedisConnectionConfig
from aquaguard.models.alerts import AlertSeverity, CooldownEntry
from aquaguard.models.readings import WaterParameter

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


# Sets the key unless it holds an entry that has not expired at ARGV[1].
# KEYS[1]: cooldown key
# ARGV[1]: now (epoch seconds), ARGV[2]: new value, ARGV[3]: ttl seconds
_START_COOLDOWN_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current then
    local decoded = cjson.decode(current)
    if tonumber(decoded['expires_ts']) > tonumber(ARGV[1]) then
        return 0
    end
end
redis.call('SET', KEYS[1], ARGV[2], 'EX', tonumber(ARGV[3]))
return 1
"""


class RedisClient:
    """
    Async Redis client for cooldown state and telemetry pub/sub.

    Attributes:
        config: Redis connection configuration.
        _pool: Connection pool for efficient connection reuse.
        _client: Redis client instance.
        _connected: Whether the client is connected.

    Example:
        >>> config = RedisConnectionConfig(url="redis://localhost:6379")
        >>> client = RedisClient(config)
        >>> await client.connect()
        >>> try:
        ...     entry = await client.get_cooldown("D1", WaterParameter.PH, AlertSeverity.CRITICAL)
        ... finally:
        ...     await client.disconnect()
    """

    # Key prefixes
    KEY_COOLDOWN = "cooldown"

    # Pub/sub channels
    CHANNEL_READINGS = "telemetry:readings"

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
        self._start_script: Any = None

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

        Creates a connection pool, verifies it with PING and registers the
        cooldown compare-and-set script.

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
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_timeout,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            # Verify connection with ping
            await self._client.ping()
            self._start_script = self._client.register_script(_START_COOLDOWN_SCRIPT)
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
            except RedisError as e:
                logger.warning("redis_pool_close_error", error=str(e))
            finally:
                self._pool = None

        self._start_script = None
        self._connected = False
        logger.info("redis_disconnected")

    async def ping(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            bool: True if Redis responds to PING, False otherwise.
        """
        if not self._client:
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    def _require_connection(self) -> Redis:  # type: ignore[type-arg]
        """
        Ensure client is connected and return the Redis instance.

        Returns:
            Redis: The Redis client instance.

        Raises:
            RedisConnectionException: If not connected.
        """
        if not self._connected or self._client is None:
            raise RedisConnectionException("Redis client is not connected")
        return self._client

    # =========================================================================
    # COOLDOWN STATE
    # =========================================================================

    def _cooldown_key(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
    ) -> str:
        """
        Generate Redis key for a cooldown window.

        Returns:
            str: Redis key in format `cooldown:{device_id}:{parameter}:{severity}`.
        """
        return f"{self.KEY_COOLDOWN}:{device_id}:{parameter.value}:{severity.value}"

    @staticmethod
    def _serialize_cooldown(entry: CooldownEntry) -> str:
        """Serialize an entry with its expiry as epoch seconds for the script."""
        data = entry.model_dump(mode="json")
        data["expires_ts"] = entry.expires_at.timestamp()
        return json.dumps(data)

    @staticmethod
    def _deserialize_cooldown(raw: str) -> CooldownEntry:
        """Parse an entry stored by _serialize_cooldown."""
        data = json.loads(raw)
        data.pop("expires_ts", None)
        return CooldownEntry.model_validate(data)

    async def get_cooldowns(
        self,
        device_id: str,
        parameter: WaterParameter,
        severities: Sequence[AlertSeverity],
    ) -> Dict[AlertSeverity, CooldownEntry]:
        """
        Retrieve cooldown windows for several severities in one round trip.

        Args:
            device_id: Device identifier.
            parameter: Monitored parameter.
            severities: Severities to look up.

        Returns:
            Dict[AlertSeverity, CooldownEntry]: Entries found, keyed by
                severity. Expiry is not checked here.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()
        keys = [self._cooldown_key(device_id, parameter, s) for s in severities]

        try:
            values = await client.mget(keys)
        except RedisError as e:
            logger.error(
                "cooldown_retrieve_failed",
                device_id=device_id,
                parameter=parameter.value,
                error=str(e),
            )
            raise RedisOperationError(
                f"Failed to retrieve cooldowns for {device_id}/{parameter.value}: {e}"
            ) from e

        entries: Dict[AlertSeverity, CooldownEntry] = {}
        for severity, raw in zip(severities, values):
            if raw is None:
                continue
            try:
                entries[severity] = self._deserialize_cooldown(raw)
            except ValueError as e:
                logger.warning(
                    "cooldown_entry_corrupt",
                    key=self._cooldown_key(device_id, parameter, severity),
                    error=str(e),
                )
        return entries

    async def start_cooldown(
        self,
        entry: CooldownEntry,
        now: datetime,
        ttl_seconds: int,
    ) -> bool:
        """
        Atomically set a cooldown window unless an unexpired one exists.

        Args:
            entry: The window to set.
            now: Time used to decide whether an existing window has expired.
            ttl_seconds: Key TTL (the cooldown duration).

        Returns:
            bool: True if the window was set.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        self._require_connection()
        key = self._cooldown_key(entry.device_id, entry.parameter, entry.severity)

        try:
            result = await self._start_script(
                keys=[key],
                args=[now.timestamp(), self._serialize_cooldown(entry), max(1, ttl_seconds)],
            )
        except RedisError as e:
            logger.error("cooldown_start_failed", key=key, error=str(e))
            raise RedisOperationError(f"Failed to start cooldown {key}: {e}") from e

        started = int(result) == 1
        logger.debug("cooldown_start", key=key, started=started, alert_id=entry.alert_id)
        return started

    async def set_cooldown(self, entry: CooldownEntry, ttl_seconds: int) -> None:
        """
        Overwrite a cooldown window.

        Args:
            entry: The window to set.
            ttl_seconds: Key TTL (the cooldown duration).

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()
        key = self._cooldown_key(entry.device_id, entry.parameter, entry.severity)

        try:
            await client.set(key, self._serialize_cooldown(entry), ex=max(1, ttl_seconds))
            logger.debug("cooldown_set", key=key, alert_id=entry.alert_id)
        except RedisError as e:
            logger.error("cooldown_set_failed", key=key, error=str(e))
            raise RedisOperationError(f"Failed to set cooldown {key}: {e}") from e

    async def delete_cooldowns(
        self,
        device_id: str,
        parameter: WaterParameter,
        severities: Sequence[AlertSeverity],
    ) -> int:
        """
        Delete cooldown windows for a device and parameter.

        Returns:
            int: Number of keys removed.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()
        keys = [self._cooldown_key(device_id, parameter, s) for s in severities]

        try:
            removed = await client.delete(*keys)
            logger.debug(
                "cooldowns_deleted",
                device_id=device_id,
                parameter=parameter.value,
                removed=removed,
            )
            return int(removed)
        except RedisError as e:
            logger.error(
                "cooldown_delete_failed",
                device_id=device_id,
                parameter=parameter.value,
                error=str(e),
            )
            raise RedisOperationError(
                f"Failed to delete cooldowns for {device_id}/{parameter.value}: {e}"
            ) from e

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish_reading(
        self,
        payload: Dict[str, Any],
        channel: Optional[str] = None,
    ) -> int:
        """
        Publish a telemetry reading payload.

        Args:
            payload: JSON-serializable reading payload.
            channel: Channel name, defaults to `telemetry:readings`.

        Returns:
            int: Number of subscribers that received the message.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()
        channel = channel or self.CHANNEL_READINGS

        try:
            count = await client.publish(channel, json.dumps(payload, default=str))
            logger.debug("reading_published", channel=channel, subscribers=count)
            return int(count)
        except RedisError as e:
            logger.error("reading_publish_failed", channel=channel, error=str(e))
            raise RedisOperationError(f"Failed to publish reading: {e}") from e

    @asynccontextmanager
    async def subscribe(
        self, channels: List[str]
    ) -> AsyncIterator[AsyncIterator[Dict[str, Any]]]:
        """
        Subscribe to Redis pub/sub channels.

        Context manager that yields an async iterator of messages. Messages
        that are not valid JSON are logged and skipped.

        Args:
            channels: List of channel names to subscribe to.

        Yields:
            AsyncIterator[Dict[str, Any]]: Async iterator of parsed messages
                with "channel" and "data" keys.

        Raises:
            RedisConnectionException: If not connected.

        Example:
            >>> async with client.subscribe(["telemetry:readings"]) as messages:
            ...     async for message in messages:
            ...         print(message["data"])
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
