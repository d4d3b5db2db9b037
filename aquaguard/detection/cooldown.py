"""
Cooldown registry for repeated-violation suppression.

This module tracks, per (device_id, parameter, severity), the window during
which repeated violations are coalesced into an existing alert instead of
creating a new one.

Key Features:
    - Per-severity window lengths (CooldownPolicy)
    - Lookup across severities of the same device and parameter, so a more
      severe violation routes to the open alert (escalation)
    - Atomic set-if-absent-or-expired start, overwriting refresh
    - Expired entries are discarded on lookup
    - In-process registry (sharded asyncio locks) and Redis registry
      (shared between processor instances)

Example:
    >>> registry = InMemoryCooldownRegistry(CooldownPolicy())
    >>> await registry.start("D1", WaterParameter.PH, AlertSeverity.CRITICAL, "a-1", now)
    True
    >>> check = await registry.is_suppressed("D1", WaterParameter.PH, AlertSeverity.CRITICAL, now)
    >>> check.entry.alert_id
    'a-1'
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import structlog
from pydantic import BaseModel

from aquaguard.config.models import CooldownConfig
from aquaguard.errors import TransientStoreError
from aquaguard.models.alerts import AlertSeverity, CooldownEntry
from aquaguard.models.readings import WaterParameter
from aquaguard.storage.redis_client import RedisClient, RedisClientError

logger = structlog.get_logger(__name__)

CooldownKey = Tuple[str, WaterParameter, AlertSeverity]


class CooldownCheck(BaseModel):
    """
    Result of a cooldown lookup.

    Attributes:
        suppressed: True if an unexpired window protects an alert.
        entry: The window found, if any.
    """

    model_config = {"frozen": True}

    suppressed: bool
    entry: Optional[CooldownEntry] = None


class CooldownPolicy:
    """
    Cooldown window lengths per severity.

    Example:
        >>> policy = CooldownPolicy(CooldownConfig(critical_seconds=1800))
        >>> policy.duration_for(AlertSeverity.CRITICAL)
        datetime.timedelta(seconds=1800)
    """

    def __init__(self, config: Optional[CooldownConfig] = None) -> None:
        self.config = config or CooldownConfig()

    def seconds_for(self, severity: AlertSeverity) -> int:
        """Window length in seconds for a severity."""
        return self.config.seconds_for(severity)

    def duration_for(self, severity: AlertSeverity) -> timedelta:
        """Window length for a severity."""
        return timedelta(seconds=self.seconds_for(severity))

    def expires_at(self, severity: AlertSeverity, now: datetime) -> datetime:
        """When a window opened at `now` closes."""
        return now + self.duration_for(severity)

    def stale_before(self, now: datetime) -> Dict[AlertSeverity, datetime]:
        """
        Per-severity cutoffs for alerts whose window has elapsed.

        An alert of a given severity last seen before its cutoff is no
        longer protected by a cooldown window at `now`.

        Args:
            now: Reference time.

        Returns:
            Dict[AlertSeverity, datetime]: Cutoff per severity.
        """
        return {severity: now - self.duration_for(severity) for severity in AlertSeverity}

    def build_entry(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        alert_id: str,
        now: datetime,
    ) -> CooldownEntry:
        """Build the window opened at `now` for an alert."""
        return CooldownEntry(
            device_id=device_id,
            parameter=parameter,
            severity=severity,
            alert_id=alert_id,
            expires_at=self.expires_at(severity, now),
        )


def lookup_order(severity: AlertSeverity) -> List[AlertSeverity]:
    """
    Severities to check for a violation, exact severity first.

    The remaining severities follow from most to least severe.
    """
    others = sorted(
        (s for s in AlertSeverity if s != severity),
        key=lambda s: s.rank,
        reverse=True,
    )
    return [severity, *others]


@runtime_checkable
class CooldownRegistry(Protocol):
    """
    Protocol for cooldown registries.

    Implementations must make start() atomic with respect to concurrent
    callers for the same key.
    """

    policy: CooldownPolicy

    async def is_suppressed(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        now: datetime,
    ) -> CooldownCheck:
        """Find an unexpired window for the key, exact severity first."""
        ...

    async def start(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        alert_id: str,
        now: datetime,
    ) -> bool:
        """Open a window unless an unexpired one exists; True if opened."""
        ...

    async def refresh(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        alert_id: str,
        now: datetime,
    ) -> CooldownEntry:
        """Open or overwrite the window for the key."""
        ...

    async def clear(self, device_id: str, parameter: WaterParameter) -> None:
        """Remove every window for a device and parameter."""
        ...

    async def purge_expired(self, now: datetime) -> int:
        """Remove windows that have expired; returns the number removed."""
        ...


class InMemoryCooldownRegistry:
    """
    In-process cooldown registry.

    Entries live in a dict; each (device_id, parameter) maps to one of a
    fixed set of asyncio locks so unrelated keys do not contend. No await
    happens while a shard lock is held.

    Attributes:
        policy: Window lengths per severity.

    Example:
        >>> registry = InMemoryCooldownRegistry(CooldownPolicy(), shards=8)
    """

    def __init__(self, policy: Optional[CooldownPolicy] = None, shards: int = 16) -> None:
        """
        Initialize the registry.

        Args:
            policy: Window lengths per severity.
            shards: Number of locks keys are spread over.
        """
        if shards < 1:
            raise ValueError(f"shards must be positive, got {shards}")
        self.policy = policy or CooldownPolicy()
        self._entries: Dict[CooldownKey, CooldownEntry] = {}
        self._locks: List[asyncio.Lock] = [asyncio.Lock() for _ in range(shards)]

        logger.debug("cooldown_registry_initialized", backend="memory", shards=shards)

    def _lock_for(self, device_id: str, parameter: WaterParameter) -> asyncio.Lock:
        return self._locks[hash((device_id, parameter)) % len(self._locks)]

    def _live_entry(self, key: CooldownKey, now: datetime) -> Optional[CooldownEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._entries[key]
            return None
        return entry

    async def is_suppressed(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        now: datetime,
    ) -> CooldownCheck:
        """
        Find an unexpired window for the key.

        Args:
            device_id: Device identifier.
            parameter: Monitored parameter.
            severity: Severity of the incoming violation.
            now: Violation time.

        Returns:
            CooldownCheck: suppressed=True with the entry found, or
                suppressed=False.
        """
        async with self._lock_for(device_id, parameter):
            for candidate in lookup_order(severity):
                entry = self._live_entry((device_id, parameter, candidate), now)
                if entry is not None:
                    return CooldownCheck(suppressed=True, entry=entry)
        return CooldownCheck(suppressed=False)

    async def start(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        alert_id: str,
        now: datetime,
    ) -> bool:
        key = (device_id, parameter, severity)
        async with self._lock_for(device_id, parameter):
            if self._live_entry(key, now) is not None:
                logger.debug(
                    "cooldown_already_active",
                    device_id=device_id,
                    parameter=parameter.value,
                    severity=severity.value,
                )
                return False
            self._entries[key] = self.policy.build_entry(
                device_id, parameter, severity, alert_id, now
            )
        logger.debug(
            "cooldown_started",
            device_id=device_id,
            parameter=parameter.value,
            severity=severity.value,
            alert_id=alert_id,
        )
        return True

    async def refresh(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        alert_id: str,
        now: datetime,
    ) -> CooldownEntry:
        entry = self.policy.build_entry(device_id, parameter, severity, alert_id, now)
        async with self._lock_for(device_id, parameter):
            self._entries[(device_id, parameter, severity)] = entry
        logger.debug(
            "cooldown_refreshed",
            device_id=device_id,
            parameter=parameter.value,
            severity=severity.value,
            alert_id=alert_id,
        )
        return entry

    async def clear(self, device_id: str, parameter: WaterParameter) -> None:
        async with self._lock_for(device_id, parameter):
            for severity in AlertSeverity:
                self._entries.pop((device_id, parameter, severity), None)
        logger.debug("cooldown_cleared", device_id=device_id, parameter=parameter.value)

    async def purge_expired(self, now: datetime) -> int:
        removed = 0
        for key in list(self._entries):
            device_id, parameter, _ = key
            async with self._lock_for(device_id, parameter):
                entry = self._entries.get(key)
                if entry is not None and entry.is_expired(now):
                    del self._entries[key]
                    removed += 1
        if removed:
            logger.debug("cooldowns_purged", removed=removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)


class RedisCooldownRegistry:
    """
    Cooldown registry shared through Redis.

    Each window is one key whose TTL equals the window length, so Redis
    drops it on its own once it can no longer matter. start() runs a Lua
    compare-and-set so concurrent processors agree on a single winner.

    Attributes:
        client: Connected RedisClient.
        policy: Window lengths per severity.
    """

    def __init__(self, client: RedisClient, policy: Optional[CooldownPolicy] = None) -> None:
        self.client = client
        self.policy = policy or CooldownPolicy()

        logger.debug("cooldown_registry_initialized", backend="redis")

    @asynccontextmanager
    async def _translate_errors(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """Translate Redis client failures into TransientStoreError."""
        try:
            yield
        except RedisClientError as e:
            logger.error(
                "cooldown_registry_operation_failed",
                operation=operation,
                error=str(e),
                **context,
            )
            raise TransientStoreError(
                f"Cooldown registry operation '{operation}' failed: {e}",
                details={"operation": operation, **context},
            ) from e

    async def is_suppressed(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        now: datetime,
    ) -> CooldownCheck:
        order = lookup_order(severity)
        async with self._translate_errors(
            "is_suppressed", device_id=device_id, parameter=parameter.value
        ):
            entries = await self.client.get_cooldowns(device_id, parameter, order)
        for candidate in order:
            entry = entries.get(candidate)
            if entry is not None and not entry.is_expired(now):
                return CooldownCheck(suppressed=True, entry=entry)
        return CooldownCheck(suppressed=False)

    async def start(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        alert_id: str,
        now: datetime,
    ) -> bool:
        entry = self.policy.build_entry(device_id, parameter, severity, alert_id, now)
        async with self._translate_errors("start", device_id=device_id, alert_id=alert_id):
            return await self.client.start_cooldown(
                entry, now, ttl_seconds=self.policy.seconds_for(severity)
            )

    async def refresh(
        self,
        device_id: str,
        parameter: WaterParameter,
        severity: AlertSeverity,
        alert_id: str,
        now: datetime,
    ) -> CooldownEntry:
        entry = self.policy.build_entry(device_id, parameter, severity, alert_id, now)
        async with self._translate_errors("refresh", device_id=device_id, alert_id=alert_id):
            await self.client.set_cooldown(entry, ttl_seconds=self.policy.seconds_for(severity))
        return entry

    async def clear(self, device_id: str, parameter: WaterParameter) -> None:
        async with self._translate_errors(
            "clear", device_id=device_id, parameter=parameter.value
        ):
            await self.client.delete_cooldowns(device_id, parameter, list(AlertSeverity))

    async def purge_expired(self, now: datetime) -> int:
        # Key TTLs expire windows server-side.
        return 0
