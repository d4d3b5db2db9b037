"""
Abstract base class for device registries.

This module defines the DeviceRegistry interface used by the lifecycle
manager to enrich alerts with a human-readable device name. Device CRUD
lives elsewhere; the alerting core only reads names.

A missing device, or a failing lookup, never blocks alert creation: the
alert still references its device_id and simply has no device_name.

Example:
    >>> registry = StaticDeviceRegistry({"WQ-001": "Reservoir Inlet"})
    >>> await registry.get_device_name("WQ-001")
    'Reservoir Inlet'
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

import structlog

from aquaguard.storage.postgres_client import PostgresClient, PostgresClientError

logger = structlog.get_logger(__name__)


class DeviceRegistry(ABC):
    """
    Abstract base class for device name lookup.

    Implementations return None for unknown devices and may raise on
    backend failure; callers treat both as "no name".
    """

    @abstractmethod
    async def get_device_name(self, device_id: str) -> Optional[str]:
        """
        Look up a device's display name.

        Args:
            device_id: Device identifier.

        Returns:
            Optional[str]: The name, or None if the device is unknown.
        """
        pass


class StaticDeviceRegistry(DeviceRegistry):
    """Device names from configuration (config/devices.yaml)."""

    def __init__(self, names: Optional[Dict[str, str]] = None) -> None:
        self._names: Dict[str, str] = dict(names or {})

    async def get_device_name(self, device_id: str) -> Optional[str]:
        return self._names.get(device_id)


class PostgresDeviceRegistry(DeviceRegistry):
    """
    Device names from the `devices` table.

    Names are cached after the first successful lookup, including misses,
    for the life of the registry.
    """

    def __init__(self, postgres_client: PostgresClient) -> None:
        self.postgres_client = postgres_client
        self._cache: Dict[str, Optional[str]] = {}

    async def get_device_name(self, device_id: str) -> Optional[str]:
        if device_id in self._cache:
            return self._cache[device_id]

        try:
            name = await self.postgres_client.get_device_name(device_id)
        except PostgresClientError as e:
            logger.warning("device_lookup_failed", device_id=device_id, error=str(e))
            return None

        self._cache[device_id] = name
        return name
