"""
Abstract interfaces for collaborators of the alerting core.

Modules:
    device_registry: DeviceRegistry ABC and its static/PostgreSQL implementations
"""

from aquaguard.interfaces.device_registry import (
    DeviceRegistry,
    PostgresDeviceRegistry,
    StaticDeviceRegistry,
)

__all__: list[str] = [
    "DeviceRegistry",
    "PostgresDeviceRegistry",
    "StaticDeviceRegistry",
]
