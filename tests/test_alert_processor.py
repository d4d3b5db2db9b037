"""Tests for reading handling in the alert processor service."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from aquaguard.models.alerts import AlertSeverity
from aquaguard.models.readings import WaterParameter
from aquaguard.services.alert_processor import AlertProcessorService


@pytest.fixture
def service(cooldowns) -> AlertProcessorService:
    service = AlertProcessorService()
    service.manager = MagicMock()
    service.manager.process_reading = AsyncMock(return_value=[])
    service.cooldowns = cooldowns
    return service


def _message(t0, minutes, device_id="D1"):
    return {
        "channel": "telemetry:readings",
        "data": {
            "deviceId": device_id,
            "pH": 7.0,
            "timestamp": (t0 + timedelta(minutes=minutes)).isoformat(),
        },
    }


class TestCooldownPurge:
    """Windows are purged in reading time, not wall-clock time."""

    @pytest.mark.asyncio
    async def test_nothing_purged_before_first_reading(self, service, cooldowns, t0):
        await cooldowns.start("D1", WaterParameter.PH, AlertSeverity.CRITICAL, "a-1", t0)

        assert await service._purge_cooldowns() == 0
        assert len(cooldowns) == 1

    @pytest.mark.asyncio
    async def test_purges_as_of_newest_reading(self, service, cooldowns, t0):
        await cooldowns.start("D1", WaterParameter.PH, AlertSeverity.CRITICAL, "a-1", t0)

        await service._handle_message(_message(t0, minutes=10))
        assert await service._purge_cooldowns() == 0

        await service._handle_message(_message(t0, minutes=45, device_id="D2"))
        await service._handle_message(_message(t0, minutes=5))

        assert await service._purge_cooldowns() == 1
        assert len(cooldowns) == 0
        assert service.manager.process_reading.await_count == 3

    @pytest.mark.asyncio
    async def test_rejected_reading_does_not_advance(self, service, cooldowns, t0):
        await cooldowns.start("D1", WaterParameter.PH, AlertSeverity.CRITICAL, "a-1", t0)

        await service._handle_message(
            {"channel": "telemetry:readings", "data": {"deviceId": "D1", "timestamp": "bad"}}
        )

        assert await service._purge_cooldowns() == 0
        service.manager.process_reading.assert_not_awaited()
