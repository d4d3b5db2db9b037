"""Tests for the operator-facing request router."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from aquaguard.api.operations import (
    AcknowledgeAlertRequest,
    AlertOperation,
    AlertOperations,
    ListAlertsRequest,
    OperationResponse,
    parse_request,
)
from aquaguard.errors import TransientStoreError, ValidationError


@pytest.fixture
def operations(manager):
    return AlertOperations(manager)


async def _open_alerts(manager, make_reading, device_id="D1", **values):
    values = values or {"ph": 5.0}
    outcomes = await manager.process_reading(make_reading(device_id=device_id, **values))
    await manager.drain_notifications()
    return [outcome.alert for outcome in outcomes]


class TestParseRequest:
    """Discriminated request parsing."""

    def test_aliases(self):
        request = parse_request(
            {"action": "acknowledgeAlert", "alertId": "a-1", "userId": "user123"}
        )

        assert isinstance(request, AcknowledgeAlertRequest)
        assert request.alert_id == "a-1"
        assert request.operation == AlertOperation.ACKNOWLEDGE_ALERT

    def test_naive_dates_become_utc(self):
        request = parse_request(
            {"action": "getAlertStatistics", "startDate": "2020-01-01T00:00:00"}
        )

        assert request.start_time == datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert request.end_time is None

    def test_list_defaults_filters(self):
        request = parse_request({"action": "listAlerts"})

        assert isinstance(request, ListAlertsRequest)
        assert request.filters.limit > 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"action": "deleteAlert", "alertId": "a-1"},
            {"action": "acknowledgeAlert", "userId": "user123"},
            {"action": "acknowledgeAlert", "alertId": "", "userId": "user123"},
            {"alertId": "a-1"},
        ],
    )
    def test_invalid(self, payload):
        with pytest.raises(ValidationError):
            parse_request(payload)


class TestAlertOperations:
    """End-to-end requests against a manager on the in-process store."""

    def test_covers_every_operation(self, operations):
        assert set(operations.operations) == set(AlertOperation)

    @pytest.mark.asyncio
    async def test_acknowledge_then_conflict(self, operations, manager, make_reading):
        (alert,) = await _open_alerts(manager, make_reading)
        payload = {"action": "acknowledgeAlert", "alertId": alert.alert_id, "userId": "user123"}

        first = await operations.handle(payload)
        second = await operations.handle(payload)

        assert first.success is True
        assert first.data["status"] == "Acknowledged"
        assert first.data["acknowledged_by"] == "user123"
        assert second.success is False
        assert second.error.code == "already_acknowledged"
        assert second.error.retryable is False

    @pytest.mark.asyncio
    async def test_resolve_with_notes(self, operations, manager, make_reading):
        (alert,) = await _open_alerts(manager, make_reading)

        response = await operations.handle(
            {
                "action": "resolveAlert",
                "alertId": alert.alert_id,
                "userId": "user123",
                "notes": "Flushed the line",
            }
        )

        assert response.success is True
        assert response.data["status"] == "Resolved"
        assert response.data["resolution_notes"] == "Flushed the line"

    @pytest.mark.asyncio
    async def test_invalid_request_is_failure(self, operations):
        unknown = await operations.handle({"action": "deleteAlert"})
        missing = await operations.handle({"action": "getAlert"})

        assert unknown.success is False
        assert unknown.error.code == "validation_error"
        assert missing.error.code == "validation_error"

    @pytest.mark.asyncio
    async def test_get_missing_alert(self, operations):
        response = await operations.handle({"action": "getAlert", "alertId": "missing"})

        assert response.success is False
        assert response.error.code == "alert_not_found"

    @pytest.mark.asyncio
    async def test_list_with_filters(self, operations, manager, make_reading):
        await _open_alerts(manager, make_reading, device_id="D1")
        await _open_alerts(manager, make_reading, device_id="D2", turbidity=50.0)

        response = await operations.handle(
            {"action": "listAlerts", "filters": {"deviceId": "D1"}}
        )

        assert response.success is True
        assert response.data["count"] == 1
        assert response.data["alerts"][0]["device_id"] == "D1"
        assert response.data["alerts"][0]["parameter"] == "pH"

    @pytest.mark.asyncio
    async def test_statistics_and_count(self, operations, manager, make_reading):
        await _open_alerts(manager, make_reading, ph=5.0, turbidity=50.0)

        stats = await operations.handle({"action": "getAlertStatistics", "deviceId": "D1"})
        count = await operations.handle({"action": "countUnacknowledged"})

        assert stats.data["total"] == 2
        assert stats.data["by_severity"] == {"Critical": 2}
        assert count.data == {"count": 2}

    @pytest.mark.asyncio
    async def test_naive_date_range_treated_as_utc(self, operations, manager, make_reading):
        await _open_alerts(manager, make_reading)

        listed = await operations.handle(
            {"action": "listAlerts", "filters": {"startDate": "2020-01-01T00:00:00"}}
        )
        stats = await operations.handle(
            {
                "action": "getAlertStatistics",
                "startDate": "2020-01-01T00:00:00",
                "endDate": "2025-01-26T11:59:00",
            }
        )

        assert listed.success is True
        assert listed.data["count"] == 1
        assert stats.success is True
        assert stats.data["total"] == 0

    @pytest.mark.asyncio
    async def test_resolve_all_for_device(self, operations, manager, make_reading):
        await _open_alerts(manager, make_reading, ph=5.0, tds=1500.0)
        await _open_alerts(manager, make_reading, device_id="D2")

        response = await operations.handle(
            {"action": "resolveAllForDevice", "deviceId": "D1", "userId": "user123"}
        )
        remaining = await operations.handle({"action": "countUnacknowledged"})

        assert response.data == {"deviceId": "D1", "resolvedCount": 2}
        assert remaining.data == {"count": 1}

    @pytest.mark.asyncio
    async def test_transient_failure_is_retryable(self):
        manager = MagicMock()
        manager.get_alert = AsyncMock(
            side_effect=TransientStoreError("store timed out", details={"operation": "get"})
        )

        response = await AlertOperations(manager).handle(
            {"action": "getAlert", "alertId": "a-1"}
        )

        assert response == OperationResponse(
            success=False,
            error={"code": "transient_store_error", "message": "store timed out", "retryable": True},
        )

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self):
        manager = MagicMock()
        manager.count_unacknowledged = AsyncMock(side_effect=RuntimeError("bug"))

        with pytest.raises(RuntimeError):
            await AlertOperations(manager).handle({"action": "countUnacknowledged"})
