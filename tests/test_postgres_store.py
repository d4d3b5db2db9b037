"""Tests for the PostgreSQL store adapter and device registry over a mocked client."""

from unittest.mock import AsyncMock

import pytest

from aquaguard.detection.storage import AlertStore, PostgresAlertStore
from aquaguard.errors import (
    AlertAlreadyExistsError,
    AlertNotFoundError,
    AlreadyAcknowledgedError,
    AlreadyResolvedError,
    TransientStoreError,
)
from aquaguard.interfaces.device_registry import PostgresDeviceRegistry, StaticDeviceRegistry
from aquaguard.models.alerts import Alert, AlertSeverity, AlertStatus, StatusTransition
from aquaguard.storage.postgres_client import (
    PostgresConnectionException,
    PostgresOperationError,
    PostgresUniqueViolation,
)


@pytest.fixture
def client():
    return AsyncMock()


@pytest.fixture
def pg_store(client):
    return PostgresAlertStore(client)


@pytest.fixture
def candidate(make_violation) -> Alert:
    return Alert.from_violation(make_violation())


@pytest.fixture
def ack(operator_now):
    return StatusTransition(target=AlertStatus.ACKNOWLEDGED, user_id="user123", at=operator_now)


class TestPostgresAlertStore:
    """Result mapping and error translation."""

    def test_satisfies_protocol(self, pg_store):
        assert isinstance(pg_store, AlertStore)

    @pytest.mark.asyncio
    async def test_upsert_created(self, pg_store, client, candidate):
        client.upsert_active_alert.return_value = (candidate, True, ["old-1"])

        mutation = await pg_store.upsert_active(candidate)

        assert mutation.created is True
        assert mutation.escalated is False
        assert mutation.superseded == ["old-1"]
        client.upsert_active_alert.assert_awaited_once_with(candidate, None)

    @pytest.mark.asyncio
    async def test_upsert_escalated(self, pg_store, client, candidate):
        escalated = candidate.model_copy(
            update={"occurrence_count": 2, "escalated_from": AlertSeverity.WARNING}
        )
        client.upsert_active_alert.return_value = (escalated, False, [])

        mutation = await pg_store.upsert_active(candidate)

        assert mutation.created is False
        assert mutation.escalated is True

    @pytest.mark.asyncio
    async def test_upsert_duplicate_id(self, pg_store, client, candidate):
        client.upsert_active_alert.side_effect = PostgresUniqueViolation(
            "duplicate key", constraint="alerts_pkey"
        )

        with pytest.raises(AlertAlreadyExistsError):
            await pg_store.upsert_active(candidate)

    @pytest.mark.asyncio
    async def test_client_failure_is_transient(self, pg_store, client):
        client.count_unacknowledged.side_effect = PostgresConnectionException("pool closed")

        with pytest.raises(TransientStoreError) as exc_info:
            await pg_store.count_unacknowledged("D1")

        assert exc_info.value.retryable is True
        assert exc_info.value.details == {
            "operation": "count_unacknowledged",
            "device_id": "D1",
        }

    @pytest.mark.asyncio
    async def test_record_occurrence_missing(self, pg_store, client, make_violation):
        client.record_occurrence.return_value = None

        assert await pg_store.record_occurrence("a-1", make_violation()) is None

    @pytest.mark.asyncio
    async def test_update_status_applied(self, pg_store, client, candidate, ack, operator_now):
        acknowledged = candidate.acknowledge("user123", operator_now)
        client.transition_alert.return_value = acknowledged

        assert await pg_store.update_status(candidate.alert_id, ack) == acknowledged
        client.get_alert.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "current_status, expected",
        [
            (None, AlertNotFoundError),
            (AlertStatus.ACKNOWLEDGED, AlreadyAcknowledgedError),
            (AlertStatus.RESOLVED, AlreadyResolvedError),
        ],
    )
    async def test_update_status_rejected(
        self, pg_store, client, candidate, ack, current_status, expected
    ):
        client.transition_alert.return_value = None
        client.get_alert.return_value = (
            candidate.model_copy(update={"status": current_status}) if current_status else None
        )

        with pytest.raises(expected):
            await pg_store.update_status(candidate.alert_id, ack)

    @pytest.mark.asyncio
    async def test_update_status_failure(self, pg_store, client, candidate, ack):
        client.transition_alert.side_effect = PostgresOperationError("deadlock detected")

        with pytest.raises(TransientStoreError):
            await pg_store.update_status(candidate.alert_id, ack)


class TestDeviceRegistries:
    """Device name lookup."""

    @pytest.mark.asyncio
    async def test_static(self):
        registry = StaticDeviceRegistry({"WQ-001": "Reservoir Inlet"})

        assert await registry.get_device_name("WQ-001") == "Reservoir Inlet"
        assert await registry.get_device_name("WQ-999") is None

    @pytest.mark.asyncio
    async def test_postgres_caches_hits_and_misses(self, client):
        client.get_device_name.side_effect = ["Reservoir Inlet", None]
        registry = PostgresDeviceRegistry(client)

        assert await registry.get_device_name("WQ-001") == "Reservoir Inlet"
        assert await registry.get_device_name("WQ-001") == "Reservoir Inlet"
        assert await registry.get_device_name("WQ-999") is None
        assert await registry.get_device_name("WQ-999") is None
        assert client.get_device_name.await_count == 2

    @pytest.mark.asyncio
    async def test_postgres_failure_not_cached(self, client):
        client.get_device_name.side_effect = [
            PostgresOperationError("timeout"),
            "Reservoir Inlet",
        ]
        registry = PostgresDeviceRegistry(client)

        assert await registry.get_device_name("WQ-001") is None
        assert await registry.get_device_name("WQ-001") == "Reservoir Inlet"
