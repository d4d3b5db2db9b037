"""Tests for the in-process alert store."""

from datetime import timedelta

import pytest

from aquaguard.detection.storage import AlertStore
from aquaguard.errors import (
    AlertAlreadyExistsError,
    AlertNotFoundError,
    AlreadyAcknowledgedError,
    AlreadyResolvedError,
)
from aquaguard.models.alerts import (
    Alert,
    AlertFilters,
    AlertSeverity,
    AlertStatus,
    StatusTransition,
)
from aquaguard.models.readings import WaterParameter
from aquaguard.storage.memory import SUPERSEDED_NOTES, SYSTEM_USER


@pytest.fixture
def ack(operator_now):
    return StatusTransition(
        target=AlertStatus.ACKNOWLEDGED, user_id="user123", at=operator_now
    )


@pytest.fixture
def resolve(operator_now):
    return StatusTransition(
        target=AlertStatus.RESOLVED, user_id="user123", at=operator_now, notes="done"
    )


class TestUpsertActive:
    """Conditional create-or-coalesce."""

    def test_satisfies_protocol(self, store):
        assert isinstance(store, AlertStore)

    @pytest.mark.asyncio
    async def test_creates_when_no_active(self, store, make_violation):
        candidate = Alert.from_violation(make_violation())

        mutation = await store.upsert_active(candidate)

        assert mutation.created is True
        assert mutation.alert == candidate
        assert await store.find_active("D1", WaterParameter.PH) == candidate

    @pytest.mark.asyncio
    async def test_coalesces_into_active(self, store, make_violation, t0):
        first = (await store.upsert_active(Alert.from_violation(make_violation()))).alert

        mutation = await store.upsert_active(
            Alert.from_violation(make_violation(value=4.8, minutes=3))
        )

        assert mutation.created is False
        assert mutation.escalated is False
        assert mutation.alert.alert_id == first.alert_id
        assert mutation.alert.occurrence_count == 2
        assert mutation.alert.last_seen_timestamp == t0 + timedelta(minutes=3)
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_escalation_reported(self, store, make_violation):
        await store.upsert_active(
            Alert.from_violation(
                make_violation(value=6.3, threshold=6.5, severity=AlertSeverity.WARNING)
            )
        )

        mutation = await store.upsert_active(Alert.from_violation(make_violation(minutes=1)))

        assert mutation.escalated is True
        assert mutation.alert.severity == AlertSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_duplicate_alert_id_rejected(self, store, make_violation):
        candidate = Alert.from_violation(make_violation())
        await store.upsert_active(candidate)

        with pytest.raises(AlertAlreadyExistsError):
            await store.upsert_active(candidate)

    @pytest.mark.asyncio
    async def test_stale_alert_superseded(self, store, policy, make_violation, t0):
        old = (await store.upsert_active(Alert.from_violation(make_violation()))).alert
        later = t0 + timedelta(minutes=31)

        mutation = await store.upsert_active(
            Alert.from_violation(make_violation(timestamp=later)),
            stale_before=policy.stale_before(later),
        )

        assert mutation.created is True
        assert mutation.superseded == [old.alert_id]
        superseded = await store.get(old.alert_id)
        assert superseded.status == AlertStatus.RESOLVED
        assert superseded.resolved_by == SYSTEM_USER
        assert superseded.resolved_at == later
        assert superseded.resolution_notes == SUPERSEDED_NOTES
        assert (await store.find_active("D1", WaterParameter.PH)).alert_id == mutation.alert.alert_id

    @pytest.mark.asyncio
    async def test_stale_cutoff_uses_alert_severity(self, store, policy, make_violation, t0):
        await store.upsert_active(
            Alert.from_violation(
                make_violation(value=6.3, threshold=6.5, severity=AlertSeverity.WARNING)
            )
        )
        later = t0 + timedelta(minutes=45)

        mutation = await store.upsert_active(
            Alert.from_violation(
                make_violation(
                    value=6.3, threshold=6.5, severity=AlertSeverity.WARNING, timestamp=later
                )
            ),
            stale_before=policy.stale_before(later),
        )

        assert mutation.created is False
        assert mutation.superseded == []


class TestRecordOccurrence:
    """Suppressed-path updates by alert id."""

    @pytest.mark.asyncio
    async def test_updates_acknowledged_alert(self, store, ack, make_violation):
        alert = (await store.upsert_active(Alert.from_violation(make_violation()))).alert
        await store.update_status(alert.alert_id, ack)

        mutation = await store.record_occurrence(alert.alert_id, make_violation(minutes=1))

        assert mutation.alert.occurrence_count == 2
        assert mutation.alert.status == AlertStatus.ACKNOWLEDGED

    @pytest.mark.asyncio
    async def test_missing_or_resolved_returns_none(self, store, resolve, make_violation):
        alert = (await store.upsert_active(Alert.from_violation(make_violation()))).alert
        await store.update_status(alert.alert_id, resolve)

        assert await store.record_occurrence("missing", make_violation()) is None
        assert await store.record_occurrence(alert.alert_id, make_violation()) is None


class TestUpdateStatus:
    """Compare-and-set transitions."""

    @pytest.mark.asyncio
    async def test_acknowledge_then_conflict(self, store, ack, make_violation):
        alert = (await store.upsert_active(Alert.from_violation(make_violation()))).alert

        updated = await store.update_status(alert.alert_id, ack)

        assert updated.status == AlertStatus.ACKNOWLEDGED
        assert await store.find_active("D1", WaterParameter.PH) is None
        with pytest.raises(AlreadyAcknowledgedError):
            await store.update_status(alert.alert_id, ack)

    @pytest.mark.asyncio
    async def test_resolved_rejects_both(self, store, ack, resolve, make_violation):
        alert = (await store.upsert_active(Alert.from_violation(make_violation()))).alert
        await store.update_status(alert.alert_id, resolve)

        with pytest.raises(AlreadyResolvedError):
            await store.update_status(alert.alert_id, resolve)
        with pytest.raises(AlreadyResolvedError):
            await store.update_status(alert.alert_id, ack)

    @pytest.mark.asyncio
    async def test_missing(self, store, ack):
        with pytest.raises(AlertNotFoundError):
            await store.update_status("missing", ack)

    def test_cannot_target_active(self, operator_now):
        with pytest.raises(ValueError):
            StatusTransition(target=AlertStatus.ACTIVE, user_id="u", at=operator_now)


class TestQueries:
    """Listing, statistics and counts."""

    @pytest.mark.asyncio
    async def test_list_newest_first_with_paging(self, store, make_violation):
        for i, device in enumerate(["D1", "D2", "D3"]):
            await store.upsert_active(
                Alert.from_violation(make_violation(device_id=device, minutes=i))
            )

        page = await store.list(AlertFilters(limit=2))
        rest = await store.list(AlertFilters(limit=2, offset=2))

        assert [a.device_id for a in page] == ["D3", "D2"]
        assert [a.device_id for a in rest] == ["D1"]

    @pytest.mark.asyncio
    async def test_list_filters(self, store, make_violation, t0):
        await store.upsert_active(Alert.from_violation(make_violation()))
        await store.upsert_active(
            Alert.from_violation(
                make_violation(
                    parameter=WaterParameter.TDS,
                    value=1500,
                    threshold=1000,
                    minutes=10,
                )
            )
        )

        by_param = await store.list(AlertFilters(parameter=WaterParameter.TDS))
        by_time = await store.list(AlertFilters(start_time=t0 + timedelta(minutes=5)))
        by_alias = await store.list(AlertFilters.model_validate({"deviceId": "D9"}))

        assert [a.parameter for a in by_param] == [WaterParameter.TDS]
        assert [a.parameter for a in by_time] == [WaterParameter.TDS]
        assert by_alias == []

    @pytest.mark.asyncio
    async def test_bulk_resolve_only_active(self, store, ack, make_violation, operator_now):
        ph = (await store.upsert_active(Alert.from_violation(make_violation()))).alert
        await store.upsert_active(
            Alert.from_violation(
                make_violation(parameter=WaterParameter.TURBIDITY, value=50, threshold=20)
            )
        )
        await store.update_status(ph.alert_id, ack)

        count = await store.bulk_resolve("D1", "user123", operator_now)

        assert count == 1
        assert (await store.get(ph.alert_id)).status == AlertStatus.ACKNOWLEDGED
        assert await store.count_unacknowledged() == 0

    @pytest.mark.asyncio
    async def test_stats(self, store, make_violation):
        await store.upsert_active(Alert.from_violation(make_violation()))
        await store.upsert_active(Alert.from_violation(make_violation(device_id="D2")))

        stats = await store.stats(device_id="D2")

        assert stats.total == 1
        assert stats.by_parameter == {"pH": 1}
