"""
In-process alert store.

Implements the same contract as the PostgreSQL-backed store for tests,
local development and single-process deployments. All state lives in
dictionaries guarded by one asyncio lock; no await happens while it is
held, so every mutation is atomic with respect to other tasks.

Example:
    >>> store = InMemoryAlertStore()
    >>> mutation = await store.upsert_active(Alert.from_violation(violation))
    >>> mutation.created
    True
"""

import asyncio
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import structlog

from aquaguard.errors import AlertAlreadyExistsError
from aquaguard.models.alerts import (
    Alert,
    AlertFilters,
    AlertMutation,
    AlertSeverity,
    AlertStatistics,
    AlertStatus,
    StatusTransition,
    Violation,
)
from aquaguard.models.readings import WaterParameter

logger = structlog.get_logger(__name__)

SUPERSEDED_NOTES = "Superseded after cooldown expiry"
SYSTEM_USER = "system"

ActiveKey = Tuple[str, WaterParameter]


class InMemoryAlertStore:
    """
    Alert store backed by process memory.

    Attributes:
        _alerts: Alerts keyed by alert_id.
        _active: alert_id of the Active alert per (device_id, parameter).
    """

    def __init__(self) -> None:
        self._alerts: Dict[str, Alert] = {}
        self._active: Dict[ActiveKey, str] = {}
        self._lock = asyncio.Lock()

        logger.debug("alert_store_initialized", backend="memory")

    def _save(self, alert: Alert) -> None:
        """Store an alert and keep the Active index consistent. Lock held."""
        key = (alert.device_id, alert.parameter)
        self._alerts[alert.alert_id] = alert
        if alert.is_active:
            self._active[key] = alert.alert_id
        elif self._active.get(key) == alert.alert_id:
            del self._active[key]

    async def find_active(
        self,
        device_id: str,
        parameter: WaterParameter,
    ) -> Optional[Alert]:
        async with self._lock:
            alert_id = self._active.get((device_id, parameter))
            return self._alerts.get(alert_id) if alert_id else None

    async def get(self, alert_id: str) -> Optional[Alert]:
        async with self._lock:
            return self._alerts.get(alert_id)

    async def upsert_active(
        self,
        candidate: Alert,
        stale_before: Optional[Dict[AlertSeverity, datetime]] = None,
    ) -> AlertMutation:
        """
        Create an Active alert or coalesce into the existing one.

        Args:
            candidate: New alert built from the violation.
            stale_before: Per-severity cutoffs. An Active alert last seen
                before its cutoff is resolved first; None disables this.

        Returns:
            AlertMutation: The persisted alert and what happened to it.

        Raises:
            AlertAlreadyExistsError: If candidate.alert_id is already used.
        """
        key = (candidate.device_id, candidate.parameter)

        async with self._lock:
            if candidate.alert_id in self._alerts:
                raise AlertAlreadyExistsError(candidate.alert_id)

            superseded: List[str] = []
            existing_id = self._active.get(key)
            existing = self._alerts.get(existing_id) if existing_id else None

            if existing is not None and stale_before is not None:
                if existing.last_seen_timestamp < stale_before[existing.severity]:
                    self._save(
                        existing.resolve(
                            SYSTEM_USER, candidate.timestamp, SUPERSEDED_NOTES
                        )
                    )
                    superseded.append(existing.alert_id)
                    existing = None

            if existing is None:
                self._save(candidate)
                return AlertMutation(alert=candidate, created=True, superseded=superseded)

            updated = existing.record_occurrence(
                Violation(
                    device_id=candidate.device_id,
                    parameter=candidate.parameter,
                    value=candidate.value,
                    threshold=candidate.threshold,
                    severity=candidate.severity,
                    timestamp=candidate.timestamp,
                    message=candidate.message,
                )
            )
            self._save(updated)
            return AlertMutation(
                alert=updated,
                created=False,
                escalated=updated.was_escalated_by_last_update,
                superseded=superseded,
            )

    async def record_occurrence(
        self,
        alert_id: str,
        violation: Violation,
    ) -> Optional[AlertMutation]:
        async with self._lock:
            existing = self._alerts.get(alert_id)
            if existing is None or existing.is_resolved:
                return None
            updated = existing.record_occurrence(violation)
            self._save(updated)
        return AlertMutation(
            alert=updated,
            escalated=updated.was_escalated_by_last_update,
        )

    async def update_status(
        self,
        alert_id: str,
        transition: StatusTransition,
    ) -> Alert:
        async with self._lock:
            existing = self._alerts.get(alert_id)
            if existing is None or existing.status not in transition.allowed_from:
                raise transition.rejection(
                    alert_id, existing.status if existing else None
                )
            updated = transition.apply(existing)
            self._save(updated)
        return updated

    async def bulk_resolve(
        self,
        device_id: str,
        user_id: str,
        at: datetime,
        notes: Optional[str] = None,
    ) -> int:
        async with self._lock:
            targets = [
                self._alerts[alert_id]
                for (active_device, _), alert_id in self._active.items()
                if active_device == device_id
            ]
            for alert in targets:
                self._save(alert.resolve(user_id, at, notes))
        return len(targets)

    async def list(self, filters: AlertFilters) -> List[Alert]:
        async with self._lock:
            matches = [a for a in self._alerts.values() if filters.matches(a)]
        matches.sort(key=lambda a: a.timestamp, reverse=True)
        return matches[filters.offset : filters.offset + filters.limit]

    async def stats(
        self,
        device_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> AlertStatistics:
        filters = AlertFilters(device_id=device_id, start_time=start_time, end_time=end_time)
        async with self._lock:
            alerts = [a for a in self._alerts.values() if filters.matches(a)]

        return AlertStatistics(
            total=len(alerts),
            active=sum(1 for a in alerts if a.status == AlertStatus.ACTIVE),
            unacknowledged=sum(1 for a in alerts if not a.acknowledged),
            by_status=dict(Counter(a.status.value for a in alerts)),
            by_severity=dict(Counter(a.severity.value for a in alerts)),
            by_parameter=dict(Counter(a.parameter.value for a in alerts)),
        )

    async def count_unacknowledged(self, device_id: Optional[str] = None) -> int:
        async with self._lock:
            return sum(
                1
                for a in self._alerts.values()
                if not a.acknowledged and (device_id is None or a.device_id == device_id)
            )

    def __len__(self) -> int:
        return len(self._alerts)
