"""
Alert store contract and its PostgreSQL adapter.

This module defines the AlertStore protocol the lifecycle manager depends
on, and the PostgresAlertStore adapter which implements it over
PostgresClient. The in-process implementation lives in
aquaguard.storage.memory.

Key Features:
    - One atomic store operation per mutation
    - Conditional upsert keyed on the Active alert for (device, parameter)
    - Compare-and-set status transitions with typed rejections
    - Client failures translated to TransientStoreError

Example:
    >>> store = PostgresAlertStore(postgres_client)
    >>> mutation = await store.upsert_active(candidate, stale_before)
    >>> if mutation.created:
    ...     print("new alert", mutation.alert.alert_id)
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

import structlog

from aquaguard.errors import AlertAlreadyExistsError, TransientStoreError
from aquaguard.models.alerts import (
    Alert,
    AlertFilters,
    AlertMutation,
    AlertSeverity,
    AlertStatistics,
    StatusTransition,
    Violation,
)
from aquaguard.models.readings import WaterParameter
from aquaguard.storage.postgres_client import (
    PostgresClient,
    PostgresClientError,
    PostgresUniqueViolation,
)

logger = structlog.get_logger(__name__)


@runtime_checkable
class AlertStore(Protocol):
    """
    Protocol for alert stores.

    Every mutation must be a single atomic operation in the backing store.
    Implementations raise TransientStoreError when the backing store is
    unreachable or failing.
    """

    async def find_active(
        self,
        device_id: str,
        parameter: WaterParameter,
    ) -> Optional[Alert]:
        """Get the Active alert for a device and parameter, if any."""
        ...

    async def get(self, alert_id: str) -> Optional[Alert]:
        """Get an alert by id."""
        ...

    async def upsert_active(
        self,
        candidate: Alert,
        stale_before: Optional[Dict[AlertSeverity, datetime]] = None,
    ) -> AlertMutation:
        """Insert the candidate as Active, or coalesce into the Active alert."""
        ...

    async def record_occurrence(
        self,
        alert_id: str,
        violation: Violation,
    ) -> Optional[AlertMutation]:
        """Coalesce a violation into an unresolved alert; None if there is none."""
        ...

    async def update_status(
        self,
        alert_id: str,
        transition: StatusTransition,
    ) -> Alert:
        """Apply a status transition or raise NotFound/Conflict."""
        ...

    async def bulk_resolve(
        self,
        device_id: str,
        user_id: str,
        at: datetime,
        notes: Optional[str] = None,
    ) -> int:
        """Resolve every Active alert of a device; returns the count."""
        ...

    async def list(self, filters: AlertFilters) -> List[Alert]:
        """List alerts matching filters, newest first."""
        ...

    async def stats(
        self,
        device_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> AlertStatistics:
        """Aggregate alert counts."""
        ...

    async def count_unacknowledged(self, device_id: Optional[str] = None) -> int:
        """Count alerts not yet acknowledged."""
        ...


class PostgresAlertStore:
    """
    AlertStore backed by PostgreSQL.

    Attributes:
        postgres_client: Connected PostgreSQL client.

    Example:
        >>> store = PostgresAlertStore(postgres_client)
        >>> alert = await store.update_status(alert_id, transition)
    """

    def __init__(self, postgres_client: PostgresClient) -> None:
        """
        Initialize the store.

        Args:
            postgres_client: Connected PostgreSQL client.
        """
        self.postgres_client = postgres_client

        logger.debug("alert_store_initialized", backend="postgres")

    @asynccontextmanager
    async def _translate_errors(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """
        Translate client failures into TransientStoreError.

        Args:
            operation: Operation name for logs.
            **context: Extra log context.

        Raises:
            TransientStoreError: On any PostgresClientError.
        """
        try:
            yield
        except PostgresClientError as e:
            logger.error(
                "alert_store_operation_failed",
                operation=operation,
                error=str(e),
                **context,
            )
            raise TransientStoreError(
                f"Alert store operation '{operation}' failed: {e}",
                details={"operation": operation, **context},
            ) from e

    async def find_active(
        self,
        device_id: str,
        parameter: WaterParameter,
    ) -> Optional[Alert]:
        async with self._translate_errors(
            "find_active", device_id=device_id, parameter=parameter.value
        ):
            return await self.postgres_client.get_active_alert(device_id, parameter)

    async def get(self, alert_id: str) -> Optional[Alert]:
        async with self._translate_errors("get", alert_id=alert_id):
            return await self.postgres_client.get_alert(alert_id)

    async def upsert_active(
        self,
        candidate: Alert,
        stale_before: Optional[Dict[AlertSeverity, datetime]] = None,
    ) -> AlertMutation:
        """
        Insert the candidate as Active, or coalesce into the Active alert.

        Args:
            candidate: New alert built from the violation.
            stale_before: Per-severity cutoffs for superseding stale alerts.

        Returns:
            AlertMutation: The persisted alert and what happened to it.

        Raises:
            AlertAlreadyExistsError: If candidate.alert_id already exists.
            TransientStoreError: If the database call fails.
        """
        async with self._translate_errors(
            "upsert_active",
            device_id=candidate.device_id,
            parameter=candidate.parameter.value,
        ):
            try:
                alert, inserted, superseded = await self.postgres_client.upsert_active_alert(
                    candidate, stale_before
                )
            except PostgresUniqueViolation as e:
                raise AlertAlreadyExistsError(candidate.alert_id) from e

        return AlertMutation(
            alert=alert,
            created=inserted,
            escalated=not inserted and alert.was_escalated_by_last_update,
            superseded=superseded,
        )

    async def record_occurrence(
        self,
        alert_id: str,
        violation: Violation,
    ) -> Optional[AlertMutation]:
        async with self._translate_errors("record_occurrence", alert_id=alert_id):
            alert = await self.postgres_client.record_occurrence(alert_id, violation)
        if alert is None:
            return None
        return AlertMutation(alert=alert, escalated=alert.was_escalated_by_last_update)

    async def update_status(
        self,
        alert_id: str,
        transition: StatusTransition,
    ) -> Alert:
        """
        Apply a status transition as a compare-and-set on status.

        When the update matches no row, the alert is read back to report
        why: missing, already acknowledged, or already resolved.

        Raises:
            AlertNotFoundError: If the alert does not exist.
            AlreadyAcknowledgedError: If acknowledging a non-Active alert.
            AlreadyResolvedError: If the alert is already Resolved.
            TransientStoreError: If the database call fails.
        """
        async with self._translate_errors(
            "update_status", alert_id=alert_id, target=transition.target.value
        ):
            updated = await self.postgres_client.transition_alert(alert_id, transition)
            if updated is not None:
                return updated
            current = await self.postgres_client.get_alert(alert_id)

        raise transition.rejection(alert_id, current.status if current else None)

    async def bulk_resolve(
        self,
        device_id: str,
        user_id: str,
        at: datetime,
        notes: Optional[str] = None,
    ) -> int:
        async with self._translate_errors("bulk_resolve", device_id=device_id):
            return await self.postgres_client.resolve_active_for_device(
                device_id, user_id, at, notes
            )

    async def list(self, filters: AlertFilters) -> List[Alert]:
        async with self._translate_errors("list"):
            return await self.postgres_client.query_alerts(filters)

    async def stats(
        self,
        device_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> AlertStatistics:
        async with self._translate_errors("stats", device_id=device_id):
            return await self.postgres_client.get_alert_statistics(
                device_id, start_time, end_time
            )

    async def count_unacknowledged(self, device_id: Optional[str] = None) -> int:
        async with self._translate_errors("count_unacknowledged", device_id=device_id):
            return await self.postgres_client.count_unacknowledged(device_id)
