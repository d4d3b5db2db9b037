"""
Alert lifecycle manager.

This module provides the AlertLifecycleManager class which orchestrates the
complete alert lifecycle: evaluation, creation, cooldown suppression,
escalation, acknowledgment, resolution and notification.

Key Features:
    - Processes readings and handles each violation independently and
      concurrently (one failing parameter does not affect the others)
    - Repeated violations inside a cooldown window update the existing alert
    - Severity increases escalate the existing alert and notify again
    - At most one Active alert per (device, parameter), enforced by the
      store's conditional upsert rather than in-process locks
    - Compare-and-set acknowledge/resolve with typed conflict errors
    - Fire-and-forget notification dispatch, bounded by a timeout
    - Every store call bounded by a timeout (TransientStoreError)

Example:
    >>> manager = AlertLifecycleManager(
    ...     store=InMemoryAlertStore(),
    ...     cooldowns=InMemoryCooldownRegistry(CooldownPolicy()),
    ...     dispatcher=create_dispatcher(config.alerts),
    ...     evaluator=ThresholdEvaluator(config.thresholds),
    ... )
    >>> outcomes = await manager.process_reading(reading)
    >>> for outcome in outcomes:
    ...     print(outcome.action, outcome.alert.alert_id)
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Set

import structlog

from aquaguard.config.models import AppConfig, StaleAlertPolicy
from aquaguard.detection.cooldown import CooldownRegistry
from aquaguard.detection.dispatcher import NotificationDispatcher, NotificationEvent
from aquaguard.detection.evaluator import ThresholdEvaluator
from aquaguard.detection.storage import AlertStore
from aquaguard.errors import (
    AlertingError,
    AlertNotFoundError,
    TransientStoreError,
    ValidationError,
)
from aquaguard.interfaces.device_registry import DeviceRegistry
from aquaguard.models.alerts import (
    Alert,
    AlertFilters,
    AlertMutation,
    AlertOutcome,
    AlertStatistics,
    AlertStatus,
    LifecycleAction,
    StatusTransition,
    Violation,
)
from aquaguard.models.readings import Reading

logger = structlog.get_logger(__name__)


# Default configuration values
DEFAULT_STORE_TIMEOUT_SECONDS = 5.0
DEFAULT_DISPATCH_TIMEOUT_SECONDS = 10.0

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


class AlertLifecycleManager:
    """
    Orchestrates the complete alert lifecycle.

    Responsibilities:
    - Evaluate readings into violations
    - Route each violation to "update existing" or "create new" using the
      cooldown registry
    - Persist through the alert store's atomic operations
    - Notify on creation and escalation
    - Apply operator acknowledge/resolve requests

    The manager holds no per-alert state of its own; all collaborators are
    injected.

    Attributes:
        store: Alert store.
        cooldowns: Cooldown registry (its policy gives window lengths).
        dispatcher: Notification dispatcher.
        evaluator: Threshold evaluator.
        device_registry: Optional device name lookup.
        stale_alert_policy: Handling of Active alerts past their window.
        store_timeout: Seconds allowed per store call.
        dispatch_timeout: Seconds allowed per notification.
    """

    def __init__(
        self,
        store: AlertStore,
        cooldowns: CooldownRegistry,
        dispatcher: NotificationDispatcher,
        evaluator: ThresholdEvaluator,
        device_registry: Optional[DeviceRegistry] = None,
        stale_alert_policy: StaleAlertPolicy = StaleAlertPolicy.AUTO_RESOLVE,
        store_timeout: float = DEFAULT_STORE_TIMEOUT_SECONDS,
        dispatch_timeout: float = DEFAULT_DISPATCH_TIMEOUT_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the AlertLifecycleManager.

        Args:
            store: Alert store implementing the AlertStore contract.
            cooldowns: Cooldown registry.
            dispatcher: Notification dispatcher.
            evaluator: Threshold evaluator.
            device_registry: Optional device name lookup for enrichment.
            stale_alert_policy: auto_resolve or merge.
            store_timeout: Seconds allowed per store call.
            dispatch_timeout: Seconds allowed per notification.
            clock: Source of "now" for operator actions.
        """
        self.store = store
        self.cooldowns = cooldowns
        self.dispatcher = dispatcher
        self.evaluator = evaluator
        self.device_registry = device_registry
        self.stale_alert_policy = stale_alert_policy
        self.store_timeout = store_timeout
        self.dispatch_timeout = dispatch_timeout
        self.clock = clock

        self._pending_notifications: Set[asyncio.Task] = set()

        logger.info(
            "alert_manager_initialized",
            stale_alert_policy=stale_alert_policy.value,
            store_timeout=store_timeout,
            dispatch_timeout=dispatch_timeout,
            device_registry=type(device_registry).__name__ if device_registry else None,
        )

    # =========================================================================
    # INGESTION PATH
    # =========================================================================

    async def process_reading(self, reading: Reading) -> List[AlertOutcome]:
        """
        Evaluate a reading and handle every resulting violation.

        Violations are handled concurrently. A failure on one parameter is
        logged with device and parameter context and dropped; the other
        parameters still complete.

        Args:
            reading: A validated reading.

        Returns:
            List[AlertOutcome]: Outcomes of the violations that succeeded.
        """
        violations = self.evaluator.evaluate(reading)
        if not violations:
            return []

        results = await asyncio.gather(
            *(self._handle_violation(violation) for violation in violations)
        )
        return [outcome for outcome in results if outcome is not None]

    async def _handle_violation(self, violation: Violation) -> Optional[AlertOutcome]:
        """Run create_or_update, logging and absorbing its failure."""
        try:
            return await self.create_or_update(violation)
        except AlertingError as e:
            logger.error(
                "violation_processing_failed",
                device_id=violation.device_id,
                parameter=violation.parameter.value,
                severity=violation.severity.value,
                error_code=e.code,
                retryable=e.retryable,
                error=e.message,
            )
        except Exception:
            logger.exception(
                "violation_processing_failed",
                device_id=violation.device_id,
                parameter=violation.parameter.value,
                severity=violation.severity.value,
            )
        return None

    async def create_or_update(self, violation: Violation) -> AlertOutcome:
        """
        Create a new alert or update the one protected by a cooldown.

        1. Look up the cooldown registry (exact severity first).
        2. Inside a window: coalesce into the referenced alert. Escalation
           refreshes the window for the new severity and notifies. If the
           alert no longer exists (or was resolved), the window is cleared
           and step 3 runs.
        3. Otherwise: conditional upsert on the Active alert for the key.
           A created alert opens its window and notifies; a merge re-arms
           the window and notifies only on escalation.

        Args:
            violation: The violation to handle.

        Returns:
            AlertOutcome: The alert and whether it was created, updated or
                escalated.

        Raises:
            TransientStoreError: If a store or registry call fails or times out.
        """
        check = await self._bounded(
            "cooldown_lookup",
            self.cooldowns.is_suppressed(
                violation.device_id,
                violation.parameter,
                violation.severity,
                violation.timestamp,
            ),
        )

        if check.suppressed and check.entry is not None:
            mutation = await self._bounded(
                "record_occurrence",
                self.store.record_occurrence(check.entry.alert_id, violation),
            )
            if mutation is not None:
                return await self._finish_update(violation, mutation)

            logger.info(
                "cooldown_target_missing",
                device_id=violation.device_id,
                parameter=violation.parameter.value,
                alert_id=check.entry.alert_id,
            )
            await self._bounded(
                "cooldown_clear",
                self.cooldowns.clear(violation.device_id, violation.parameter),
            )

        return await self._create(violation)

    async def _create(self, violation: Violation) -> AlertOutcome:
        """Conditional upsert for a violation outside any cooldown window."""
        device_name = await self._lookup_device_name(violation.device_id)
        candidate = Alert.from_violation(violation, device_name)

        stale_before = None
        if self.stale_alert_policy == StaleAlertPolicy.AUTO_RESOLVE:
            stale_before = self.cooldowns.policy.stale_before(violation.timestamp)

        mutation = await self._bounded(
            "upsert_active",
            self.store.upsert_active(candidate, stale_before),
        )

        for superseded_id in mutation.superseded:
            logger.info(
                "alert_superseded",
                alert_id=superseded_id,
                device_id=violation.device_id,
                parameter=violation.parameter.value,
            )

        if not mutation.created:
            return await self._finish_update(violation, mutation, rearm=True)

        alert = mutation.alert
        started = await self._bounded(
            "cooldown_start",
            self.cooldowns.start(
                alert.device_id,
                alert.parameter,
                alert.severity,
                alert.alert_id,
                violation.timestamp,
            ),
        )
        if not started:
            # A live window still names an older alert; point it at this one.
            await self._bounded(
                "cooldown_refresh",
                self.cooldowns.refresh(
                    alert.device_id,
                    alert.parameter,
                    alert.severity,
                    alert.alert_id,
                    violation.timestamp,
                ),
            )

        logger.info(
            "alert_created",
            alert_id=alert.alert_id,
            device_id=alert.device_id,
            parameter=alert.parameter.value,
            severity=alert.severity.value,
            value=alert.value,
            threshold=alert.threshold,
        )
        self._schedule_notification(alert, NotificationEvent.CREATED)
        return AlertOutcome(alert=alert, action=LifecycleAction.CREATED)

    async def _finish_update(
        self,
        violation: Violation,
        mutation: AlertMutation,
        rearm: bool = False,
    ) -> AlertOutcome:
        """Re-arm cooldowns and notify after a violation was coalesced."""
        alert = mutation.alert

        # Escalations open a window at the new severity; merges re-arm it.
        if mutation.escalated or rearm:
            await self._bounded(
                "cooldown_refresh",
                self.cooldowns.refresh(
                    alert.device_id,
                    alert.parameter,
                    alert.severity,
                    alert.alert_id,
                    violation.timestamp,
                ),
            )

        if mutation.escalated:
            logger.info(
                "alert_escalated",
                alert_id=alert.alert_id,
                device_id=alert.device_id,
                parameter=alert.parameter.value,
                escalated_from=alert.escalated_from.value if alert.escalated_from else None,
                severity=alert.severity.value,
            )
            self._schedule_notification(alert, NotificationEvent.ESCALATED)
            return AlertOutcome(alert=alert, action=LifecycleAction.ESCALATED)

        logger.debug(
            "alert_occurrence_recorded",
            alert_id=alert.alert_id,
            device_id=alert.device_id,
            parameter=alert.parameter.value,
            occurrence_count=alert.occurrence_count,
        )
        return AlertOutcome(alert=alert, action=LifecycleAction.UPDATED)

    async def _lookup_device_name(self, device_id: str) -> Optional[str]:
        """Device name for enrichment; failures only lose the name."""
        if self.device_registry is None:
            return None
        try:
            return await asyncio.wait_for(
                self.device_registry.get_device_name(device_id),
                timeout=self.store_timeout,
            )
        except Exception as e:
            logger.warning("device_lookup_failed", device_id=device_id, error=str(e))
            return None

    # =========================================================================
    # OPERATOR ACTIONS
    # =========================================================================

    async def acknowledge(self, alert_id: str, user_id: str) -> Alert:
        """
        Acknowledge an Active alert.

        Args:
            alert_id: Alert to acknowledge.
            user_id: Operator acknowledging it.

        Returns:
            Alert: The acknowledged alert.

        Raises:
            ValidationError: If alert_id or user_id is empty.
            AlertNotFoundError: If no such alert exists.
            AlreadyAcknowledgedError: If the alert is already acknowledged.
            AlreadyResolvedError: If the alert is resolved.
            TransientStoreError: If the store call fails or times out.
        """
        transition = self._transition(alert_id, user_id, AlertStatus.ACKNOWLEDGED)
        alert = await self._bounded(
            "acknowledge", self.store.update_status(alert_id, transition)
        )
        logger.info("alert_acknowledged", alert_id=alert_id, user_id=user_id)
        return alert

    async def resolve(
        self,
        alert_id: str,
        user_id: str,
        notes: Optional[str] = None,
    ) -> Alert:
        """
        Resolve an Active or Acknowledged alert.

        Args:
            alert_id: Alert to resolve.
            user_id: Operator resolving it.
            notes: Optional resolution notes.

        Returns:
            Alert: The resolved alert.

        Raises:
            ValidationError: If alert_id or user_id is empty.
            AlertNotFoundError: If no such alert exists.
            AlreadyResolvedError: If the alert is already resolved.
            TransientStoreError: If the store call fails or times out.
        """
        transition = self._transition(alert_id, user_id, AlertStatus.RESOLVED, notes)
        alert = await self._bounded("resolve", self.store.update_status(alert_id, transition))
        logger.info("alert_resolved", alert_id=alert_id, user_id=user_id)
        return alert

    async def resolve_all_for_device(
        self,
        device_id: str,
        user_id: str,
        notes: Optional[str] = None,
    ) -> int:
        """
        Resolve every Active alert of a device in one atomic update.

        Args:
            device_id: Device whose alerts are resolved.
            user_id: Operator performing the bulk resolve.
            notes: Optional resolution notes.

        Returns:
            int: Number of alerts resolved.

        Raises:
            ValidationError: If device_id or user_id is empty.
            TransientStoreError: If the store call fails or times out.
        """
        if not device_id or not user_id:
            raise ValidationError(
                "device_id and user_id are required",
                details={"device_id": device_id, "user_id": user_id},
            )
        count = await self._bounded(
            "bulk_resolve",
            self.store.bulk_resolve(device_id, user_id, self.clock(), notes),
        )
        logger.info(
            "device_alerts_resolved", device_id=device_id, user_id=user_id, count=count
        )
        return count

    def _transition(
        self,
        alert_id: str,
        user_id: str,
        target: AlertStatus,
        notes: Optional[str] = None,
    ) -> StatusTransition:
        if not alert_id or not user_id:
            raise ValidationError(
                "alert_id and user_id are required",
                details={"alert_id": alert_id, "user_id": user_id},
            )
        return StatusTransition(target=target, user_id=user_id, at=self.clock(), notes=notes)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_alert(self, alert_id: str) -> Alert:
        """
        Get an alert by id.

        Raises:
            AlertNotFoundError: If no such alert exists.
            TransientStoreError: If the store call fails or times out.
        """
        alert = await self._bounded("get_alert", self.store.get(alert_id))
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def list_alerts(self, filters: Optional[AlertFilters] = None) -> List[Alert]:
        """List alerts matching filters, newest first."""
        return await self._bounded("list_alerts", self.store.list(filters or AlertFilters()))

    async def get_alert_statistics(
        self,
        device_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> AlertStatistics:
        """Aggregate alert counts, optionally for one device and time range."""
        return await self._bounded(
            "get_alert_statistics",
            self.store.stats(device_id, start_time, end_time),
        )

    async def count_unacknowledged(self, device_id: Optional[str] = None) -> int:
        """Count alerts not yet acknowledged."""
        return await self._bounded(
            "count_unacknowledged", self.store.count_unacknowledged(device_id)
        )

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _schedule_notification(self, alert: Alert, event: NotificationEvent) -> None:
        """Dispatch in the background; the ingestion path does not wait."""
        task = asyncio.create_task(self._notify(alert, event))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def _notify(self, alert: Alert, event: NotificationEvent) -> None:
        try:
            await asyncio.wait_for(
                self.dispatcher.on_alert_created_or_escalated(alert, event),
                timeout=self.dispatch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "notification_timed_out",
                alert_id=alert.alert_id,
                notification_event=event.value,
                timeout=self.dispatch_timeout,
            )
        except Exception:
            logger.exception(
                "notification_failed",
                alert_id=alert.alert_id,
                notification_event=event.value,
            )

    @property
    def pending_notifications(self) -> int:
        """Number of notifications still in flight."""
        return len(self._pending_notifications)

    async def drain_notifications(self, timeout: Optional[float] = None) -> int:
        """
        Wait for in-flight notifications to finish.

        Args:
            timeout: Maximum seconds to wait; None waits for all.

        Returns:
            int: Number of notifications that were in flight.
        """
        pending = list(self._pending_notifications)
        if pending:
            await asyncio.wait(pending, timeout=timeout)
        return len(pending)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _bounded(self, operation: str, call: Awaitable[Any]) -> Any:
        """
        Await a store or registry call with the store timeout.

        Raises:
            TransientStoreError: If the call times out.
        """
        try:
            return await asyncio.wait_for(call, timeout=self.store_timeout)
        except asyncio.TimeoutError as e:
            logger.warning(
                "store_call_timed_out", operation=operation, timeout=self.store_timeout
            )
            raise TransientStoreError(
                f"Store operation '{operation}' timed out after {self.store_timeout}s",
                details={"operation": operation},
            ) from e


def create_lifecycle_manager(
    config: AppConfig,
    store: AlertStore,
    cooldowns: CooldownRegistry,
    dispatcher: NotificationDispatcher,
    device_registry: Optional[DeviceRegistry] = None,
    clock: Clock = utc_now,
) -> AlertLifecycleManager:
    """
    Factory function to create an AlertLifecycleManager from configuration.

    Args:
        config: Application configuration.
        store: Alert store.
        cooldowns: Cooldown registry.
        dispatcher: Notification dispatcher.
        device_registry: Optional device name lookup.
        clock: Source of "now" for operator actions.

    Returns:
        AlertLifecycleManager: A new manager instance.

    Example:
        >>> manager = create_lifecycle_manager(config, store, cooldowns, dispatcher)
    """
    return AlertLifecycleManager(
        store=store,
        cooldowns=cooldowns,
        dispatcher=dispatcher,
        evaluator=ThresholdEvaluator(config.thresholds),
        device_registry=device_registry,
        stale_alert_policy=config.alerts.stale_alert_policy,
        store_timeout=config.alerts.timeouts.store_seconds,
        dispatch_timeout=config.alerts.timeouts.dispatch_seconds,
        clock=clock,
    )
