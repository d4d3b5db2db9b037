"""
Alert data models for the alerting core.

This module defines alert-related structures including violations,
persistent alert instances, store mutation results, status transitions,
query filters, and statistics.

Models:
    AlertSeverity: Severity levels (Warning, Critical)
    AlertStatus: Lifecycle states (Active, Acknowledged, Resolved)
    Violation: One threshold breach computed from one reading
    Alert: Persistent alert instance
    CooldownEntry: Suppression window protecting an alert
    AlertMutation: Result of an atomic store write
    LifecycleAction: What the lifecycle manager did with a violation
    AlertOutcome: Result of handling one violation
    StatusTransition: Operator-requested status change
    AlertFilters: Query filters for listing alerts
    AlertStatistics: Aggregate alert counts
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from aquaguard.errors import (
    AlertingError,
    AlertNotFoundError,
    AlreadyAcknowledgedError,
    AlreadyResolvedError,
)
from aquaguard.models.readings import WaterParameter, as_utc


class AlertSeverity(str, Enum):
    """
    Alert severity levels.

    Attributes:
        WARNING: Outside the recommended band, investigate.
        CRITICAL: Outside the safe band, immediate attention.
    """

    WARNING = "Warning"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        """Ordering used to detect escalation (higher is more severe)."""
        return _SEVERITY_RANK[self]

    def is_more_severe_than(self, other: "AlertSeverity") -> bool:
        """Check if this severity outranks another."""
        return self.rank > other.rank


_SEVERITY_RANK: Dict[AlertSeverity, int] = {
    AlertSeverity.WARNING: 1,
    AlertSeverity.CRITICAL: 2,
}


class AlertStatus(str, Enum):
    """
    Alert lifecycle states.

    Transitions are forward-only: Active -> Acknowledged -> Resolved, or
    Active -> Resolved directly.
    """

    ACTIVE = "Active"
    ACKNOWLEDGED = "Acknowledged"
    RESOLVED = "Resolved"


class Violation(BaseModel):
    """
    A single parameter-threshold breach computed from one reading.

    Violations are computed fresh on every reading and never stored.

    Attributes:
        device_id: Device that produced the reading.
        parameter: Parameter that breached its threshold.
        value: Observed value.
        threshold: Boundary that was crossed.
        severity: Warning or Critical.
        timestamp: Reading timestamp.
        message: Human-readable description.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    device_id: str = Field(..., min_length=1)
    parameter: WaterParameter
    value: float
    threshold: float
    severity: AlertSeverity
    timestamp: datetime
    message: str


class Alert(BaseModel):
    """
    Persistent alert instance.

    At most one alert with status=Active exists per (device_id, parameter).

    Attributes:
        alert_id: Unique identifier, generated at creation, immutable.
        device_id: Device the alert belongs to.
        device_name: Device name for display (enrichment only).
        parameter: Parameter that breached its threshold.
        severity: Current severity (may only increase).
        value: Latest observed value.
        threshold: Threshold that was crossed.
        message: Human-readable description.
        status: Lifecycle state.
        occurrence_count: Number of violations coalesced into this alert.
        timestamp: When this alert instance was first observed.
        last_seen_timestamp: Most recent violation coalesced into it.
        acknowledged: Set on acknowledge or resolve, used for
            notification deduplication downstream.
        acknowledged_by: Operator who acknowledged.
        acknowledged_at: When acknowledged.
        resolved_by: Operator (or "system") who resolved.
        resolved_at: When resolved.
        resolution_notes: Free-form resolution notes.
        escalated_at: When severity last increased.
        escalated_from: Severity the most recent update raised the alert
            from; None when the latest update did not escalate.

    Example:
        >>> alert = Alert(
        ...     device_id="D1",
        ...     parameter=WaterParameter.PH,
        ...     severity=AlertSeverity.CRITICAL,
        ...     value=5.0,
        ...     threshold=6.0,
        ...     message="Critical: pH outside safe range. Current: 5.00, Threshold: 6.0",
        ...     timestamp=datetime.now(timezone.utc),
        ... )
    """

    model_config = {"extra": "forbid"}

    # Identification
    alert_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this alert instance",
    )
    device_id: str = Field(
        ...,
        description="Device the alert belongs to",
        min_length=1,
    )
    device_name: Optional[str] = Field(
        default=None,
        description="Device name for display",
    )

    # Trigger
    parameter: WaterParameter = Field(
        ...,
        description="Parameter that breached its threshold",
    )
    severity: AlertSeverity = Field(
        ...,
        description="Current severity",
    )
    value: float = Field(
        ...,
        description="Latest observed value",
    )
    threshold: float = Field(
        ...,
        description="Threshold that was crossed",
    )
    message: str = Field(
        ...,
        description="Human-readable description",
    )

    # Lifecycle
    status: AlertStatus = Field(
        default=AlertStatus.ACTIVE,
        description="Lifecycle state",
    )
    occurrence_count: int = Field(
        default=1,
        description="Violations coalesced into this alert",
        ge=1,
    )
    timestamp: datetime = Field(
        ...,
        description="When this alert instance was first observed",
    )
    last_seen_timestamp: Optional[datetime] = Field(
        default=None,
        description="Most recent violation coalesced into this alert",
    )

    # Acknowledgment
    acknowledged: bool = Field(
        default=False,
        description="Set on acknowledge or resolve",
    )
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None

    # Resolution
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None

    # Escalation
    escalated_at: Optional[datetime] = None
    escalated_from: Optional[AlertSeverity] = None

    @model_validator(mode="after")
    def default_last_seen(self) -> "Alert":
        """A fresh alert was last seen when it was first seen."""
        if self.last_seen_timestamp is None:
            self.last_seen_timestamp = self.timestamp
        return self

    @property
    def is_active(self) -> bool:
        """Check if the alert is Active."""
        return self.status == AlertStatus.ACTIVE

    @property
    def is_resolved(self) -> bool:
        """Check if the alert is Resolved."""
        return self.status == AlertStatus.RESOLVED

    @property
    def was_escalated_by_last_update(self) -> bool:
        """Check if the most recent update raised the severity."""
        return self.escalated_from is not None

    @classmethod
    def from_violation(
        cls,
        violation: Violation,
        device_name: Optional[str] = None,
    ) -> "Alert":
        """
        Build a new Active alert candidate for a violation.

        Args:
            violation: The violation that opens the alert.
            device_name: Optional device name for display.

        Returns:
            Alert: A new alert with occurrence_count=1.
        """
        return cls(
            device_id=violation.device_id,
            device_name=device_name,
            parameter=violation.parameter,
            severity=violation.severity,
            value=violation.value,
            threshold=violation.threshold,
            message=violation.message,
            timestamp=violation.timestamp,
            last_seen_timestamp=violation.timestamp,
        )

    def record_occurrence(self, violation: Violation) -> "Alert":
        """
        Coalesce a repeated violation into this alert.

        Increments the occurrence count and keeps last_seen_timestamp
        monotonic. The latest value is taken only from violations that are
        not older than the last one seen. Severity is raised (never
        lowered); when it is raised, escalated_from and escalated_at are
        set.

        Args:
            violation: The repeated violation.

        Returns:
            Alert: Updated copy of the alert.
        """
        last_seen = self.last_seen_timestamp or self.timestamp
        update: Dict[str, object] = {
            "occurrence_count": self.occurrence_count + 1,
            "last_seen_timestamp": max(last_seen, violation.timestamp),
            "escalated_from": None,
        }

        if violation.timestamp >= last_seen:
            update["value"] = violation.value

        if violation.severity.is_more_severe_than(self.severity):
            update.update(
                {
                    "severity": violation.severity,
                    "threshold": violation.threshold,
                    "message": violation.message,
                    "value": violation.value,
                    "escalated_from": self.severity,
                    "escalated_at": violation.timestamp,
                }
            )

        return self.model_copy(update=update)

    def acknowledge(
        self,
        user_id: str,
        timestamp: Optional[datetime] = None,
    ) -> "Alert":
        """
        Mark the alert as acknowledged.

        Args:
            user_id: Operator acknowledging the alert.
            timestamp: Acknowledgment time, defaults to now.

        Returns:
            Alert: Updated alert with acknowledgment.
        """
        return self.model_copy(
            update={
                "status": AlertStatus.ACKNOWLEDGED,
                "acknowledged": True,
                "acknowledged_by": user_id,
                "acknowledged_at": timestamp or datetime.now(timezone.utc),
            }
        )

    def resolve(
        self,
        user_id: str,
        timestamp: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> "Alert":
        """
        Resolve the alert.

        Args:
            user_id: Operator (or "system") resolving the alert.
            timestamp: Resolution time, defaults to now.
            notes: Optional resolution notes.

        Returns:
            Alert: Updated alert with resolution.
        """
        update: Dict[str, object] = {
            "status": AlertStatus.RESOLVED,
            "acknowledged": True,
            "resolved_by": user_id,
            "resolved_at": timestamp or datetime.now(timezone.utc),
        }
        if notes:
            update["resolution_notes"] = notes
        return self.model_copy(update=update)


class CooldownEntry(BaseModel):
    """
    Suppression window protecting an alert.

    Attributes:
        device_id: Device identifier.
        parameter: Monitored parameter.
        severity: Severity whose window this is.
        alert_id: Alert the window routes repeated violations to.
        expires_at: When the window closes.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    device_id: str
    parameter: WaterParameter
    severity: AlertSeverity
    alert_id: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check if the window has closed at the given time."""
        return now >= self.expires_at


class AlertMutation(BaseModel):
    """
    Result of an atomic alert store write.

    Attributes:
        alert: The alert as persisted after the write.
        created: True if a new alert was inserted.
        escalated: True if the write raised the alert's severity.
        superseded: Ids of stale Active alerts resolved by the write.
    """

    model_config = {"frozen": True}

    alert: Alert
    created: bool = False
    escalated: bool = False
    superseded: List[str] = Field(default_factory=list)


class LifecycleAction(str, Enum):
    """What the lifecycle manager did with a violation."""

    CREATED = "created"
    UPDATED = "updated"
    ESCALATED = "escalated"


class AlertOutcome(BaseModel):
    """
    Result of handling one violation.

    Attributes:
        alert: The created or updated alert.
        action: Whether the alert was created, updated, or escalated.
    """

    model_config = {"frozen": True}

    alert: Alert
    action: LifecycleAction

    @property
    def notifies(self) -> bool:
        """Check if this outcome triggers a notification."""
        return self.action in (LifecycleAction.CREATED, LifecycleAction.ESCALATED)


class StatusTransition(BaseModel):
    """
    Operator-requested status change.

    Attributes:
        target: Acknowledged or Resolved.
        user_id: Operator performing the change.
        at: When the change happens.
        notes: Resolution notes (Resolved only).
    """

    model_config = {"frozen": True, "extra": "forbid"}

    target: AlertStatus
    user_id: str = Field(..., min_length=1)
    at: datetime
    notes: Optional[str] = None

    @model_validator(mode="after")
    def forward_only(self) -> "StatusTransition":
        """Transitions can only move an alert out of Active."""
        if self.target == AlertStatus.ACTIVE:
            raise ValueError("Cannot transition an alert back to Active")
        return self

    @property
    def allowed_from(self) -> List[AlertStatus]:
        """Statuses from which this transition is permitted."""
        if self.target == AlertStatus.ACKNOWLEDGED:
            return [AlertStatus.ACTIVE]
        return [AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED]

    def apply(self, alert: Alert) -> Alert:
        """Apply the transition to an alert in an allowed status."""
        if self.target == AlertStatus.ACKNOWLEDGED:
            return alert.acknowledge(self.user_id, self.at)
        return alert.resolve(self.user_id, self.at, self.notes)

    def rejection(
        self,
        alert_id: str,
        current_status: Optional[AlertStatus],
    ) -> AlertingError:
        """
        Build the error explaining why the transition did not apply.

        Args:
            alert_id: Alert the transition targeted.
            current_status: Status found, or None if the alert is missing.

        Returns:
            AlertingError: NotFound or the matching conflict.
        """
        if current_status is None:
            return AlertNotFoundError(alert_id)
        if current_status == AlertStatus.RESOLVED:
            return AlreadyResolvedError(alert_id)
        return AlreadyAcknowledgedError(alert_id)


class AlertFilters(BaseModel):
    """
    Query filters for listing alerts.

    All filters are optional; results are ordered newest first.
    """

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    device_id: Optional[str] = Field(default=None, alias="deviceId")
    severity: Optional[AlertSeverity] = None
    status: Optional[AlertStatus] = None
    parameter: Optional[WaterParameter] = None
    start_time: Optional[datetime] = Field(default=None, alias="startDate")
    end_time: Optional[datetime] = Field(default=None, alias="endDate")
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Treat naive range bounds as UTC."""
        return as_utc(v)

    def matches(self, alert: Alert) -> bool:
        """Check if an alert satisfies every filter that is set."""
        if self.device_id is not None and alert.device_id != self.device_id:
            return False
        if self.severity is not None and alert.severity != self.severity:
            return False
        if self.status is not None and alert.status != self.status:
            return False
        if self.parameter is not None and alert.parameter != self.parameter:
            return False
        if self.start_time is not None and alert.timestamp < self.start_time:
            return False
        if self.end_time is not None and alert.timestamp > self.end_time:
            return False
        return True


class AlertStatistics(BaseModel):
    """
    Aggregate alert counts.

    Attributes:
        total: Number of alerts matching the filter.
        active: Number with status=Active.
        unacknowledged: Number with acknowledged=False.
        by_status: Counts keyed by status value.
        by_severity: Counts keyed by severity value.
        by_parameter: Counts keyed by parameter value.
    """

    total: int = 0
    active: int = 0
    unacknowledged: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_parameter: Dict[str, int] = Field(default_factory=dict)
