"""
Error taxonomy for the alerting core.

Lifecycle operations raise typed errors so callers can tell "nothing to
do" (conflict) from "no such alert" (not found) from "try again later"
(transient store failure).

Hierarchy:
    AlertingError
    ├── ValidationError
    ├── ConflictError
    │   ├── AlreadyAcknowledgedError
    │   ├── AlreadyResolvedError
    │   └── AlertAlreadyExistsError
    ├── NotFoundError
    │   └── AlertNotFoundError
    └── TransientStoreError

Example:
    >>> try:
    ...     await manager.acknowledge(alert_id, "user123")
    ... except AlreadyAcknowledgedError:
    ...     pass  # nothing to do
    ... except TransientStoreError as e:
    ...     assert e.retryable
"""

from typing import Any, Dict, Optional


class AlertingError(Exception):
    """
    Base exception for the alerting core.

    Attributes:
        message: Human-readable description.
        code: Stable machine-readable error code.
        retryable: Whether the caller may retry the same request.
        details: Extra context for logs and API responses.
    """

    code: str = "alerting_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for an API response."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(AlertingError):
    """Raised when a reading or request is malformed or incomplete."""

    code = "validation_error"


class ConflictError(AlertingError):
    """Raised when the alert is already in (or past) the requested state."""

    code = "conflict"


class AlreadyAcknowledgedError(ConflictError):
    """Raised when acknowledging an alert that is already acknowledged."""

    code = "already_acknowledged"

    def __init__(self, alert_id: str) -> None:
        super().__init__(
            f"Alert {alert_id} is already acknowledged",
            details={"alert_id": alert_id},
        )
        self.alert_id = alert_id


class AlreadyResolvedError(ConflictError):
    """Raised when acknowledging or resolving an alert that is resolved."""

    code = "already_resolved"

    def __init__(self, alert_id: str) -> None:
        super().__init__(
            f"Alert {alert_id} is already resolved",
            details={"alert_id": alert_id},
        )
        self.alert_id = alert_id


class AlertAlreadyExistsError(ConflictError):
    """Raised when an alert is created with an alert_id already in use."""

    code = "alert_already_exists"

    def __init__(self, alert_id: str) -> None:
        super().__init__(
            f"Alert {alert_id} already exists",
            details={"alert_id": alert_id},
        )
        self.alert_id = alert_id


class NotFoundError(AlertingError):
    """Raised when a lifecycle operation targets an unknown entity."""

    code = "not_found"


class AlertNotFoundError(NotFoundError):
    """Raised when no alert exists with the given alert_id."""

    code = "alert_not_found"

    def __init__(self, alert_id: str) -> None:
        super().__init__(
            f"Alert {alert_id} not found",
            details={"alert_id": alert_id},
        )
        self.alert_id = alert_id


class TransientStoreError(AlertingError):
    """
    Raised on a timeout or connectivity failure of the alert store.

    On the ingestion path this is logged and processing continues. For
    operator-initiated calls it is surfaced as a retryable failure.
    """

    code = "transient_store_error"
    retryable = True
