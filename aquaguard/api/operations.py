"""
Operator-facing alert operations.

Requests arrive as JSON objects tagged by an "action" field. Each request
is validated into a typed pydantic model (a discriminated union on
"action") and routed through a dispatch table keyed by the AlertOperation
enum. The table is checked for exhaustiveness when AlertOperations is
constructed, so adding an operation without a handler fails at startup.

Key Features:
    - Typed request models with camelCase aliases
    - Enum-keyed dispatch table instead of string switch routing
    - Uniform OperationResponse(success, data, error) envelope
    - AlertingError subclasses mapped to error codes with a retryable flag

Example:
    >>> operations = AlertOperations(manager)
    >>> response = await operations.handle(
    ...     {"action": "acknowledgeAlert", "alertId": "a-1", "userId": "user123"}
    ... )
    >>> response.success
    True
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Awaitable, Callable, Dict, Literal, Optional, Union

import structlog
from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from aquaguard.detection.manager import AlertLifecycleManager
from aquaguard.errors import AlertingError, ValidationError
from aquaguard.models.alerts import AlertFilters
from aquaguard.models.readings import as_utc

logger = structlog.get_logger(__name__)


class AlertOperation(str, Enum):
    """Operations exposed to operators."""

    ACKNOWLEDGE_ALERT = "acknowledgeAlert"
    RESOLVE_ALERT = "resolveAlert"
    LIST_ALERTS = "listAlerts"
    GET_ALERT_STATISTICS = "getAlertStatistics"
    RESOLVE_ALL_FOR_DEVICE = "resolveAllForDevice"
    GET_ALERT = "getAlert"
    COUNT_UNACKNOWLEDGED = "countUnacknowledged"


# =============================================================================
# REQUESTS
# =============================================================================


class _Request(BaseModel):
    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    @property
    def operation(self) -> AlertOperation:
        return AlertOperation(self.action)  # type: ignore[attr-defined]


class AcknowledgeAlertRequest(_Request):
    action: Literal["acknowledgeAlert"]
    alert_id: str = Field(..., alias="alertId", min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)


class ResolveAlertRequest(_Request):
    action: Literal["resolveAlert"]
    alert_id: str = Field(..., alias="alertId", min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    notes: Optional[str] = None


class ListAlertsRequest(_Request):
    action: Literal["listAlerts"]
    filters: AlertFilters = Field(default_factory=AlertFilters)


class GetAlertStatisticsRequest(_Request):
    action: Literal["getAlertStatistics"]
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    start_time: Optional[datetime] = Field(default=None, alias="startDate")
    end_time: Optional[datetime] = Field(default=None, alias="endDate")

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class ResolveAllForDeviceRequest(_Request):
    action: Literal["resolveAllForDevice"]
    device_id: str = Field(..., alias="deviceId", min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    notes: Optional[str] = None


class GetAlertRequest(_Request):
    action: Literal["getAlert"]
    alert_id: str = Field(..., alias="alertId", min_length=1)


class CountUnacknowledgedRequest(_Request):
    action: Literal["countUnacknowledged"]
    device_id: Optional[str] = Field(default=None, alias="deviceId")


AlertRequest = Annotated[
    Union[
        AcknowledgeAlertRequest,
        ResolveAlertRequest,
        ListAlertsRequest,
        GetAlertStatisticsRequest,
        ResolveAllForDeviceRequest,
        GetAlertRequest,
        CountUnacknowledgedRequest,
    ],
    Field(discriminator="action"),
]

_REQUEST_ADAPTER: TypeAdapter = TypeAdapter(AlertRequest)


def parse_request(payload: Dict[str, Any]) -> _Request:
    """
    Validate a raw request payload.

    Args:
        payload: JSON object with an "action" field.

    Returns:
        The typed request model for the action.

    Raises:
        ValidationError: If the action is unknown or fields are invalid.
    """
    try:
        return _REQUEST_ADAPTER.validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid alert operation request",
            details={
                "action": payload.get("action") if isinstance(payload, dict) else None,
                "errors": e.errors(include_url=False, include_context=False),
            },
        ) from e


# =============================================================================
# RESPONSES
# =============================================================================


class OperationError(BaseModel):
    """Error part of an operation response."""

    code: str
    message: str
    retryable: bool = False


class OperationResponse(BaseModel):
    """
    Envelope returned for every operation.

    Attributes:
        success: True if the operation completed.
        data: Operation result on success.
        error: Error description on failure.
    """

    success: bool
    data: Optional[Any] = None
    error: Optional[OperationError] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResponse":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: AlertingError) -> "OperationResponse":
        return cls(
            success=False,
            error=OperationError(
                code=error.code,
                message=error.message,
                retryable=error.retryable,
            ),
        )


# =============================================================================
# DISPATCH
# =============================================================================

Handler = Callable[[Any], Awaitable[Any]]


class AlertOperations:
    """
    Routes operator requests to the lifecycle manager.

    Attributes:
        manager: The AlertLifecycleManager performing the operations.
    """

    def __init__(self, manager: AlertLifecycleManager) -> None:
        """
        Initialize the operations router.

        Raises:
            TypeError: If an AlertOperation has no handler.
        """
        self.manager = manager
        self._handlers: Dict[AlertOperation, Handler] = {
            AlertOperation.ACKNOWLEDGE_ALERT: self._acknowledge_alert,
            AlertOperation.RESOLVE_ALERT: self._resolve_alert,
            AlertOperation.LIST_ALERTS: self._list_alerts,
            AlertOperation.GET_ALERT_STATISTICS: self._get_alert_statistics,
            AlertOperation.RESOLVE_ALL_FOR_DEVICE: self._resolve_all_for_device,
            AlertOperation.GET_ALERT: self._get_alert,
            AlertOperation.COUNT_UNACKNOWLEDGED: self._count_unacknowledged,
        }

        missing = set(AlertOperation) - set(self._handlers)
        if missing:
            raise TypeError(
                "No handler registered for operations: "
                + ", ".join(sorted(op.value for op in missing))
            )

    @property
    def operations(self) -> list[AlertOperation]:
        """Operations this router handles."""
        return list(self._handlers)

    async def handle(self, payload: Dict[str, Any]) -> OperationResponse:
        """
        Validate and execute one operator request.

        Alerting errors (validation, conflicts, not found, transient store
        failures) become failed responses; anything else propagates.

        Args:
            payload: JSON object with an "action" field.

        Returns:
            OperationResponse: Result envelope.
        """
        try:
            request = parse_request(payload)
        except ValidationError as e:
            logger.warning("operation_rejected", error=e.message, details=e.details)
            return OperationResponse.failure(e)

        operation = request.operation
        try:
            data = await self._handlers[operation](request)
        except AlertingError as e:
            logger.warning(
                "operation_failed",
                operation=operation.value,
                error_code=e.code,
                retryable=e.retryable,
                error=e.message,
            )
            return OperationResponse.failure(e)

        logger.debug("operation_completed", operation=operation.value)
        return OperationResponse.ok(data)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _acknowledge_alert(self, request: AcknowledgeAlertRequest) -> Dict[str, Any]:
        alert = await self.manager.acknowledge(request.alert_id, request.user_id)
        return alert.model_dump(mode="json")

    async def _resolve_alert(self, request: ResolveAlertRequest) -> Dict[str, Any]:
        alert = await self.manager.resolve(request.alert_id, request.user_id, request.notes)
        return alert.model_dump(mode="json")

    async def _list_alerts(self, request: ListAlertsRequest) -> Dict[str, Any]:
        alerts = await self.manager.list_alerts(request.filters)
        return {
            "alerts": [alert.model_dump(mode="json") for alert in alerts],
            "count": len(alerts),
        }

    async def _get_alert_statistics(self, request: GetAlertStatisticsRequest) -> Dict[str, Any]:
        stats = await self.manager.get_alert_statistics(
            request.device_id, request.start_time, request.end_time
        )
        return stats.model_dump(mode="json")

    async def _resolve_all_for_device(
        self,
        request: ResolveAllForDeviceRequest,
    ) -> Dict[str, Any]:
        count = await self.manager.resolve_all_for_device(
            request.device_id, request.user_id, request.notes
        )
        return {"deviceId": request.device_id, "resolvedCount": count}

    async def _get_alert(self, request: GetAlertRequest) -> Dict[str, Any]:
        alert = await self.manager.get_alert(request.alert_id)
        return alert.model_dump(mode="json")

    async def _count_unacknowledged(self, request: CountUnacknowledgedRequest) -> Dict[str, Any]:
        count = await self.manager.count_unacknowledged(request.device_id)
        return {"count": count}
