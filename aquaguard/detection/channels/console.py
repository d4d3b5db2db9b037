"""
Console notification channel.

Writes alert notifications to the application log via structlog. Critical
alerts are logged at error level, Warning alerts at warning level.

Example:
    >>> channel = ConsoleChannel(format=OutputFormat.SIMPLE)
    >>> await channel.send(alert, NotificationEvent.CREATED)
"""

from enum import Enum
from typing import Any, Dict

import structlog

from aquaguard.detection.dispatcher import NotificationEvent
from aquaguard.models.alerts import Alert, AlertSeverity

logger = structlog.get_logger(__name__)


class OutputFormat(str, Enum):
    """Console output format."""

    STRUCTURED = "structured"  # All alert fields as log context
    SIMPLE = "simple"  # One rendered line


def render_simple(alert: Alert, event: NotificationEvent) -> str:
    """
    Render an alert notification as one line.

    Example:
        >>> render_simple(alert, NotificationEvent.ESCALATED)
        '[ESCALATED] WQ-001 (Reservoir Inlet): Critical: pH outside safe range. ...'
    """
    device = alert.device_id
    if alert.device_name:
        device = f"{device} ({alert.device_name})"
    return f"[{event.value.upper()}] {device}: {alert.message}"


class ConsoleChannel:
    """
    Notification channel backed by the application log.

    Attributes:
        format: Structured (key/value) or simple (one line).
    """

    def __init__(self, format: OutputFormat = OutputFormat.STRUCTURED) -> None:
        self.format = format

    def _fields(self, alert: Alert, event: NotificationEvent) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "notification_event": event.value,
            "alert_id": alert.alert_id,
            "device_id": alert.device_id,
            "parameter": alert.parameter.value,
            "severity": alert.severity.value,
        }
        if self.format == OutputFormat.SIMPLE:
            fields["text"] = render_simple(alert, event)
            return fields

        fields.update(
            device_name=alert.device_name,
            value=alert.value,
            threshold=alert.threshold,
            message=alert.message,
            occurrence_count=alert.occurrence_count,
            first_seen=alert.timestamp.isoformat(),
        )
        if alert.escalated_from is not None:
            fields["escalated_from"] = alert.escalated_from.value
        return fields

    async def send(self, alert: Alert, event: NotificationEvent) -> None:
        fields = self._fields(alert, event)
        if alert.severity == AlertSeverity.CRITICAL:
            logger.error("water_quality_alert", **fields)
        else:
            logger.warning("water_quality_alert", **fields)
