"""
Notification dispatch for created and escalated alerts.

This module defines the NotificationDispatcher contract the lifecycle
manager calls, and the ChannelDispatcher which routes each notification to
the channels configured for the alert's severity.

Key Features:
    - Severity-based channel selection
    - Console and webhook channels
    - Per-channel failure isolation (one failing channel does not stop others)

Example:
    >>> dispatcher = ChannelDispatcher(
    ...     channels={"console": console_channel, "webhook": webhook_channel},
    ...     severity_channels={
    ...         AlertSeverity.CRITICAL: ["console", "webhook"],
    ...         AlertSeverity.WARNING: ["console"],
    ...     },
    ... )
    >>> await dispatcher.on_alert_created_or_escalated(alert, NotificationEvent.CREATED)
"""

from enum import Enum
from typing import Dict, List, Optional, Protocol, runtime_checkable

import structlog

from aquaguard.config.models import AlertsConfig
from aquaguard.models.alerts import Alert, AlertSeverity

logger = structlog.get_logger(__name__)


class NotificationEvent(str, Enum):
    """Why an alert is being notified."""

    CREATED = "created"
    ESCALATED = "escalated"


class AlertChannel(Protocol):
    """
    Protocol for alert notification channels.

    Channels raise on delivery failure; retrying is the channel's concern.
    """

    async def send(self, alert: Alert, event: NotificationEvent) -> None:
        """Deliver a notification for an alert."""
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Protocol the lifecycle manager uses to notify about alerts."""

    async def on_alert_created_or_escalated(
        self,
        alert: Alert,
        event: NotificationEvent,
    ) -> int:
        """Notify about a created or escalated alert; returns channels reached."""
        ...


# Default severity to channels mapping
DEFAULT_SEVERITY_CHANNELS: Dict[AlertSeverity, List[str]] = {
    AlertSeverity.CRITICAL: ["console"],
    AlertSeverity.WARNING: ["console"],
}


class ChannelDispatcher:
    """
    Routes alert notifications to notification channels.

    Determines which channels should receive each notification based on
    the alert's current severity and sends to all of them.

    Attributes:
        channels: Dict mapping channel name to channel instance.
        severity_channels: Dict mapping severity to list of channel names.
    """

    def __init__(
        self,
        channels: Dict[str, AlertChannel],
        severity_channels: Optional[Dict[AlertSeverity, List[str]]] = None,
    ) -> None:
        """
        Initialize the channel dispatcher.

        Args:
            channels: Dict mapping channel name to channel instance.
            severity_channels: Dict mapping severity to list of channel
                names. Defaults to DEFAULT_SEVERITY_CHANNELS.
        """
        self.channels = channels
        self.severity_channels = dict(severity_channels or DEFAULT_SEVERITY_CHANNELS)

        logger.info(
            "channel_dispatcher_initialized",
            available_channels=list(channels.keys()),
            severity_config={s.value: ch for s, ch in self.severity_channels.items()},
        )

    async def on_alert_created_or_escalated(
        self,
        alert: Alert,
        event: NotificationEvent,
    ) -> int:
        return await self.dispatch(alert, event)

    async def dispatch(
        self,
        alert: Alert,
        event: NotificationEvent = NotificationEvent.CREATED,
        channels: Optional[List[str]] = None,
    ) -> int:
        """
        Dispatch a notification to the appropriate channels.

        If channels is specified, dispatches to those channels. Otherwise,
        dispatches based on alert severity.

        Args:
            alert: The Alert to notify about.
            event: Created or escalated.
            channels: Optional explicit list of channel names to use.

        Returns:
            int: Number of channels that accepted the notification.
        """
        if channels is None:
            channels = self.severity_channels.get(alert.severity, [])

        dispatched_count = 0

        for channel_name in channels:
            channel = self.channels.get(channel_name)
            if channel is None:
                logger.warning(
                    "channel_not_found",
                    channel_name=channel_name,
                    alert_id=alert.alert_id,
                )
                continue

            try:
                await channel.send(alert, event)
                dispatched_count += 1

                logger.debug(
                    "alert_dispatched_to_channel",
                    channel=channel_name,
                    alert_id=alert.alert_id,
                    severity=alert.severity.value,
                    notification_event=event.value,
                )

            except Exception as e:
                logger.error(
                    "channel_dispatch_failed",
                    channel=channel_name,
                    alert_id=alert.alert_id,
                    notification_event=event.value,
                    error=str(e),
                )

        logger.info(
            "alert_dispatch_complete",
            alert_id=alert.alert_id,
            notification_event=event.value,
            dispatched_to=dispatched_count,
            total_channels=len(channels),
        )

        return dispatched_count

    def add_channel(self, name: str, channel: AlertChannel) -> None:
        """
        Add a new channel to the dispatcher.

        Args:
            name: Channel name.
            channel: Channel instance.
        """
        self.channels[name] = channel
        logger.info("channel_added", channel_name=name)

    def remove_channel(self, name: str) -> bool:
        """
        Remove a channel from the dispatcher.

        Returns:
            bool: True if channel was removed, False if not found.
        """
        if name in self.channels:
            del self.channels[name]
            logger.info("channel_removed", channel_name=name)
            return True
        return False

    def get_channels_for_severity(self, severity: AlertSeverity) -> List[str]:
        """Get channel names configured for a severity."""
        return self.severity_channels.get(severity, [])

    async def close(self) -> None:
        """Release resources held by channels that hold any."""
        for name, channel in self.channels.items():
            close = getattr(channel, "close", None)
            if close is not None:
                await close()
                logger.debug("channel_closed", channel_name=name)


def create_dispatcher(config: AlertsConfig) -> ChannelDispatcher:
    """
    Factory function to create a ChannelDispatcher from configuration.

    Enabled channels are built by name: "console" becomes a ConsoleChannel
    and "webhook" a WebhookChannel. A webhook channel without a URL is
    skipped with a warning.

    Args:
        config: Alerts configuration with channels and routing.

    Returns:
        ChannelDispatcher: Configured dispatcher instance.

    Example:
        >>> dispatcher = create_dispatcher(app_config.alerts)
    """
    from aquaguard.detection.channels.console import ConsoleChannel, OutputFormat
    from aquaguard.detection.channels.webhook import WebhookChannel

    channels: Dict[str, AlertChannel] = {}
    for name, channel_config in config.channels.items():
        if not channel_config.enabled:
            continue
        if name == "console":
            channels[name] = ConsoleChannel(format=OutputFormat(channel_config.format))
        elif name == "webhook":
            if not channel_config.webhook_url:
                logger.warning("webhook_channel_missing_url", channel_name=name)
                continue
            channels[name] = WebhookChannel(
                url=channel_config.webhook_url,
                timeout_seconds=channel_config.timeout_seconds,
                max_attempts=channel_config.max_attempts,
                retry_delay_seconds=channel_config.retry_delay_seconds,
            )
        else:
            logger.warning("unknown_channel_type", channel_name=name)

    severity_channels = {
        severity: [name for name in config.get_channels_for_severity(severity) if name in channels]
        for severity in AlertSeverity
    }

    return ChannelDispatcher(channels=channels, severity_channels=severity_channels)
