"""
Alert notification channels.

This module contains implementations for different alert delivery
mechanisms.

Components:
    console: Log output for alerts
    webhook: HTTP webhook delivery with retries

Example:
    >>> from aquaguard.detection.channels import ConsoleChannel, WebhookChannel
    >>>
    >>> console = ConsoleChannel(format=OutputFormat.SIMPLE)
    >>> webhook = WebhookChannel(url="https://hooks.example.com/water")
    >>>
    >>> await console.send(alert, NotificationEvent.CREATED)
    >>> await webhook.send(alert, NotificationEvent.CREATED)
"""

from aquaguard.detection.channels.console import (
    ConsoleChannel,
    OutputFormat,
    render_simple,
)
from aquaguard.detection.channels.webhook import (
    WebhookChannel,
    WebhookDeliveryError,
    build_payload,
)

__all__ = [
    # Console
    "ConsoleChannel",
    "OutputFormat",
    "render_simple",
    # Webhook
    "WebhookChannel",
    "WebhookDeliveryError",
    "build_payload",
]
