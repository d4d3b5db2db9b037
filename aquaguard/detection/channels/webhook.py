"""
Webhook notification channel.

POSTs alert notifications as JSON to an HTTP endpoint using aiohttp, with
linear-backoff retries on connection errors, timeouts, HTTP 429 and 5xx
responses. Other 4xx responses fail immediately.

Payload:
    {
        "event": "created" | "escalated",
        "alert": { ...Alert fields, JSON-encoded... }
    }

Example:
    >>> channel = WebhookChannel(url="https://hooks.example.com/water")
    >>> try:
    ...     await channel.send(alert, NotificationEvent.CREATED)
    ... finally:
    ...     await channel.close()
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp
import structlog

from aquaguard.detection.dispatcher import NotificationEvent
from aquaguard.models.alerts import Alert

logger = structlog.get_logger(__name__)


class WebhookDeliveryError(Exception):
    """
    Raised when a webhook notification cannot be delivered.

    Attributes:
        status: Last HTTP status received, if any.
        attempts: Attempts made.
    """

    def __init__(self, message: str, status: Optional[int] = None, attempts: int = 1):
        self.status = status
        self.attempts = attempts
        super().__init__(message)


def build_payload(alert: Alert, event: NotificationEvent) -> Dict[str, Any]:
    """Build the JSON body for a notification."""
    return {
        "event": event.value,
        "alert": alert.model_dump(mode="json"),
    }


def _is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


class WebhookChannel:
    """
    Notification channel that POSTs to a webhook.

    Attributes:
        url: Endpoint receiving notifications.
        timeout_seconds: Per-request timeout.
        max_attempts: Attempts before giving up.
        retry_delay_seconds: Base delay; attempt N waits N times this.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the webhook channel.

        Args:
            url: Endpoint receiving notifications.
            timeout_seconds: Per-request timeout.
            max_attempts: Attempts before giving up.
            retry_delay_seconds: Base delay between attempts.
            session: Optional pre-built session (owned by the caller).
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds

        self._session = session
        self._owns_session = session is None

        logger.info("webhook_channel_initialized", url=url, max_attempts=max_attempts)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": "aquaguard-alerting/0.1"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this channel created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            logger.debug("webhook_session_closed", url=self.url)

    async def _post_once(self, payload: Dict[str, Any]) -> int:
        """POST once; returns the HTTP status."""
        session = await self._ensure_session()
        async with session.post(self.url, json=payload) as response:
            if response.status >= 400:
                body = await response.text()
                logger.warning(
                    "webhook_request_rejected",
                    url=self.url,
                    status=response.status,
                    body=body[:500],
                )
            return response.status

    async def send(self, alert: Alert, event: NotificationEvent) -> None:
        """
        Deliver a notification, retrying transient failures.

        Raises:
            WebhookDeliveryError: If delivery fails permanently or all
                attempts are exhausted.
        """
        payload = build_payload(alert, event)
        last_status: Optional[int] = None
        last_error = ""

        for attempt in range(1, self.max_attempts + 1):
            try:
                status = await self._post_once(payload)
                if status < 400:
                    logger.debug(
                        "webhook_delivered",
                        url=self.url,
                        alert_id=alert.alert_id,
                        status=status,
                        attempt=attempt,
                    )
                    return
                last_status = status
                last_error = f"HTTP {status}"
                if not _is_retryable_status(status):
                    raise WebhookDeliveryError(
                        f"Webhook rejected notification for {alert.alert_id}: HTTP {status}",
                        status=status,
                        attempts=attempt,
                    )
            except aiohttp.ClientError as e:
                last_error = str(e)
            except asyncio.TimeoutError:
                last_error = f"timeout after {self.timeout_seconds}s"

            if attempt < self.max_attempts:
                logger.warning(
                    "webhook_delivery_retry",
                    url=self.url,
                    alert_id=alert.alert_id,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=last_error,
                )
                await asyncio.sleep(self.retry_delay_seconds * attempt)

        raise WebhookDeliveryError(
            f"Webhook delivery for {alert.alert_id} failed after "
            f"{self.max_attempts} attempts: {last_error}",
            status=last_status,
            attempts=self.max_attempts,
        )
