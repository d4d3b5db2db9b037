"""
Alert Processor Service entry point.

This service is responsible for:
- Subscribing to Redis pub/sub for device readings
- Validating each reading and evaluating it against the threshold catalog
- Creating, updating and escalating alerts through the lifecycle manager
- Dispatching notifications to the configured channels
- Purging expired in-process cooldown windows every 60 seconds

Usage:
    python -m aquaguard.services.alert_processor
    aquaguard-alert-processor

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379)
    DATABASE_URL: PostgreSQL connection URL
    LOG_LEVEL: Logging level (default: INFO)
    LOG_FORMAT: json or text (default: json)
    CONFIG_PATH: Path to config directory (default: config)
    ALERT_WEBHOOK_URL: Webhook URL for notifications (optional)
"""

import asyncio
import os
import sys
from datetime import datetime
from typing import Any, Dict, Optional, Set

import structlog

from aquaguard.config import CooldownBackend, StoreBackend
from aquaguard.detection.cooldown import (
    CooldownPolicy,
    CooldownRegistry,
    InMemoryCooldownRegistry,
    RedisCooldownRegistry,
)
from aquaguard.detection.dispatcher import ChannelDispatcher, create_dispatcher
from aquaguard.detection.manager import AlertLifecycleManager, create_lifecycle_manager
from aquaguard.detection.storage import AlertStore, PostgresAlertStore
from aquaguard.errors import ValidationError
from aquaguard.interfaces.device_registry import (
    DeviceRegistry,
    PostgresDeviceRegistry,
    StaticDeviceRegistry,
)
from aquaguard.models.readings import Reading
from aquaguard.services import ServiceRunner, setup_logging
from aquaguard.storage.memory import InMemoryAlertStore

logger = structlog.get_logger(__name__)


# Expired cooldown purge interval in seconds
COOLDOWN_PURGE_INTERVAL = 60


class AlertProcessorService(ServiceRunner):
    """
    Alert processing service.

    Subscribes to readings, runs each through the lifecycle manager in its
    own task (bounded by max_concurrent_readings), and drains pending
    notifications on shutdown.

    Attributes:
        store: Alert store.
        cooldowns: Cooldown registry.
        dispatcher: Channel dispatcher for notifications.
        manager: Lifecycle manager.
    """

    def __init__(self, config_path: str = "config") -> None:
        """Initialize the alert processor service."""
        super().__init__(config_path)
        self.store: Optional[AlertStore] = None
        self.cooldowns: Optional[CooldownRegistry] = None
        self.dispatcher: Optional[ChannelDispatcher] = None
        self.manager: Optional[AlertLifecycleManager] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._reading_tasks: Set[asyncio.Task] = set()
        self._purge_task: Optional[asyncio.Task] = None
        # Newest reading timestamp seen; cooldown windows expire in reading time.
        self._reading_high_water: Optional[datetime] = None

    @property
    def service_name(self) -> str:
        """Return service name."""
        return "alert-processor"

    @property
    def uses_postgres(self) -> bool:
        if self.config is None:
            return True
        return self.config.alerts.backends.store == StoreBackend.POSTGRES

    async def _initialize(self) -> None:
        """Build the store, cooldown registry, dispatcher and manager."""
        if self.config is None or self.redis_client is None:
            raise RuntimeError("Service not properly initialized")

        alerts_config = self.config.alerts

        # Alert store
        if alerts_config.backends.store == StoreBackend.POSTGRES:
            if self.postgres_client is None:
                raise RuntimeError("PostgreSQL client required for the postgres store")
            await self.postgres_client.ensure_schema()
            self.store = PostgresAlertStore(self.postgres_client)
        else:
            self.store = InMemoryAlertStore()

        # Cooldown registry
        policy = CooldownPolicy(alerts_config.cooldowns)
        if alerts_config.backends.cooldown == CooldownBackend.REDIS:
            self.cooldowns = RedisCooldownRegistry(self.redis_client, policy)
        else:
            self.cooldowns = InMemoryCooldownRegistry(policy)

        # Device names
        device_registry: DeviceRegistry
        if self.config.devices.names or self.postgres_client is None:
            device_registry = StaticDeviceRegistry(self.config.devices.names)
        else:
            device_registry = PostgresDeviceRegistry(self.postgres_client)

        self.dispatcher = create_dispatcher(alerts_config)

        self.manager = create_lifecycle_manager(
            self.config,
            store=self.store,
            cooldowns=self.cooldowns,
            dispatcher=self.dispatcher,
            device_registry=device_registry,
        )

        self._semaphore = asyncio.Semaphore(alerts_config.processing.max_concurrent_readings)

        self.logger.info(
            "alert_components_initialized",
            store_backend=alerts_config.backends.store.value,
            cooldown_backend=alerts_config.backends.cooldown.value,
            stale_alert_policy=alerts_config.stale_alert_policy.value,
            channels=list(self.dispatcher.channels.keys()),
            device_registry=type(device_registry).__name__,
        )

    async def _run(self) -> None:
        """Main service loop - consume readings until shutdown."""
        if isinstance(self.cooldowns, InMemoryCooldownRegistry):
            self._purge_task = asyncio.create_task(self._purge_loop())

        consumer = asyncio.create_task(self._consume_readings())
        stopper = asyncio.create_task(self.shutdown_event.wait())

        done, _ = await asyncio.wait({consumer, stopper}, return_when=asyncio.FIRST_COMPLETED)

        for task in (consumer, stopper):
            if not task.done():
                task.cancel()
        await asyncio.gather(consumer, stopper, return_exceptions=True)

        if self._purge_task is not None:
            self._purge_task.cancel()
            try:
                await self._purge_task
            except asyncio.CancelledError:
                pass

        if consumer in done and not consumer.cancelled():
            # Surface a subscription failure instead of exiting quietly.
            consumer.result()

    async def _consume_readings(self) -> None:
        if self.config is None or self.redis_client is None or self._semaphore is None:
            raise RuntimeError("Service not properly initialized")

        channel = self.config.alerts.processing.readings_channel
        async with self.redis_client.subscribe([channel]) as messages:
            async for message in messages:
                if self.shutdown_event.is_set():
                    break
                await self._semaphore.acquire()
                task = asyncio.create_task(self._handle_message(message))
                self._reading_tasks.add(task)
                task.add_done_callback(self._reading_done)

    def _reading_done(self, task: asyncio.Task) -> None:
        self._reading_tasks.discard(task)
        if self._semaphore is not None:
            self._semaphore.release()

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        """
        Process one pub/sub message carrying a reading.

        Args:
            message: Parsed pub/sub message with "channel" and "data" keys.
        """
        if self.manager is None:
            return

        data = message.get("data")
        try:
            reading = Reading.from_payload(data)
        except ValidationError as e:
            self.logger.warning(
                "reading_rejected",
                channel=message.get("channel"),
                error=e.message,
                details=e.details,
            )
            return

        if self._reading_high_water is None or reading.timestamp > self._reading_high_water:
            self._reading_high_water = reading.timestamp

        try:
            outcomes = await self.manager.process_reading(reading)
        except Exception as e:
            self.logger.error(
                "reading_processing_error",
                device_id=reading.device_id,
                error=str(e),
            )
            return

        if outcomes:
            self.logger.debug(
                "reading_processed",
                device_id=reading.device_id,
                outcomes=[(o.alert.parameter.value, o.action.value) for o in outcomes],
            )

    async def _purge_loop(self) -> None:
        """Periodically drop expired in-process cooldown windows."""
        try:
            while not self.shutdown_event.is_set():
                await asyncio.sleep(COOLDOWN_PURGE_INTERVAL)
                try:
                    await self._purge_cooldowns()
                except Exception as e:
                    self.logger.error("cooldown_purge_error", error=str(e))
        except asyncio.CancelledError:
            self.logger.debug("cooldown_purge_loop_cancelled")

    async def _purge_cooldowns(self) -> int:
        """
        Drop cooldown windows expired as of the newest reading seen.

        Returns:
            int: Number of windows removed.
        """
        if self.cooldowns is None or self._reading_high_water is None:
            return 0
        removed = await self.cooldowns.purge_expired(self._reading_high_water)
        if removed:
            self.logger.debug(
                "cooldowns_purged", removed=removed, as_of=self._reading_high_water.isoformat()
            )
        return removed

    async def _cleanup(self) -> None:
        """Finish in-flight readings and notifications, close channels."""
        if self._reading_tasks:
            self.logger.info("draining_readings", pending=len(self._reading_tasks))
            await asyncio.gather(*self._reading_tasks, return_exceptions=True)

        if self.manager is not None and self.config is not None:
            pending = await self.manager.drain_notifications(
                timeout=self.config.alerts.timeouts.dispatch_seconds
            )
            self.logger.info("notifications_drained", pending=pending)

        if self.dispatcher is not None:
            await self.dispatcher.close()


async def run_service() -> None:
    """Run the alert processor until it is stopped."""
    # Set up initial logging
    setup_logging(os.getenv("LOG_LEVEL", "INFO").upper(), os.getenv("LOG_FORMAT", "json"))

    config_path = os.getenv("CONFIG_PATH", "config")

    logger.info(
        "alert_processor_service_starting",
        version="0.1.0",
        config_path=config_path,
    )

    service = AlertProcessorService(config_path=config_path)

    try:
        await service.run()
    except Exception as e:
        logger.error("service_failed", error=str(e))
        sys.exit(1)


def main() -> None:
    """Console entry point."""
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
