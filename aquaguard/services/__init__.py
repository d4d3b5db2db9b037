"""
Service runtime for the alerting core.

Provides structured logging setup and the ServiceRunner base class which
long-running services extend: it loads configuration, connects storage
clients, installs signal handlers, runs the service loop and cleans up.

Services:
    alert_processor: Consumes readings and drives the alert lifecycle
"""

import asyncio
import logging
import signal
from abc import ABC, abstractmethod
from typing import Optional

import structlog

from aquaguard.config import AppConfig, LogFormat, LogLevel, load_config
from aquaguard.storage.postgres_client import PostgresClient
from aquaguard.storage.redis_client import RedisClient

logger = structlog.get_logger(__name__)


def setup_logging(
    level: LogLevel | str = LogLevel.INFO,
    format: LogFormat | str = LogFormat.JSON,
) -> None:
    """
    Configure structlog over the standard logging module.

    Args:
        level: Minimum log level.
        format: "json" for JSON lines, "text" for human-readable output.
    """
    level_name = LogLevel(level).value
    renderer = (
        structlog.processors.JSONRenderer()
        if LogFormat(format) == LogFormat.JSON
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name),
        force=True,
    )

    # Reduce noise from client libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class ServiceRunner(ABC):
    """
    Base class for long-running services.

    Subclasses implement service_name, _initialize, _run and _cleanup.
    run() drives them in order and always disconnects clients at the end.

    Attributes:
        config_path: Directory holding the YAML configuration.
        config: Loaded configuration (set by run()).
        redis_client: Connected Redis client, if the service uses Redis.
        postgres_client: Connected PostgreSQL client, if used.
        shutdown_event: Set when the service should stop.
        logger: Logger bound with the service name.
    """

    def __init__(self, config_path: str = "config") -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.redis_client: Optional[RedisClient] = None
        self.postgres_client: Optional[PostgresClient] = None
        self.shutdown_event = asyncio.Event()
        self.logger = logger.bind(service=self.service_name)

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Name used in logs."""

    @property
    def uses_redis(self) -> bool:
        """Whether run() should connect a RedisClient."""
        return True

    @property
    def uses_postgres(self) -> bool:
        """Whether run() should connect a PostgresClient."""
        return True

    @abstractmethod
    async def _initialize(self) -> None:
        """Build service components once clients are connected."""

    @abstractmethod
    async def _run(self) -> None:
        """Main service loop; return when shutdown_event is set."""

    async def _cleanup(self) -> None:
        """Service-specific cleanup before clients disconnect."""

    def request_shutdown(self) -> None:
        """Ask the service loop to stop."""
        if not self.shutdown_event.is_set():
            self.logger.info("shutdown_requested")
            self.shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread.
                self.logger.debug("signal_handler_unavailable", signal=sig.name)

    async def _connect_clients(self) -> None:
        if self.config is None:
            raise RuntimeError("Configuration not loaded")

        if self.uses_redis:
            self.redis_client = RedisClient(self.config.redis)
            await self.redis_client.connect()

        if self.uses_postgres:
            self.postgres_client = PostgresClient(self.config.postgres)
            await self.postgres_client.connect()

    async def _disconnect_clients(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.disconnect()
        if self.postgres_client is not None:
            await self.postgres_client.disconnect()

    async def run(self) -> None:
        """
        Run the service until shutdown is requested or the loop ends.

        Raises:
            ConfigLoadError: If configuration cannot be loaded.
            RedisConnectionException: If Redis is unreachable at startup.
            PostgresConnectionException: If PostgreSQL is unreachable at startup.
        """
        self.config = load_config(self.config_path)
        setup_logging(self.config.logging.level, self.config.logging.format)
        self._install_signal_handlers()

        self.logger.info("service_starting", config_path=self.config_path)

        try:
            await self._connect_clients()
            await self._initialize()
            self.logger.info("service_started")
            await self._run()
        finally:
            try:
                await self._cleanup()
            finally:
                await self._disconnect_clients()
            self.logger.info("service_stopped")


__all__ = ["ServiceRunner", "setup_logging"]
