"""
Shared service infrastructure.

Provides structured logging setup and the ServiceRunner base class that
long-running services extend. The runner owns the service lifecycle:
load configuration, configure logging, connect storage clients, install
signal handlers, then call the subclass hooks.

Lifecycle:
    run() -> _setup() -> _initialize() -> _run() -> _cleanup() -> _teardown()

Example:
    >>> class MyService(ServiceRunner):
    ...     @property
    ...     def service_name(self) -> str:
    ...         return "my-service"
    ...
    ...     async def _initialize(self) -> None: ...
    ...     async def _run(self) -> None: ...
    ...     async def _cleanup(self) -> None: ...
    >>>
    >>> asyncio.run(MyService(config_path="config").run())
"""

from __future__ import annotations

import asyncio
import logging
import signal
from abc import ABC, abstractmethod
from typing import Optional

import structlog

from guardwatch.config.loader import load_config
from guardwatch.config.models import AppConfig, LogFormat, LogLevel
from guardwatch.storage.postgres_client import PostgresClient
from guardwatch.storage.redis_client import RedisClient


def setup_logging(
    level: LogLevel | str = LogLevel.INFO,
    log_format: LogFormat | str = LogFormat.JSON,
) -> None:
    """
    Configure structlog over the standard logging module.

    Args:
        level: Log level name.
        log_format: "json" for one JSON object per line, "text" for
            human-readable console output.
    """
    level_name = level.value if isinstance(level, LogLevel) else LogLevel(level.upper()).value
    renderer = (
        structlog.dev.ConsoleRenderer()
        if LogFormat(log_format) == LogFormat.TEXT
        else structlog.processors.JSONRenderer()
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

    Attributes:
        config_path: Directory holding the YAML configuration.
        config: Loaded configuration (after setup).
        redis_client: Connected Redis client (after setup).
        postgres_client: Connected PostgreSQL client (after setup).
        logger: Logger bound to the service name.
        shutdown_event: Set when the service should stop.
    """

    def __init__(self, config_path: str = "config") -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.redis_client: Optional[RedisClient] = None
        self.postgres_client: Optional[PostgresClient] = None
        self.logger = structlog.get_logger(self.service_name)
        self.shutdown_event = asyncio.Event()

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Name used in log events."""

    @abstractmethod
    async def _initialize(self) -> None:
        """Build service components once clients are connected."""

    @abstractmethod
    async def _run(self) -> None:
        """Main loop; should return once shutdown_event is set."""

    @abstractmethod
    async def _cleanup(self) -> None:
        """Release service components before clients disconnect."""

    async def _setup(self) -> None:
        self.config = load_config(self.config_path)

        setup_logging(self.config.log_level, self.config.features.logging.format)
        self.logger = structlog.get_logger(self.service_name)

        self.redis_client = RedisClient(self.config.redis)
        await self.redis_client.connect()

        self.postgres_client = PostgresClient(self.config.postgres)
        await self.postgres_client.connect()

    async def _teardown(self) -> None:
        if self.postgres_client is not None:
            await self.postgres_client.disconnect()
        if self.redis_client is not None:
            await self.redis_client.disconnect()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                # Not supported on this platform's event loop
                pass

    def request_shutdown(self) -> None:
        """Ask the service to stop."""
        if not self.shutdown_event.is_set():
            self.logger.info("shutdown_requested", service=self.service_name)
            self.shutdown_event.set()

    async def run(self) -> None:
        """
        Run the service until shutdown is requested.

        Raises:
            Exception: Any setup or initialization failure, after cleanup.
        """
        self._install_signal_handlers()
        try:
            await self._setup()
            await self._initialize()

            self.logger.info("service_started", service=self.service_name)

            main_task = asyncio.create_task(self._run())
            shutdown_task = asyncio.create_task(self.shutdown_event.wait())
            done, _ = await asyncio.wait(
                {main_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if main_task not in done:
                main_task.cancel()
            shutdown_task.cancel()
            await asyncio.gather(main_task, shutdown_task, return_exceptions=True)
            if main_task.done() and not main_task.cancelled() and main_task.exception():
                raise main_task.exception()  # type: ignore[misc]

        finally:
            try:
                await self._cleanup()
            except Exception as e:
                self.logger.error("service_cleanup_failed", error=str(e))
            await self._teardown()
            self.logger.info("service_stopped", service=self.service_name)
