"""Main application entry point."""

import asyncio
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from aiohttp import web

from .api import create_web_app
from .config import ConfigLoader, Config, ConfigError
from .core.batching import BatchWriter
from .core.delivery import DeliveryExecutor, EmailProviderSelector, PushProviderSelector
from .core.ratelimit import InternalServiceRateLimiter
from .core.resilience import CircuitBreakerRegistry
from .core.usecases import (
    AuditEventPublisher,
    DeviceTokenService,
    HealthManagementUseCase,
    NotificationDispatcher,
)
from .factories import ServiceFactory


def setup_logging(config: Config) -> None:
    """Setup logging configuration."""
    log_format = config.logging.format
    log_level = getattr(logging, config.logging.level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    formatter = logging.Formatter(log_format)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.logging.file_path:
        file_path = Path(config.logging.file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            file_path,
            maxBytes=config.logging.max_file_size_mb * 1024 * 1024,
            backupCount=config.logging.backup_count
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


class HeraldApp:
    """Main application class wiring the notification delivery service."""

    def __init__(self, config_file: str = "config.yaml", env_file: str = ".env",
                 config: Optional[Config] = None):
        """
        Initialize the application.

        Args:
            config_file: Path to configuration file
            env_file: Path to environment file
            config: Pre-built configuration, skips loading from files
        """
        self.config_file = config_file
        self.env_file = env_file
        self.config: Optional[Config] = config
        self.services: Dict[str, Any] = {}

        self.breakers: Optional[CircuitBreakerRegistry] = None
        self.email_selector: Optional[EmailProviderSelector] = None
        self.push_selector: Optional[PushProviderSelector] = None
        self.rate_limiter: Optional[InternalServiceRateLimiter] = None
        self.audit_publisher: Optional[AuditEventPublisher] = None
        self.device_tokens: Optional[DeviceTokenService] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.health_management: Optional[HealthManagementUseCase] = None
        self.executors: List[DeliveryExecutor] = []
        self.batch_writers: List[BatchWriter] = []
        self._providers: List[Any] = []
        self._started = False

        self.logger = logging.getLogger(__name__)

    async def initialize(self) -> None:
        """Load configuration and build every service."""
        try:
            if self.config is None:
                self.logger.info("Loading configuration...")
                config_loader = ConfigLoader(self.config_file, self.env_file, "config.local.yaml")
                self.config = config_loader.load()

            setup_logging(self.config)
            self.logger.info(f"Application initialized in {self.config.environment} environment")

            self.logger.info("Creating services...")
            factory = ServiceFactory(self.config)

            storage = factory.create_storage_service()
            cache = factory.create_cache_provider()
            self.audit_publisher = factory.create_audit_publisher()
            self.breakers = factory.create_circuit_breaker_registry()
            self.rate_limiter = factory.create_rate_limiter(cache)

            email_providers = factory.create_email_providers()
            push_providers = factory.create_push_providers()
            self._providers = [*email_providers, *push_providers]
            self.email_selector = factory.create_email_selector(email_providers)
            self.push_selector = factory.create_push_selector(push_providers)

            email_writer = factory.create_batch_writer("email", storage.email_notifications)
            push_writer = factory.create_batch_writer("push", storage.push_notifications)
            self.batch_writers = [email_writer, push_writer]

            email_executor = factory.create_executor("email")
            push_executor = factory.create_executor("push")
            self.executors = [email_executor, push_executor]

            self.device_tokens = DeviceTokenService(storage.device_tokens)
            email_delivery = factory.create_email_delivery_service(
                self.email_selector, storage, email_writer, email_executor
            )
            push_delivery = factory.create_push_delivery_service(
                self.push_selector, storage, push_writer, push_executor, self.device_tokens
            )
            self.dispatcher = factory.create_dispatcher(
                email_delivery,
                push_delivery,
                self.device_tokens,
                factory.create_idempotency_service(cache),
            )

            self.services = {
                "storage_service": storage,
                "cache": cache,
                "audit": self.audit_publisher,
            }
            self.health_management = HealthManagementUseCase(
                services=self.services,
                selectors=[self.email_selector, self.push_selector],
                breakers=self.breakers,
                batch_writers=self.batch_writers,
            )

            self.logger.info("Application initialization complete")

        except ConfigError as e:
            self.logger.error(f"Configuration error: {e}")
            raise
        except Exception as e:
            self.logger.error(f"Failed to initialize application: {e}")
            raise

    async def start(self) -> None:
        """Start the background batch writers."""
        if not self.dispatcher:
            raise RuntimeError("Application not initialized")
        for writer in self.batch_writers:
            await writer.start()
        self._started = True

    async def shutdown(self) -> None:
        """
        Stop accepting work and drain everything in flight.

        Executors settle first so their final records reach the batch
        writers, then audit tasks are awaited, then the writers flush.
        """
        self.logger.info("Shutting down application...")
        timeout = self.config.executors.shutdown_timeout_seconds if self.config else None

        for executor in self.executors:
            try:
                await executor.shutdown(wait=True, timeout=timeout)
            except Exception as e:
                self.logger.warning(f"Error shutting down executor {executor.name}: {e}")

        if self.audit_publisher is not None:
            await self.audit_publisher.drain(timeout=timeout)

        for writer in self.batch_writers:
            try:
                await writer.shutdown(timeout=timeout)
            except Exception as e:
                self.logger.warning(f"Error shutting down batch writer {writer.name}: {e}")

        await self.cleanup()
        self._started = False

    async def cleanup(self) -> None:
        """Cleanup application resources."""
        try:
            self.logger.info("Cleaning up application resources...")

            for provider in self._providers:
                close = getattr(provider, "close", None)
                if close is None:
                    continue
                try:
                    await close()
                except Exception as e:
                    self.logger.warning(f"Error closing {provider.get_provider_name()}: {e}")

            storage = self.services.get("storage_service")
            if storage is not None:
                await storage.close()

            cache = self.services.get("cache")
            if cache is not None and hasattr(cache, "close"):
                cache.close()

            self.logger.info("Application cleanup complete")

        except Exception as e:
            self.logger.error(f"Error during cleanup: {e}")

    def create_web_app(self) -> web.Application:
        """
        Build the HTTP application serving the notification endpoints.

        Requests pass the rate limiting gate before reaching the dispatcher.
        """
        if not self.dispatcher:
            raise RuntimeError("Application not initialized")
        return create_web_app(self.dispatcher, self.rate_limiter)

    async def serve(self, host: str = "0.0.0.0", port: int = 8080) -> None:
        """Serve the HTTP endpoints until cancelled."""
        runner = web.AppRunner(self.create_web_app())
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        self.logger.info(f"Serving notification API on http://{host}:{port}")
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    async def get_service_health_status(self) -> dict:
        """
        Check health of all services.

        Returns:
            Dictionary containing health status for each service
        """
        if not self.health_management:
            raise RuntimeError("Application not initialized")

        return await self.health_management.get_service_health_status()

    async def __aenter__(self) -> "HeraldApp":
        await self.initialize()
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()


async def main() -> int:
    """Print the service health and exit."""
    import argparse

    parser = argparse.ArgumentParser(description="Herald notification service")
    parser.add_argument("--config", default="config.yaml", help="Configuration file path")
    parser.add_argument("--env", default=".env", help="Environment file path")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    try:
        async with HeraldApp(config_file=args.config, env_file=args.env) as app:
            status = await app.get_service_health_status()
            print(f"Overall healthy: {status['overall_healthy']}")
            for name, service in status["services"].items():
                print(f"  {name}: {service['status']}")
            return 0 if status["overall_healthy"] else 1
    except Exception as e:
        logger.error(f"Application error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
