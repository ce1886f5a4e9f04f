"""Health Management Use Case for checking service health status."""

import logging
from typing import Any, Dict, Iterable, Optional

from src.core.batching import BatchWriter
from src.core.delivery import ProviderSelector
from src.core.resilience import CircuitBreakerRegistry


class HealthManagementUseCase:
    """Use case for health management operations."""

    def __init__(
        self,
        services: Dict[str, Any],
        selectors: Optional[Iterable[ProviderSelector]] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        batch_writers: Optional[Iterable[BatchWriter]] = None,
    ):
        """
        Initialize the health management use case.

        Args:
            services: Dictionary of services exposing ``health_check``
            selectors: Provider selectors whose provider availability is reported
            breakers: Circuit breaker registry whose stats are reported
            batch_writers: Batch writers whose queue stats are reported
        """
        self.services = services
        self.selectors = list(selectors or [])
        self.breakers = breakers
        self.batch_writers = list(batch_writers or [])
        self.logger = logging.getLogger(__name__)

    async def get_service_health_status(self) -> Dict[str, Any]:
        """
        Check health of all services.

        Returns:
            Dictionary containing health status for each service
        """
        try:
            self.logger.debug("Checking service health...")

            health_results = {}
            for service_name, service in self.services.items():
                try:
                    health = await service.health_check()

                    # Services may return a detailed dict or a plain bool
                    if isinstance(health, dict):
                        is_healthy = health.get("healthy", True)
                        health_results[service_name] = {
                            "healthy": is_healthy,
                            "status": "healthy" if is_healthy else "unhealthy",
                            "details": health,
                        }
                    else:
                        health_results[service_name] = {
                            "healthy": bool(health),
                            "status": "healthy" if health else "unhealthy",
                            "details": (
                                "Service is responding normally"
                                if health
                                else "Service is not responding"
                            ),
                        }

                    self.logger.debug(
                        f"Service {service_name}: {'healthy' if health_results[service_name]['healthy'] else 'unhealthy'}"
                    )
                except Exception as e:
                    health_results[service_name] = {
                        "healthy": False,
                        "status": "error",
                        "details": str(e),
                    }
                    self.logger.error(f"Error checking {service_name} health: {e}")

            healthy_count = sum(1 for h in health_results.values() if h["healthy"])
            total_count = len(health_results)
            overall_healthy = healthy_count == total_count and total_count > 0

            result = {
                "success": True,
                "overall_healthy": overall_healthy,
                "healthy_count": healthy_count,
                "total_count": total_count,
                "services": health_results,
                "delivery": self.get_delivery_status(),
            }

            self.logger.info(
                f"Health check complete: {healthy_count}/{total_count} services healthy"
            )
            return result

        except Exception as e:
            self.logger.error(f"Error during health check: {e}")
            return {
                "success": False,
                "error": str(e),
                "overall_healthy": False,
                "healthy_count": 0,
                "total_count": 0,
                "services": {},
            }

    def get_delivery_status(self) -> Dict[str, Any]:
        """
        Snapshot of provider availability, circuit breakers and batch writers.

        Returns:
            Dictionary with ``providers``, ``circuit_breakers`` and ``batch_writers`` keys
        """
        providers = {}
        for selector in self.selectors:
            providers[selector.channel.value] = {
                provider_type.value: {
                    "available": available,
                    "active": provider_type == selector.active_provider,
                    "priority": selector.providers[provider_type].priority,
                }
                for provider_type, available in selector.get_all_provider_statuses().items()
            }

        return {
            "providers": providers,
            "circuit_breakers": self.breakers.all_stats() if self.breakers else {},
            "batch_writers": {writer.name: writer.stats() for writer in self.batch_writers},
        }
