"""Service factories module."""

from .service_factory import ServiceFactory, ServiceFactoryError

__all__ = ["ServiceFactory", "ServiceFactoryError"]
