"""Container to service registry bridge core."""

from .bridge import RegistryBridge
from .filter import Filter, FilterError, Filters, container_filters, parse
from .metadata import container_metadata, service_metadata
from .retry import RetryPolicy
from .service import build_service, published_ports
from .types import (
    BridgeConfig,
    CallNotSupported,
    ContainerNotFound,
    PublishedPort,
    Service,
)

__all__ = [
    "BridgeConfig",
    "CallNotSupported",
    "ContainerNotFound",
    "Filter",
    "FilterError",
    "Filters",
    "PublishedPort",
    "RegistryBridge",
    "RetryPolicy",
    "Service",
    "build_service",
    "container_filters",
    "container_metadata",
    "parse",
    "published_ports",
    "service_metadata",
]
