"""Registry adapters and adapter discovery."""

from .base import CallNotSupported, RegistryAdapter, adapter_aliases
from .registry import discover_adapters, get_adapter_class, load_adapter

__all__ = [
    "CallNotSupported",
    "RegistryAdapter",
    "adapter_aliases",
    "discover_adapters",
    "get_adapter_class",
    "load_adapter",
]
