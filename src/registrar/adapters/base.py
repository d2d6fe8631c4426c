"""Registry adapter capability interface.

Brief:
  Every registry backend implements RegistryAdapter. The bridge only uses
  ping/register/deregister/refresh; services() and cleanup() are optional
  and raise CallNotSupported unless a backend provides them.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence
from urllib.parse import SplitResult, parse_qsl, urlsplit

from pydantic import BaseModel

from registrar.bridge.filter import Filters, container_filters, parse
from registrar.bridge.types import CallNotSupported, Service

logger = logging.getLogger(__name__)

__all__ = ["CallNotSupported", "RegistryAdapter", "adapter_aliases"]


def adapter_aliases(*aliases: str):
    """Brief: Decorator to set aliases (URI schemes) on an adapter class.

    Inputs:
      - *aliases: Variable number of alias strings.

    Outputs:
      - Callable that applies the aliases to a RegistryAdapter subclass and
        returns it.

    Example:
      >>> from registrar.adapters.base import RegistryAdapter, adapter_aliases
      >>> @adapter_aliases('mem', 'memory')
      ... class Mem(RegistryAdapter):
      ...     pass
      >>> Mem.aliases
      ('mem', 'memory')
    """

    def _wrap(cls: type) -> type:
        cls.aliases = tuple(aliases)
        return cls

    return _wrap


class RegistryAdapter:
    """Brief: Base class for registry backends.

    Inputs:
      - uri: Registry URI the adapter was built from (may be "").
      - **config: Adapter options. ``filter`` holds a default filter spec;
        services whose endpoint does not match the container's filter set
        are not registered. Subclasses returning a model from
        get_config_model() have the remaining options validated by it.

    Outputs:
      - RegistryAdapter instance; raises FilterError for a malformed filter
        spec and ValueError for invalid options.
    """

    aliases: ClassVar[Sequence[str]] = ()

    def __init__(self, uri: str = "", **config: Any) -> None:
        self.uri: SplitResult = urlsplit(uri or "")
        self.filter_spec = str(config.pop("filter", "") or "")
        # Parse now so a bad default spec fails at startup.
        self.default_filters: Filters = parse(self.filter_spec)

        model_cls = self.get_config_model()
        if model_cls is not None:
            try:
                model = model_cls(**config)
            except Exception as exc:
                raise ValueError(
                    f"Invalid configuration for adapter {type(self).__name__}: {exc}"
                ) from exc
            config = dict(model.dict())
        self.config: Dict[str, Any] = config

    @classmethod
    def get_config_model(cls) -> Optional[type[BaseModel]]:
        return None

    @classmethod
    def get_aliases(cls) -> Sequence[str]:
        return tuple(getattr(cls, "aliases", ()))

    @classmethod
    def from_uri(cls, uri: str, **defaults: Any) -> "RegistryAdapter":
        """Brief: Build an adapter from a registry URI.

        Inputs:
          - uri: e.g. ``consul://127.0.0.1:8500?filter=host:*``. Query
            parameters become adapter options.
          - **defaults: Options applied unless the query sets them.

        Outputs:
          - Adapter instance.
        """

        params: Dict[str, Any] = dict(defaults)
        params.update(parse_qsl(urlsplit(uri).query, keep_blank_values=True))
        return cls(uri=uri, **params)

    def setup(self) -> None:
        """Brief: One-time startup hook (start servers, open sessions).

        Inputs:
          - None.

        Outputs:
          - None. The base implementation does nothing.
        """

        return None

    def close(self) -> None:
        return None

    def ping(self) -> None:
        raise NotImplementedError

    def register(self, service: Service) -> None:
        raise NotImplementedError

    def deregister(self, service: Service) -> None:
        raise NotImplementedError

    def refresh(self, service: Service) -> None:
        raise NotImplementedError

    def services(self) -> List[Service]:
        raise CallNotSupported(f"{type(self).__name__} does not list services")

    def cleanup(self, valid: Mapping[str, Service]) -> None:
        raise CallNotSupported(f"{type(self).__name__} does not support cleanup")

    def admits(self, service: Service) -> bool:
        """Brief: Decide whether a service passes this adapter's filters.

        Inputs:
          - service: Candidate Service; its origin container labels may
            replace or extend the default filter spec.

        Outputs:
          - bool: True when no filter applies or the first matching filter
            admits the service endpoint.
        """

        container: Mapping[str, Any] = {}
        proto: Optional[str] = None
        if service.origin is not None:
            container = service.origin.container
            proto = service.origin.port_type
        if not self.filter_spec and not container:
            return True

        filters = container_filters(container, self.filter_spec)
        if not len(filters):
            return True
        matched, flt = filters.match(service.ip, service.port, service.internal, proto)
        if not matched:
            logger.debug("service %s rejected by filters %r", service.id, filters)
        return matched
