"""Core value types shared by the bridge, the service builder and adapters.

Brief:
  - PublishedPort: one container port binding with host/internal addressing.
  - Service: the canonical registration unit derived from a PublishedPort.
  - BridgeConfig: typed configuration threaded into RegistryBridge.
  - ContainerNotFound: raised by runtime collaborators for vanished containers.
  - CallNotSupported: raised by adapters lacking an optional capability.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator


class ContainerNotFound(LookupError):
    """Raised when the container runtime no longer knows a container id."""


class CallNotSupported(NotImplementedError):
    """Raised by adapters for optional capabilities they do not implement."""


@dataclass
class PublishedPort:
    """Brief: One container port binding plus its addressing details.

    Inputs (constructor fields):
      - host_port: Host-facing port as a string, "" when not published.
      - host_ip: Host-facing bind address ("0.0.0.0" when unspecified).
      - exposed_port: Container port number as a string (e.g. "80").
      - exposed_ip: Container IPv4 address on its network.
      - port_type: "tcp" or "udp".
      - container_id / container_name / container_hostname: Identity of the
        owning container, copied out for adapters.
      - exposed_ipv6: Container global IPv6 address, "" when absent.
      - container: Inspect record of the owning container. Read-only; kept out
        of equality and repr.

    Outputs:
      - PublishedPort instance.
    """

    host_port: str
    host_ip: str
    exposed_port: str
    exposed_ip: str
    port_type: str
    container_id: str = ""
    container_name: str = ""
    container_hostname: str = ""
    exposed_ipv6: str = ""
    container: Dict[str, Any] = field(
        default_factory=dict, repr=False, compare=False
    )

    @property
    def labels(self) -> Dict[str, str]:
        return (self.container.get("Config") or {}).get("Labels") or {}


@dataclass
class Service:
    """Brief: Registration unit handed to registry adapters.

    Inputs (constructor fields):
      - id: Globally unique identifier for this endpoint.
      - name: Logical service name.
      - ip: Address clients should use.
      - port: Port clients should use.
      - tags: Ordered tag list; duplicates allowed.
      - attrs: Residual metadata after id/name/tags were consumed.
      - ttl: Seconds until expiry in the backend, 0 for none.
      - internal: True when built in internal mode (container-side
        endpoint), whatever address a label may have substituted.
      - origin: PublishedPort the service was derived from.

    Outputs:
      - Service instance.

    Example:
      >>> svc = Service(id="h:web:80", name="web", ip="10.0.0.1", port=8080)
      >>> svc.as_dict()["port"]
      8080
    """

    id: str
    name: str
    ip: str
    port: int
    tags: List[str] = field(default_factory=list)
    attrs: Dict[str, str] = field(default_factory=dict)
    ttl: int = 0
    internal: bool = False
    origin: Optional[PublishedPort] = field(default=None, repr=False, compare=False)

    def as_dict(self) -> Dict[str, Any]:
        """Brief: JSON-friendly view of the service (no origin back-reference).

        Inputs:
          - None.

        Outputs:
          - dict with name, ip, port, tags and attrs.
        """

        return {
            "name": self.name,
            "ip": self.ip,
            "port": self.port,
            "tags": list(self.tags),
            "attrs": dict(self.attrs),
        }


class BridgeConfig(BaseModel):
    """Brief: Typed bridge configuration threaded through RegistryBridge.

    Inputs:
      - host_ip: Forced host address for published ports ("" to resolve).
      - internal: Advertise container-side address/port instead of host ones.
      - explicit: Only register ports whose metadata declares a name.
      - use_ip_from_label: Label whose value overrides the service IP.
      - force_tags: Comma list of tags appended to every service.
      - refresh_ttl: TTL seconds given to services (0 = no expiry).
      - refresh_interval: Seconds between Refresh passes (0 = disabled).
      - deregister_check: "always" or "on-success".
      - cleanup: Ask adapters to drop stale entries after each Sync.
      - address_family: "ipv4" or "ipv6" metadata and container IP selection.
      - node_id: Identifier prefix; the process hostname when empty.

    Outputs:
      - BridgeConfig instance.
    """

    host_ip: str = ""
    internal: bool = False
    explicit: bool = False
    use_ip_from_label: str = ""
    force_tags: str = ""
    refresh_ttl: int = Field(default=0, ge=0)
    refresh_interval: int = Field(default=0, ge=0)
    deregister_check: str = "always"
    cleanup: bool = False
    address_family: str = "ipv4"
    node_id: str = ""

    @validator("deregister_check", pre=True)
    def _check_deregister(cls, v):  # type: ignore[no-untyped-def]
        s = str(v or "always").strip().lower()
        if s not in {"always", "on-success"}:
            raise ValueError('deregister must be "always" or "on-success"')
        return s

    @validator("address_family", pre=True)
    def _check_family(cls, v):  # type: ignore[no-untyped-def]
        s = str(v or "ipv4").strip().lower()
        if s in {"4", "v4"}:
            s = "ipv4"
        elif s in {"6", "v6"}:
            s = "ipv6"
        if s not in {"ipv4", "ipv6"}:
            raise ValueError('address_family must be "ipv4" or "ipv6"')
        return s
