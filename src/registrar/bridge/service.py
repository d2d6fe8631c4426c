"""Build canonical Service entities from container port bindings.

Brief:
  - published_ports(): enumerate a container's port bindings from its inspect
    record (configured host bindings, then runtime bindings).
  - build_service(): turn one PublishedPort plus its resolved metadata into a
    Service, or None when the port should not be registered.
"""

from __future__ import annotations

import logging
import posixpath
import socket
from typing import Any, Dict, List, Mapping, Optional

from cachetools import TTLCache, cached

from .types import BridgeConfig, PublishedPort, Service

logger = logging.getLogger(__name__)

WILDCARD_HOST_IP = "0.0.0.0"

_RESERVED_KEYS = ("id", "name", "tags")

# hostname -> resolved address
_HOST_ADDR_CACHE: TTLCache = TTLCache(maxsize=64, ttl=30)


def parse_escaped_commas(text: str) -> List[str]:
    """Brief: Split a comma list where ``\\,`` stands for a literal comma.

    Inputs:
      - text: Raw list such as ``"a,b\\,c"``.

    Outputs:
      - List of non-empty items with escapes resolved.

    Example:
      >>> parse_escaped_commas("foo,bar\\\\,baz")
      ['foo', 'bar,baz']
      >>> parse_escaped_commas(",,,")
      []
    """

    items: List[str] = []
    current: List[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] == ",":
            current.append(",")
            i += 2
            continue
        if ch == ",":
            if current:
                items.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    if current:
        items.append("".join(current))
    return items


def combine_tags(*parts: Optional[str]) -> List[str]:
    """Brief: Concatenate several comma lists into one ordered tag list.

    Inputs:
      - *parts: Comma lists; empty or None parts are skipped.

    Outputs:
      - List[str] tags in argument order. Duplicates are kept.
    """

    tags: List[str] = []
    for part in parts:
        if part:
            tags.extend(parse_escaped_commas(part))
    return tags


def base_image_name(image: str) -> str:
    """Brief: Repository base name of an image reference without tag/digest.

    Inputs:
      - image: Image reference, e.g. "registry:5000/team/web:1.2".

    Outputs:
      - str: Base name, e.g. "web".
    """

    base = posixpath.basename(str(image or ""))
    base = base.split("@", 1)[0]
    return base.split(":", 1)[0]


def _to_int(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def _network_ips(container: Mapping[str, Any]) -> tuple[str, str]:
    """Return the container's (IPv4, global IPv6) addresses.

    The legacy top-level NetworkSettings fields win; otherwise the first
    network that carries an address is used.
    """

    net_settings = container.get("NetworkSettings") or {}
    v4 = str(net_settings.get("IPAddress") or "")
    v6 = str(net_settings.get("GlobalIPv6Address") or "")
    for net in (net_settings.get("Networks") or {}).values():
        if not isinstance(net, dict):
            continue
        if not v4 and net.get("IPAddress"):
            v4 = str(net["IPAddress"])
        if not v6 and net.get("GlobalIPv6Address"):
            v6 = str(net["GlobalIPv6Address"])
    return v4, v6


def service_port(
    container: Mapping[str, Any], port_key: str, published: Optional[List[Dict]]
) -> PublishedPort:
    """Brief: Build a PublishedPort for one ``"<port>/<proto>"`` binding.

    Inputs:
      - container: Docker inspect record owning the port.
      - port_key: Binding key such as "80/tcp".
      - published: Host bindings for the key (first one is used), may be None.

    Outputs:
      - PublishedPort; host_port is "" when nothing was published and host_ip
        defaults to 0.0.0.0.
    """

    host_port = ""
    host_ip = ""
    if published:
        first = published[0] or {}
        host_port = str(first.get("HostPort") or "")
        host_ip = str(first.get("HostIp") or "")
    if not host_ip:
        host_ip = WILDCARD_HOST_IP

    exposed, _, proto = str(port_key).partition("/")
    v4, v6 = _network_ips(container)
    cfg = container.get("Config") or {}

    return PublishedPort(
        host_port=host_port,
        host_ip=host_ip,
        exposed_port=exposed,
        exposed_ip=v4,
        exposed_ipv6=v6,
        port_type=(proto or "tcp").lower(),
        container_id=str(container.get("Id") or ""),
        container_name=str(container.get("Name") or "").lstrip("/"),
        container_hostname=str(cfg.get("Hostname") or ""),
        container=dict(container),
    )


def published_ports(container: Mapping[str, Any]) -> Dict[str, PublishedPort]:
    """Brief: Union of configured and runtime port bindings for a container.

    Inputs:
      - container: Docker inspect record.

    Outputs:
      - Dict keyed by "<port>/<proto>". HostConfig.PortBindings (relevant for
        --net=host) are read first; NetworkSettings.Ports (relevant for
        bridged networks) overwrite entries with the same key.
    """

    ports: Dict[str, PublishedPort] = {}
    host_cfg = container.get("HostConfig") or {}
    for key, published in (host_cfg.get("PortBindings") or {}).items():
        ports[key] = service_port(container, key, published)
    net_settings = container.get("NetworkSettings") or {}
    for key, published in (net_settings.get("Ports") or {}).items():
        ports[key] = service_port(container, key, published)
    return ports


def local_hostname() -> str:
    return socket.gethostname()


@cached(cache=_HOST_ADDR_CACHE)
def _resolve_hostname(hostname: str) -> str:
    return socket.gethostbyname(hostname)


def resolve_host_ip(port_host_ip: str, hostname: Optional[str], override: str = "") -> str:
    """Brief: Pick the host address advertised for a published port.

    Inputs:
      - port_host_ip: Bind address of the published port.
      - hostname: Process hostname, or None when it could not be read.
      - override: Configured host IP; wins over everything when non-empty.

    Outputs:
      - str host address. A wildcard bind is replaced by the address the
        hostname resolves to, when it resolves.
    """

    if override:
        return override
    if port_host_ip == WILDCARD_HOST_IP and hostname:
        try:
            return _resolve_hostname(hostname)
        except OSError as exc:
            logger.debug("could not resolve hostname %s: %s", hostname, exc)
    return port_host_ip


def build_service(
    port: PublishedPort,
    metadata: Mapping[str, str],
    is_group: bool,
    config: BridgeConfig,
) -> Optional[Service]:
    """Brief: Derive the Service for one published port.

    Inputs:
      - port: PublishedPort with a back-reference to its container record.
      - metadata: Attribute map resolved for this port (see metadata module).
      - is_group: True when the container exposes more than one port; the
        default name then carries the port number.
      - config: BridgeConfig with host IP override, addressing mode, forced
        tags, TTL and node id.

    Outputs:
      - Service, or None when the port is ignored, not published on the host
        outside internal mode, or lacks a name in explicit mode.

    Example:
      >>> port = PublishedPort("8080", "10.0.0.9", "80", "172.17.0.2", "tcp",
      ...                      container_name="web",
      ...                      container={"Config": {"Image": "nginx:1.25"}})
      >>> svc = build_service(port, {}, False, BridgeConfig(node_id="h1"))
      >>> (svc.id, svc.name, svc.ip, svc.port)
      ('h1:web:80', 'nginx', '10.0.0.9', 8080)
    """

    if metadata.get("ignore"):
        logger.debug("port %s ignored by metadata", port.exposed_port)
        return None
    if config.explicit and not metadata.get("name"):
        logger.debug("port %s has no service name in explicit mode", port.exposed_port)
        return None
    if not config.internal and not port.host_port:
        logger.debug("port %s not published on host", port.exposed_port)
        return None

    container = port.container
    cfg = container.get("Config") or {}

    default_name = base_image_name(str(cfg.get("Image") or ""))
    if is_group:
        default_name = f"{default_name}-{port.exposed_port}"

    try:
        hostname: Optional[str] = local_hostname()
    except OSError:
        hostname = None
    node = config.node_id or hostname or port.host_ip
    host_ip = resolve_host_ip(port.host_ip, hostname, config.host_ip)

    container_name = port.container_name or str(container.get("Name") or "").lstrip("/")
    service_id = f"{node}:{container_name}:{port.exposed_port}"

    if config.internal:
        if config.address_family == "ipv6" and port.exposed_ipv6:
            ip = port.exposed_ipv6
        else:
            ip = port.exposed_ip
        number = _to_int(port.exposed_port)
    else:
        ip = host_ip
        number = _to_int(port.host_port)

    if config.use_ip_from_label:
        label_ip = port.labels.get(config.use_ip_from_label)
        if label_ip:
            ip = str(label_ip)

    udp = port.port_type == "udp"
    tags = combine_tags(metadata.get("tags"), config.force_tags, "udp" if udp else None)
    if udp:
        service_id += ":udp"

    if metadata.get("id"):
        service_id = metadata["id"]

    attrs = {k: v for k, v in metadata.items() if k not in _RESERVED_KEYS}

    return Service(
        id=service_id,
        name=metadata.get("name") or default_name,
        ip=ip,
        port=number,
        tags=tags,
        attrs=attrs,
        ttl=config.refresh_ttl,
        internal=config.internal,
        origin=port,
    )
