"""IP/port admission filters.

Brief:
  A filter spec is a comma separated list of ``ip[:port[/proto]]`` entries.
  ``ip`` is a literal address, a CIDR block, ``0.0.0.0`` (any address), or
  one of the roles ``host`` / ``container`` (aliases ``external`` /
  ``internal``). ``port`` is ``*``, a single port or an inclusive
  ``min-max`` range. IPv6 literals carrying a port are bracketed:
  ``[fd00::1]:80``.

Inputs:
  - Spec strings such as ``"192.168.1.0/24:*,host:8000-8099/udp"``.

Outputs:
  - Filters: ordered Filter list; match() returns the first hit.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Any, Iterator, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

PORT_MIN = 0
PORT_MAX = 65535

LABEL_FILTER_OVERWRITE = "REGISTRAR_FILTER_OVERWRITE"
LABEL_FILTER_APPEND = "REGISTRAR_FILTER_APPEND"
# Label names understood for containers labelled for registrator.
LEGACY_LABEL_FILTER_OVERWRITE = "REGISTRATOR_FILTER_OVERWRITE"
LEGACY_LABEL_FILTER_APPEND = "REGISTRATOR_FILTER_APPEND"

_HOST_TOKENS = {"host", "external"}
_CONTAINER_TOKENS = {"container", "internal"}
_PROTOCOLS = {"tcp", "udp"}

IPNet = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPAddr = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class FilterError(ValueError):
    """Raised for malformed filter specs and unparseable candidate addresses."""


@dataclass(frozen=True)
class Filter:
    """Brief: One parsed admission rule.

    Inputs (constructor fields):
      - text: Original entry text, kept for logging.
      - host_side / container_side: Role selectors; exactly one of these, an
        address, a network or any_ip is set.
      - address: Exact address selector.
      - network: CIDR selector.
      - any_ip: Matches every address.
      - port_min / port_max: Inclusive port range.
      - proto: "tcp" or "udp".
      - ip_only: True when the entry has no port part.

    Outputs:
      - Filter instance.
    """

    text: str
    host_side: bool = False
    container_side: bool = False
    address: Optional[IPAddr] = None
    network: Optional[IPNet] = None
    any_ip: bool = False
    port_min: int = PORT_MIN
    port_max: int = PORT_MAX
    proto: str = "tcp"
    ip_only: bool = False

    def matches_ip(self, ip: IPAddr, internal: bool) -> bool:
        if self.host_side:
            return not internal
        if self.container_side:
            return internal
        if self.any_ip:
            return True
        if self.address is not None:
            return ip == self.address
        if self.network is not None:
            return ip in self.network
        return False

    def matches_port(self, port: int, proto: Optional[str] = None) -> bool:
        if self.ip_only:
            return True
        if proto is not None and proto.lower() != self.proto:
            return False
        return self.port_min <= port <= self.port_max


def _split_entry(entry: str) -> Tuple[str, Optional[str]]:
    """Split ``ip[:port]`` with bracket support for IPv6 literals."""

    if entry.startswith("["):
        close = entry.find("]")
        if close < 0:
            raise FilterError(f"unterminated bracket in filter entry: {entry!r}")
        ip_part = entry[1:close]
        rest = entry[close + 1 :]
        if not rest:
            return ip_part, None
        if not rest.startswith(":"):
            raise FilterError(f"unexpected text after address in {entry!r}")
        return ip_part, rest[1:]
    if entry.count(":") > 1:
        # Bare IPv6 address or network; no port part possible.
        return entry, None
    ip_part, sep, port_part = entry.partition(":")
    return ip_part, (port_part if sep else None)


def _parse_ip(text: str) -> dict:
    token = text.strip().lower()
    if not token:
        raise FilterError("empty address in filter entry")
    if token in _HOST_TOKENS:
        return {"host_side": True}
    if token in _CONTAINER_TOKENS:
        return {"container_side": True}
    if token == "0.0.0.0":
        return {"any_ip": True}
    try:
        if "/" in token:
            return {"network": ipaddress.ip_network(token, strict=False)}
        return {"address": ipaddress.ip_address(token)}
    except ValueError as exc:
        raise FilterError(f"invalid address {text!r}: {exc}") from exc


def _parse_port_number(text: str, entry: str) -> int:
    try:
        value = int(text.strip())
    except ValueError as exc:
        raise FilterError(f"invalid port {text!r} in {entry!r}") from exc
    if not PORT_MIN <= value <= PORT_MAX:
        raise FilterError(f"port {value} out of range in {entry!r}")
    return value


def _parse_port(text: str, entry: str) -> dict:
    port_text, sep, proto = text.partition("/")
    if sep:
        proto = proto.strip().lower()
        if proto not in _PROTOCOLS:
            raise FilterError(f"unknown protocol {proto!r} in {entry!r}")
    else:
        proto = "tcp"

    port_text = port_text.strip()
    if port_text == "*":
        return {"port_min": PORT_MIN, "port_max": PORT_MAX, "proto": proto}

    low, dash, high = port_text.partition("-")
    port_min = _parse_port_number(low, entry)
    port_max = _parse_port_number(high, entry) if dash else port_min
    if port_min > port_max:
        raise FilterError(f"port range {port_text!r} is inverted in {entry!r}")
    return {"port_min": port_min, "port_max": port_max, "proto": proto}


def parse_entry(entry: str) -> Filter:
    """Brief: Parse one ``ip[:port[/proto]]`` entry.

    Inputs:
      - entry: Entry text without surrounding commas.

    Outputs:
      - Filter; raises FilterError on malformed input.
    """

    text = entry.strip()
    if not text:
        raise FilterError("empty filter entry")
    ip_part, port_part = _split_entry(text)
    fields = _parse_ip(ip_part)
    if port_part is None:
        fields["ip_only"] = True
    else:
        fields.update(_parse_port(port_part, text))
    return Filter(text=text, **fields)


def parse(spec: str) -> "Filters":
    """Brief: Parse a complete comma separated spec into a new Filters.

    Inputs:
      - spec: Filter spec; "" yields an empty Filters.

    Outputs:
      - Filters; raises FilterError without producing a partial set.

    Example:
      >>> fs = parse("192.168.1.1:80")
      >>> fs.match("192.168.1.1", 80)[0], fs.match("192.168.1.1", 81)[0]
      (True, False)
    """

    filters = Filters()
    filters.append(spec)
    return filters


class Filters:
    """Brief: Ordered Filter collection; declaration order is priority.

    Inputs:
      - filters: Optional initial Filter sequence.

    Outputs:
      - Filters instance.
    """

    def __init__(self, filters: Optional[List[Filter]] = None) -> None:
        self._filters: List[Filter] = list(filters or [])

    def __len__(self) -> int:
        return len(self._filters)

    def __iter__(self) -> Iterator[Filter]:
        return iter(self._filters)

    def __repr__(self) -> str:
        return f"Filters({','.join(f.text for f in self._filters)!r})"

    def clear(self) -> None:
        self._filters = []

    def append(self, spec: Optional[str]) -> None:
        """Brief: Parse spec and append its entries in order.

        Inputs:
          - spec: Comma separated entries. None or "" is a no-op; an empty
            entry inside a non-empty list (``"a,,b"``) is an error.

        Outputs:
          - None. Nothing is appended when any entry fails to parse.
        """

        if not spec:
            return
        parsed: List[Filter] = []
        for entry in spec.split(","):
            if not entry.strip():
                raise FilterError(f"empty filter entry in {spec!r}")
            parsed.append(parse_entry(entry))
        self._filters.extend(parsed)

    def match(
        self,
        ip: str,
        port: int,
        internal: bool = False,
        proto: Optional[str] = None,
    ) -> Tuple[bool, Optional[Filter]]:
        """Brief: Find the first Filter admitting a candidate endpoint.

        Inputs:
          - ip: Candidate address text.
          - port: Candidate port.
          - internal: True when ip/port are the container-side endpoint.
          - proto: Candidate protocol; None skips the protocol test.

        Outputs:
          - (True, filter) for the first hit, else (False, None). An
            unparseable ip raises FilterError.
        """

        try:
            addr = ipaddress.ip_address(str(ip).strip())
        except ValueError as exc:
            raise FilterError(f"invalid address {ip!r}: {exc}") from exc
        port = int(port)

        for flt in self._filters:
            if flt.matches_ip(addr, internal) and flt.matches_port(port, proto):
                logger.debug(
                    "matched filter %s: %s:%s internal=%s", flt.text, ip, port, internal
                )
                return True, flt
        logger.debug("no filter matched: %s:%s internal=%s", ip, port, internal)
        return False, None


def container_filters(container: Mapping[str, Any], default_spec: str = "") -> Filters:
    """Brief: Filter set for one container from a default spec and its labels.

    Inputs:
      - container: Inspect record; Config.Labels is consulted.
      - default_spec: Filter spec applied to every container.

    Outputs:
      - Filters: the REGISTRAR_FILTER_OVERWRITE label replaces the default
        spec; otherwise REGISTRAR_FILTER_APPEND entries follow the default
        ones. The REGISTRATOR_FILTER_* spellings are read when the
        REGISTRAR_FILTER_* label is absent.
    """

    labels = (container.get("Config") or {}).get("Labels") or {}
    overwrite = labels.get(LABEL_FILTER_OVERWRITE) or labels.get(
        LEGACY_LABEL_FILTER_OVERWRITE
    )
    if overwrite:
        return parse(overwrite)
    filters = parse(default_spec)
    filters.append(
        labels.get(LABEL_FILTER_APPEND) or labels.get(LEGACY_LABEL_FILTER_APPEND)
    )
    return filters
