"""Extract SERVICE_* metadata from container environment and labels.

Brief:
  Containers describe how their ports should be registered through
  ``SERVICE_<ATTR>=value`` declarations in their environment or labels. A
  declaration may be scoped to one exposed port (``SERVICE_80_NAME``) and/or
  to one address family (``SERVICE_NAME_IPV6``). This module resolves those
  declarations into a flat attribute map for one port and family.

Inputs:
  - Environment list (``KEY=VALUE`` strings) and label mapping.

Outputs:
  - Dict[str, str] attribute map with lowercase keys.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

SERVICE_PREFIX = "SERVICE_"

_FAMILY_SUFFIXES = {
    "ipv4": "_IPV4",
    "ipv6": "_IPV6",
}

# Precedence ranks. Higher ranks win over lower ones for the same attribute.
_RANK_GLOBAL = 0
_RANK_GLOBAL_FAMILY = 1
_RANK_PORT = 2
_RANK_PORT_FAMILY = 3


def collect_declarations(
    env: Optional[Iterable[str]], labels: Optional[Mapping[str, str]]
) -> List[Tuple[str, str]]:
    """Brief: Build the ordered (key, value) list scanned by service_metadata.

    Inputs:
      - env: Container environment as ``KEY=VALUE`` strings. Entries without
        ``=`` carry no value and are skipped.
      - labels: Container label mapping.

    Outputs:
      - List of (key, value) tuples: environment entries first, in their
        original order, then labels in mapping iteration order.

    Notes:
      - Label maps carry no meaningful order. Two labels at the same
        precedence tier for the same attribute resolve in whatever order the
        mapping yields them.
    """

    out: List[Tuple[str, str]] = []
    for entry in env or []:
        key, sep, value = str(entry).partition("=")
        if not sep:
            continue
        out.append((key, value))
    for key, value in (labels or {}).items():
        out.append((str(key), "" if value is None else str(value)))
    return out


def _split_family(key: str, family: str) -> Tuple[Optional[str], bool]:
    """Return (key without family suffix or None when not applicable, specific)."""

    for fam, suffix in _FAMILY_SUFFIXES.items():
        if key.endswith(suffix):
            if fam != family:
                return None, True
            return key[: -len(suffix)], True
    return key, False


def _is_int(text: str) -> bool:
    try:
        int(text)
    except ValueError:
        return False
    return True


def resolve_declarations(
    declarations: Iterable[Tuple[str, str]], port: str, family: str = "ipv4"
) -> Dict[str, str]:
    """Brief: Resolve ordered SERVICE_* declarations for one port and family.

    Inputs:
      - declarations: Ordered (key, value) pairs (see collect_declarations).
      - port: Exposed container port being resolved, e.g. "80".
      - family: "ipv4" or "ipv6".

    Outputs:
      - Dict[str, str] mapping lowercase attribute names to values.

    Precedence for one attribute name, highest first:
      port+family > port > global+family > global. A declaration is dropped
      when a higher-ranked one for the same name was already recorded; an
      equal rank overwrites.

    Example:
      >>> resolve_declarations([("SERVICE_NAME", "a"), ("SERVICE_80_NAME", "b")], "80")
      {'name': 'b'}
      >>> resolve_declarations([("SERVICE_NAME", "a"), ("SERVICE_80_NAME", "b")], "443")
      {'name': 'a'}
    """

    port = str(port)
    values: Dict[str, str] = {}
    ranks: Dict[str, int] = {}

    for raw_key, value in declarations:
        key, family_specific = _split_family(raw_key, family)
        if key is None:
            continue
        if not key.startswith(SERVICE_PREFIX):
            continue

        logical = key[len(SERVICE_PREFIX) :].lower()
        head, sep, rest = logical.partition("_")
        port_qualified = bool(sep) and _is_int(head)
        if port_qualified:
            if head != port:
                continue
            name = rest
        else:
            name = logical
        if not name:
            continue

        if port_qualified:
            rank = _RANK_PORT_FAMILY if family_specific else _RANK_PORT
        else:
            rank = _RANK_GLOBAL_FAMILY if family_specific else _RANK_GLOBAL

        if rank < ranks.get(name, -1):
            continue
        ranks[name] = rank
        values[name] = value

    return values


def service_metadata(
    env: Optional[Iterable[str]],
    labels: Optional[Mapping[str, str]],
    port: str,
    family: str = "ipv4",
) -> Dict[str, str]:
    """Brief: Attribute map for one exposed port from env and labels.

    Inputs:
      - env: Container environment list.
      - labels: Container label mapping.
      - port: Exposed container port, e.g. "80".
      - family: "ipv4" or "ipv6".

    Outputs:
      - Dict[str, str]; ``ignore`` with a non-empty value asks the builder to
        drop the port.
    """

    return resolve_declarations(collect_declarations(env, labels), port, family)


def container_metadata(
    container: Mapping[str, Any], port: str, family: str = "ipv4"
) -> Dict[str, str]:
    """Brief: service_metadata() fed from a docker inspect record.

    Inputs:
      - container: Inspect-style dict with Config.Env and Config.Labels.
      - port: Exposed container port.
      - family: "ipv4" or "ipv6".

    Outputs:
      - Dict[str, str] attribute map.
    """

    cfg = container.get("Config") or {}
    return service_metadata(cfg.get("Env"), cfg.get("Labels"), port, family)
