from __future__ import annotations

import difflib
import importlib
import inspect
import pkgutil
import re
from functools import lru_cache
from typing import Any, Dict, Iterable, Type
from urllib.parse import urlsplit

from .base import RegistryAdapter

_CAMEL_1 = re.compile(r"(.)([A-Z][a-z]+)")
_CAMEL_2 = re.compile(r"([a-z0-9])([A-Z])")


def _camel_to_snake(name: str) -> str:
    s1 = _CAMEL_1.sub(r"\1_\2", name)
    s2 = _CAMEL_2.sub(r"\1_\2", s1)
    return s2.lower()


def _default_alias_for(cls: Type[RegistryAdapter]) -> str:
    name = cls.__name__
    for suffix in ("RegistryAdapter", "Adapter", "Registry"):
        if name.endswith(suffix) and name != suffix:
            name = name[: -len(suffix)]
            break
    return _camel_to_snake(name)


def _normalize(alias: str) -> str:
    return alias.strip().lower().replace("-", "_")


def _iter_adapter_modules(package_name: str = "registrar.adapters") -> Iterable[str]:
    pkg = importlib.import_module(package_name)
    for modinfo in pkgutil.walk_packages(pkg.__path__, pkg.__name__ + "."):
        yield modinfo.name


@lru_cache(maxsize=4)
def discover_adapters(
    package_name: str = "registrar.adapters",
) -> Dict[str, Type[RegistryAdapter]]:
    """Brief: Discover RegistryAdapter subclasses and register them by alias.

    Inputs:
      - package_name: Package path to scan.

    Outputs:
      - Dict[str, Type[RegistryAdapter]] mapping normalized aliases to classes.
    """

    registry: Dict[str, Type[RegistryAdapter]] = {}

    for modname in _iter_adapter_modules(package_name):
        module = importlib.import_module(modname)

        for _, obj in inspect.getmembers(module, inspect.isclass):
            if not issubclass(obj, RegistryAdapter) or obj is RegistryAdapter:
                continue
            if obj.__module__ != module.__name__:
                continue

            claimed = set(_normalize(a) for a in obj.get_aliases())
            claimed.add(_normalize(_default_alias_for(obj)))

            for alias in claimed:
                if alias in registry and registry[alias] is not obj:
                    other = registry[alias]
                    raise ValueError(
                        f"Duplicate adapter alias '{alias}' claimed by {obj.__module__}.{obj.__name__} "
                        f"and {other.__module__}.{other.__name__}"
                    )
                registry[alias] = obj

    return registry


def get_adapter_class(identifier: str) -> Type[RegistryAdapter]:
    """Brief: Resolve an alias or dotted path to an adapter class.

    Inputs:
      - identifier: URI scheme / alias (e.g. "consul") or dotted import path.

    Outputs:
      - RegistryAdapter subclass; KeyError with suggestions for unknown
        aliases.
    """

    ident = str(identifier).strip()
    if "." in ident:
        modname, _, classname = ident.rpartition(".")
        if not modname or not classname:
            raise ValueError(f"Invalid adapter path '{identifier}'")
        module = importlib.import_module(modname)
        cls = getattr(module, classname)
        if not issubclass(cls, RegistryAdapter):
            raise TypeError(f"{identifier} is not a RegistryAdapter subclass")
        return cls

    return _lookup_alias(ident)


def _lookup_alias(identifier: str) -> Type[RegistryAdapter]:
    reg = discover_adapters()
    key = _normalize(identifier)
    try:
        return reg[key]
    except KeyError:
        suggestions = difflib.get_close_matches(key, list(reg.keys()), n=3)
        raise KeyError(
            f"Unknown registry adapter '{identifier}'. "
            f"Known adapters: {', '.join(sorted(reg.keys()))}. "
            f"Suggestions: {suggestions}"
        )


def load_adapter(uri: str, **defaults: Any) -> RegistryAdapter:
    """Brief: Build the adapter named by a registry URI's scheme.

    Inputs:
      - uri: Registry URI such as ``consul://127.0.0.1:8500``. The scheme
        must be a discovered adapter alias; dotted import paths are not
        accepted here.
      - **defaults: Adapter options used when the URI query does not set
        them (e.g. ``node``).

    Outputs:
      - RegistryAdapter instance; ValueError when the URI has no scheme,
        KeyError when the scheme names no known adapter.

    Example:
      registrar memory://
      registrar consul://localhost:8500?filter=host:*
    """

    scheme = urlsplit(str(uri or "")).scheme
    if not scheme:
        raise ValueError(f"registry URI {uri!r} has no scheme")
    cls = _lookup_alias(scheme)
    return cls.from_uri(uri, **defaults)
