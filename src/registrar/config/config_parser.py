"""Configuration loading and validation for the registrar CLI.

Brief:
  Options come from, in rising precedence: model defaults, an optional YAML
  file, environment variables and CLI flags. The merged mapping is validated
  by the RegistrarConfig pydantic model and then by validate_options() for
  rules spanning several options.

Inputs:
  - YAML config paths, environment mappings and parsed CLI namespaces.

Outputs:
  - RegistrarConfig plus the BridgeConfig and RetryPolicy derived from it.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import socket
from typing import Any, Dict, Mapping, Optional

import psutil
import yaml
from pydantic import BaseModel, Field, validator

from registrar.bridge.retry import RetryPolicy
from registrar.bridge.types import BridgeConfig

from .config_schema import validate_config

logger = logging.getLogger(__name__)

# Environment variable -> (option name, value kind).
ENV_OPTIONS: Dict[str, tuple] = {
    "HOST_IP": ("host_ip", "str"),
    "INTERNAL": ("internal", "bool"),
    "EXPLICIT": ("explicit", "bool"),
    "USE_IP_FROM_LABEL": ("use_ip_from_label", "str"),
    "TAGS": ("tags", "str"),
    "TTL": ("ttl", "int"),
    "TTL_REFRESH": ("ttl_refresh", "int"),
    "RESYNC": ("resync", "int"),
    "DEREGISTER": ("deregister", "str"),
    "RETRY_ATTEMPTS": ("retry_attempts", "int"),
    "RETRY_INTERVAL": ("retry_interval", "int"),
    "CLEANUP": ("cleanup", "bool"),
    "ADDRESS_FAMILY": ("address_family", "str"),
    "NODE_ID": ("node_id", "str"),
}


class RetryConfig(BaseModel):
    """Brief: Backoff bounds for register/deregister calls.

    Inputs:
      - max_attempts: Calls per operation including the first (None = no
        attempt bound).
      - max_elapsed: Seconds per operation (None = no time bound).
      - initial_interval / multiplier / max_interval: Backoff shape.

    Outputs:
      - RetryConfig instance.
    """

    max_attempts: Optional[int] = Field(default=8, ge=1)
    max_elapsed: Optional[float] = Field(default=60.0, ge=0)
    initial_interval: float = Field(default=0.5, ge=0)
    multiplier: float = Field(default=1.5, ge=1)
    max_interval: float = Field(default=10.0, ge=0)


class RegistrarConfig(BaseModel):
    """Brief: Complete, merged registrar configuration.

    Inputs:
      - registry_uri: Registry adapter URI (required to run).
      - docker_url: Docker endpoint; DOCKER_HOST and friends when None.
      - Remaining fields: see the CLI help in registrar.main.

    Outputs:
      - RegistrarConfig instance with normalized values.
    """

    registry_uri: str = ""
    docker_url: Optional[str] = None
    host_ip: str = ""
    internal: bool = False
    explicit: bool = False
    use_ip_from_label: str = ""
    tags: str = ""
    ttl: int = Field(default=0, ge=0)
    ttl_refresh: int = Field(default=0, ge=0)
    resync: int = Field(default=0, ge=0)
    deregister: str = "always"
    retry_attempts: int = Field(default=0, ge=-1)
    retry_interval: int = 2000
    cleanup: bool = False
    address_family: str = "ipv4"
    node_id: str = ""
    register_retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    @validator("deregister", pre=True)
    def _normalize_deregister(cls, v):  # type: ignore[no-untyped-def]
        s = str(v or "always").strip().lower()
        if s not in {"always", "on-success"}:
            raise ValueError('deregister must be "always" or "on-success"')
        return s

    @validator("address_family", pre=True)
    def _normalize_family(cls, v):  # type: ignore[no-untyped-def]
        s = str(v or "ipv4").strip().lower()
        if s not in {"ipv4", "ipv6"}:
            raise ValueError('address_family must be "ipv4" or "ipv6"')
        return s


def _parse_bool(text: str) -> bool:
    value = yaml.safe_load(text) if text.strip() else False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    raise ValueError(f"expected a boolean, got {text!r}")


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Brief: Collect option overrides from environment variables.

    Inputs:
      - environ: Environment mapping (defaults to os.environ).

    Outputs:
      - Dict of option name to typed value for every variable that is set.
        LOG_LEVEL becomes ``logging.level``.

    Example:
      >>> env_overrides({"TTL": "30", "INTERNAL": "true", "PATH": "/bin"})
      {'internal': True, 'ttl': 30}
    """

    env = os.environ if environ is None else environ
    out: Dict[str, Any] = {}
    for var, (option, kind) in ENV_OPTIONS.items():
        raw = env.get(var)
        if raw is None:
            continue
        try:
            if kind == "bool":
                out[option] = _parse_bool(str(raw))
            elif kind == "int":
                out[option] = int(str(raw).strip())
            else:
                out[option] = str(raw)
        except ValueError as exc:
            raise ValueError(f"invalid value for {var}: {exc}") from exc
    level = env.get("LOG_LEVEL")
    if level:
        out["logging"] = {"level": str(level).strip().lower()}
    return dict(sorted(out.items()))


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.

    Outputs:
      - dict: Parsed configuration mapping.

    Raises:
      - ValueError: When the root is not a mapping or validation fails.
    """

    with open(config_path, "r") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")
    validate_config(cfg, config_path=config_path)
    return cfg


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def interface_address(name: str) -> Optional[str]:
    """Brief: First IPv4 address bound to a network interface.

    Inputs:
      - name: Interface name such as "eth0".

    Outputs:
      - Address string, or None when the interface is unknown or carries no
        IPv4 address.
    """

    for addr in psutil.net_if_addrs().get(name) or []:
        if addr.family == socket.AF_INET and addr.address:
            return str(addr.address)
    return None


def validate_options(cfg: RegistrarConfig) -> RegistrarConfig:
    """Brief: Enforce rules that span several options.

    Inputs:
      - cfg: Model-validated configuration.

    Outputs:
      - The same configuration; ValueError when an option combination is
        invalid. A host_ip that is not an IP address is resolved as an
        interface name; when that fails it is logged and cleared.
    """

    if (cfg.ttl > 0) != (cfg.ttl_refresh > 0):
        raise ValueError("--ttl and --ttl-refresh must be specified together or not at all")
    if cfg.ttl > 0 and cfg.ttl <= cfg.ttl_refresh:
        raise ValueError("--ttl must be greater than --ttl-refresh")
    if cfg.retry_interval <= 0:
        raise ValueError("--retry-interval must be greater than 0")
    if cfg.host_ip:
        value = cfg.host_ip.strip()
        try:
            ipaddress.ip_address(value)
        except ValueError:
            resolved = interface_address(value)
            if resolved:
                logger.info("using address %s of interface %s as host ip", resolved, value)
                cfg.host_ip = resolved
            else:
                logger.warning(
                    "ignoring host ip %r: not an IP address or interface name",
                    cfg.host_ip,
                )
                cfg.host_ip = ""
        else:
            cfg.host_ip = value
    return cfg


def build_config(
    cli: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    file_cfg: Optional[Mapping[str, Any]] = None,
) -> RegistrarConfig:
    """Brief: Merge defaults, file, environment and CLI options.

    Inputs:
      - cli: Options given on the command line; None values are ignored.
      - environ: Environment mapping (defaults to os.environ).
      - file_cfg: Parsed YAML config mapping.

    Outputs:
      - Validated RegistrarConfig; ValueError on invalid input.

    Example:
      >>> cfg = build_config({"ttl": 60}, {"TTL": "30", "TTL_REFRESH": "20"})
      >>> cfg.ttl, cfg.ttl_refresh
      (60, 20)
    """

    merged: Dict[str, Any] = dict(file_cfg or {})
    merged = _merge(merged, env_overrides(environ))
    merged = _merge(
        merged, {k: v for k, v in (cli or {}).items() if v is not None}
    )
    try:
        cfg = RegistrarConfig(**merged)
    except Exception as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc
    return validate_options(cfg)


def bridge_config(cfg: RegistrarConfig) -> BridgeConfig:
    """Brief: BridgeConfig view of a RegistrarConfig.

    Inputs:
      - cfg: Validated configuration.

    Outputs:
      - BridgeConfig instance.
    """

    return BridgeConfig(
        host_ip=cfg.host_ip,
        internal=cfg.internal,
        explicit=cfg.explicit,
        use_ip_from_label=cfg.use_ip_from_label,
        force_tags=cfg.tags,
        refresh_ttl=cfg.ttl,
        refresh_interval=cfg.ttl_refresh,
        deregister_check=cfg.deregister,
        cleanup=cfg.cleanup,
        address_family=cfg.address_family,
        node_id=cfg.node_id,
    )


def retry_policy(cfg: RegistrarConfig) -> RetryPolicy:
    rc = cfg.register_retry
    return RetryPolicy(
        max_attempts=rc.max_attempts,
        max_elapsed=rc.max_elapsed,
        initial_interval=rc.initial_interval,
        multiplier=rc.multiplier,
        max_interval=rc.max_interval,
    )
