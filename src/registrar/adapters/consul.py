"""Consul agent registry adapter.

Brief:
  Registers services with the local Consul agent over its HTTP API using
  requests. Health checks are derived from ``check_*`` service attributes;
  the remaining attributes become service Meta.

URI:
  ``consul://127.0.0.1:8500`` (plain HTTP) or ``consul-tls://host:8501``.
  Query parameters: ``token``, ``timeout``, ``node`` (cleanup prefix),
  ``filter`` (default filter spec).
"""

from __future__ import annotations

import logging
import socket
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import requests
from pydantic import BaseModel, Field

from registrar.adapters.base import RegistryAdapter, adapter_aliases
from registrar.bridge.types import Service

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "127.0.0.1:8500"
DEFAULT_INTERVAL = "10s"

_CHECK_KEYS = (
    "check_http",
    "check_https",
    "check_tcp",
    "check_script",
    "check_ttl",
    "check_interval",
    "check_timeout",
    "check_deregister_after",
)


class ConsulConfig(BaseModel):
    """Brief: Typed options for ConsulAdapter.

    Inputs:
      - token: Optional ACL token sent as X-Consul-Token.
      - timeout: HTTP timeout in seconds.
      - node: Service id prefix owned by this process, used by cleanup();
        defaults to the process hostname.

    Outputs:
      - ConsulConfig instance.
    """

    token: Optional[str] = None
    timeout: float = Field(default=5.0, gt=0)
    node: Optional[str] = None

    class Config:
        extra = "allow"


def build_check(service: Service) -> Optional[Dict[str, Any]]:
    """Brief: Consul check definition for a service, from its attributes.

    Inputs:
      - service: Service whose attrs may contain check_http, check_https,
        check_tcp, check_script, check_ttl plus check_interval,
        check_timeout and check_deregister_after.

    Outputs:
      - Check dict for the agent API, or None when no check is declared.

    Example:
      >>> svc = Service(id="x", name="web", ip="10.0.0.1", port=80,
      ...               attrs={"check_http": "/health"})
      >>> build_check(svc)["HTTP"]
      'http://10.0.0.1:80/health'
    """

    attrs = service.attrs
    check: Dict[str, Any] = {}
    if attrs.get("check_http"):
        check["HTTP"] = f"http://{service.ip}:{service.port}{attrs['check_http']}"
    elif attrs.get("check_https"):
        check["HTTP"] = f"https://{service.ip}:{service.port}{attrs['check_https']}"
    elif attrs.get("check_tcp"):
        check["TCP"] = f"{service.ip}:{service.port}"
    elif attrs.get("check_script"):
        check["Args"] = ["/bin/sh", "-c", attrs["check_script"]]
    elif attrs.get("check_ttl"):
        check["TTL"] = attrs["check_ttl"]
    else:
        return None

    if "TTL" not in check:
        check["Interval"] = attrs.get("check_interval") or DEFAULT_INTERVAL
        if attrs.get("check_timeout"):
            check["Timeout"] = attrs["check_timeout"]
    if attrs.get("check_deregister_after"):
        check["DeregisterCriticalServiceAfter"] = attrs["check_deregister_after"]
    return check


@adapter_aliases("consul", "consul-tls")
class ConsulAdapter(RegistryAdapter):
    """Brief: Registry adapter for the Consul agent HTTP API.

    Inputs:
      - uri: consul:// or consul-tls:// URI; host:port of the agent.
      - **config: See ConsulConfig.

    Outputs:
      - ConsulAdapter instance with an open requests.Session.
    """

    @classmethod
    def get_config_model(cls):
        return ConsulConfig

    def __init__(self, uri: str = "", **config: Any) -> None:
        super().__init__(uri, **config)
        scheme = "https" if self.uri.scheme.endswith("tls") else "http"
        address = self.uri.netloc or DEFAULT_ADDRESS
        self.base_url = f"{scheme}://{address}"
        self._timeout = float(self.config.get("timeout") or 5.0)
        self.node = str(self.config.get("node") or socket.gethostname())

        self._session = requests.Session()
        token = self.config.get("token")
        if token:
            self._session.headers["X-Consul-Token"] = str(token)

    def close(self) -> None:
        self._session.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        resp = self._session.request(
            method, f"{self.base_url}{path}", timeout=self._timeout, **kwargs
        )
        resp.raise_for_status()
        return resp

    def ping(self) -> None:
        """Brief: Fail unless the agent reports a cluster leader."""
        leader = self._request("GET", "/v1/status/leader").json()
        if not leader:
            raise RuntimeError("consul: no cluster leader")
        logger.info("consul: current leader %s", leader)

    def registration(self, service: Service) -> Dict[str, Any]:
        """Brief: Agent API registration body for a service.

        Inputs:
          - service: Service to register.

        Outputs:
          - dict with ID, Name, Address, Port, Tags, Meta and optional Check.
        """

        body: Dict[str, Any] = {
            "ID": service.id,
            "Name": service.name,
            "Address": service.ip,
            "Port": int(service.port),
            "Tags": list(service.tags),
            "Meta": {
                k: str(v) for k, v in service.attrs.items() if k not in _CHECK_KEYS
            },
        }
        check = build_check(service)
        if check is not None:
            body["Check"] = check
        return body

    def register(self, service: Service) -> None:
        self._request("PUT", "/v1/agent/service/register", json=self.registration(service))

    def deregister(self, service: Service) -> None:
        self._deregister_id(service.id)

    def _deregister_id(self, service_id: str) -> None:
        self._request("PUT", f"/v1/agent/service/deregister/{quote(service_id, safe='')}")

    def refresh(self, service: Service) -> None:
        """Brief: Pass the TTL check of a service; no-op for other checks."""
        if not service.attrs.get("check_ttl"):
            return
        check_id = quote(f"service:{service.id}", safe="")
        self._request("PUT", f"/v1/agent/check/pass/{check_id}")

    def services(self) -> List[Service]:
        """Brief: Services currently known to the agent.

        Inputs:
          - None.

        Outputs:
          - List of Service (no origin; attrs from Meta).
        """

        raw = self._request("GET", "/v1/agent/services").json() or {}
        out: List[Service] = []
        for sid, entry in raw.items():
            out.append(
                Service(
                    id=str(entry.get("ID") or sid),
                    name=str(entry.get("Service") or ""),
                    ip=str(entry.get("Address") or ""),
                    port=int(entry.get("Port") or 0),
                    tags=list(entry.get("Tags") or []),
                    attrs=dict(entry.get("Meta") or {}),
                )
            )
        return out

    def cleanup(self, valid: Mapping[str, Service]) -> None:
        """Brief: Deregister services owned by this node that are not valid.

        Inputs:
          - valid: Mapping of service id to Service that should stay.

        Outputs:
          - None. Only ids starting with ``<node>:`` are considered, so
            services registered by other tools are left alone.
        """

        prefix = f"{self.node}:"
        for svc in self.services():
            if svc.id.startswith(prefix) and svc.id not in valid:
                logger.info("consul: removing stale service %s", svc.id)
                self._deregister_id(svc.id)
