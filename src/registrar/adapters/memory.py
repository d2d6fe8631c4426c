"""In-memory registry adapter with an optional read-only HTTP view.

Brief:
  Keeps registered services in a dict keyed by service id. When the registry
  URI carries a port (``memory://0.0.0.0:8500``), setup() serves the
  contents over HTTP:

    GET /services          -> {id: service}
    GET /service/{name}    -> {id: service} for one name, 404 when none
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from registrar.adapters.base import RegistryAdapter, adapter_aliases
from registrar.bridge.types import Service

logger = logging.getLogger(__name__)


def create_app(adapter: "MemoryAdapter") -> FastAPI:
    """Brief: FastAPI app exposing an adapter's services.

    Inputs:
      - adapter: MemoryAdapter to read from.

    Outputs:
      - FastAPI application.
    """

    app = FastAPI(title="registrar memory registry")
    app.state.adapter = adapter

    @app.get("/services")
    async def get_services() -> JSONResponse:
        return JSONResponse(content=adapter.snapshot())

    @app.get("/service/{name}")
    async def get_service(name: str) -> JSONResponse:
        found = adapter.snapshot(name=name)
        if not found:
            raise HTTPException(status_code=404, detail=f"no service named {name}")
        return JSONResponse(content=found)

    return app


@adapter_aliases("memory", "mem")
class MemoryAdapter(RegistryAdapter):
    """Brief: Registry backend that only keeps services in process memory.

    Inputs:
      - uri: ``memory://`` or ``memory://host:port`` to enable the HTTP view.
      - **config: Generic adapter options (``filter``).

    Outputs:
      - MemoryAdapter instance.

    Example:
      >>> from registrar.bridge.types import Service
      >>> mem = MemoryAdapter("memory://")
      >>> mem.register(Service(id="h:web:80", name="web", ip="10.0.0.1", port=80))
      >>> [s.id for s in mem.services()]
      ['h:web:80']
    """

    def __init__(self, uri: str = "", **config: Any) -> None:
        super().__init__(uri, **config)
        self._lock = threading.RLock()
        self._services: Dict[str, Service] = {}
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    def setup(self) -> None:
        """Brief: Start the HTTP view in a daemon thread when a port is given.

        Inputs:
          - None (host/port come from the adapter URI).

        Outputs:
          - None.
        """

        port = self.uri.port
        if not port:
            return
        host = self.uri.hostname or "0.0.0.0"
        config = uvicorn.Config(create_app(self), host=host, port=port, log_level="info")
        self._server = uvicorn.Server(config)

        def _runner() -> None:
            try:
                self._server.run()
            except Exception:  # pragma: no cover - depends on socket availability
                logger.exception("Unhandled exception in memory registry HTTP thread")

        self._thread = threading.Thread(
            target=_runner, name="registrar-memory-http", daemon=True
        )
        self._thread.start()
        logger.info("memory registry listening on %s:%d", host, port)

    def close(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5.0)

    def ping(self) -> None:
        return None

    def register(self, service: Service) -> None:
        with self._lock:
            self._services[service.id] = service

    def deregister(self, service: Service) -> None:
        with self._lock:
            self._services.pop(service.id, None)

    def refresh(self, service: Service) -> None:
        self.register(service)

    def services(self) -> List[Service]:
        with self._lock:
            return list(self._services.values())

    def cleanup(self, valid: Mapping[str, Service]) -> None:
        with self._lock:
            for sid in [sid for sid in self._services if sid not in valid]:
                logger.info("memory: removing stale service %s", sid)
                del self._services[sid]

    def snapshot(self, name: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        """Brief: JSON-ready view of registered services.

        Inputs:
          - name: Only include services with this name when given.

        Outputs:
          - Dict mapping service id to Service.as_dict().
        """

        with self._lock:
            return {
                sid: svc.as_dict()
                for sid, svc in self._services.items()
                if name is None or svc.name == name
            }
