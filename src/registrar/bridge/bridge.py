"""RegistryBridge: keeps a registry adapter in step with running containers.

Brief:
  The bridge tracks, per container id, the Services it registered for that
  container. Container lifecycle events drive add()/remove_on_exit(); timers
  drive refresh() and sync(). One re-entrant lock serializes every operation,
  registry I/O and backoff sleeps included, so tracked state never sees
  concurrent mutation and a container is never registered twice in parallel.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Set

from .filter import FilterError
from .metadata import container_metadata
from .retry import RetryPolicy
from .service import build_service, published_ports
from .types import BridgeConfig, CallNotSupported, ContainerNotFound, Service

logger = logging.getLogger(__name__)


def _short(container_id: str) -> str:
    return str(container_id)[:12]


class RegistryBridge:
    """Brief: Drive add/remove/refresh/sync against one registry adapter.

    Inputs:
      - runtime: Container runtime exposing inspect(id), list_running().
      - adapter: RegistryAdapter (ping/register/deregister/refresh, optionally
        cleanup and admits).
      - config: BridgeConfig; defaults apply when None.
      - retry: Bounded RetryPolicy wrapping register/deregister calls.

    Outputs:
      - RegistryBridge instance with no tracked containers.
    """

    def __init__(
        self,
        runtime: Any,
        adapter: Any,
        config: Optional[BridgeConfig],
        retry: RetryPolicy,
    ) -> None:
        if retry is None:
            raise ValueError("RegistryBridge requires a bounded RetryPolicy")
        self.runtime = runtime
        self.adapter = adapter
        self.config = config or BridgeConfig()
        self.retry = retry
        self._lock = threading.RLock()
        self._services: Dict[str, List[Service]] = {}
        # Containers whose last add() left at least one service unregistered.
        self._incomplete: Set[str] = set()

    def ping(self) -> None:
        """Brief: Check the adapter's backend once; exceptions propagate."""
        self.adapter.ping()

    def tracked(self, container_id: str) -> bool:
        with self._lock:
            return container_id in self._services

    def services(self) -> Dict[str, List[Service]]:
        """Brief: Snapshot of tracked state.

        Inputs:
          - None.

        Outputs:
          - Dict mapping container id to a copy of its Service list.
        """

        with self._lock:
            return {cid: list(svcs) for cid, svcs in self._services.items()}

    def add(self, container_id: str) -> None:
        """Brief: Register every eligible port of a container.

        Inputs:
          - container_id: Container to add.

        Outputs:
          - None. No-op when the container is already tracked.
        """

        with self._lock:
            self._add_locked(container_id, quiet=False)

    def _add_locked(self, container_id: str, quiet: bool, fresh: bool = False) -> None:
        if container_id in self._services and not fresh:
            logger.info("container %s already exists, ignoring", _short(container_id))
            return

        try:
            container = self.runtime.inspect(container_id)
        except ContainerNotFound:
            logger.info("container %s no longer exists", _short(container_id))
            return
        except Exception as exc:
            logger.warning(
                "unable to inspect container %s: %s", _short(container_id), exc
            )
            return

        ports = published_ports(container)
        is_group = len(ports) > 1
        family = self.config.address_family

        added: List[Service] = []
        failed = False
        for port in ports.values():
            metadata = container_metadata(container, port.exposed_port, family)
            service = build_service(port, metadata, is_group, self.config)
            if service is None:
                if not quiet:
                    logger.info(
                        "ignored %s port %s", _short(container_id), port.exposed_port
                    )
                continue
            if not self._admitted(service):
                if not quiet:
                    logger.info(
                        "ignored %s service %s: rejected by filter",
                        _short(container_id),
                        service.id,
                    )
                continue
            try:
                self.retry.call(self.adapter.register, service)
            except Exception as exc:
                logger.error("unable to register service %s: %s", service.id, exc)
                failed = True
                continue
            added.append(service)
            logger.info("added: %s %s", _short(container_id), service.id)

        if fresh:
            # Services recorded earlier stay registered even when this pass
            # could not re-register them; remove() must still see them.
            seen = {service.id for service in added}
            kept = [
                service
                for service in self._services.get(container_id, [])
                if service.id not in seen
            ]
            added = kept + added

        self._services[container_id] = added
        if failed:
            self._incomplete.add(container_id)
        else:
            self._incomplete.discard(container_id)

        if not added and not failed and not quiet:
            logger.info("ignored %s: no published ports", _short(container_id))

    def _admitted(self, service: Service) -> bool:
        admits = getattr(self.adapter, "admits", None)
        if admits is None:
            return True
        try:
            return bool(admits(service))
        except FilterError as exc:
            logger.error("invalid filter for service %s: %s", service.id, exc)
            return False

    def remove(self, container_id: str) -> None:
        """Brief: Deregister a container's services and forget the container.

        Inputs:
          - container_id: Container to remove.

        Outputs:
          - None. Every recorded Service gets a deregister attempt; the
            container is untracked even when some attempts fail.
        """

        with self._lock:
            self._remove_locked(container_id)

    def _remove_locked(self, container_id: str) -> None:
        for service in self._services.get(container_id, []):
            try:
                self.retry.call(self.adapter.deregister, service)
            except Exception as exc:
                logger.error("unable to deregister service %s: %s", service.id, exc)
                continue
            logger.info("removed: %s %s", _short(container_id), service.id)
        self._services.pop(container_id, None)
        self._incomplete.discard(container_id)

    def remove_on_exit(self, container_id: str) -> None:
        """Brief: remove() gated by the configured deregister policy.

        Inputs:
          - container_id: Container that stopped or died.

        Outputs:
          - None.
        """

        with self._lock:
            if self._should_remove(container_id):
                self._remove_locked(container_id)

    def _should_remove(self, container_id: str) -> bool:
        if self.config.deregister_check == "always":
            return True
        try:
            container = self.runtime.inspect(container_id)
        except ContainerNotFound:
            return True
        except Exception as exc:
            logger.warning(
                "unable to inspect container %s, keeping services: %s",
                _short(container_id),
                exc,
            )
            return False

        state = container.get("State") or {}
        if state.get("Running"):
            logger.info(
                "not removing %s: container is running", _short(container_id)
            )
            return False
        try:
            exit_code = int(state.get("ExitCode") or 0)
        except (TypeError, ValueError):
            exit_code = 0
        # Exit codes with the high bit set mean the process was signalled.
        if exit_code == 0 or exit_code & 0x80:
            return True
        logger.info(
            "not removing %s: exit code %d", _short(container_id), exit_code
        )
        return False

    def refresh(self) -> None:
        """Brief: Re-assert every tracked Service once, without retries.

        Inputs:
          - None.

        Outputs:
          - None. Failures are logged and do not change tracked state.
        """

        with self._lock:
            for container_id, services in self._services.items():
                for service in services:
                    try:
                        self.adapter.refresh(service)
                    except Exception as exc:
                        logger.warning(
                            "unable to refresh service %s: %s", service.id, exc
                        )
                        continue
                    logger.info("refreshed: %s %s", _short(container_id), service.id)

    def sync(self, quiet: bool = False) -> None:
        """Brief: Reconcile running containers against tracked state.

        Inputs:
          - quiet: Suppress "ignored" noise and tolerate listing failures.

        Outputs:
          - None. Untracked containers are added; tracked ones have their
            recorded Services registered again. Containers missing from the
            listing keep their Services.

        Notes:
          - A container whose earlier add() failed to register some Service
            is added again from scratch.
          - With cleanup enabled the adapter receives every tracked Service
            afterwards so it can drop entries this bridge does not know.
        """

        with self._lock:
            logger.info("resyncing services")
            try:
                running = list(self.runtime.list_running())
            except Exception as exc:
                if not quiet:
                    raise
                logger.error("error listing containers, skipping sync: %s", exc)
                return

            for container_id in running:
                if container_id not in self._services:
                    self._add_locked(container_id, quiet)
                elif container_id in self._incomplete:
                    self._add_locked(container_id, quiet, fresh=True)
                else:
                    for service in self._services[container_id]:
                        try:
                            self.retry.call(self.adapter.register, service)
                        except Exception as exc:
                            logger.error(
                                "unable to sync service %s: %s", service.id, exc
                            )

            if self.config.cleanup:
                self._cleanup_locked()

    def _cleanup_locked(self) -> None:
        valid = {
            service.id: service
            for services in self._services.values()
            for service in services
        }
        try:
            self.adapter.cleanup(valid)
        except CallNotSupported:
            logger.debug("adapter does not support cleanup")
        except Exception as exc:
            logger.error("cleanup failed: %s", exc)
        else:
            logger.info("cleanup done, %d services kept", len(valid))
