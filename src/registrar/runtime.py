"""Container runtime collaborator backed by the Docker SDK.

Brief:
  - inspect(): fresh ``docker inspect`` record for one container.
  - list_running(): ids of running containers.
  - events(): decoded container lifecycle events.
  - node_name(): the Docker host's name (used as the default node id).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

import docker
from docker.errors import NotFound

from registrar.bridge.types import ContainerNotFound

logger = logging.getLogger(__name__)

LIFECYCLE_ACTIONS = ("start", "die", "stop", "kill")


class ContainerRuntime:
    """Brief: Interface the bridge and main loop use to query containers.

    Inputs:
      - None.

    Outputs:
      - ContainerRuntime instance; subclasses implement the methods.
    """

    def inspect(self, container_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    def list_running(self) -> List[str]:
        raise NotImplementedError

    def events(self) -> Iterator[Dict[str, Any]]:
        raise NotImplementedError

    def node_name(self) -> str:
        return ""

    def close(self) -> None:
        return None


class DockerRuntime(ContainerRuntime):
    """Brief: ContainerRuntime talking to a Docker daemon.

    Inputs:
      - base_url: Docker endpoint (e.g. "unix:///var/run/docker.sock"); when
        None the client is configured from DOCKER_HOST and friends.
      - client: Pre-built docker.DockerClient (tests pass fakes).

    Outputs:
      - DockerRuntime instance.
    """

    def __init__(self, base_url: Optional[str] = None, client: Any = None) -> None:
        if client is None:
            client = (
                docker.DockerClient(base_url=base_url)
                if base_url
                else docker.from_env()
            )
        self._client = client

    def inspect(self, container_id: str) -> Dict[str, Any]:
        """Brief: Inspect one container.

        Inputs:
          - container_id: Full or short container id.

        Outputs:
          - Inspect dict; ContainerNotFound when the daemon does not know it.
        """

        try:
            return self._client.api.inspect_container(container_id)
        except NotFound as exc:
            raise ContainerNotFound(container_id) from exc

    def list_running(self) -> List[str]:
        return [str(c["Id"]) for c in self._client.api.containers()]

    def events(self) -> Iterator[Dict[str, Any]]:
        """Brief: Stream container lifecycle events.

        Inputs:
          - None.

        Outputs:
          - Iterator of decoded event dicts with ``Action`` (or legacy
            ``status``) and ``id``. Ends when the daemon closes the stream.
        """

        return self._client.events(decode=True, filters={"type": "container"})

    def node_name(self) -> str:
        try:
            return str(self._client.info().get("Name") or "")
        except Exception as exc:
            logger.warning("unable to read docker host name: %s", exc)
            return ""

    def close(self) -> None:
        self._client.close()


def event_action(event: Dict[str, Any]) -> str:
    """Brief: Lifecycle action of a Docker event ("start", "die", ...).

    Inputs:
      - event: Decoded event dict.

    Outputs:
      - Lowercase action, "" when absent. Actions such as
        ``"exec_start: sh"`` are reduced to their first word.
    """

    action = str(event.get("Action") or event.get("status") or "")
    return action.split(":", 1)[0].strip().lower()


def event_container_id(event: Dict[str, Any]) -> str:
    actor = event.get("Actor") or {}
    return str(event.get("id") or actor.get("ID") or "")
