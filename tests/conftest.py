"""
Brief: Global pytest configuration and shared fakes for registrar tests.

Inputs:
  - None

Outputs:
  - None
"""

import copy
import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'registrar' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from registrar.bridge.types import ContainerNotFound  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


def make_container(
    cid="c0ffee0123456789abcdef",
    name="/web",
    image="nginx:1.25",
    env=None,
    labels=None,
    ports=None,
    ip="172.17.0.2",
    state=None,
):
    """Brief: Build a docker-inspect-like container record.

    Inputs:
      - cid, name, image, env, labels: Identity and Config fields.
      - ports: NetworkSettings.Ports mapping, default {"80/tcp": 8080}.
        Values may be an int host port, a binding list or None.
      - ip: Container IPv4 address.
      - state: Optional State mapping.

    Outputs:
      - dict shaped like ``docker inspect`` output.
    """

    raw_ports = {"80/tcp": 8080} if ports is None else ports
    net_ports = {}
    for key, value in raw_ports.items():
        if isinstance(value, int):
            net_ports[key] = [{"HostIp": "0.0.0.0", "HostPort": str(value)}]
        else:
            net_ports[key] = value
    return {
        "Id": cid,
        "Name": name,
        "Config": {
            "Image": image,
            "Hostname": cid[:12],
            "Env": list(env or []),
            "Labels": dict(labels or {}),
        },
        "HostConfig": {"PortBindings": {}},
        "NetworkSettings": {"IPAddress": ip, "Ports": net_ports},
        "State": dict(state or {"Running": True, "ExitCode": 0}),
    }


class FakeRuntime:
    """Brief: In-memory ContainerRuntime used by bridge and main tests.

    Inputs:
      - containers: Optional iterable of container records.

    Outputs:
      - FakeRuntime with inspect/list_running/events and call counters.
    """

    def __init__(self, containers=()):
        self.containers = {c["Id"]: c for c in containers}
        self.inspect_calls = []
        self.list_error = None
        self.inspect_error = None
        self.event_list = []
        self.closed = False

    def add(self, container):
        self.containers[container["Id"]] = container

    def inspect(self, container_id):
        self.inspect_calls.append(container_id)
        if self.inspect_error is not None:
            raise self.inspect_error
        try:
            return copy.deepcopy(self.containers[container_id])
        except KeyError:
            raise ContainerNotFound(container_id)

    def list_running(self):
        if self.list_error is not None:
            raise self.list_error
        return [
            cid
            for cid, c in self.containers.items()
            if (c.get("State") or {}).get("Running", True)
        ]

    def events(self):
        return iter(self.event_list)

    def node_name(self):
        return "docker-host"

    def close(self):
        self.closed = True


class RecordingAdapter:
    """Brief: Adapter double recording calls and failing on demand.

    Inputs:
      - None.

    Outputs:
      - RecordingAdapter; set ``fail_register`` / ``fail_deregister`` /
        ``fail_refresh`` to sets of service ids that should raise.
    """

    def __init__(self):
        self.calls = []
        self.fail_register = set()
        self.fail_deregister = set()
        self.fail_refresh = set()
        self.cleaned = None
        self.supports_cleanup = True

    def ping(self):
        self.calls.append(("ping", None))

    def register(self, service):
        self.calls.append(("register", service.id))
        if service.id in self.fail_register:
            raise RuntimeError(f"register {service.id} failed")

    def deregister(self, service):
        self.calls.append(("deregister", service.id))
        if service.id in self.fail_deregister:
            raise RuntimeError(f"deregister {service.id} failed")

    def refresh(self, service):
        self.calls.append(("refresh", service.id))
        if service.id in self.fail_refresh:
            raise RuntimeError(f"refresh {service.id} failed")

    def cleanup(self, valid):
        from registrar.bridge.types import CallNotSupported

        if not self.supports_cleanup:
            raise CallNotSupported("no cleanup")
        self.cleaned = dict(valid)

    def count(self, op):
        return sum(1 for name, _ in self.calls if name == op)


@pytest.fixture
def container_factory():
    """Brief: Expose make_container to tests as a fixture."""
    return make_container


@pytest.fixture
def fake_runtime():
    """Brief: Fresh FakeRuntime with no containers."""
    return FakeRuntime()


@pytest.fixture
def recording_adapter():
    """Brief: Fresh RecordingAdapter."""
    return RecordingAdapter()


@pytest.fixture(autouse=True)
def fixed_hostname(monkeypatch):
    """
    Brief: Pin the process hostname and its resolution for service ids.

    Inputs:
      - monkeypatch: pytest fixture

    Outputs:
      - None
    """
    from registrar.bridge import service as service_mod

    service_mod._HOST_ADDR_CACHE.clear()
    monkeypatch.setattr(service_mod, "local_hostname", lambda: "node1")
    monkeypatch.setattr(service_mod, "_resolve_hostname", lambda name: "10.0.0.1")
    yield


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield
