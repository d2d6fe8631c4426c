"""
Brief: Tests for registrar.bridge.bridge.RegistryBridge lifecycle.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import threading

import pytest

from registrar.bridge.bridge import RegistryBridge
from registrar.bridge.retry import RetryPolicy
from registrar.bridge.types import BridgeConfig

CID = "c0ffee0123456789abcdef"
OTHER = "feedface0123456789abcd"


def _bridge(runtime, adapter, config=None, attempts=2):
    """Brief: RegistryBridge with a non-sleeping bounded retry policy."""
    retry = RetryPolicy(max_attempts=attempts, sleep=lambda s: None)
    return RegistryBridge(runtime, adapter, config or BridgeConfig(), retry)


def test_bridge_requires_retry_policy(fake_runtime, recording_adapter):
    """
    Brief: A RetryPolicy must be supplied explicitly.

    Inputs:
      - retry=None

    Outputs:
      - None: Asserts ValueError
    """
    with pytest.raises(ValueError):
        RegistryBridge(fake_runtime, recording_adapter, BridgeConfig(), None)


def test_add_registers_and_tracks(fake_runtime, recording_adapter, container_factory):
    """
    Brief: add() registers each published port and records the services.

    Inputs:
      - container with two published ports

    Outputs:
      - None: Asserts register calls and tracked state
    """
    fake_runtime.add(container_factory(cid=CID, ports={"80/tcp": 8080, "443/tcp": 8443}))
    bridge = _bridge(fake_runtime, recording_adapter)
    bridge.add(CID)
    assert recording_adapter.count("register") == 2
    assert bridge.tracked(CID)
    assert sorted(s.id for s in bridge.services()[CID]) == ["node1:web:443", "node1:web:80"]


def test_add_twice_is_noop(fake_runtime, recording_adapter, container_factory):
    """
    Brief: A second add() for a tracked container makes no adapter calls.

    Inputs:
      - same container id added twice

    Outputs:
      - None: Asserts one register and one inspect
    """
    fake_runtime.add(container_factory(cid=CID))
    bridge = _bridge(fake_runtime, recording_adapter)
    bridge.add(CID)
    bridge.add(CID)
    assert recording_adapter.count("register") == 1
    assert fake_runtime.inspect_calls == [CID]


def test_container_without_ports_is_tracked_empty(fake_runtime, recording_adapter, container_factory):
    """
    Brief: Processed containers with nothing to publish are tracked with [].

    Inputs:
      - container without ports

    Outputs:
      - None: Asserts tracked with an empty list and no second inspect
    """
    fake_runtime.add(container_factory(cid=CID, ports={}))
    bridge = _bridge(fake_runtime, recording_adapter)
    bridge.add(CID)
    assert bridge.services() == {CID: []}
    bridge.add(CID)
    assert fake_runtime.inspect_calls == [CID]


def test_add_unknown_container_stays_untracked(fake_runtime, recording_adapter):
    """
    Brief: Inspection failures are logged and leave the id untracked.

    Inputs:
      - unknown container id, then a runtime error

    Outputs:
      - None: Asserts untracked and no registrations
    """
    bridge = _bridge(fake_runtime, recording_adapter)
    bridge.add(CID)
    assert not bridge.tracked(CID)
    fake_runtime.inspect_error = RuntimeError("daemon down")
    bridge.add(CID)
    assert not bridge.tracked(CID)
    assert recording_adapter.count("register") == 0


def test_register_failure_retried_then_skipped(fake_runtime, recording_adapter, container_factory, caplog):
    """
    Brief: Register is retried per policy; exhausted services are not recorded.

    Inputs:
      - adapter failing for the 80/tcp service

    Outputs:
      - None: Asserts attempts, recorded services and log message
    """
    fake_runtime.add(container_factory(cid=CID, ports={"80/tcp": 8080, "443/tcp": 8443}))
    recording_adapter.fail_register = {"node1:web:80"}
    bridge = _bridge(fake_runtime, recording_adapter, attempts=3)
    with caplog.at_level(logging.ERROR):
        bridge.add(CID)
    attempts = [sid for op, sid in recording_adapter.calls if op == "register" and sid == "node1:web:80"]
    assert len(attempts) == 3
    assert [s.id for s in bridge.services()[CID]] == ["node1:web:443"]
    assert "unable to register service node1:web:80" in caplog.text


def test_sync_retries_incomplete_container(fake_runtime, recording_adapter, container_factory):
    """
    Brief: A container with a failed registration is re-added by sync().

    Inputs:
      - registration failing once, then healing

    Outputs:
      - None: Asserts both services recorded after sync
    """
    fake_runtime.add(container_factory(cid=CID, ports={"80/tcp": 8080, "443/tcp": 8443}))
    recording_adapter.fail_register = {"node1:web:80"}
    bridge = _bridge(fake_runtime, recording_adapter, attempts=1)
    bridge.add(CID)
    assert len(bridge.services()[CID]) == 1

    recording_adapter.fail_register = set()
    bridge.sync(quiet=True)
    assert sorted(s.id for s in bridge.services()[CID]) == ["node1:web:443", "node1:web:80"]

    # Now complete: a further sync re-registers without inspecting again.
    inspects = len(fake_runtime.inspect_calls)
    bridge.sync(quiet=True)
    assert len(fake_runtime.inspect_calls) == inspects


def test_remove_tolerates_partial_failure(fake_runtime, recording_adapter, container_factory):
    """
    Brief: Every service gets a deregister attempt and the entry is dropped.

    Inputs:
      - three services, the first failing to deregister

    Outputs:
      - None: Asserts attempts for all and untracked container
    """
    fake_runtime.add(
        container_factory(cid=CID, ports={"80/tcp": 8080, "443/tcp": 8443, "9000/tcp": 9000})
    )
    bridge = _bridge(fake_runtime, recording_adapter, attempts=2)
    bridge.add(CID)
    recorded = [s.id for s in bridge.services()[CID]]
    recording_adapter.fail_deregister = {recorded[0]}

    bridge.remove(CID)

    deregistered = [sid for op, sid in recording_adapter.calls if op == "deregister"]
    assert set(deregistered) == set(recorded)
    assert deregistered.count(recorded[0]) == 2
    assert not bridge.tracked(CID)


def test_remove_untracked_is_harmless(fake_runtime, recording_adapter):
    """
    Brief: Removing an unknown container makes no adapter calls.

    Inputs:
      - untracked id

    Outputs:
      - None: Asserts no calls
    """
    _bridge(fake_runtime, recording_adapter).remove(CID)
    assert recording_adapter.calls == []


def test_refresh_is_not_retried_and_keeps_state(fake_runtime, recording_adapter, container_factory):
    """
    Brief: refresh() calls the adapter once per service, ignoring failures.

    Inputs:
      - two services, one failing refresh

    Outputs:
      - None: Asserts single refresh per service and unchanged state
    """
    fake_runtime.add(container_factory(cid=CID, ports={"80/tcp": 8080, "443/tcp": 8443}))
    bridge = _bridge(fake_runtime, recording_adapter, attempts=5)
    bridge.add(CID)
    before = bridge.services()
    recording_adapter.fail_refresh = {"node1:web:80"}
    bridge.refresh()
    assert recording_adapter.count("refresh") == 2
    assert bridge.services() == before


def test_sync_adds_new_and_reregisters_known(fake_runtime, recording_adapter, container_factory):
    """
    Brief: sync() adds untracked containers and re-registers tracked ones.

    Inputs:
      - one tracked and one new container

    Outputs:
      - None: Asserts register counts per service
    """
    fake_runtime.add(container_factory(cid=CID))
    bridge = _bridge(fake_runtime, recording_adapter)
    bridge.add(CID)
    fake_runtime.add(container_factory(cid=OTHER, name="/api", ports={"5000/tcp": 5000}))

    bridge.sync()

    registers = [sid for op, sid in recording_adapter.calls if op == "register"]
    assert registers.count("node1:web:80") == 2
    assert registers.count("node1:api:5000") == 1
    assert bridge.tracked(OTHER)


def test_sync_keeps_services_of_vanished_containers(fake_runtime, recording_adapter, container_factory):
    """
    Brief: Containers missing from the listing keep their services.

    Inputs:
      - tracked container removed from the runtime

    Outputs:
      - None: Asserts still tracked and no deregister
    """
    fake_runtime.add(container_factory(cid=CID))
    bridge = _bridge(fake_runtime, recording_adapter)
    bridge.add(CID)
    fake_runtime.containers.clear()
    bridge.sync()
    assert bridge.tracked(CID)
    assert recording_adapter.count("deregister") == 0


def test_sync_listing_failure(fake_runtime, recording_adapter):
    """
    Brief: Listing errors are swallowed when quiet and raised otherwise.

    Inputs:
      - runtime whose listing fails

    Outputs:
      - None: Asserts quiet skip and loud raise
    """
    fake_runtime.list_error = RuntimeError("no daemon")
    bridge = _bridge(fake_runtime, recording_adapter)
    bridge.sync(quiet=True)
    with pytest.raises(RuntimeError):
        bridge.sync(quiet=False)


def test_sync_cleanup_hands_valid_services(fake_runtime, recording_adapter, container_factory):
    """
    Brief: With cleanup enabled the adapter receives tracked services.

    Inputs:
      - BridgeConfig(cleanup=True)

    Outputs:
      - None: Asserts mapping passed to cleanup
    """
    fake_runtime.add(container_factory(cid=CID))
    bridge = _bridge(fake_runtime, recording_adapter, BridgeConfig(cleanup=True))
    bridge.sync()
    assert list(recording_adapter.cleaned) == ["node1:web:80"]

    recording_adapter.supports_cleanup = False
    bridge.sync()


def test_filtered_services_are_not_registered(fake_runtime, container_factory):
    """
    Brief: Services the adapter does not admit are skipped.

    Inputs:
      - adapter admitting only port 443 services

    Outputs:
      - None: Asserts only the admitted service is registered
    """

    class _Picky:
        def __init__(self):
            self.registered = []

        def admits(self, service):
            return service.port == 8443

        def register(self, service):
            self.registered.append(service.id)

    fake_runtime.add(container_factory(cid=CID, ports={"80/tcp": 8080, "443/tcp": 8443}))
    adapter = _Picky()
    bridge = _bridge(fake_runtime, adapter)
    bridge.add(CID)
    assert adapter.registered == ["node1:web:443"]


@pytest.mark.parametrize(
    "policy,state,removed",
    [
        ("always", {"Running": False, "ExitCode": 1}, True),
        ("on-success", {"Running": False, "ExitCode": 0}, True),
        ("on-success", {"Running": False, "ExitCode": 137}, True),
        ("on-success", {"Running": False, "ExitCode": 1}, False),
        ("on-success", {"Running": True, "ExitCode": 0}, False),
    ],
)
def test_remove_on_exit_policy(fake_runtime, recording_adapter, container_factory, policy, state, removed):
    """
    Brief: remove_on_exit() follows the deregister policy and exit status.

    Inputs:
      - policy: deregister check
      - state: container State after exit
      - removed: expected outcome

    Outputs:
      - None: Asserts tracked state
    """
    container = container_factory(cid=CID)
    fake_runtime.add(container)
    bridge = _bridge(fake_runtime, recording_adapter, BridgeConfig(deregister_check=policy))
    bridge.add(CID)
    fake_runtime.containers[CID]["State"] = state
    bridge.remove_on_exit(CID)
    assert bridge.tracked(CID) is not removed


def test_remove_on_exit_gone_container_is_removed(fake_runtime, recording_adapter, container_factory):
    """
    Brief: on-success removes services of containers that no longer exist.

    Inputs:
      - container deleted before the die event is handled

    Outputs:
      - None: Asserts removal
    """
    fake_runtime.add(container_factory(cid=CID))
    bridge = _bridge(fake_runtime, recording_adapter, BridgeConfig(deregister_check="on-success"))
    bridge.add(CID)
    del fake_runtime.containers[CID]
    bridge.remove_on_exit(CID)
    assert not bridge.tracked(CID)


def test_concurrent_adds_register_once(fake_runtime, recording_adapter, container_factory):
    """
    Brief: Concurrent add() calls for one id register its services once.

    Inputs:
      - eight threads adding the same container

    Outputs:
      - None: Asserts a single register call
    """
    fake_runtime.add(container_factory(cid=CID))
    bridge = _bridge(fake_runtime, recording_adapter)
    threads = [threading.Thread(target=bridge.add, args=(CID,)) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert recording_adapter.count("register") == 1


def test_incomplete_resync_keeps_previously_registered(fake_runtime, recording_adapter, container_factory):
    """
    Brief: A service registered by add() stays tracked when the re-add fails it.

    Inputs:
      - add(): 443 registers, 80 fails
      - sync(): 443 fails, 80 registers

    Outputs:
      - None: Asserts both tracked and both deregistered on remove
    """
    fake_runtime.add(container_factory(cid=CID, ports={"80/tcp": 8080, "443/tcp": 8443}))
    recording_adapter.fail_register = {"node1:web:80"}
    bridge = _bridge(fake_runtime, recording_adapter, attempts=1)
    bridge.add(CID)

    recording_adapter.fail_register = {"node1:web:443"}
    bridge.sync(quiet=True)
    assert sorted(s.id for s in bridge.services()[CID]) == ["node1:web:443", "node1:web:80"]

    recording_adapter.fail_register = set()
    bridge.remove(CID)
    deregistered = [sid for op, sid in recording_adapter.calls if op == "deregister"]
    assert sorted(deregistered) == ["node1:web:443", "node1:web:80"]


def test_internal_label_ip_passes_container_filter(fake_runtime, container_factory):
    """
    Brief: Internal services admitted by a container filter even with a label IP.

    Inputs:
      - internal mode, use_ip_from_label, adapter filter "container:*"

    Outputs:
      - None: Asserts the service is registered with the label address
    """
    from registrar.adapters.memory import MemoryAdapter

    fake_runtime.add(container_factory(cid=CID, labels={"svc.ip": "198.51.100.7"}))
    adapter = MemoryAdapter("memory://", filter="container:*")
    config = BridgeConfig(internal=True, use_ip_from_label="svc.ip")
    bridge = _bridge(fake_runtime, adapter, config)
    bridge.add(CID)
    services = adapter.services()
    assert [(s.ip, s.port, s.internal) for s in services] == [("198.51.100.7", 80, True)]

    host_only = MemoryAdapter("memory://", filter="host:*")
    _bridge(fake_runtime, host_only, config).add(CID)
    assert host_only.services() == []
