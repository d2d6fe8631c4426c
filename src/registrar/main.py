from __future__ import annotations

import argparse
import logging
import signal
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from . import __version__
from .adapters import load_adapter
from .bridge import RegistryBridge
from .config.config_parser import (
    RegistrarConfig,
    bridge_config,
    build_config,
    load_config_file,
    retry_policy,
)
from .config.logging_config import init_logging
from .runtime import DockerRuntime, event_action, event_container_id

logger = logging.getLogger("registrar.main")

REMOVE_ACTIONS = ("die", "stop", "kill")


def build_parser() -> argparse.ArgumentParser:
    """Brief: Command line parser; every option defaults to None so that
    environment and config file values show through.

    Inputs:
      - None.

    Outputs:
      - argparse.ArgumentParser.
    """

    parser = argparse.ArgumentParser(
        prog="registrar",
        description="Register published Docker container ports with a service registry",
    )
    parser.add_argument(
        "registry_uri",
        nargs="?",
        default=None,
        help="Registry URI, e.g. consul://127.0.0.1:8500 or memory://",
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--docker-url", dest="docker_url", default=None, help="Docker endpoint URL")
    parser.add_argument("--ip", dest="host_ip", default=None, help="IP for ports mapped to the host")
    parser.add_argument(
        "--internal",
        action="store_const",
        const=True,
        default=None,
        help="Use internal ports instead of published ones",
    )
    parser.add_argument(
        "--explicit",
        action="store_const",
        const=True,
        default=None,
        help="Only register containers which have SERVICE_NAME label set",
    )
    parser.add_argument(
        "--use-ip-from-label",
        dest="use_ip_from_label",
        default=None,
        help="Use IP which is stored in a label assigned to the container",
    )
    parser.add_argument("--tags", default=None, help="Append tags for all registered services")
    parser.add_argument("--ttl", type=int, default=None, help="TTL for services (default is no expiry)")
    parser.add_argument(
        "--ttl-refresh",
        dest="ttl_refresh",
        type=int,
        default=None,
        help="Frequency with which service TTLs are refreshed",
    )
    parser.add_argument(
        "--resync",
        type=int,
        default=None,
        help="Frequency with which services are resynchronized",
    )
    parser.add_argument(
        "--deregister",
        default=None,
        help='Deregister exited services "always" or "on-success"',
    )
    parser.add_argument(
        "--retry-attempts",
        dest="retry_attempts",
        type=int,
        default=None,
        help="Max retry attempts to establish a connection with the backend. Use -1 for infinite retries",
    )
    parser.add_argument(
        "--retry-interval",
        dest="retry_interval",
        type=int,
        default=None,
        help="Interval (in millisecond) between retry-attempts",
    )
    parser.add_argument(
        "--cleanup",
        action="store_const",
        const=True,
        default=None,
        help="Remove dangling services",
    )
    parser.add_argument(
        "--address-family",
        dest="address_family",
        default=None,
        help='Address family for metadata and container IPs: "ipv4" or "ipv6"',
    )
    parser.add_argument("--node-id", dest="node_id", default=None, help="Service id prefix (default: hostname)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def ping_adapter(
    bridge: RegistryBridge,
    attempts: int,
    interval_ms: int,
    sleep: Callable[[float], Any] = time.sleep,
) -> None:
    """Brief: Ping the registry until it answers or attempts run out.

    Inputs:
      - bridge: RegistryBridge whose adapter is pinged.
      - attempts: Retries after the first failure; -1 retries forever.
      - interval_ms: Pause between attempts in milliseconds.
      - sleep: Injectable sleep function.

    Outputs:
      - None; the last ping exception is re-raised when attempts run out.
    """

    attempt = 0
    while True:
        try:
            bridge.ping()
            return
        except Exception as exc:
            if attempts != -1 and attempt >= attempts:
                raise
            attempt += 1
            logger.warning(
                "registry ping failed (%s); retry %d in %dms", exc, attempt, interval_ms
            )
            sleep(interval_ms / 1000.0)


def _spawn(fn: Callable[..., Any], *args: Any) -> None:
    threading.Thread(target=fn, args=args, daemon=True).start()


def dispatch_event(
    bridge: RegistryBridge,
    event: Dict[str, Any],
    spawn: Callable[..., Any] = _spawn,
) -> Optional[str]:
    """Brief: Route one Docker event to the bridge.

    Inputs:
      - bridge: RegistryBridge.
      - event: Decoded Docker event.
      - spawn: Callable(fn, *args) that runs fn asynchronously.

    Outputs:
      - The action handled ("start", "die", ...) or None when ignored.
    """

    action = event_action(event)
    container_id = event_container_id(event)
    if not container_id:
        return None
    if action == "start":
        logger.debug("event: %s %s", action, container_id[:12])
        spawn(bridge.add, container_id)
        return action
    if action in REMOVE_ACTIONS:
        logger.debug("event: %s %s", action, container_id[:12])
        spawn(bridge.remove_on_exit, container_id)
        return action
    return None


def start_ticker(
    name: str,
    interval: int,
    fn: Callable[[], Any],
    stop_event: threading.Event,
) -> Optional[threading.Thread]:
    """Brief: Call fn every interval seconds until stop_event is set.

    Inputs:
      - name: Thread name.
      - interval: Seconds between calls; no thread is started when <= 0.
      - fn: Callable to invoke.
      - stop_event: Event that ends the loop.

    Outputs:
      - Started daemon Thread, or None.
    """

    if interval <= 0:
        return None

    def _loop() -> None:
        while not stop_event.wait(interval):
            try:
                fn()
            except Exception:
                logger.exception("%s tick failed", name)

    thread = threading.Thread(target=_loop, name=name, daemon=True)
    thread.start()
    return thread


def run(
    cfg: RegistrarConfig,
    runtime: Any = None,
    adapter: Any = None,
    stop_event: Optional[threading.Event] = None,
) -> int:
    """Brief: Wire runtime, adapter and bridge together and process events.

    Inputs:
      - cfg: Validated RegistrarConfig.
      - runtime: ContainerRuntime; a DockerRuntime when None.
      - adapter: RegistryAdapter; built from cfg.registry_uri when None.
      - stop_event: Event stopping the ticker threads.

    Outputs:
      - Exit code: 1 when startup fails or the Docker event stream ends.
    """

    stop_event = stop_event or threading.Event()
    try:
        if adapter is None:
            # Service ids carry node_id, so adapters that clean up by id
            # prefix must use it as well.
            defaults = {"node": cfg.node_id} if cfg.node_id else {}
            adapter = load_adapter(cfg.registry_uri, **defaults)
        if runtime is None:
            runtime = DockerRuntime(cfg.docker_url)
        bridge = RegistryBridge(runtime, adapter, bridge_config(cfg), retry_policy(cfg))
    except Exception as exc:
        logger.error("startup failed: %s", exc)
        return 1

    try:
        adapter.setup()
        ping_adapter(bridge, cfg.retry_attempts, cfg.retry_interval)
        logger.info("using %s adapter: %s", type(adapter).__name__, cfg.registry_uri)

        node = runtime.node_name()
        if node:
            logger.info("connected to docker host %s", node)

        # Subscribe before the first sync so no start event is missed.
        events = runtime.events()
        bridge.sync(quiet=False)

        start_ticker("registrar-refresh", cfg.ttl_refresh, bridge.refresh, stop_event)
        start_ticker(
            "registrar-resync", cfg.resync, lambda: bridge.sync(quiet=True), stop_event
        )

        logger.info("listening for Docker events ...")
        for event in events:
            dispatch_event(bridge, event)
        logger.error("docker event loop closed")
        return 1
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
        return 0
    except Exception as exc:
        logger.error("%s", exc)
        return 1
    finally:
        stop_event.set()
        adapter.close()
        runtime.close()


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for registrar.
    Parses arguments, merges configuration, and runs the event loop.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code.

    Example use:
        CLI:
            registrar --ttl 30 --ttl-refresh 10 consul://127.0.0.1:8500
    """

    parser = build_parser()
    args = parser.parse_args(argv)
    cli = {k: v for k, v in vars(args).items() if k != "config"}

    try:
        file_cfg = load_config_file(args.config) if args.config else {}
        cfg = build_config(cli, file_cfg=file_cfg)
    except (OSError, ValueError) as exc:
        print(str(exc))
        return 1

    init_logging(cfg.logging)
    if not cfg.registry_uri:
        logger.error("missing required argument for registry URI")
        return 1
    logger.info("Starting registrar %s", __version__)

    try:
        signal.signal(signal.SIGTERM, signal.default_int_handler)
    except Exception:  # pragma: no cover - platform dependent
        logger.warning("Could not install SIGTERM handler on this platform")

    return run(cfg)


def console() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
