"""Command-line entrypoint for the Meshtastic metrics exporter."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from http.server import ThreadingHTTPServer
from typing import Dict, List, Optional

from .catalog import register_metrics
from .config import AppConfig, ConfigError, config_path_from_env, load_config
from .dispatcher import FrameDispatcher
from .ipc import make_channels
from .metrics import MetricsRegistry, start_metrics_http_server
from .state import DeviceIdentity
from .supervisor import DeviceLinkLost, Supervisor
from .transport import LinkFactory, open_link
from .worker import ConnectionWorker

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_LINK_LOST = 2


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export Meshtastic device telemetry as Prometheus metrics")
    parser.add_argument(
        "--config",
        default=config_path_from_env(),
        help="Path to the YAML config file (defaults to $CONFIG_FILE_PATH or ./config.yaml)",
    )
    parser.add_argument("--log-level", help="Logging level (defaults to config log_level or $LOG_LEVEL)")
    parser.add_argument("--serial-port", help="Serial device of the radio; overrides meshtastic_addr")
    return parser.parse_args(argv)


def start_observability_server(
    config: AppConfig,
    registry: MetricsRegistry,
    supervisor: Supervisor,
    identity: DeviceIdentity,
) -> ThreadingHTTPServer:
    def status() -> Dict[str, object]:
        details: Dict[str, object] = {
            "namespace": config.namespace,
            "node_id": identity.label(),
        }
        details.update(supervisor.status())
        return details

    server = start_metrics_http_server(
        config.metrics_host,
        config.metrics_port,
        registry=registry,
        status_fn=status,
    )
    LOGGER.info(
        "[METRICS] Metrics server listening on %s:%s (/metrics, /health, /ready, /status)",
        config.metrics_host,
        server.server_address[1],
    )
    return server


def build_supervisor(
    config: AppConfig,
    registry: MetricsRegistry,
    identity: DeviceIdentity,
    link_factory: LinkFactory = open_link,
) -> Supervisor:
    from_radio, to_radio = make_channels()
    worker = ConnectionWorker(
        config.connection(),
        to_supervisor=from_radio,
        from_supervisor=to_radio,
        link_factory=link_factory,
        loop_pause=config.loop_pause,
    )
    return Supervisor(
        worker,
        from_radio,
        to_radio,
        FrameDispatcher(registry, identity),
        heartbeat_interval=config.heartbeat_interval,
        deadman_timeout=config.deadman_timeout,
        loop_pause=config.loop_pause,
    )


def run(
    config: AppConfig,
    link_factory: LinkFactory = open_link,
    registry: Optional[MetricsRegistry] = None,
) -> int:
    registry = registry or MetricsRegistry(idle_timeout=config.idle_timeout)
    register_metrics(registry)
    identity = DeviceIdentity()
    supervisor = build_supervisor(config, registry, identity, link_factory)

    try:
        server = start_observability_server(config, registry, supervisor, identity)
    except OSError as exc:
        LOGGER.error(
            "[METRICS] Couldn't start metrics server on %s:%s: %s",
            config.metrics_host,
            config.metrics_port,
            exc,
        )
        return EXIT_STARTUP_FAILURE

    supervisor.worker.start()
    try:
        supervisor.run()
    except DeviceLinkLost as exc:
        if not exc.established:
            LOGGER.error("Unable to connect to meshtastic device: %s", exc.cause)
            return EXIT_STARTUP_FAILURE
        LOGGER.error("We lost connection to the meshtastic device: %s", exc)
        return EXIT_LINK_LOST
    except KeyboardInterrupt:
        LOGGER.info("Exporter stopping")
    finally:
        server.shutdown()
        server.server_close()
    LOGGER.info("Exporter shut down")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(exc)
        sys.exit(EXIT_STARTUP_FAILURE)
    if args.serial_port:
        config.serial_port = args.serial_port

    configure_logging(args.log_level or config.log_level or os.getenv("LOG_LEVEL", "INFO"))
    LOGGER.info(
        "Loaded config from %s (namespace=%s)", config.source_path, config.namespace
    )
    sys.exit(run(config))


if __name__ == "__main__":
    main()
