from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from .allowlist import LocalClientAllowlist
from .config.config_parser import ConfigError, DaemonConfig, load_config
from .config.logging_config import init_logging
from .resolver import QueryResolver
from .servers.udp_server import DNSServer
from .upstream import UpstreamResolver
from .workloads import DirectoryError, DockerDirectory, create_docker_client


def build_resolver(cfg: DaemonConfig, docker_client=None) -> QueryResolver:
    """Brief: Wire the resolution engine from validated configuration.

    Inputs:
      - cfg: DaemonConfig.
      - docker_client: Optional pre-built docker SDK client (tests pass a stub);
        built from cfg.docker when omitted.

    Outputs:
      - QueryResolver.

    Raises:
      - DirectoryError: When the Docker client cannot be created or the
        daemon does not answer a ping.
    """

    if docker_client is None:
        docker_client = create_docker_client(cfg.docker.url, cfg.docker.timeout)
    directory = DockerDirectory(docker_client)
    directory.ping()

    upstream = UpstreamResolver(
        cfg.upstream.endpoints,
        timeout_ms=cfg.upstream.timeout_ms,
        verify=cfg.upstream.verify,
        ca_file=cfg.upstream.ca_file,
    )
    return QueryResolver(
        directory,
        LocalClientAllowlist.from_config(cfg.local_docker_names),
        upstream,
        cfg.master_ip,
        ttl=cfg.answer_ttl,
    )


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the dockdns daemon.
    Loads configuration, connects to Docker, binds the UDP listener and serves
    until SIGINT/SIGTERM.

    Args:
        argv: Command-line arguments.

    Returns:
        0 on clean shutdown, 1 on configuration, Docker or bind errors.

    Example use:
        CLI:
            MASTER_IP=10.0.0.1 LOCAL_DOCKER_NAMES=dns,nginx dockdns --port 5353
    """
    parser = argparse.ArgumentParser(
        description="DNS server that answers for running Docker containers"
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--listen", default=None, help="Listen address")
    parser.add_argument("--port", type=int, default=None, help="Listen UDP port")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warn", "warning", "error", "crit", "critical"],
        help="Override logging.level",
    )
    args = parser.parse_args(argv)

    try:
        cfg = load_config(
            args.config,
            overrides={
                "listen.host": args.listen,
                "listen.port": args.port,
                "logging.level": args.log_level,
            },
        )
    except ConfigError as exc:
        print(f"dockdns: configuration error: {exc}", file=sys.stderr)
        return 1

    init_logging(cfg.logging)
    logger = logging.getLogger("dockdns.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)
    logger.info("MasterIP: %s", cfg.master_ip)

    try:
        resolver = build_resolver(cfg)
    except DirectoryError as exc:
        logger.error("Cannot start without Docker: %s", exc)
        return 1

    if len(resolver.allowlist):
        logger.info("Local client names: %s", ", ".join(sorted(resolver.allowlist.names)))
    logger.info(
        "Upstreams: [%s], timeout: %dms",
        ", ".join(resolver.upstream.endpoints),
        resolver.upstream.timeout_ms,
    )

    host, port = cfg.listen.host, cfg.listen.port
    try:
        server = DNSServer(host, port, resolver)
    except OSError as exc:
        logger.error("Failed to start server on %s:%d: %s", host, port, exc)
        return 1

    shutdown_event = threading.Event()

    def _request_shutdown(signum, _frame) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _request_shutdown)
        except ValueError:
            # Not on the main thread (e.g. embedded in tests)
            logger.debug("Could not install handler for %s", sig)

    udp_thread = threading.Thread(
        target=server.serve_forever, name="dockdns-udp", daemon=True
    )
    logger.info("Starting UDP listener on %s:%d", host, port)
    udp_thread.start()

    try:
        while not shutdown_event.wait(1.0):
            if not udp_thread.is_alive():
                logger.error("UDP listener exited unexpectedly")
                return 1
    finally:
        server.stop()
        udp_thread.join(timeout=5.0)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
