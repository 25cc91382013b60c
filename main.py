#!/usr/bin/env python3
"""
Relay recorder entry point.

Wires the session registry, relay server and recording controller together,
hands them to the web server and serves the operator API until interrupted.
"""

import signal
import sys

from config import validate_config
from logging_config import get_logger, setup_logging
import web_server
from services import RecordingController, RelayServer, SessionRegistry

SHUTDOWN_TIMEOUT = 30


def build_services(app_config):
    """Construct the registry, relay server and controller."""
    registry = SessionRegistry(app_config.legacy_app_prefixes)
    relay_server = RelayServer(app_config, registry=registry)
    controller = RecordingController(registry)
    return relay_server, controller


def install_signal_handlers(relay_server, logger) -> None:
    """Finalize in-flight recordings before exiting on SIGTERM/SIGINT."""
    def handle_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping all sessions...")
        finished = relay_server.shutdown(timeout=SHUTDOWN_TIMEOUT)
        if not finished:
            logger.warning("Some recordings were still finalizing at exit")
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)


def main():
    """Start the relay recorder."""
    try:
        app_config = validate_config()
    except ValueError as e:
        print(e, file=sys.stderr)
        sys.exit(1)

    setup_logging(log_level=app_config.log_level, log_dir=app_config.log_dir)
    logger = get_logger(__name__)

    print("=" * 70)
    print("Relay Recorder")
    print("=" * 70)
    print(f"Media root: {app_config.media_root}")
    print(f"RTMP port: {app_config.rtmp_port}")
    print(f"Web optimized: {app_config.web_optimized}")
    print(f"Relay mode: {app_config.relay_mode}")
    print(f"Operator API: http://{app_config.web_host}:{app_config.web_port}")
    print("-" * 70)

    relay_server, controller = build_services(app_config)
    web_server.set_relay_server(relay_server)
    web_server.set_controller(controller)
    install_signal_handlers(relay_server, logger)

    logger.info(f"Starting web server on http://{app_config.web_host}:{app_config.web_port}")
    web_server.run_server(app_config.web_host, app_config.web_port)


if __name__ == '__main__':
    main()
