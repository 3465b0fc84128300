#!/usr/bin/env python3
"""
usvlink server - Entry Point

Connects to the vehicle (or the in-memory mock) and exposes the
dashboard REST API.
"""

import argparse
import signal
import sys
import time
import logging

from ..bridge import BridgeService, MavlinkBridge, MockBridgeService
from ..config import BridgeConfig, Config, set_config
from ..utils.logger import setup_logging

logger = logging.getLogger(__name__)

_running = True


def signal_handler(signum, frame):
    """Stop the main loop on SIGINT/SIGTERM"""
    global _running
    logger.info(f"Received signal {signum}, shutting down...")
    _running = False


def create_bridge(config: BridgeConfig) -> BridgeService:
    """Build the bridge selected by configuration"""
    if config.use_mock:
        logger.info("Using in-memory mock bridge")
        return MockBridgeService()

    return MavlinkBridge(
        connection_string=config.connection_string,
        baudrate=config.baudrate,
        source_system=config.source_system,
        source_component=config.source_component,
        target_system=config.target_system,
        target_component=config.target_component,
        heartbeat_timeout_s=config.heartbeat_timeout_s,
        upload_timeout_s=config.upload_timeout_s,
        item_timeout_s=config.item_timeout_s,
    )


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="USV mission bridge server",
        prog="usvlink-server"
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to configuration file (YAML)"
    )

    parser.add_argument(
        "--connection",
        type=str,
        default=None,
        help="MAVLink connection string (e.g., /dev/ttyACM0, udpin:0.0.0.0:14550)"
    )

    parser.add_argument(
        "--baud",
        type=int,
        default=None,
        help="Serial baud rate"
    )

    parser.add_argument(
        "-m", "--mock",
        action="store_true",
        help="Serve from an in-memory mock vehicle (no hardware)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="REST API port (default: 8080)"
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="REST API host (default: 0.0.0.0)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file path"
    )

    return parser.parse_args(argv)


def apply_args(config: Config, args) -> Config:
    """Override config from command line"""
    if args.mock:
        config.bridge.use_mock = True
    if args.connection:
        config.bridge.connection_string = args.connection
    if args.baud:
        config.bridge.baudrate = args.baud
    if args.port:
        config.interface.rest_port = args.port
    if args.host:
        config.interface.rest_host = args.host
    if args.verbose:
        config.logging.level = "DEBUG"
    if args.log_file:
        config.logging.file = args.log_file
    return config


def main(argv=None):
    """Main entry point for usvlink-server"""
    args = parse_args(argv)

    try:
        config = apply_args(Config.load(args.config), args)
    except ValueError as e:
        sys.exit(f"Configuration error: {e}")
    set_config(config)

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file or None,
        log_format=config.logging.format,
    )
    logger.info("usvlink server starting...")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    bridge = create_bridge(config.bridge)
    if isinstance(bridge, MavlinkBridge):
        try:
            bridge.start()
        except (OSError, ValueError) as e:
            logger.error(f"Cannot open {config.bridge.connection_string}: {e}")
            sys.exit(1)

    from .api import create_api_server
    api_server = create_api_server(
        bridge,
        port=config.interface.rest_port,
        host=config.interface.rest_host,
        mission_name=config.mission.default_name,
        cors_enabled=config.interface.cors_enabled,
    )

    logger.info("Server running. Press Ctrl+C to stop.")

    try:
        while _running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("Shutting down...")
        api_server.stop()
        if isinstance(bridge, MavlinkBridge):
            bridge.stop()


if __name__ == "__main__":
    main()
