"""
Command-line interface for the micap client.

Runs a headless monitor that connects to the server and logs tracker, serial
and port activity until interrupted.
"""

import argparse
import logging
import sys
import time
import tomllib
from pathlib import Path

from .client import MicapClient
from .config import ConfigurationError, DefaultConfigError, create_config_from_args
from .logging_utils import configure_logging
from .types import Tracker

logger = logging.getLogger(__name__)


def get_version() -> str:
    from . import __version__

    return __version__


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="micap tracker monitor")
    parser.add_argument("--config", type=Path, help="Path to a TOML config file")
    parser.add_argument("--host", help="Server host (default: localhost)")
    parser.add_argument("--port", type=int, help="Server websocket port (default: 8298)")
    parser.add_argument(
        "--no-reconnect",
        action="store_true",
        help="Do not reconnect when the server goes away",
    )
    parser.add_argument("--log-dir", type=Path, help="Directory for JSON log files")
    parser.add_argument(
        "--log-level-console",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--log-json-console", action="store_true", help="Emit console logs as JSON"
    )
    parser.add_argument("--log-rotation", help="loguru rotation rule, e.g. '10 MB'")
    parser.add_argument("--log-retention", help="loguru retention rule, e.g. '1 week'")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {get_version()}",
        help="Show version and exit",
    )
    return parser


def _attach_monitor(client: MicapClient) -> None:
    def on_tracker_connected(tracker_id: str, tracker: Tracker) -> None:
        logger.info(
            f"Tracker {tracker_id} connected "
            f"(status={tracker.info.status.value}, battery={tracker.info.battery_level:.0%})"
        )

    client.on_connected.add_listener(lambda: logger.info("Connected to server"))
    client.on_disconnected.add_listener(
        lambda closed: logger.warning(f"Disconnected from server: {closed}")
    )
    client.on_tracker_connected.add_listener(on_tracker_connected)
    client.on_tracker_removed.add_listener(
        lambda tracker_id: logger.info(f"Tracker {tracker_id} removed")
    )
    client.on_serial_log.add_listener(
        lambda line: logger.info(f"serial | {line.rstrip()}")
    )
    client.on_port_changed.add_listener(
        lambda port_name: logger.info(f"Serial port: {port_name or 'none'}")
    )


def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config, overrides = create_config_from_args(args)
    except (
        ConfigurationError,
        DefaultConfigError,
        FileNotFoundError,
        tomllib.TOMLDecodeError,
    ) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    configure_logging(
        log_dir=Path(config.log_dir) if config.log_dir else None,
        console_level=config.log_level_console,
        console_json=config.log_json_console,
        rotation=config.log_rotation,
        retention=config.log_retention,
    )

    logger.info("=" * 60)
    logger.info("micap client starting")
    logger.info(f"  Version: {get_version()}")
    logger.info(f"  Server: {config.websocket_url}")
    logger.info(f"  Auto reconnect: {config.auto_reconnect}")
    for override in overrides:
        logger.info(
            f"  {override.key}: {override.default_value!r} -> {override.new_value!r}"
        )
    logger.info("=" * 60)

    client = MicapClient.from_config(config)
    _attach_monitor(client)

    try:
        client.start()
        while True:
            time.sleep(1)
            if not config.auto_dispatch:
                client.dispatch_pending_events()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal (Ctrl+C)...")
    finally:
        client.stop()
        logger.info("micap client stopped")

    return 0


def cli_main() -> None:
    """
    Console script entry point for the micap-client command.
    """
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
