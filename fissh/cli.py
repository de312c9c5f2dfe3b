# Copyright 2025 icecake0141
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# This file was created or modified with the assistance of an AI (Large Language Model).
# Review for correctness and security.

"""
Command-line interface for fissh.

This module contains the main entry point and command-line argument handling.
"""

import argparse
import logging
import os
import signal
import sys
from typing import Any, Dict, List, Optional, Sequence

import paramiko

from fissh.art_catalog import DEFAULT_ART_DIR, ArtCatalog
from fissh.config import load_config, load_env_config, parse_display_window
from fissh.server import FisshServer, ServerSettings, load_host_key
from fissh.session import DisplayWindow
from fissh.timezone_resolver import TimezoneResolver, is_valid_timezone

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _configure_logging(log_level: str, log_file: Optional[str]) -> None:
    """Configure logging handlers for CLI execution."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(os.path.expanduser(log_file), encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


# Hardcoded defaults for config-overridable fields.
# Applied after config merging for any field still set to None.
_HARDCODED_DEFAULTS: Dict[str, Any] = {
    "host": "localhost",
    "port": 23234,
    "host_key_path": ".ssh/id_ed25519",
    "art_dir": str(DEFAULT_ART_DIR),
    "display_window": "11:11",
    "always_show_art": False,
    "default_timezone": "UTC",
    "ipinfo_token": "",
    "lookup_timeout": 3.0,
    "tick_interval": 0.1,
    "shutdown_grace": 30.0,
    "log_level": "INFO",
}


def _apply_config_to_args(args: argparse.Namespace, config: Dict[str, Any]) -> None:
    """
    Overlay config values onto a parsed argument namespace.

    Only fields that are still ``None`` (i.e. not explicitly set on the CLI
    or by an earlier layer) are updated.

    Args:
        args: Namespace returned by ``argparse.ArgumentParser.parse_args()``.
        config: Dictionary of values loaded from the environment or config file.
    """
    for key, value in config.items():
        if hasattr(args, key) and getattr(args, key) is None:
            setattr(args, key, value)


def handle_options(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse and validate command-line arguments."""
    parser = argparse.ArgumentParser(
        description="fissh - an SSH server that tells you the time (and shows a fish at 11:11)",
    )
    parser.add_argument("--host", type=str, default=None, help="Address to listen on (default: localhost)")
    parser.add_argument("-p", "--port", type=int, default=None, help="Port to listen on (default: 23234)")
    parser.add_argument(
        "-k",
        "--host-key",
        dest="host_key_path",
        type=str,
        default=None,
        help="Ed25519 host key path, generated if missing (default: .ssh/id_ed25519)",
    )
    parser.add_argument(
        "-a",
        "--art-dir",
        type=str,
        default=None,
        help="Directory of *.txt art files (default: the bundled fishes)",
    )
    parser.add_argument(
        "-w",
        "--display-window",
        type=str,
        default=None,
        help="12-hour time of day when art is shown (default: 11:11)",
    )
    parser.add_argument(
        "-A",
        "--always-show-art",
        action="store_true",
        default=None,
        help="Show art at any time of day (for testing)",
    )
    parser.add_argument(
        "-z",
        "--default-timezone",
        type=str,
        default=None,
        help="Timezone used when a visitor's zone cannot be determined (IANA name, default: UTC)",
    )
    parser.add_argument(
        "--lookup-timeout",
        type=float,
        default=None,
        help="Timeout in seconds for the ipinfo.io lookup (default: 3.0)",
    )
    parser.add_argument(
        "--tick-interval",
        type=float,
        default=None,
        help="Seconds between clock updates (default: 0.1)",
    )
    parser.add_argument(
        "--shutdown-grace",
        type=float,
        default=None,
        help="Seconds live sessions get to finish on shutdown (default: 30)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=None,
        choices=LOG_LEVELS,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Optional log file path for persistent logging",
    )
    parser.add_argument(
        "--no-config",
        action="store_true",
        default=False,
        help="Skip loading ~/.fissh.conf config file",
    )
    # Not a CLI flag; filled from IPINFO_TOKEN or the config file.
    parser.set_defaults(ipinfo_token=None)

    args = parser.parse_args(argv)

    try:
        _apply_config_to_args(args, load_env_config())
        if not args.no_config:
            _apply_config_to_args(args, load_config())
    except ValueError as exc:
        parser.error(str(exc))

    # Apply hardcoded defaults for any config-overridable field still at None
    for field, default in _HARDCODED_DEFAULTS.items():
        if getattr(args, field, None) is None:
            setattr(args, field, default)

    args.log_level = str(args.log_level).upper()
    if args.log_level not in LOG_LEVELS:
        parser.error(f"Unknown log level '{args.log_level}'. Choose one of: {', '.join(LOG_LEVELS)}.")
    if not 1 <= args.port <= 65535:
        parser.error("--port must be between 1 and 65535.")
    if not 0 < args.tick_interval <= 5.0:
        parser.error("--tick-interval must be greater than 0 and at most 5 seconds.")
    if args.lookup_timeout <= 0:
        parser.error("--lookup-timeout must be positive.")
    if args.shutdown_grace < 0:
        parser.error("--shutdown-grace must not be negative.")
    try:
        args.display_window = parse_display_window(str(args.display_window))
    except ValueError as exc:
        parser.error(str(exc))
    if not is_valid_timezone(args.default_timezone):
        parser.error(f"Unknown timezone '{args.default_timezone}'. Use an IANA name like 'Asia/Tokyo'.")
    return args


def build_server(args: argparse.Namespace) -> FisshServer:
    """Wire the catalog, resolver and host key into a server."""
    catalog = ArtCatalog(args.art_dir)
    if not catalog.names():
        logger.warning("No art found in '%s'; sessions will never show a fish.", args.art_dir)
    resolver = TimezoneResolver(
        token=args.ipinfo_token or None,
        default_timezone=args.default_timezone,
        timeout=args.lookup_timeout,
    )
    settings = ServerSettings(
        host=args.host,
        port=args.port,
        host_key_path=args.host_key_path,
        tick_interval=args.tick_interval,
        shutdown_grace=args.shutdown_grace,
        window=DisplayWindow(args.display_window, args.always_show_art),
    )
    return FisshServer(settings, catalog, resolver, load_host_key(args.host_key_path))


def run(args: argparse.Namespace) -> int:
    """Run the server until SIGINT/SIGTERM, then shut down gracefully."""
    _configure_logging(getattr(args, "log_level", "INFO"), getattr(args, "log_file", None))
    try:
        server = build_server(args)
        server.bind()
    except (OSError, ValueError, paramiko.SSHException) as exc:
        logger.error("Could not start server: %s", exc)
        return 1

    def _request_stop(signum: int, _frame: Any) -> None:
        logger.info("Received %s", signal.Signals(signum).name)
        server.stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    try:
        server.serve_forever()
    finally:
        server.shutdown()
    return 0


def main() -> None:
    """Main entrypoint for the CLI - parses arguments and runs the server."""
    args = handle_options()
    sys.exit(run(args))
