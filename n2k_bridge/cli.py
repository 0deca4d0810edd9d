"""Command-line interface for n2k-bridge."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import BridgeApp
from .config import load_config
from .exceptions import ConfigurationError

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="n2k-bridge", description="Signal K to NMEA 2000 conversion bridge"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the n2k-bridge service")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    subparsers.add_parser(
        "check-config", help="Validate the configuration and device mappings"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 1

    if args.command == "start":
        table = config.build_mapping_table(strict=False)
        if table.errors and len(table) == 0:
            LOGGER.error("No usable device mappings, refusing to start")
            return 1
        BridgeApp.start(config)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "check-config":
        try:
            table = config.build_mapping_table()
        except ConfigurationError as exc:
            LOGGER.error("Invalid device mappings: %s", exc)
            return 1
        print(f"Configuration OK: {len(table)} device mapping(s)")
        for mapping in table:
            print(
                f"  {mapping.device_kind.value} {mapping.source_id} "
                f"-> instance {mapping.instance_id}"
            )
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
