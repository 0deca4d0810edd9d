"""Logging configuration helpers."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Chatty third-party loggers, silenced unless network logging is requested.
NETWORK_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.websocket", "paho")

CONVERSION_LOGGER = "n2k_bridge.conversion"

MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3


def _level(name: Optional[str], default: int = logging.INFO) -> int:
    if not name:
        return default
    return getattr(logging, name.upper(), default)


def configure_logging(
    level: str = "INFO",
    *,
    log_path: Optional[Path] = None,
    log_network: bool = False,
    conversion_level: Optional[str] = None,
) -> None:
    """Configure root logging handlers.

    Parameters
    ----------
    level:
        Log level name for the root logger, e.g. "INFO".
    log_path:
        Optional path for a size-rotated log file in addition to the console.
    log_network:
        Keep websocket and MQTT client chatter at the root level.
    conversion_level:
        Separate level for the conversion core, so per-tick decisions can be
        traced at DEBUG without drowning the rest of the output.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    logging.captureWarnings(True)
    logging.basicConfig(level=_level(level), format=LOG_FORMAT)

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    network_level = logging.NOTSET if log_network else logging.WARNING
    for name in NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(network_level)

    logging.getLogger(CONVERSION_LOGGER).setLevel(
        _level(conversion_level, logging.NOTSET)
    )
