"""Constants used across the n2k-bridge package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "n2k-bridge"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".signalk" / DEFAULT_CONFIG_FILENAME

DEFAULT_SIGNALK_HOST = "localhost"
DEFAULT_SIGNALK_PORT = 3000

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 1883
DEFAULT_TOPIC_PREFIX = "n2k/out"
