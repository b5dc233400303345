"""Constants used across the esp-hub package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "esp-hub"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 1883

DEFAULT_DATA_TOPIC = "device-data"
DEFAULT_DISCONNECT_TOPIC = "device-disconnect"

DEFAULT_ALARMCLOCK_URL = "http://192.168.1.110"
DEFAULT_WATERMIXER_URL = "http://192.168.1.120"

DEFAULT_API_HOST = "0.0.0.0"
DEFAULT_API_PORT = 8000
