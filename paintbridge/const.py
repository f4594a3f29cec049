"""Shared constants for the Paint Bridge gateway."""

from __future__ import annotations

from typing import Final

DEFAULT_CONFIG_PATH: Final[str] = "/etc/paintbridge/paintbridge.json"
DEFAULT_SETTINGS_PATH: Final[str] = "/etc/paintbridge/settings.json"
CONFIG_PROFILES_DIRNAME: Final[str] = "configs"

# Serial link
DEFAULT_SERIAL_PORT: Final[str] = "auto"
DEFAULT_SERIAL_BAUD: Final[int] = 115200
SERIAL_LINE_TERMINATOR: Final[bytes] = b"\n"
SERIAL_MAX_LINE_BYTES: Final[int] = 4096
DEFAULT_VENDOR_IDS: Final[tuple[str, ...]] = ("2341", "1a86")
DEFAULT_COMMON_PATHS: Final[tuple[str, ...]] = (
    "/dev/ttyUSB0",
    "/dev/ttyUSB1",
    "/dev/ttyACM0",
    "/dev/ttyACM1",
    "/dev/tty.usbserial*",
    "/dev/tty.usbmodem*",
)

# Reconnect policy for the serial link
RECONNECT_MODE_BACKOFF: Final[str] = "backoff"
RECONNECT_MODE_MANUAL: Final[str] = "manual"
DEFAULT_RECONNECT_MODE: Final[str] = RECONNECT_MODE_BACKOFF
DEFAULT_RECONNECT_BASE_DELAY: Final[float] = 1.0
DEFAULT_RECONNECT_MAX_DELAY: Final[float] = 30.0
DEFAULT_RECONNECT_MAX_ATTEMPTS: Final[int] = 5

# MQTT
DEFAULT_MQTT_HOST: Final[str] = "localhost"
DEFAULT_MQTT_PORT: Final[int] = 1883
DEFAULT_MQTT_TOPIC: Final[str] = "paint"
DEFAULT_MQTT_QUEUE_LIMIT: Final[int] = 64
DEFAULT_MQTT_RECONNECT_DELAY: Final[int] = 5
MQTT_MAX_RECONNECT_WAIT: Final[int] = 60

# Gateway
DEFAULT_UPTIME_INTERVAL: Final[float] = 60.0
DEFAULT_INBOX_LIMIT: Final[int] = 1024
DEFAULT_TEMPERATURE: Final[float] = 24.0
PATTERN_TOTAL_ROWS: Final[int] = 9
GRID_ROWS: Final[int] = 6
GRID_COLUMNS: Final[int] = 9
PRIME_TIME_RANGE: Final[tuple[int, int]] = (1, 30)
CLEAN_TIME_RANGE: Final[tuple[int, int]] = (1, 60)
SERVO_ANGLE_RANGE: Final[tuple[float, float]] = (0.0, 180.0)

# Supervisor
SUPERVISOR_DEFAULT_MIN_BACKOFF: Final[float] = 1.0
SUPERVISOR_DEFAULT_MAX_BACKOFF: Final[float] = 30.0
SUPERVISOR_DEFAULT_RESTART_INTERVAL: Final[float] = 60.0
SUPERVISOR_MIN_RESTART_WINDOW: Final[float] = 10.0

SIDES: Final[tuple[str, ...]] = ("front", "right", "back", "left", "lip")
