"""Utility helpers shared across Paint Bridge modules."""

from __future__ import annotations

import math
import time
from datetime import date, datetime, timezone
from typing import Any

from .const import (
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_QUEUE_LIMIT,
    DEFAULT_MQTT_RECONNECT_DELAY,
    DEFAULT_MQTT_TOPIC,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_ATTEMPTS,
    DEFAULT_RECONNECT_MAX_DELAY,
    DEFAULT_RECONNECT_MODE,
    DEFAULT_SERIAL_BAUD,
    DEFAULT_SERIAL_PORT,
    DEFAULT_SETTINGS_PATH,
    DEFAULT_UPTIME_INTERVAL,
)


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (90.5 -> 91, -0.5 -> 0)."""
    return math.floor(value + 0.5)


def iso_timestamp() -> str:
    """UTC timestamp in ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


def today_iso() -> str:
    return date.today().isoformat()


def get_default_config() -> dict[str, Any]:
    """Provide default Paint Bridge configuration values."""
    return {
        "serial_port": DEFAULT_SERIAL_PORT,
        "serial_baud": DEFAULT_SERIAL_BAUD,
        "mqtt_host": DEFAULT_MQTT_HOST,
        "mqtt_port": DEFAULT_MQTT_PORT,
        "mqtt_user": None,
        "mqtt_pass": None,
        "mqtt_tls": False,
        "mqtt_tls_insecure": False,
        "mqtt_cafile": None,
        "mqtt_certfile": None,
        "mqtt_keyfile": None,
        "mqtt_topic": DEFAULT_MQTT_TOPIC,
        "mqtt_queue_limit": DEFAULT_MQTT_QUEUE_LIMIT,
        "reconnect_delay": DEFAULT_MQTT_RECONNECT_DELAY,
        "settings_path": DEFAULT_SETTINGS_PATH,
        "reconnect_mode": DEFAULT_RECONNECT_MODE,
        "reconnect_base_delay": DEFAULT_RECONNECT_BASE_DELAY,
        "reconnect_max_delay": DEFAULT_RECONNECT_MAX_DELAY,
        "reconnect_max_attempts": DEFAULT_RECONNECT_MAX_ATTEMPTS,
        "uptime_interval": DEFAULT_UPTIME_INTERVAL,
        "debug_logging": False,
    }


__all__ = [
    "clamp",
    "epoch_millis",
    "get_default_config",
    "iso_timestamp",
    "round_half_up",
    "today_iso",
]
