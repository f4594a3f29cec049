"""Data model for Paint Bridge runtime configuration."""

from __future__ import annotations

from dataclasses import dataclass

from ..const import (
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
    RECONNECT_MODE_MANUAL,
)


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration for the gateway daemon."""

    serial_port: str = DEFAULT_SERIAL_PORT
    serial_baud: int = DEFAULT_SERIAL_BAUD
    mqtt_host: str = DEFAULT_MQTT_HOST
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_user: str | None = None
    mqtt_pass: str | None = None
    mqtt_tls: bool = False
    mqtt_tls_insecure: bool = False
    mqtt_cafile: str | None = None
    mqtt_certfile: str | None = None
    mqtt_keyfile: str | None = None
    mqtt_topic: str = DEFAULT_MQTT_TOPIC
    mqtt_queue_limit: int = DEFAULT_MQTT_QUEUE_LIMIT
    reconnect_delay: int = DEFAULT_MQTT_RECONNECT_DELAY
    settings_path: str = DEFAULT_SETTINGS_PATH
    reconnect_mode: str = DEFAULT_RECONNECT_MODE
    reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY
    reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY
    reconnect_max_attempts: int = DEFAULT_RECONNECT_MAX_ATTEMPTS
    uptime_interval: float = DEFAULT_UPTIME_INTERVAL
    debug_logging: bool = False

    @property
    def tls_enabled(self) -> bool:
        return self.mqtt_tls

    @property
    def auto_reconnect(self) -> bool:
        return self.reconnect_mode != RECONNECT_MODE_MANUAL

    @property
    def auto_detect_port(self) -> bool:
        return self.serial_port.strip().lower() in ("", "auto")
