"""Settings loader for the Paint Bridge daemon.

Configuration is read from a JSON file (``--config``, default
``/etc/paintbridge/paintbridge.json``) and validated with
:class:`~paintbridge.config.schema.RuntimeConfigSchema`. A missing file yields
the built-in defaults so the gateway can run on a development machine.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import msgspec
from marshmallow import ValidationError

from ..common import get_default_config
from ..const import DEFAULT_CONFIG_PATH
from .model import RuntimeConfig
from .schema import RuntimeConfigSchema

logger = logging.getLogger("paintbridge.config")


def _load_raw_config(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        logger.info("Configuration file %s not found; using defaults.", path)
        return {}
    except OSError as exc:
        raise ValueError(f"Unable to read configuration file {path}: {exc}") from exc

    try:
        data = msgspec.json.decode(raw)
    except msgspec.DecodeError as exc:
        raise ValueError(f"Malformed configuration file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a JSON object")
    return data


def _warn_insecure(config: RuntimeConfig) -> None:
    if not config.mqtt_tls:
        logger.warning("MQTT TLS is disabled; MQTT credentials and payloads will be sent in plaintext.")
    elif config.mqtt_tls_insecure:
        logger.warning(
            "MQTT TLS hostname verification is disabled (mqtt_tls_insecure); "
            "use this only for known/self-hosted brokers."
        )
    if not config.auto_reconnect:
        logger.info("Serial auto-reconnect disabled; a lost link requires a manual restart.")


def build_runtime_config(values: dict[str, Any]) -> RuntimeConfig:
    """Validate *values* layered over the defaults and build the config."""
    merged = {**get_default_config(), **values}
    try:
        config: RuntimeConfig = RuntimeConfigSchema().load(merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc.messages}") from exc
    return config


def load_runtime_config(path: str | Path | None = None) -> RuntimeConfig:
    """Load configuration from *path* (or the default location)."""
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    config = build_runtime_config(_load_raw_config(config_path))
    _warn_insecure(config)
    return config


__all__ = ["RuntimeConfig", "build_runtime_config", "load_runtime_config"]
