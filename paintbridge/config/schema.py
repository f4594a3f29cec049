"""Marshmallow schema for RuntimeConfig validation."""

from __future__ import annotations

import os
from typing import Any, Dict

from marshmallow import Schema, ValidationError, fields, post_load, pre_load, validate, validates_schema

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
    RECONNECT_MODE_BACKOFF,
    RECONNECT_MODE_MANUAL,
)
from .model import RuntimeConfig


class RuntimeConfigSchema(Schema):
    """Declarative validation schema for Paint Bridge configuration."""

    # Serial
    serial_port = fields.Str(load_default=DEFAULT_SERIAL_PORT)
    serial_baud = fields.Int(load_default=DEFAULT_SERIAL_BAUD, validate=validate.Range(min=300))

    # MQTT
    mqtt_host = fields.Str(load_default=DEFAULT_MQTT_HOST, validate=validate.Length(min=1))
    mqtt_port = fields.Int(load_default=DEFAULT_MQTT_PORT, validate=validate.Range(min=1, max=65535))
    mqtt_user = fields.Str(load_default=None, allow_none=True)
    mqtt_pass = fields.Str(load_default=None, allow_none=True)
    mqtt_tls = fields.Bool(load_default=False)
    mqtt_tls_insecure = fields.Bool(load_default=False)
    mqtt_cafile = fields.Str(load_default=None, allow_none=True)
    mqtt_certfile = fields.Str(load_default=None, allow_none=True)
    mqtt_keyfile = fields.Str(load_default=None, allow_none=True)
    mqtt_topic = fields.Str(load_default=DEFAULT_MQTT_TOPIC, validate=validate.Length(min=1))
    mqtt_queue_limit = fields.Int(load_default=DEFAULT_MQTT_QUEUE_LIMIT, validate=validate.Range(min=1))
    reconnect_delay = fields.Int(load_default=DEFAULT_MQTT_RECONNECT_DELAY, validate=validate.Range(min=1))

    # Machine settings document
    settings_path = fields.Str(load_default=DEFAULT_SETTINGS_PATH, validate=validate.Length(min=1))

    # Serial reconnect policy
    reconnect_mode = fields.Str(
        load_default=DEFAULT_RECONNECT_MODE,
        validate=validate.OneOf((RECONNECT_MODE_BACKOFF, RECONNECT_MODE_MANUAL)),
    )
    reconnect_base_delay = fields.Float(
        load_default=DEFAULT_RECONNECT_BASE_DELAY, validate=validate.Range(min=0.0, min_inclusive=False)
    )
    reconnect_max_delay = fields.Float(
        load_default=DEFAULT_RECONNECT_MAX_DELAY, validate=validate.Range(min=0.0, min_inclusive=False)
    )
    reconnect_max_attempts = fields.Int(load_default=DEFAULT_RECONNECT_MAX_ATTEMPTS, validate=validate.Range(min=1))

    # System
    uptime_interval = fields.Float(load_default=DEFAULT_UPTIME_INTERVAL, validate=validate.Range(min=1.0))
    debug_logging = fields.Bool(load_default=False)

    @validates_schema
    def validate_reconnect_window(self, data: Dict[str, Any], **kwargs: Any) -> None:
        if data["reconnect_base_delay"] > data["reconnect_max_delay"]:
            raise ValidationError(
                "reconnect_base_delay must be less than or equal to reconnect_max_delay",
                field_name="reconnect_base_delay",
            )

    @validates_schema
    def validate_client_certificate(self, data: Dict[str, Any], **kwargs: Any) -> None:
        if bool(data.get("mqtt_certfile")) != bool(data.get("mqtt_keyfile")):
            raise ValidationError(
                "Both mqtt_certfile and mqtt_keyfile must be provided for mTLS.",
                field_name="mqtt_certfile",
            )

    @staticmethod
    def _normalize_path(value: str) -> str:
        candidate = (value or "").strip()
        expanded = os.path.expanduser(candidate)
        return os.path.abspath(expanded)

    @pre_load
    def normalize_topic(self, data: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        data = dict(data)
        if isinstance(data.get("mqtt_topic"), str):
            segments = [segment for segment in data["mqtt_topic"].split("/") if segment]
            # An empty result is kept so the Length validator rejects it.
            data["mqtt_topic"] = "/".join(segments)
        return data

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> RuntimeConfig:
        data["settings_path"] = self._normalize_path(data["settings_path"])
        data["serial_port"] = data["serial_port"].strip()
        return RuntimeConfig(**data)
