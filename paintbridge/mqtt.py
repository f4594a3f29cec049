"""MQTT client helpers: MQTTv5 properties, last will and TLS setup."""

from __future__ import annotations

import logging
import ssl
from pathlib import Path

import aiomqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties

from .config.model import RuntimeConfig
from .protocol.topics import STATUS_OFFLINE, status_topic

logger = logging.getLogger("paintbridge.mqtt")

MQTT_TLS_MIN_VERSION = ssl.TLSVersion.TLSv1_2
EVENT_CONTENT_TYPE = "application/json"


def build_mqtt_connect_properties() -> Properties:
    """Return default CONNECT properties for aiomqtt/paho clients."""

    props = Properties(PacketTypes.CONNECT)
    props.SessionExpiryInterval = 0
    props.RequestResponseInformation = 1
    props.RequestProblemInformation = 1
    return props


def build_event_properties() -> Properties:
    props = Properties(PacketTypes.PUBLISH)
    props.ContentType = EVENT_CONTENT_TYPE
    props.PayloadFormatIndicator = 1
    return props


def build_will(prefix: str) -> aiomqtt.Will:
    """Retained ``offline`` marker published by the broker if we vanish."""
    return aiomqtt.Will(topic=status_topic(prefix), payload=STATUS_OFFLINE, qos=1, retain=True)


def configure_tls_context(config: RuntimeConfig) -> ssl.SSLContext | None:
    """Create an ssl.SSLContext based on the provided RuntimeConfig."""
    if not config.tls_enabled:
        return None

    try:
        if config.mqtt_cafile:
            if not Path(config.mqtt_cafile).exists():
                raise RuntimeError(f"MQTT TLS CA file missing: {config.mqtt_cafile}")
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=config.mqtt_cafile)
        else:
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)

        context.minimum_version = MQTT_TLS_MIN_VERSION

        if config.mqtt_tls_insecure:
            context.check_hostname = False

        if config.mqtt_certfile or config.mqtt_keyfile:
            if not (config.mqtt_certfile and config.mqtt_keyfile):
                raise ValueError("Both mqtt_certfile and mqtt_keyfile must be provided for mTLS.")
            context.load_cert_chain(config.mqtt_certfile, config.mqtt_keyfile)

        return context
    except (OSError, ssl.SSLError, ValueError) as exc:
        raise RuntimeError(f"TLS setup failed: {exc}") from exc


__all__ = [
    "build_event_properties",
    "build_mqtt_connect_properties",
    "build_will",
    "configure_tls_context",
]
