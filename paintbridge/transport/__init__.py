"""Transports: the controller serial link and the MQTT subscriber channel."""

from .serial import LinkClosed, LinkFailure, SerialLink

__all__ = ["LinkClosed", "LinkFailure", "SerialLink"]
