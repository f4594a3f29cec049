"""Wire formats: controller telegrams, operator commands and MQTT topics."""

from .commands import Command, CommandRejected, decode_command
from .telegrams import parse_telegram
from .topics import parse_topic, topic_path

__all__ = [
    "Command",
    "CommandRejected",
    "decode_command",
    "parse_telegram",
    "parse_topic",
    "topic_path",
]
