"""MQTT topic helpers for the subscriber channel.

This module is the single source of truth for topic structure; avoid
hardcoding topic strings elsewhere.

Layout under the configured prefix::

    <prefix>/client/<id>/connect      subscriber announces itself
    <prefix>/client/<id>/disconnect   subscriber leaves
    <prefix>/client/<id>/command      {type, payload} command envelopes
    <prefix>/client/<id>/events       envelopes sent to that subscriber
    <prefix>/bridge/status            retained online/offline marker
"""

from __future__ import annotations

from enum import StrEnum

import msgspec


class Topic(StrEnum):
    CLIENT = "client"
    BRIDGE = "bridge"


class ClientAction(StrEnum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    COMMAND = "command"
    EVENTS = "events"


INBOUND_ACTIONS: tuple[ClientAction, ...] = (
    ClientAction.CONNECT,
    ClientAction.DISCONNECT,
    ClientAction.COMMAND,
)

STATUS_ONLINE = b"online"
STATUS_OFFLINE = b"offline"


class TopicRoute(msgspec.Struct, frozen=True):
    """Parsed representation of an inbound subscriber topic."""

    raw: str
    client_id: str
    action: ClientAction


def _split_segments(path: str) -> tuple[str, ...]:
    if not path:
        return ()
    return tuple(segment for segment in path.split("/") if segment)


def topic_path(prefix: str, topic: Topic | str, *segments: str) -> str:
    """Join prefix, topic and optional sub-segments into a topic path."""
    parts = list(_split_segments(prefix))
    topic_segment = str(topic).strip("/")
    if not topic_segment:
        raise ValueError("topic segment cannot be empty")
    parts.append(topic_segment)
    for segment in segments:
        cleaned = segment.strip("/")
        if cleaned:
            parts.append(cleaned)
    return "/".join(parts)


def client_topic(prefix: str, client_id: str, action: ClientAction) -> str:
    """e.g. paint/client/ui-42/events"""
    if not client_id or "/" in client_id or client_id in ("+", "#"):
        raise ValueError(f"invalid client id: {client_id!r}")
    return topic_path(prefix, Topic.CLIENT, client_id, action)


def client_subscription(prefix: str, action: ClientAction) -> str:
    """Wildcard filter for one inbound action across all clients."""
    return topic_path(prefix, Topic.CLIENT, "+", action)


def status_topic(prefix: str) -> str:
    return topic_path(prefix, Topic.BRIDGE, "status")


def parse_topic(prefix: str, topic_name: str) -> TopicRoute | None:
    """Parse an inbound MQTT topic into a TopicRoute, or None if foreign."""
    prefix_segments = _split_segments(prefix)
    topic_segments = _split_segments(topic_name)
    if len(topic_segments) != len(prefix_segments) + 3:
        return None
    if topic_segments[: len(prefix_segments)] != prefix_segments:
        return None
    topic_segment, client_id, action_segment = topic_segments[len(prefix_segments) :]
    if topic_segment != Topic.CLIENT:
        return None
    try:
        action = ClientAction(action_segment)
    except ValueError:
        return None
    if action not in INBOUND_ACTIONS:
        return None
    return TopicRoute(raw=topic_name, client_id=client_id, action=action)


__all__ = [
    "ClientAction",
    "INBOUND_ACTIONS",
    "STATUS_OFFLINE",
    "STATUS_ONLINE",
    "Topic",
    "TopicRoute",
    "client_subscription",
    "client_topic",
    "parse_topic",
    "status_topic",
    "topic_path",
]
