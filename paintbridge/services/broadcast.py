"""Fan-out of state snapshots and notifications to subscribers."""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

import msgspec

from ..common import iso_timestamp

logger = logging.getLogger("paintbridge.broadcast")

Severity = Literal["low", "high"]


class SubscriberClosed(ConnectionError):
    """The subscriber's channel is gone."""


class SubscriberOverflow(ConnectionError):
    """The subscriber fell too far behind and its buffer is full."""


class Subscriber(Protocol):
    @property
    def subscriber_id(self) -> str: ...

    def deliver(self, data: bytes) -> None:
        """Hand one encoded envelope to the channel without waiting."""
        ...

    def close(self) -> None:
        """Release the channel once the hub no longer delivers to it."""
        ...


class Envelope(msgspec.Struct, frozen=True):
    type: str
    payload: Any = None


class WarningPayload(msgspec.Struct, frozen=True):
    title: str
    message: str
    severity: Severity


class ErrorPayload(msgspec.Struct, frozen=True):
    message: str
    timestamp: str


_encoder = msgspec.json.Encoder()


def encode_envelope(message_type: str, payload: Any = None) -> bytes:
    return _encoder.encode(Envelope(type=message_type, payload=payload))


class BroadcastHub:
    """Deliver encoded envelopes to every attached subscriber.

    Delivery is fire-and-forget: a subscriber whose channel raises while
    accepting a message is detached and the remaining subscribers still get
    the message.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber_id: object) -> bool:
        return subscriber_id in self._subscribers

    @property
    def subscriber_ids(self) -> tuple[str, ...]:
        return tuple(self._subscribers)

    def attach(self, subscriber: Subscriber) -> None:
        previous = self._subscribers.get(subscriber.subscriber_id)
        if previous is not None and previous is not subscriber:
            logger.info("Replacing subscriber %s", subscriber.subscriber_id)
        self._subscribers[subscriber.subscriber_id] = subscriber
        logger.info("Subscriber %s attached (%d active)", subscriber.subscriber_id, len(self))

    def detach(self, subscriber_id: str) -> bool:
        removed = self._subscribers.pop(subscriber_id, None)
        if removed is not None:
            removed.close()
            logger.info("Subscriber %s detached (%d active)", subscriber_id, len(self))
        return removed is not None

    def detach_all(self) -> None:
        for subscriber_id in list(self._subscribers):
            self.detach(subscriber_id)

    def broadcast(self, message_type: str, payload: Any = None) -> int:
        """Send one message to all subscribers, returning how many accepted it."""
        if not self._subscribers:
            return 0
        data = encode_envelope(message_type, payload)
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            if self._deliver(subscriber, data):
                delivered += 1
        return delivered

    def send_to(self, subscriber_id: str, message_type: str, payload: Any = None) -> bool:
        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is None:
            logger.debug("Dropping %s for unknown subscriber %s", message_type, subscriber_id)
            return False
        return self._deliver(subscriber, encode_envelope(message_type, payload))

    def notify_warning(self, title: str, message: str, severity: Severity = "high") -> int:
        return self.broadcast("WARNING", WarningPayload(title=title, message=message, severity=severity))

    def send_error(self, subscriber_id: str, message: str) -> bool:
        return self.send_to(
            subscriber_id,
            "ERROR",
            ErrorPayload(message=message, timestamp=iso_timestamp()),
        )

    def _deliver(self, subscriber: Subscriber, data: bytes) -> bool:
        try:
            subscriber.deliver(data)
        except (SubscriberClosed, SubscriberOverflow) as exc:
            logger.warning("Dropping subscriber %s: %s", subscriber.subscriber_id, exc)
            self.detach(subscriber.subscriber_id)
            return False
        return True


__all__ = [
    "BroadcastHub",
    "Envelope",
    "ErrorPayload",
    "Severity",
    "Subscriber",
    "SubscriberClosed",
    "SubscriberOverflow",
    "WarningPayload",
    "encode_envelope",
]
