"""Single-consumer event channel feeding the gateway loop.

Producers (serial protocol callbacks, MQTT subscriber loop, timers) only
``post`` items; the gateway loop is the only consumer, so items are handled
strictly one at a time in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import msgspec

from ..const import DEFAULT_INBOX_LIMIT

logger = logging.getLogger("paintbridge.inbox")


class InboxItem(msgspec.Struct, frozen=True):
    pass


class TelegramReceived(InboxItem, frozen=True):
    line: str


class LinkOpened(InboxItem, frozen=True):
    port: str


class LinkDropped(InboxItem, frozen=True):
    reason: str
    error: bool = False


class SubscriberJoined(InboxItem, frozen=True):
    subscriber: Any


class SubscriberLeft(InboxItem, frozen=True):
    subscriber_id: str


class CommandReceived(InboxItem, frozen=True):
    subscriber_id: str
    raw: bytes


class ClockTick(InboxItem, frozen=True):
    elapsed: float


# Only traffic items may be shed when the consumer falls behind; link and
# subscriber lifecycle items are always queued.
DROPPABLE_ITEMS: tuple[type[InboxItem], ...] = (TelegramReceived, CommandReceived, ClockTick)


class Inbox:
    def __init__(self, maxsize: int = DEFAULT_INBOX_LIMIT) -> None:
        self._queue: asyncio.Queue[InboxItem] = asyncio.Queue()
        self.maxsize = maxsize

    def post(self, item: InboxItem) -> bool:
        if isinstance(item, DROPPABLE_ITEMS) and self._queue.qsize() >= self.maxsize:
            logger.error("Inbox full; dropping %s", type(item).__name__)
            return False
        self._queue.put_nowait(item)
        return True

    async def get(self) -> InboxItem:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()


__all__ = [
    "ClockTick",
    "CommandReceived",
    "DROPPABLE_ITEMS",
    "Inbox",
    "InboxItem",
    "LinkDropped",
    "LinkOpened",
    "SubscriberJoined",
    "SubscriberLeft",
    "TelegramReceived",
]
