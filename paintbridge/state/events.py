"""Typed events consumed by the State Store.

Telegram events are produced by :func:`paintbridge.protocol.telegrams.parse_telegram`
(one per received line). Gateway events originate inside the process (uptime
ticks, progress resets issued with ``HOME``, link loss). All of them are
transient: built, applied, and dropped within one processing step.
"""

from __future__ import annotations

from typing import Literal

import msgspec

from .model import Axis

LimitDirection = Literal["MIN", "MAX"]


class Event(msgspec.Struct, frozen=True):
    """Base class for everything the State Store can apply."""


class StateChanged(Event, frozen=True):
    name: str


class KeyedEvent(Event, frozen=True):
    """``EVENTTYPE|key=value|...`` telegram; absent keys stay ``None``."""

    event_type: str
    command: int | None = None
    total_commands: int | None = None
    row: int | None = None
    pattern: str | None = None
    single_side: bool | None = None
    details: str | None = None
    duration: int | None = None
    movement_axis: Axis | None = None


class PositionReport(Event, frozen=True):
    x: float
    y: float


class TemperatureReport(Event, frozen=True):
    value: float


class PressurePotReport(Event, frozen=True):
    active: bool


class LimitTriggered(Event, frozen=True):
    axis: Axis
    direction: LimitDirection


class LimitCleared(Event, frozen=True):
    axis: Axis


class ServoReport(Event, frozen=True):
    angle: int


class WarningReport(Event, frozen=True):
    text: str


class Unrecognized(Event, frozen=True):
    line: str = ""


# --- Events raised by the gateway itself ---


class UptimeTick(Event, frozen=True):
    uptime: str


class ProgressReset(Event, frozen=True):
    pattern: str = ""


class LinkLost(Event, frozen=True):
    title: str
    message: str


class LinkRestored(Event, frozen=True):
    pass


TelegramEvent = (
    StateChanged
    | KeyedEvent
    | PositionReport
    | TemperatureReport
    | PressurePotReport
    | LimitTriggered
    | LimitCleared
    | ServoReport
    | WarningReport
    | Unrecognized
)

__all__ = [
    "Event",
    "KeyedEvent",
    "LimitCleared",
    "LimitDirection",
    "LimitTriggered",
    "LinkLost",
    "LinkRestored",
    "PositionReport",
    "PressurePotReport",
    "ProgressReset",
    "ServoReport",
    "StateChanged",
    "TelegramEvent",
    "TemperatureReport",
    "Unrecognized",
    "UptimeTick",
    "WarningReport",
]
