"""Parser for the controller's line-oriented telegram protocol.

:func:`parse_telegram` is total: every line yields exactly one event, with
:class:`Unrecognized` as the fallback. Matchers are tried in a fixed order and
the first one that produces an event wins.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Final

from ..config.logging import log_serial_traffic
from ..state.events import (
    KeyedEvent,
    LimitCleared,
    LimitTriggered,
    PositionReport,
    PressurePotReport,
    ServoReport,
    StateChanged,
    TelegramEvent,
    TemperatureReport,
    Unrecognized,
    WarningReport,
)

logger = logging.getLogger("paintbridge.protocol")

Matcher = Callable[[str], TelegramEvent | None]

_POSITION_RE: Final = re.compile(r"Position - X: ([\d.]+) inches, Y: ([\d.]+) inches")
_LIMIT_RE: Final = re.compile(r"LIMIT:([XY])_(MIN|MAX)")
_SERVO_RE: Final = re.compile(r"Servo - Angle: (\d+)")
_LEADING_INT_RE: Final = re.compile(r"\s*([+-]?\d+)")

PRESSURE_POT_PREFIX: Final[str] = "Pressure pot"
STATE_CHANGED_PREFIX: Final[str] = "State changed:"
LEGACY_POSITION_PREFIX: Final[str] = "Position:"
TEMPERATURE_PREFIX: Final[str] = "Temperature:"
WARNING_PREFIX: Final[str] = "WARNING:"
WARNING_TEXT_OFFSET: Final[int] = 9
LIMIT_CLEAR_PREFIX: Final[str] = "LIMIT_CLEAR:"
KEYED_SEPARATOR: Final[str] = "|"


def _parse_float(text: str) -> float | None:
    try:
        return float(text.strip())
    except ValueError:
        return None


def _parse_int(text: str) -> int | None:
    match = _LEADING_INT_RE.match(text)
    return int(match.group(1)) if match else None


def _match_position(line: str) -> TelegramEvent | None:
    match = _POSITION_RE.search(line)
    if match is None:
        return None
    x = _parse_float(match.group(1))
    y = _parse_float(match.group(2))
    if x is None or y is None:
        return None
    return PositionReport(x=x, y=y)


def _match_pressure_pot(line: str) -> TelegramEvent | None:
    if not line.startswith(PRESSURE_POT_PREFIX):
        return None
    return PressurePotReport(active="deactivated" not in line)


def _match_state_changed(line: str) -> TelegramEvent | None:
    if not line.startswith(STATE_CHANGED_PREFIX):
        return None
    return StateChanged(name=line[len(STATE_CHANGED_PREFIX) :].strip())


def _match_keyed(line: str) -> TelegramEvent | None:
    if KEYED_SEPARATOR not in line:
        return None
    event_type, *segments = line.split(KEYED_SEPARATOR)
    pairs = [segment.split("=", 1) for segment in segments if "=" in segment]
    if not pairs:
        return None

    fields: dict[str, object] = {}
    for key, value in pairs:
        match key:
            case "command" | "total_commands" | "row":
                parsed = _parse_int(value)
                if parsed is not None:
                    fields[key] = parsed
            case "duration_ms":
                parsed = _parse_int(value)
                if parsed is not None:
                    fields["duration"] = parsed
            case "pattern" | "details":
                fields[key] = value
            case "single_side":
                fields["single_side"] = value == "true"
            case "movement_axis":
                if value in ("X", "Y"):
                    fields["movement_axis"] = value
            case _:
                logger.debug("Ignoring unknown key %r in %s telegram", key, event_type)
    return KeyedEvent(event_type=event_type.strip(), **fields)  # type: ignore[arg-type]


def _match_legacy_position(line: str) -> TelegramEvent | None:
    if not line.startswith(LEGACY_POSITION_PREFIX):
        return None
    parts = line[len(LEGACY_POSITION_PREFIX) :].split(",")
    if len(parts) != 2:
        return None
    x = _parse_float(parts[0])
    y = _parse_float(parts[1])
    if x is None or y is None:
        return None
    return PositionReport(x=x, y=y)


def _match_temperature(line: str) -> TelegramEvent | None:
    if not line.startswith(TEMPERATURE_PREFIX):
        return None
    value = _parse_float(line[len(TEMPERATURE_PREFIX) :])
    if value is None:
        return None
    return TemperatureReport(value=value)


def _match_warning(line: str) -> TelegramEvent | None:
    if not line.startswith(WARNING_PREFIX):
        return None
    return WarningReport(text=line[WARNING_TEXT_OFFSET:])


def _match_limit_clear(line: str) -> TelegramEvent | None:
    if not line.startswith(LIMIT_CLEAR_PREFIX):
        return None
    axis = line[len(LIMIT_CLEAR_PREFIX) :].strip()
    if axis not in ("X", "Y"):
        return None
    return LimitCleared(axis=axis)  # type: ignore[arg-type]


def _match_limit(line: str) -> TelegramEvent | None:
    match = _LIMIT_RE.search(line)
    if match is None:
        return None
    return LimitTriggered(axis=match.group(1), direction=match.group(2))  # type: ignore[arg-type]


def _match_servo(line: str) -> TelegramEvent | None:
    match = _SERVO_RE.search(line)
    if match is None:
        return None
    return ServoReport(angle=int(match.group(1)))


MATCHERS: Final[tuple[Matcher, ...]] = (
    _match_position,
    _match_pressure_pot,
    _match_state_changed,
    _match_keyed,
    _match_legacy_position,
    _match_temperature,
    _match_warning,
    _match_limit_clear,
    _match_limit,
    _match_servo,
)


def parse_telegram(line: str) -> TelegramEvent:
    """Turn one received line into a typed event."""
    text = line.strip()
    if text:
        for matcher in MATCHERS:
            event = matcher(text)
            if event is not None:
                return event
    log_serial_traffic("rx", text, "Unrecognized telegram")
    return Unrecognized(line=text)


__all__ = ["MATCHERS", "parse_telegram"]
