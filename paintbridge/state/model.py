"""Canonical system state structures.

Every structure is a frozen msgspec Struct: the State Store never mutates a
snapshot in place, it builds the next one with ``msgspec.structs.replace`` and
swaps the reference. Broadcast payloads are encoded straight from these
structures, so field names match what subscribers expect on the wire.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

import msgspec

from ..const import DEFAULT_TEMPERATURE, PATTERN_TOTAL_ROWS

Axis = Literal["X", "Y"]


class SystemStatus(StrEnum):
    IDLE = "IDLE"
    HOMING_X = "HOMING_X"
    HOMING_Y = "HOMING_Y"
    HOMING_ROTATION = "HOMING_ROTATION"
    HOMED = "HOMED"
    STOPPED = "STOPPED"
    PAUSED = "PAUSED"
    EXECUTING_PATTERN = "EXECUTING_PATTERN"
    ERROR = "ERROR"
    CYCLE_COMPLETE = "CYCLE_COMPLETE"
    CLEANING = "CLEANING"
    PAINTING_SIDE = "PAINTING_SIDE"
    MANUAL_ROTATING = "MANUAL_ROTATING"
    PRIMING = "PRIMING"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_wire(cls, name: str) -> SystemStatus:
        """Map a controller state name onto the enum, ``UNKNOWN`` if unmapped."""
        try:
            return cls(name.strip())
        except ValueError:
            return cls.UNKNOWN


class Position(msgspec.Struct, frozen=True):
    x: float = 0.0
    y: float = 0.0


class SystemInfo(msgspec.Struct, frozen=True, rename="camel"):
    temperature: float = DEFAULT_TEMPERATURE
    uptime: str = "0d 0h 0m"
    last_maintenance_date: str = ""


class PatternProgress(msgspec.Struct, frozen=True):
    """Progress of the pattern currently executed by the controller.

    ``row`` is zero-based; the controller reports one-based rows.
    ``axis`` and ``details`` are omitted from the wire form while unset.
    """

    command: int = 0
    total_commands: int = 0
    row: int = 0
    total_rows: int = PATTERN_TOTAL_ROWS
    pattern: str = ""
    single_side: bool = False
    completed_rows: tuple[int, ...] = ()
    duration: int = 0
    axis: Axis | msgspec.UnsetType = msgspec.UNSET
    details: str | msgspec.UnsetType = msgspec.UNSET

    def with_completed_row(self, row: int) -> PatternProgress:
        if row in self.completed_rows:
            return self
        return msgspec.structs.replace(self, completed_rows=self.completed_rows + (row,))


class AxisLimits(msgspec.Struct, frozen=True):
    min: bool = False
    max: bool = False


class LimitSwitches(msgspec.Struct, frozen=True):
    x: AxisLimits = msgspec.field(default_factory=AxisLimits)
    y: AxisLimits = msgspec.field(default_factory=AxisLimits)


class SystemState(msgspec.Struct, frozen=True, rename="camel"):
    """Immutable snapshot of the whole system as last reported by the controller."""

    status: SystemStatus = SystemStatus.IDLE
    position: Position = msgspec.field(default_factory=Position)
    system_info: SystemInfo = msgspec.field(default_factory=SystemInfo)
    pattern_progress: PatternProgress = msgspec.field(default_factory=PatternProgress)
    pressure_pot_active: bool = False
    limit_switches: LimitSwitches = msgspec.field(default_factory=LimitSwitches)
    servo_angle: int = 0
    last_serial_message: str = ""


def format_uptime(seconds: float) -> str:
    """Render an elapsed duration as ``<d>d <h>h <m>m``."""
    total_minutes = max(0, int(seconds)) // 60
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)
    return f"{days}d {hours}h {minutes}m"


__all__ = [
    "Axis",
    "AxisLimits",
    "LimitSwitches",
    "PatternProgress",
    "Position",
    "SystemInfo",
    "SystemState",
    "SystemStatus",
    "format_uptime",
]
