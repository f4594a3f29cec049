"""Single-writer store for the canonical :class:`SystemState`."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import msgspec
from msgspec.structs import replace

from ..common import epoch_millis
from ..services.broadcast import BroadcastHub
from .events import (
    Event,
    KeyedEvent,
    LimitCleared,
    LimitTriggered,
    LinkLost,
    LinkRestored,
    PositionReport,
    PressurePotReport,
    ProgressReset,
    ServoReport,
    StateChanged,
    TemperatureReport,
    Unrecognized,
    UptimeTick,
    WarningReport,
)
from .model import AxisLimits, PatternProgress, SystemInfo, SystemState, SystemStatus

logger = logging.getLogger("paintbridge.state")

STATE_UPDATE = "STATE_UPDATE"
POSITION_UPDATE = "POSITION_UPDATE"
SERVO_UPDATE = "SERVO_UPDATE"


class PositionUpdate(msgspec.Struct, frozen=True):
    x: float
    y: float
    timestamp: int


class ServoUpdate(msgspec.Struct, frozen=True):
    angle: int
    timestamp: int


Reducer = Callable[[SystemState, Any], SystemState | None]


def _progress_fields(event: KeyedEvent, *names: str) -> dict[str, Any]:
    """Collect the keyed fields present on *event*, converting rows to zero-based."""
    fields: dict[str, Any] = {}
    for name in names:
        value = getattr(event, name)
        if value is None:
            continue
        if name == "row":
            value -= 1
        elif name == "movement_axis":
            name = "axis"
        fields[name] = value
    return fields


class StateStore:
    """Own the current snapshot and apply events to it.

    ``apply`` is the only way the state changes. Each accepted event replaces
    the snapshot and broadcasts the new one as ``STATE_UPDATE``; events that
    leave the snapshot untouched are not broadcast.
    """

    def __init__(self, hub: BroadcastHub, *, last_maintenance_date: str = "") -> None:
        self._hub = hub
        self._state = SystemState(system_info=SystemInfo(last_maintenance_date=last_maintenance_date))
        self._followups: list[Callable[[], object]] = []
        self._reducers: dict[type[Event], Reducer] = {
            StateChanged: self._on_state_changed,
            KeyedEvent: self._on_keyed,
            PositionReport: self._on_position,
            TemperatureReport: self._on_temperature,
            PressurePotReport: self._on_pressure_pot,
            LimitTriggered: self._on_limit_triggered,
            LimitCleared: self._on_limit_cleared,
            ServoReport: self._on_servo,
            WarningReport: self._on_warning,
            Unrecognized: self._on_unrecognized,
            UptimeTick: self._on_uptime,
            ProgressReset: self._on_progress_reset,
            LinkLost: self._on_link_lost,
            LinkRestored: self._on_link_restored,
        }
        self._keyed_reducers: dict[str, Callable[[SystemState, KeyedEvent], SystemState | None]] = {
            "PATTERN_START": self._on_pattern_start,
            "PATTERN_COMPLETE": self._on_pattern_complete,
            "SPRAY_COMPLETE": self._on_spray_complete,
            "SPRAY_START": self._on_spray_start,
            "MOVE_X": self._on_move,
            "MOVE_Y": self._on_move,
            "ERROR": self._on_error,
        }

    @property
    def state(self) -> SystemState:
        return self._state

    def snapshot(self) -> SystemState:
        """Return the current immutable snapshot."""
        return self._state

    def apply(self, event: Event, *, line: str | None = None) -> bool:
        """Apply *event*; return True when the snapshot changed and was broadcast.

        ``line`` is the raw telegram the event was parsed from; it is recorded
        as ``lastSerialMessage`` when the event changes the state.
        """
        reducer = self._reducers.get(type(event))
        if reducer is None:
            logger.debug("No reducer for %s", type(event).__name__)
            return False

        self._followups.clear()
        next_state = reducer(self._state, event)
        followups, self._followups = self._followups, []

        changed = next_state is not None and next_state != self._state
        if next_state is not None and changed:
            if line is not None:
                next_state = replace(next_state, last_serial_message=line)
            self._state = next_state
            self._hub.broadcast(STATE_UPDATE, next_state)

        for followup in followups:
            followup()
        return changed

    def set_maintenance_date(self, value: str) -> bool:
        if value == self._state.system_info.last_maintenance_date:
            return False
        info = replace(self._state.system_info, last_maintenance_date=value)
        self._state = replace(self._state, system_info=info)
        self._hub.broadcast(STATE_UPDATE, self._state)
        return True

    # --- telegram reducers ---

    def _on_state_changed(self, state: SystemState, event: StateChanged) -> SystemState:
        status = SystemStatus.from_wire(event.name)
        if status is SystemStatus.UNKNOWN:
            logger.warning("Controller reported unknown state %r", event.name)
        if status is SystemStatus.HOMED:
            return replace(state, status=status, pattern_progress=PatternProgress())
        return replace(state, status=status)

    def _on_keyed(self, state: SystemState, event: KeyedEvent) -> SystemState | None:
        reducer = self._keyed_reducers.get(event.event_type)
        if reducer is None:
            logger.debug("Ignoring keyed event %s", event.event_type)
            return None
        return reducer(state, event)

    def _on_pattern_start(self, state: SystemState, event: KeyedEvent) -> SystemState:
        fields = _progress_fields(event, "command", "total_commands", "row", "single_side", "pattern", "details")
        return replace(
            state,
            status=SystemStatus.EXECUTING_PATTERN,
            pattern_progress=replace(state.pattern_progress, **fields),
        )

    def _on_pattern_complete(self, state: SystemState, event: KeyedEvent) -> SystemState:
        return replace(
            state,
            status=SystemStatus.IDLE if event.single_side else SystemStatus.HOMED,
            pattern_progress=replace(state.pattern_progress, command=0, completed_rows=()),
        )

    def _on_spray_complete(self, state: SystemState, event: KeyedEvent) -> SystemState | None:
        if event.row is None:
            return None
        return replace(state, pattern_progress=state.pattern_progress.with_completed_row(event.row - 1))

    def _on_spray_start(self, state: SystemState, event: KeyedEvent) -> SystemState | None:
        if event.row is None:
            return None
        return replace(state, pattern_progress=replace(state.pattern_progress, row=event.row - 1))

    def _on_move(self, state: SystemState, event: KeyedEvent) -> SystemState:
        fields = _progress_fields(
            event,
            "command",
            "total_commands",
            "row",
            "single_side",
            "pattern",
            "movement_axis",
            "duration",
            "details",
        )
        return replace(state, pattern_progress=replace(state.pattern_progress, **fields))

    def _on_error(self, state: SystemState, event: KeyedEvent) -> SystemState:
        message = event.details or "Unknown error occurred"
        logger.error("Controller reported error: %s", message)
        self._followups.append(lambda: self._hub.notify_warning("Error", message, "high"))
        return replace(state, status=SystemStatus.ERROR)

    def _on_position(self, state: SystemState, event: PositionReport) -> SystemState:
        update = PositionUpdate(x=event.x, y=event.y, timestamp=epoch_millis())
        self._followups.append(lambda: self._hub.broadcast(POSITION_UPDATE, update))
        return replace(state, position=replace(state.position, x=event.x, y=event.y))

    def _on_temperature(self, state: SystemState, event: TemperatureReport) -> SystemState:
        return replace(state, system_info=replace(state.system_info, temperature=event.value))

    def _on_pressure_pot(self, state: SystemState, event: PressurePotReport) -> SystemState:
        return replace(state, pressure_pot_active=event.active)

    def _on_limit_triggered(self, state: SystemState, event: LimitTriggered) -> SystemState:
        limits = state.limit_switches
        field = "x" if event.axis == "X" else "y"
        axis_limits = replace(getattr(limits, field), **{event.direction.lower(): True})
        return replace(state, limit_switches=replace(limits, **{field: axis_limits}))

    def _on_limit_cleared(self, state: SystemState, event: LimitCleared) -> SystemState:
        field = "x" if event.axis == "X" else "y"
        return replace(state, limit_switches=replace(state.limit_switches, **{field: AxisLimits()}))

    def _on_servo(self, state: SystemState, event: ServoReport) -> SystemState:
        update = ServoUpdate(angle=event.angle, timestamp=epoch_millis())
        self._followups.append(lambda: self._hub.broadcast(SERVO_UPDATE, update))
        return replace(state, servo_angle=event.angle)

    def _on_warning(self, state: SystemState, event: WarningReport) -> None:
        logger.warning("Controller warning: %s", event.text)
        self._followups.append(lambda: self._hub.notify_warning("WARNING", event.text, "low"))
        return None

    def _on_unrecognized(self, state: SystemState, event: Unrecognized) -> None:
        return None

    # --- gateway reducers ---

    def _on_uptime(self, state: SystemState, event: UptimeTick) -> SystemState:
        return replace(state, system_info=replace(state.system_info, uptime=event.uptime))

    def _on_progress_reset(self, state: SystemState, event: ProgressReset) -> SystemState:
        return replace(state, pattern_progress=PatternProgress(pattern=event.pattern))

    def _on_link_lost(self, state: SystemState, event: LinkLost) -> SystemState:
        self._followups.append(lambda: self._hub.notify_warning(event.title, event.message, "high"))
        return replace(state, status=SystemStatus.ERROR)

    def _on_link_restored(self, state: SystemState, event: LinkRestored) -> SystemState | None:
        if state.status is not SystemStatus.ERROR:
            return None
        return replace(state, status=SystemStatus.IDLE)


__all__ = [
    "POSITION_UPDATE",
    "PositionUpdate",
    "SERVO_UPDATE",
    "STATE_UPDATE",
    "ServoUpdate",
    "StateStore",
]
