"""Command Gateway: validate subscriber commands and drive the serial link.

Each command type has one handler. Handlers validate first and raise
:class:`CommandRejected` before touching configuration or the link; writes go
through :meth:`CommandGateway.send_lines`, which holds a lock for the whole
sequence so multi-line pushes are never interleaved with other writes.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Final, Protocol

from ..common import clamp, round_half_up
from ..config.store import ConfigurationError, ConfigurationStore
from ..const import CLEAN_TIME_RANGE, GRID_COLUMNS, GRID_ROWS, PRIME_TIME_RANGE, SERVO_ANGLE_RANGE, SIDES
from ..protocol.commands import (
    AxisGoto,
    AxisMove,
    CommandRejected,
    LoadConfig,
    ManualMove,
    MoveToPosition,
    PaintPiece,
    RotateSpinner,
    SaveConfig,
    Seconds,
    SetServoAngle,
    SetSpeed,
    ToggleSpray,
    UpdateSettings,
    decode_command,
)
from ..protocol.encoding import configuration_lines, fixed2, format_number
from ..state.events import LinkLost, ProgressReset
from ..state.store import STATE_UPDATE, StateStore
from ..transport.serial import LinkClosed, LinkFailure
from .broadcast import BroadcastHub

logger = logging.getLogger("paintbridge.gateway")

SETTINGS_UPDATE: Final[str] = "SETTINGS_UPDATE"
CONFIGS_UPDATE: Final[str] = "CONFIGS_UPDATE"
PATTERN_CONFIG: Final[str] = "PATTERN_CONFIG"

SIDE_COMMANDS: Final[dict[str, str]] = {f"PAINT_{side.upper()}": side for side in SIDES}
SIDE_DISABLED_MESSAGES: Final[dict[str, str]] = {
    "front": "Front side is disabled",
    "right": "Right side is disabled",
    "back": "Back side is disabled",
    "left": "Left side is disabled",
    "lip": "Lip pattern is disabled",
}

PLAIN_COMMANDS: Final[dict[str, str]] = {
    "STOP_PAINTING": "STOP",
    "PRIME_GUN": "PRIME",
    "TOGGLE_PRESSURE_POT": "PRESSURE",
}
# Cleaning cycles count as maintenance and stamp lastMaintenanceDate.
MAINTENANCE_COMMANDS: Final[dict[str, str]] = {
    "CLEAN_GUN": "CLEAN",
    "BACK_WASH": "BACK_WASH",
}

# direction -> (axis, sign) for cardinal moves
CARDINAL_MOVES: Final[dict[str, tuple[str, str]]] = {
    "left": ("X", "-"),
    "right": ("X", "+"),
    "forward": ("Y", "+"),
    "backward": ("Y", "-"),
}
# direction -> (X sign, Y sign) for diagonal moves
DIAGONAL_MOVES: Final[dict[str, tuple[str, str]]] = {
    "forward-right": ("+", "+"),
    "forward-left": ("-", "+"),
    "backward-right": ("+", "-"),
    "backward-left": ("-", "-"),
}
MOTION_AXES: Final[frozenset[str]] = frozenset({"X", "Y"})


class LineWriter(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def write_line(self, text: str) -> None: ...

    def close(self) -> None: ...


Handler = Callable[[str, Any], Awaitable[None]]


def _unit_factor(value: float | None) -> float:
    """Speed/acceleration factor; absent or zero means full scale."""
    return 1.0 if not value else float(value)


class CommandGateway:
    """Translate subscriber commands into controller telegrams."""

    def __init__(
        self,
        link: LineWriter,
        store: StateStore,
        hub: BroadcastHub,
        config: ConfigurationStore,
        *,
        on_link_failure: Callable[[str], None] | None = None,
    ) -> None:
        self._link = link
        self._store = store
        self._hub = hub
        self._config = config
        self._on_link_failure = on_link_failure
        self._write_lock = asyncio.Lock()
        self._handlers: dict[str, Handler] = {
            "START_PAINTING": self._handle_start_painting,
            "HOME_SYSTEM": self._handle_home,
            "ROTATE_SPINNER": self._handle_rotate,
            "PAINT_PIECE": self._handle_paint_piece,
            "SET_SPEED": self._handle_set_speed,
            "MOVE": self._handle_move,
            "GOTO": self._handle_goto,
            "HEARTBEAT": self._handle_heartbeat,
            "SET_PRIME_TIME": self._handle_prime_time,
            "SET_CLEAN_TIME": self._handle_clean_time,
            "UPDATE_PATTERN_CONFIG": self._handle_update_pattern,
            "GET_PATTERN_CONFIG": self._handle_get_pattern,
            "GET_SETTINGS": self._handle_get_settings,
            "UPDATE_SETTINGS": self._handle_update_settings,
            "MANUAL_MOVE": self._handle_manual_move,
            "TOGGLE_SPRAY": self._handle_toggle_spray,
            "MOVE_TO_POSITION": self._handle_move_to_position,
            "SET_SERVO_ANGLE": self._handle_servo_angle,
            "SAVE_CONFIG": self._handle_save_config,
            "LOAD_CONFIG": self._handle_load_config,
            "GET_CONFIGS": self._handle_get_configs,
        }
        for command_type, keyword in PLAIN_COMMANDS.items():
            self._handlers[command_type] = self._plain(keyword)
        for command_type, keyword in MAINTENANCE_COMMANDS.items():
            self._handlers[command_type] = self._maintenance(keyword)
        for command_type, side in SIDE_COMMANDS.items():
            self._handlers[command_type] = self._paint_side(side)

    @property
    def command_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def handle(self, subscriber_id: str, raw: bytes | str) -> None:
        """Decode and execute one command from *subscriber_id*.

        Rejections and configuration failures are reported to the requester
        only. Link failures are reported to the requester, raise the system
        into ``ERROR`` and are handed to the reconnect policy.
        """
        try:
            command = decode_command(raw)
            handler = self._handlers.get(command.type)
            if handler is None:
                raise CommandRejected("Unknown command")
            logger.debug("Command %s from %s", command.type, subscriber_id)
            await handler(subscriber_id, command.payload)
        except CommandRejected as exc:
            logger.info("Rejected command from %s: %s", subscriber_id, exc.message)
            self._hub.send_error(subscriber_id, exc.message)
        except ConfigurationError as exc:
            logger.error("Configuration failure for %s: %s", subscriber_id, exc)
            self._hub.send_error(subscriber_id, str(exc))
        except LinkFailure as exc:
            self._report_link_failure(subscriber_id, exc)

    async def send_lines(self, lines: Sequence[str]) -> None:
        """Write *lines* in order as one uninterrupted sequence."""
        async with self._write_lock:
            for line in lines:
                await self._link.write_line(line)

    async def send(self, line: str) -> None:
        await self.send_lines((line,))

    async def push_configuration(self) -> None:
        """Send speeds, maintenance timings and the pattern setup."""
        settings = self._config.settings
        lines = configuration_lines(settings.speeds, settings.maintenance, settings.pattern)
        logger.info("Pushing configuration (%d lines)", len(lines))
        await self.send_lines(lines)

    async def send_stop(self) -> None:
        if not self._link.is_open:
            return
        try:
            await self.send("STOP")
        except LinkFailure as exc:
            logger.warning("Unable to send STOP: %s", exc)

    async def greet(self, subscriber_id: str) -> None:
        """Send state, settings and saved profiles to a new subscriber."""
        self._hub.send_to(subscriber_id, STATE_UPDATE, self._store.snapshot())
        self._hub.send_to(subscriber_id, SETTINGS_UPDATE, await self._config.settings_payload())
        try:
            configs = await self._config.list_configs()
        except ConfigurationError as exc:
            logger.error("Unable to list configurations: %s", exc)
            self._hub.send_error(subscriber_id, str(exc))
            return
        self._hub.send_to(subscriber_id, CONFIGS_UPDATE, configs)

    def _report_link_failure(self, subscriber_id: str, exc: LinkFailure) -> None:
        if isinstance(exc, LinkClosed):
            title, message = "Connection Error", str(exc)
        else:
            title, message = "Command Error", f"Failed to send command: {exc}"
            # Reopened by the reconnect supervisor.
            self._link.close()
        logger.error("%s: %s", title, message)
        self._hub.send_error(subscriber_id, message)
        self._store.apply(LinkLost(title=title, message=message))
        if self._on_link_failure is not None:
            self._on_link_failure(message)

    async def _broadcast_settings(self) -> None:
        self._store.set_maintenance_date(self._config.settings.maintenance.last_maintenance_date)
        self._hub.broadcast(SETTINGS_UPDATE, await self._config.settings_payload())

    # --- simple commands ---

    def _plain(self, keyword: str) -> Handler:
        async def handler(subscriber_id: str, payload: Any) -> None:
            await self.send(keyword)

        return handler

    def _maintenance(self, keyword: str) -> Handler:
        async def handler(subscriber_id: str, payload: Any) -> None:
            await self.send(keyword)
            maintenance = await self._config.update_maintenance_date()
            logger.info("Maintenance %s recorded for %s", keyword, maintenance.last_maintenance_date)
            await self._broadcast_settings()

        return handler

    def _paint_side(self, side: str) -> Handler:
        async def handler(subscriber_id: str, payload: Any) -> None:
            pattern = await self._config.get_pattern_settings()
            if not pattern.enabled_sides.is_enabled(side):
                raise CommandRejected(SIDE_DISABLED_MESSAGES[side])
            await self.send(side.upper())

        return handler

    async def _handle_start_painting(self, subscriber_id: str, payload: Any) -> None:
        pattern = await self._config.get_pattern_settings()
        if not pattern.enabled_sides.any_enabled():
            raise CommandRejected("No sides are enabled for painting")
        await self.send("START")

    async def _handle_home(self, subscriber_id: str, payload: Any) -> None:
        await self.send("HOME")
        self._store.apply(ProgressReset(pattern="FRONT"))

    async def _handle_heartbeat(self, subscriber_id: str, payload: Any) -> None:
        self._hub.send_to(subscriber_id, STATE_UPDATE, self._store.snapshot())

    # --- motion ---

    async def _handle_rotate(self, subscriber_id: str, payload: RotateSpinner) -> None:
        degrees = abs(payload.degrees)
        sign = "-" if payload.direction != "right" and degrees else ""
        await self.send(f"ROTATE {sign}{format_number(degrees)}")

    async def _handle_paint_piece(self, subscriber_id: str, payload: PaintPiece) -> None:
        if not (0 <= payload.row < GRID_ROWS and 0 <= payload.col < GRID_COLUMNS):
            raise CommandRejected(
                f"Invalid grid position. Row must be 0-{GRID_ROWS - 1} and column must be 0-{GRID_COLUMNS - 1}."
            )
        await self.send(f"PAINT_PIECE {payload.row} {payload.col}")

    @staticmethod
    def _motion_axis(axis: str) -> str:
        normalized = axis.strip().upper()
        if normalized not in MOTION_AXES:
            raise CommandRejected(f"Invalid axis: {axis}")
        return normalized

    async def _handle_move(self, subscriber_id: str, payload: AxisMove) -> None:
        axis = self._motion_axis(payload.axis)
        await self.send(f"MOVE_{axis} {format_number(payload.distance)}")

    async def _handle_goto(self, subscriber_id: str, payload: AxisGoto) -> None:
        axis = self._motion_axis(payload.axis)
        await self.send(f"GOTO_{axis} {format_number(payload.position)}")

    async def _handle_manual_move(self, subscriber_id: str, payload: ManualMove) -> None:
        direction = payload.direction
        if direction not in CARDINAL_MOVES and direction not in DIAGONAL_MOVES:
            raise CommandRejected("Invalid direction for manual move")
        if payload.state == "STOP":
            await self.send("MANUAL_STOP")
            return
        if payload.state != "START":
            raise CommandRejected("Invalid state for manual move")

        tail = f"{fixed2(_unit_factor(payload.speed))} {fixed2(_unit_factor(payload.acceleration))}"
        if direction in DIAGONAL_MOVES:
            x_sign, y_sign = DIAGONAL_MOVES[direction]
            await self.send(f"MANUAL_MOVE_DIAGONAL X{x_sign} Y{y_sign} {tail}")
            return
        axis, sign = CARDINAL_MOVES[direction]
        await self.send(f"MANUAL_MOVE {axis} {sign} {tail}")

    async def _handle_move_to_position(self, subscriber_id: str, payload: MoveToPosition) -> None:
        speed = 1.0 if payload.speed is None else payload.speed
        acceleration = 1.0 if payload.acceleration is None else payload.acceleration
        if not (0 < speed <= 1 and 0 < acceleration <= 1):
            raise CommandRejected("Speed and acceleration must be between 0 and 1")
        await self.send(f"GOTO {fixed2(payload.x)} {fixed2(payload.y)}")

    async def _handle_toggle_spray(self, subscriber_id: str, payload: ToggleSpray) -> None:
        if payload.state == "START":
            await self.send("SPRAY_START")
        elif payload.state == "STOP":
            await self.send("SPRAY_STOP")
        else:
            raise CommandRejected("Invalid state for spray toggle")

    async def _handle_servo_angle(self, subscriber_id: str, payload: SetServoAngle) -> None:
        try:
            angle = float(payload.angle)
        except ValueError:
            angle = math.nan
        lower, upper = SERVO_ANGLE_RANGE
        if math.isnan(angle) or not lower <= angle <= upper:
            raise CommandRejected("Servo angle must be between 0 and 180 degrees")
        await self.send(f"SERVO {round_half_up(angle)}")

    # --- configuration ---

    async def _handle_set_speed(self, subscriber_id: str, payload: SetSpeed) -> None:
        side = payload.side.lower()
        if side not in SIDES:
            raise CommandRejected(f"Invalid side for speed: {payload.side}")
        await self._config.update_speeds({side: payload.value})
        await self._broadcast_settings()
        await self.push_configuration()

    async def _set_timing(self, field: str, seconds: float, bounds: tuple[int, int]) -> None:
        value = clamp(seconds, *bounds)
        await self._config.update_maintenance_settings({field: value})
        await self._broadcast_settings()
        await self.push_configuration()

    async def _handle_prime_time(self, subscriber_id: str, payload: Seconds) -> None:
        await self._set_timing("primeTime", payload.seconds, PRIME_TIME_RANGE)

    async def _handle_clean_time(self, subscriber_id: str, payload: Seconds) -> None:
        await self._set_timing("cleanTime", payload.seconds, CLEAN_TIME_RANGE)

    async def _handle_update_pattern(self, subscriber_id: str, payload: dict[str, Any]) -> None:
        if not payload:
            raise CommandRejected("Missing pattern configuration")
        await self._config.update_pattern_settings(payload)
        await self._broadcast_settings()
        await self.push_configuration()

    async def _handle_update_settings(self, subscriber_id: str, payload: UpdateSettings) -> None:
        update = {
            key: value
            for key, value in (
                ("pattern", payload.pattern),
                ("maintenance", payload.maintenance),
                ("speeds", payload.speeds),
            )
            if value is not None
        }
        if not update:
            raise CommandRejected("Invalid settings payload")
        await self._config.update_settings(update)
        await self._broadcast_settings()
        await self.push_configuration()

    async def _handle_get_pattern(self, subscriber_id: str, payload: Any) -> None:
        self._hub.send_to(subscriber_id, PATTERN_CONFIG, await self._config.get_pattern_settings())

    async def _handle_get_settings(self, subscriber_id: str, payload: Any) -> None:
        self._hub.send_to(subscriber_id, SETTINGS_UPDATE, await self._config.settings_payload())

    async def _handle_save_config(self, subscriber_id: str, payload: SaveConfig) -> None:
        await self._config.save_config(payload.name, payload.description)
        self._hub.broadcast(CONFIGS_UPDATE, await self._config.list_configs())

    async def _handle_load_config(self, subscriber_id: str, payload: LoadConfig) -> None:
        await self._config.load_config(payload.name)
        await self._broadcast_settings()
        await self.push_configuration()

    async def _handle_get_configs(self, subscriber_id: str, payload: Any) -> None:
        self._hub.send_to(subscriber_id, CONFIGS_UPDATE, await self._config.list_configs())


__all__ = [
    "CONFIGS_UPDATE",
    "CommandGateway",
    "LineWriter",
    "PATTERN_CONFIG",
    "SETTINGS_UPDATE",
]
