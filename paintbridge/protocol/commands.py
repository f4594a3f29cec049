"""Operator command decoding.

Inbound subscriber messages are ``{"type": ..., "payload": ...}`` JSON
envelopes. Each command type maps to one payload Struct carrying only the
fields that command needs; decoding fails with :class:`CommandRejected` when
required fields are absent or mistyped, before any handler runs.
"""

from __future__ import annotations

from typing import Annotated, Any, Final, Generic, TypeVar

import msgspec

NonEmpty = Annotated[str, msgspec.Meta(min_length=1)]

INVALID_FORMAT: Final[str] = "Invalid command format"
UNKNOWN_COMMAND: Final[str] = "Unknown command"

P = TypeVar("P")


class CommandRejected(ValueError):
    """A command failed validation; the message is shown to the requester."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CommandEnvelope(msgspec.Struct, frozen=True):
    type: NonEmpty
    payload: Any = None


class Command(msgspec.Struct, Generic[P], frozen=True):
    type: str
    payload: P


# --- payloads ---


class NoPayload(msgspec.Struct, frozen=True):
    pass


class RotateSpinner(msgspec.Struct, frozen=True):
    direction: NonEmpty
    degrees: float


class PaintPiece(msgspec.Struct, frozen=True):
    row: int
    col: int


class SetSpeed(msgspec.Struct, frozen=True):
    side: NonEmpty
    value: Annotated[float, msgspec.Meta(ge=0)]


class AxisMove(msgspec.Struct, frozen=True):
    axis: NonEmpty
    distance: float


class AxisGoto(msgspec.Struct, frozen=True):
    axis: NonEmpty
    position: float


class Seconds(msgspec.Struct, frozen=True):
    seconds: float


class UpdateSettings(msgspec.Struct, frozen=True):
    pattern: dict[str, Any] | None = None
    maintenance: dict[str, Any] | None = None
    speeds: dict[str, Any] | None = None


class ManualMove(msgspec.Struct, frozen=True):
    direction: NonEmpty
    state: NonEmpty
    speed: float | None = None
    acceleration: float | None = None


class ToggleSpray(msgspec.Struct, frozen=True):
    state: NonEmpty


class MoveToPosition(msgspec.Struct, frozen=True):
    x: float
    y: float
    speed: float | None = None
    acceleration: float | None = None


class SetServoAngle(msgspec.Struct, frozen=True):
    angle: float | str


class SaveConfig(msgspec.Struct, frozen=True):
    name: NonEmpty
    description: str = ""


class LoadConfig(msgspec.Struct, frozen=True):
    name: NonEmpty


PatternUpdate = dict[str, Any]

SIMPLE_COMMANDS: Final[tuple[str, ...]] = (
    "START_PAINTING",
    "STOP_PAINTING",
    "HOME_SYSTEM",
    "PRIME_GUN",
    "CLEAN_GUN",
    "BACK_WASH",
    "TOGGLE_PRESSURE_POT",
    "PAINT_FRONT",
    "PAINT_RIGHT",
    "PAINT_BACK",
    "PAINT_LEFT",
    "PAINT_LIP",
    "HEARTBEAT",
    "GET_PATTERN_CONFIG",
    "GET_SETTINGS",
    "GET_CONFIGS",
)

PAYLOAD_TYPES: Final[dict[str, Any]] = {
    **{name: NoPayload for name in SIMPLE_COMMANDS},
    "ROTATE_SPINNER": RotateSpinner,
    "PAINT_PIECE": PaintPiece,
    "SET_SPEED": SetSpeed,
    "MOVE": AxisMove,
    "GOTO": AxisGoto,
    "SET_PRIME_TIME": Seconds,
    "SET_CLEAN_TIME": Seconds,
    "UPDATE_PATTERN_CONFIG": PatternUpdate,
    "UPDATE_SETTINGS": UpdateSettings,
    "MANUAL_MOVE": ManualMove,
    "TOGGLE_SPRAY": ToggleSpray,
    "MOVE_TO_POSITION": MoveToPosition,
    "SET_SERVO_ANGLE": SetServoAngle,
    "SAVE_CONFIG": SaveConfig,
    "LOAD_CONFIG": LoadConfig,
}

MISSING_FIELD_MESSAGES: Final[dict[str, str]] = {
    "ROTATE_SPINNER": "Missing direction or degrees for rotation",
    "PAINT_PIECE": "Missing or invalid row/column in PAINT_PIECE command",
    "SET_SPEED": "Missing side or value for speed",
    "MOVE": "Missing axis or distance for move",
    "GOTO": "Missing axis or position for goto",
    "SET_PRIME_TIME": "Missing or invalid seconds for prime time",
    "SET_CLEAN_TIME": "Missing or invalid seconds for clean time",
    "UPDATE_PATTERN_CONFIG": "Missing pattern configuration",
    "UPDATE_SETTINGS": "Invalid settings payload",
    "MANUAL_MOVE": "Missing direction or state for manual move",
    "TOGGLE_SPRAY": "Missing state for spray toggle",
    "MOVE_TO_POSITION": "Missing x or y coordinates for position move",
    "SET_SERVO_ANGLE": "Missing angle for servo",
    "SAVE_CONFIG": "Missing configuration name",
    "LOAD_CONFIG": "Missing configuration name",
}

_envelope_decoder = msgspec.json.Decoder(CommandEnvelope)


def decode_envelope(raw: bytes | str) -> CommandEnvelope:
    try:
        return _envelope_decoder.decode(raw)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        raise CommandRejected(INVALID_FORMAT) from exc


def build_command(envelope: CommandEnvelope) -> Command[Any]:
    """Validate the envelope payload against its command's payload type."""
    payload_type = PAYLOAD_TYPES.get(envelope.type)
    if payload_type is None:
        raise CommandRejected(UNKNOWN_COMMAND)

    payload = envelope.payload
    if payload is None and payload_type is NoPayload:
        payload = {}
    try:
        if payload is None:
            raise msgspec.ValidationError("payload is required")
        typed = msgspec.convert(payload, type=payload_type)
    except msgspec.ValidationError as exc:
        message = MISSING_FIELD_MESSAGES.get(envelope.type, f"Invalid payload for {envelope.type}")
        raise CommandRejected(message) from exc
    return Command(type=envelope.type, payload=typed)


def decode_command(raw: bytes | str) -> Command[Any]:
    return build_command(decode_envelope(raw))


__all__ = [
    "AxisGoto",
    "AxisMove",
    "Command",
    "CommandEnvelope",
    "CommandRejected",
    "INVALID_FORMAT",
    "LoadConfig",
    "ManualMove",
    "MoveToPosition",
    "NoPayload",
    "PAYLOAD_TYPES",
    "PaintPiece",
    "RotateSpinner",
    "SaveConfig",
    "Seconds",
    "SetServoAngle",
    "SetSpeed",
    "ToggleSpray",
    "UNKNOWN_COMMAND",
    "UpdateSettings",
    "build_command",
    "decode_command",
    "decode_envelope",
]
