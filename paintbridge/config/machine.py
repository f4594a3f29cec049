"""Typed machine settings persisted by the Configuration Store.

The wire and file form uses camelCase keys, matching what subscribers send in
``UPDATE_SETTINGS`` / ``UPDATE_PATTERN_CONFIG`` and receive in
``SETTINGS_UPDATE``.
"""

from __future__ import annotations

from typing import Annotated, Any

import msgspec

from ..common import today_iso
from ..const import DEFAULT_COMMON_PATHS, DEFAULT_SERIAL_BAUD, DEFAULT_VENDOR_IDS, SIDES

NonNegative = Annotated[float, msgspec.Meta(ge=0)]
GridCount = Annotated[int, msgspec.Meta(ge=1)]


class Speeds(msgspec.Struct, frozen=True):
    front: NonNegative = 100.0
    right: NonNegative = 100.0
    back: NonNegative = 100.0
    left: NonNegative = 100.0
    lip: NonNegative = 100.0


class MaintenanceSettings(msgspec.Struct, frozen=True, rename="camel"):
    last_maintenance_date: str = msgspec.field(default_factory=today_iso)
    maintenance_interval: Annotated[int, msgspec.Meta(ge=1)] = 30
    prime_time: NonNegative = 5.0
    clean_time: NonNegative = 10.0
    back_wash_time: NonNegative = 5.0
    pressure_pot_delay: NonNegative = 5.0


class SerialSettings(msgspec.Struct, frozen=True, rename="camel"):
    baud_rate: int = DEFAULT_SERIAL_BAUD
    vendor_ids: tuple[str, ...] = DEFAULT_VENDOR_IDS
    common_paths: tuple[str, ...] = DEFAULT_COMMON_PATHS


class SideOffset(msgspec.Struct, frozen=True):
    x: float = 0.0
    y: float = 0.0
    angle: float = 0.0


class InitialOffsets(msgspec.Struct, frozen=True):
    front: SideOffset = msgspec.field(default_factory=SideOffset)
    right: SideOffset = msgspec.field(default_factory=SideOffset)
    back: SideOffset = msgspec.field(default_factory=SideOffset)
    left: SideOffset = msgspec.field(default_factory=SideOffset)
    lip: SideOffset = msgspec.field(default_factory=SideOffset)


class AxisPair(msgspec.Struct, frozen=True):
    x: float = 0.0
    y: float = 0.0


class TravelDistance(msgspec.Struct, frozen=True):
    horizontal: AxisPair = msgspec.field(default_factory=lambda: AxisPair(x=10.0, y=0.0))
    vertical: AxisPair = msgspec.field(default_factory=lambda: AxisPair(x=10.0, y=2.0))
    lip: AxisPair = msgspec.field(default_factory=lambda: AxisPair(x=10.0, y=0.0))


class GridRows(msgspec.Struct, frozen=True):
    x: GridCount = 6
    y: GridCount = 8


class EnabledSides(msgspec.Struct, frozen=True):
    front: bool = True
    right: bool = True
    back: bool = True
    left: bool = True
    lip: bool = True

    def is_enabled(self, side: str) -> bool:
        return bool(getattr(self, side.lower()))

    def any_enabled(self) -> bool:
        return any(getattr(self, side) for side in SIDES)


class PatternSettings(msgspec.Struct, frozen=True, rename="camel"):
    initial_offsets: InitialOffsets = msgspec.field(default_factory=InitialOffsets)
    travel_distance: TravelDistance = msgspec.field(default_factory=TravelDistance)
    rows: GridRows = msgspec.field(default_factory=GridRows)
    enabled_sides: EnabledSides = msgspec.field(default_factory=EnabledSides)


class SystemSettings(msgspec.Struct, frozen=True):
    speeds: Speeds = msgspec.field(default_factory=Speeds)
    maintenance: MaintenanceSettings = msgspec.field(default_factory=MaintenanceSettings)
    serial: SerialSettings = msgspec.field(default_factory=SerialSettings)
    pattern: PatternSettings = msgspec.field(default_factory=PatternSettings)


class SettingsPayload(msgspec.Struct, frozen=True):
    """Body of ``SETTINGS_UPDATE`` messages."""

    pattern: PatternSettings
    maintenance: MaintenanceSettings
    speeds: Speeds


class ConfigSummary(msgspec.Struct, frozen=True):
    name: str
    description: str
    timestamp: str


class ConfigProfile(msgspec.Struct, frozen=True):
    name: str
    description: str
    timestamp: str
    settings: SystemSettings

    def summary(self) -> ConfigSummary:
        return ConfigSummary(name=self.name, description=self.description, timestamp=self.timestamp)


def deep_merge(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay *update* onto a copy of *base*."""
    merged = dict(base)
    for key, value in update.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


__all__ = [
    "AxisPair",
    "ConfigProfile",
    "ConfigSummary",
    "EnabledSides",
    "GridRows",
    "InitialOffsets",
    "MaintenanceSettings",
    "PatternSettings",
    "SerialSettings",
    "SettingsPayload",
    "SideOffset",
    "Speeds",
    "SystemSettings",
    "TravelDistance",
    "deep_merge",
]
