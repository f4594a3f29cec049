"""Builders for outbound controller telegrams."""

from __future__ import annotations

from typing import Final

from ..config.machine import AxisPair, MaintenanceSettings, PatternSettings, SideOffset, Speeds
from ..const import SIDES

ENABLED_SIDE_FLAGS: Final[tuple[str, ...]] = SIDES


def format_number(value: float) -> str:
    """Render a number the way the controller expects plain values (5, 2.5)."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def fixed2(value: float) -> str:
    return f"{value:.2f}"


def speed_line(side: str, value: float) -> str:
    return f"SPEED {side.upper()} {format_number(value)}"


def speed_lines(speeds: Speeds) -> list[str]:
    return [speed_line(side, getattr(speeds, side)) for side in SIDES]


def maintenance_lines(maintenance: MaintenanceSettings) -> list[str]:
    return [
        f"PRIME_TIME {format_number(maintenance.prime_time)}",
        f"CLEAN_TIME {format_number(maintenance.clean_time)}",
        f"BACK_WASH_TIME {format_number(maintenance.back_wash_time)}",
    ]


def _travel_line(keyword: str, pair: AxisPair) -> str:
    return f"{keyword} {fixed2(pair.x)} {fixed2(pair.y)}"


def _offset_line(side: str, offset: SideOffset) -> str:
    return f"SET_OFFSET {side.upper()} {fixed2(offset.x)} {fixed2(offset.y)} {fixed2(offset.angle)}"


def enabled_sides_line(pattern: PatternSettings) -> str:
    flags = " ".join(
        f"{side.upper()}={1 if pattern.enabled_sides.is_enabled(side) else 0}" for side in ENABLED_SIDE_FLAGS
    )
    return f"SET_ENABLED_SIDES {flags}"


def pattern_lines(pattern: PatternSettings) -> list[str]:
    """Grid, travel distances, enabled sides and per-side offsets."""
    travel = pattern.travel_distance
    lines = [
        _travel_line("SET_HORIZONTAL_TRAVEL", travel.horizontal),
        _travel_line("SET_VERTICAL_TRAVEL", travel.vertical),
        _travel_line("SET_LIP_TRAVEL", travel.lip),
        f"SET_GRID {pattern.rows.x} {pattern.rows.y}",
        enabled_sides_line(pattern),
    ]
    lines.extend(_offset_line(side, getattr(pattern.initial_offsets, side)) for side in SIDES)
    return lines


def configuration_lines(speeds: Speeds, maintenance: MaintenanceSettings, pattern: PatternSettings) -> list[str]:
    """Full configuration push sent after (re)connecting or loading a profile."""
    return [*speed_lines(speeds), *maintenance_lines(maintenance), *pattern_lines(pattern)]


__all__ = [
    "configuration_lines",
    "enabled_sides_line",
    "fixed2",
    "format_number",
    "maintenance_lines",
    "pattern_lines",
    "speed_line",
    "speed_lines",
]
