"""Resolve which serial device the controller is attached to."""

from __future__ import annotations

import glob
import logging
from collections.abc import Iterable

import serial
from serial.tools import list_ports

from ..const import DEFAULT_SERIAL_BAUD
from .serial import LinkFailure

logger = logging.getLogger("paintbridge.locator")


class DeviceNotFound(LinkFailure):
    """No candidate serial device could be found or opened."""


def _match_vendor(vendor_ids: Iterable[str]) -> str | None:
    wanted = {vendor_id.lower() for vendor_id in vendor_ids}
    for port in list_ports.comports():
        if port.vid is None:
            continue
        if f"{port.vid:04x}" in wanted:
            logger.info("Found controller on %s (%s)", port.device, port.description)
            return port.device
    return None


def _can_open(path: str, baudrate: int) -> bool:
    try:
        with serial.Serial(path, baudrate):
            return True
    except (serial.SerialException, OSError) as exc:
        logger.debug("Opening %s failed: %s", path, exc)
        return False


def locate_device(
    vendor_ids: Iterable[str],
    common_paths: Iterable[str],
    baudrate: int = DEFAULT_SERIAL_BAUD,
) -> str:
    """Return the first connectable serial path.

    Ports whose USB vendor ID matches *vendor_ids* win. Otherwise each entry
    of *common_paths* is tried in order: a path ending in ``*`` is expanded
    and its first match used, a concrete path is used if it can be opened.
    Blocking; call through ``asyncio.to_thread``.
    """
    device = _match_vendor(vendor_ids)
    if device is not None:
        return device

    for candidate in common_paths:
        if candidate.endswith("*"):
            matches = sorted(glob.glob(candidate))
            if matches:
                logger.info("Using %s matched by %s", matches[0], candidate)
                return matches[0]
            continue
        if _can_open(candidate, baudrate):
            logger.info("Using fallback serial path %s", candidate)
            return candidate

    raise DeviceNotFound("No compatible serial device found")


__all__ = ["DeviceNotFound", "locate_device"]
