"""Canonical system state, its events and the single-writer store."""

from .model import SystemState, SystemStatus
from .store import StateStore

__all__ = ["StateStore", "SystemState", "SystemStatus"]
