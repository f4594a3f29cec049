"""File-backed store for machine settings and named configuration profiles."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

import msgspec

from ..common import iso_timestamp, today_iso
from ..const import CONFIG_PROFILES_DIRNAME
from .machine import (
    ConfigProfile,
    ConfigSummary,
    MaintenanceSettings,
    PatternSettings,
    SerialSettings,
    SettingsPayload,
    Speeds,
    SystemSettings,
    deep_merge,
)

logger = logging.getLogger("paintbridge.config.store")

_PROFILE_NAME_SAFE = re.compile(r"[^A-Za-z0-9._-]+")
_encoder = msgspec.json.Encoder()


class ConfigurationError(RuntimeError):
    """Raised when settings cannot be read, validated or persisted."""


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", dir=path.parent, prefix=f".{path.name}.", delete=False) as handle:
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())
        temp_path = Path(handle.name)
    temp_path.replace(path)


def _profile_filename(name: str) -> str:
    slug = _PROFILE_NAME_SAFE.sub("_", name.strip()).strip("._") or "profile"
    return f"{slug}.json"


class ConfigurationStore:
    """Persist :class:`SystemSettings` as JSON next to a ``configs/`` directory.

    Updates accept partial camelCase documents; they are merged over the
    current settings and re-validated before anything is written. Every
    failure surfaces as :class:`ConfigurationError`.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.profiles_dir = self.path.parent / CONFIG_PROFILES_DIRNAME
        self._settings = SystemSettings()
        self._lock = asyncio.Lock()

    @property
    def settings(self) -> SystemSettings:
        return self._settings

    async def load(self) -> SystemSettings:
        """Read the settings file, creating it with defaults when missing."""
        try:
            raw = await asyncio.to_thread(self.path.read_bytes)
        except FileNotFoundError:
            logger.warning("No settings file at %s; creating with defaults.", self.path)
            self._settings = SystemSettings()
            await self._persist(self._settings)
            return self._settings
        except OSError as exc:
            raise ConfigurationError(f"Unable to read settings: {exc}") from exc

        try:
            document = msgspec.json.decode(raw)
            if not isinstance(document, dict):
                raise ConfigurationError("Settings file must contain a JSON object")
            self._settings = self._validate(deep_merge(msgspec.to_builtins(SystemSettings()), document))
        except msgspec.DecodeError as exc:
            raise ConfigurationError(f"Malformed settings file {self.path}: {exc}") from exc
        logger.info("Settings loaded from %s", self.path)
        return self._settings

    # --- accessors ---

    async def get_speeds(self) -> Speeds:
        return self._settings.speeds

    async def get_maintenance_settings(self) -> MaintenanceSettings:
        return self._settings.maintenance

    async def get_pattern_settings(self) -> PatternSettings:
        return self._settings.pattern

    async def get_serial_settings(self) -> SerialSettings:
        return self._settings.serial

    async def settings_payload(self) -> SettingsPayload:
        return SettingsPayload(
            pattern=self._settings.pattern,
            maintenance=self._settings.maintenance,
            speeds=self._settings.speeds,
        )

    # --- mutators ---

    async def update_speeds(self, speeds: dict[str, Any]) -> Speeds:
        await self._update({"speeds": speeds})
        return self._settings.speeds

    async def update_maintenance_settings(self, maintenance: dict[str, Any]) -> MaintenanceSettings:
        await self._update({"maintenance": maintenance})
        return self._settings.maintenance

    async def update_maintenance_date(self) -> MaintenanceSettings:
        return await self.update_maintenance_settings({"lastMaintenanceDate": today_iso()})

    async def update_pattern_settings(self, pattern: dict[str, Any]) -> PatternSettings:
        await self._update({"pattern": pattern})
        return self._settings.pattern

    async def update_settings(self, update: dict[str, Any]) -> SystemSettings:
        """Apply a partial ``{pattern?, maintenance?, speeds?}`` document in one write."""
        await self._update(update)
        return self._settings

    # --- named profiles ---

    async def save_config(self, name: str, description: str = "") -> ConfigSummary:
        profile = ConfigProfile(
            name=name,
            description=description,
            timestamp=iso_timestamp(),
            settings=self._settings,
        )
        target = self.profiles_dir / _profile_filename(name)
        existing = await asyncio.to_thread(self._stored_name, target)
        if existing is not None and existing != name:
            raise ConfigurationError(f"Configuration name '{name}' conflicts with existing configuration '{existing}'")
        try:
            await asyncio.to_thread(_write_atomic, target, _encoder.encode(profile))
        except OSError as exc:
            raise ConfigurationError(f"Failed to save configuration '{name}': {exc}") from exc
        logger.info("Saved configuration profile %r to %s", name, target)
        return profile.summary()

    async def load_config(self, name: str) -> SystemSettings:
        target = self.profiles_dir / _profile_filename(name)
        try:
            raw = await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise ConfigurationError(f"Configuration '{name}' not found") from exc
        except OSError as exc:
            raise ConfigurationError(f"Failed to load configuration '{name}': {exc}") from exc

        try:
            profile = msgspec.json.decode(raw, type=ConfigProfile)
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            raise ConfigurationError(f"Configuration '{name}' is corrupt: {exc}") from exc
        if profile.name != name:
            raise ConfigurationError(f"Configuration '{name}' not found")

        async with self._lock:
            await self._persist(profile.settings)
            self._settings = profile.settings
        logger.info("Loaded configuration profile %r", name)
        return self._settings

    async def list_configs(self) -> list[ConfigSummary]:
        try:
            return await asyncio.to_thread(self._scan_profiles)
        except OSError as exc:
            raise ConfigurationError(f"Failed to list configurations: {exc}") from exc

    @staticmethod
    def _stored_name(target: Path) -> str | None:
        """Name recorded in the profile at *target*, if one is readable there."""
        try:
            return msgspec.json.decode(target.read_bytes(), type=ConfigProfile).name
        except FileNotFoundError:
            return None
        except (OSError, msgspec.DecodeError, msgspec.ValidationError) as exc:
            logger.warning("Overwriting unreadable profile %s: %s", target, exc)
            return None

    def _scan_profiles(self) -> list[ConfigSummary]:
        if not self.profiles_dir.is_dir():
            return []
        summaries: list[ConfigSummary] = []
        for entry in self.profiles_dir.glob("*.json"):
            try:
                profile = msgspec.json.decode(entry.read_bytes(), type=ConfigProfile)
            except (msgspec.DecodeError, msgspec.ValidationError) as exc:
                logger.warning("Skipping unreadable profile %s: %s", entry, exc)
                continue
            summaries.append(profile.summary())
        return sorted(summaries, key=lambda item: item.name)

    # --- internals ---

    @staticmethod
    def _validate(document: dict[str, Any]) -> SystemSettings:
        try:
            return msgspec.convert(document, type=SystemSettings)
        except msgspec.ValidationError as exc:
            raise ConfigurationError(f"Invalid settings: {exc}") from exc

    async def _update(self, update: dict[str, Any]) -> None:
        async with self._lock:
            current = msgspec.to_builtins(self._settings)
            updated = self._validate(deep_merge(current, update))
            await self._persist(updated)
            self._settings = updated

    async def _persist(self, settings: SystemSettings) -> None:
        try:
            await asyncio.to_thread(_write_atomic, self.path, _encoder.encode(settings))
        except OSError as exc:
            raise ConfigurationError(f"Failed to save settings: {exc}") from exc


__all__ = ["ConfigurationError", "ConfigurationStore"]
