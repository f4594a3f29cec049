"""Tests for the file-backed Configuration Store."""

from __future__ import annotations

from pathlib import Path

import msgspec
import pytest

from paintbridge.config.machine import SystemSettings, deep_merge
from paintbridge.config.store import ConfigurationError, ConfigurationStore


@pytest.mark.asyncio
async def test_load_creates_defaults_when_missing(config_store: ConfigurationStore) -> None:
    settings = await config_store.load()
    assert settings.speeds.front == 100.0
    assert config_store.path.exists()
    written = msgspec.json.decode(config_store.path.read_bytes())
    assert written["maintenance"]["primeTime"] == 5.0


@pytest.mark.asyncio
async def test_load_merges_partial_file_over_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text('{"speeds": {"left": 42}, "pattern": {"rows": {"x": 3}}}')
    store = ConfigurationStore(path)

    settings = await store.load()
    assert settings.speeds.left == 42
    assert settings.speeds.front == 100.0
    assert settings.pattern.rows.x == 3
    assert settings.pattern.rows.y == 8


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"speeds": {"front": -5}}'])
async def test_load_rejects_bad_documents(tmp_path: Path, content: str) -> None:
    path = tmp_path / "settings.json"
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        await ConfigurationStore(path).load()


@pytest.mark.asyncio
async def test_update_speeds_persists(config_store: ConfigurationStore) -> None:
    await config_store.load()
    speeds = await config_store.update_speeds({"back": 55.5})
    assert speeds.back == 55.5

    reloaded = ConfigurationStore(config_store.path)
    assert (await reloaded.load()).speeds.back == 55.5


@pytest.mark.asyncio
async def test_invalid_update_leaves_settings_untouched(config_store: ConfigurationStore) -> None:
    await config_store.load()
    with pytest.raises(ConfigurationError):
        await config_store.update_pattern_settings({"rows": {"x": 0}})
    assert (await config_store.get_pattern_settings()).rows.x == 6


@pytest.mark.asyncio
async def test_update_settings_applies_sections_together(config_store: ConfigurationStore) -> None:
    await config_store.load()
    settings = await config_store.update_settings(
        {
            "maintenance": {"primeTime": 12},
            "pattern": {"enabledSides": {"lip": False}},
        }
    )
    assert settings.maintenance.prime_time == 12
    assert settings.pattern.enabled_sides.lip is False
    assert settings.pattern.enabled_sides.front is True


@pytest.mark.asyncio
async def test_update_maintenance_date(config_store: ConfigurationStore, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("paintbridge.config.store.today_iso", lambda: "2030-02-03")
    await config_store.load()
    maintenance = await config_store.update_maintenance_date()
    assert maintenance.last_maintenance_date == "2030-02-03"


@pytest.mark.asyncio
async def test_settings_payload_wire_form(config_store: ConfigurationStore) -> None:
    await config_store.load()
    payload = msgspec.to_builtins(await config_store.settings_payload())
    assert set(payload) == {"pattern", "maintenance", "speeds"}
    assert "initialOffsets" in payload["pattern"]
    assert "backWashTime" in payload["maintenance"]


@pytest.mark.asyncio
async def test_save_list_and_load_profiles(config_store: ConfigurationStore) -> None:
    await config_store.load()
    await config_store.update_speeds({"front": 80})
    summary = await config_store.save_config("Gloss Coat", "two passes")
    assert summary.name == "Gloss Coat"
    assert summary.description == "two passes"

    await config_store.update_speeds({"front": 20})
    await config_store.save_config("alpha")

    names = [item.name for item in await config_store.list_configs()]
    assert names == ["Gloss Coat", "alpha"]

    settings = await config_store.load_config("Gloss Coat")
    assert settings.speeds.front == 80
    assert (await ConfigurationStore(config_store.path).load()).speeds.front == 80


@pytest.mark.asyncio
async def test_colliding_profile_names_are_rejected(config_store: ConfigurationStore) -> None:
    await config_store.load()
    await config_store.update_speeds({"front": 80})
    await config_store.save_config("a b")

    await config_store.update_speeds({"front": 20})
    with pytest.raises(ConfigurationError, match="'a_b' conflicts with existing configuration 'a b'"):
        await config_store.save_config("a_b")
    with pytest.raises(ConfigurationError, match="Configuration 'a_b' not found"):
        await config_store.load_config("a_b")

    await config_store.save_config("a b", "resaved")
    (summary,) = await config_store.list_configs()
    assert summary.description == "resaved"
    assert (await config_store.load_config("a b")).speeds.front == 20


@pytest.mark.asyncio
async def test_load_missing_profile(config_store: ConfigurationStore) -> None:
    await config_store.load()
    with pytest.raises(ConfigurationError, match="Configuration 'ghost' not found"):
        await config_store.load_config("ghost")


@pytest.mark.asyncio
async def test_list_skips_corrupt_profiles(config_store: ConfigurationStore) -> None:
    await config_store.load()
    assert await config_store.list_configs() == []
    await config_store.save_config("good")
    (config_store.profiles_dir / "broken.json").write_text("{")

    assert [item.name for item in await config_store.list_configs()] == ["good"]


def test_deep_merge_keeps_unrelated_keys() -> None:
    base = msgspec.to_builtins(SystemSettings())
    merged = deep_merge(base, {"pattern": {"travelDistance": {"lip": {"y": 4}}}})
    assert merged["pattern"]["travelDistance"]["lip"] == {"x": 10.0, "y": 4}
    assert merged["pattern"]["travelDistance"]["vertical"] == {"x": 10.0, "y": 2.0}
    assert base["pattern"]["travelDistance"]["lip"]["y"] == 0.0
