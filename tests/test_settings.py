"""Tests for runtime configuration loading and validation."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from paintbridge.config.model import RuntimeConfig
from paintbridge.config.settings import build_runtime_config, load_runtime_config
from paintbridge.const import DEFAULT_MQTT_TOPIC, DEFAULT_RECONNECT_MAX_ATTEMPTS


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    config = load_runtime_config(tmp_path / "absent.json")
    assert isinstance(config, RuntimeConfig)
    assert config.mqtt_topic == DEFAULT_MQTT_TOPIC
    assert config.reconnect_max_attempts == DEFAULT_RECONNECT_MAX_ATTEMPTS
    assert config.auto_detect_port is True
    assert config.auto_reconnect is True


def test_file_values_override_defaults(tmp_path: Path) -> None:
    path = tmp_path / "paintbridge.json"
    path.write_text(
        json.dumps(
            {
                "serial_port": " /dev/ttyACM0 ",
                "mqtt_topic": "/shop//paint/",
                "reconnect_mode": "manual",
                "settings_path": "~/paint/settings.json",
            }
        )
    )
    config = load_runtime_config(path)
    assert config.serial_port == "/dev/ttyACM0"
    assert config.auto_detect_port is False
    assert config.mqtt_topic == "shop/paint"
    assert config.auto_reconnect is False
    assert config.settings_path == os.path.abspath(os.path.expanduser("~/paint/settings.json"))


@pytest.mark.parametrize(
    "values",
    [
        {"mqtt_port": 0},
        {"reconnect_mode": "sometimes"},
        {"reconnect_base_delay": 40, "reconnect_max_delay": 30},
        {"reconnect_max_attempts": 0},
        {"mqtt_certfile": "/etc/cert.pem"},
        {"mqtt_topic": "///"},
    ],
)
def test_invalid_values_raise_value_error(values: dict) -> None:
    with pytest.raises(ValueError, match="Invalid configuration"):
        build_runtime_config(values)


def test_malformed_file(tmp_path: Path) -> None:
    path = tmp_path / "paintbridge.json"
    path.write_text("{oops")
    with pytest.raises(ValueError, match="Malformed configuration"):
        load_runtime_config(path)


def test_non_object_file(tmp_path: Path) -> None:
    path = tmp_path / "paintbridge.json"
    path.write_text("[]")
    with pytest.raises(ValueError, match="must contain a JSON object"):
        load_runtime_config(path)


def test_plaintext_mqtt_warning(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("WARNING", logger="paintbridge.config")
    load_runtime_config(tmp_path / "absent.json")
    assert "plaintext" in caplog.text
