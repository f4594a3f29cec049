"""Tests for structured logging configuration."""

from __future__ import annotations

import logging
import sys

import msgspec
import pytest

from paintbridge.config import logging as logging_module
from paintbridge.config.logging import (
    LOG_STREAM_ENV,
    TRAFFIC_LOGGER,
    StructuredLogFormatter,
    configure_logging,
    log_serial_traffic,
)
from paintbridge.protocol.telegrams import parse_telegram


def _record(name: str, message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(name, logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_trims_prefix_and_emits_json() -> None:
    output = StructuredLogFormatter().format(_record("paintbridge.gateway", "Pushing configuration"))
    payload = msgspec.json.decode(output)
    assert payload["logger"] == "gateway"
    assert payload["level"] == "INFO"
    assert payload["message"] == "Pushing configuration"
    assert payload["ts"].endswith("Z")
    assert "extra" not in payload


def test_formatter_serialises_extras() -> None:
    record = _record("paintbridge.serial", "opened", port="/dev/ttyUSB0", attempt=2, _private=1)
    payload = msgspec.json.decode(StructuredLogFormatter().format(record))
    assert payload["extra"] == {"port": "/dev/ttyUSB0", "attempt": 2}
    assert "serial" not in payload


def test_formatter_lifts_telegram_into_serial_block() -> None:
    record = _record("paintbridge.serial.traffic", "Serial telegram", telegram=b"State changed:HOMED", direction="rx")
    payload = msgspec.json.decode(StructuredLogFormatter().format(record))
    assert payload["logger"] == "serial.traffic"
    assert payload["serial"] == {"line": "State changed:HOMED", "dir": "rx"}
    assert "extra" not in payload


def test_serial_traffic_is_debug_only(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger=TRAFFIC_LOGGER):
        log_serial_traffic("tx", "HOME")
    assert caplog.records == []

    with caplog.at_level(logging.DEBUG, logger=TRAFFIC_LOGGER):
        log_serial_traffic("tx", "HOME")
        parse_telegram("Bootloader v2")
    sent, missed = caplog.records
    assert (sent.telegram, sent.direction) == ("HOME", "tx")
    assert missed.getMessage() == "Unrecognized telegram"
    assert missed.telegram == "Bootloader v2"


def test_formatter_includes_exception() -> None:
    try:
        raise OSError("port vanished")
    except OSError:
        record = logging.LogRecord("paintbridge.serial", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    payload = msgspec.json.decode(StructuredLogFormatter().format(record))
    assert "port vanished" in payload["exception"]


def test_configure_logging_uses_stream_when_requested(runtime_config, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(LOG_STREAM_ENV, "1")
    runtime_config.debug_logging = True
    configure_logging(runtime_config)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    (handler,) = root.handlers
    assert type(handler) is logging.StreamHandler
    assert isinstance(handler.formatter, StructuredLogFormatter)


def test_configure_logging_falls_back_without_syslog(runtime_config, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.delenv(LOG_STREAM_ENV, raising=False)
    monkeypatch.setattr(logging_module, "SYSLOG_SOCKET", tmp_path / "no-log")
    monkeypatch.setattr(logging_module, "SYSLOG_SOCKET_FALLBACK", tmp_path / "no-log-either")
    configure_logging(runtime_config)

    root = logging.getLogger()
    assert root.level == logging.INFO
    assert type(root.handlers[0]) is logging.StreamHandler
