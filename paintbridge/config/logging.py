"""Logging helpers for the Paint Bridge daemon.

Every record is rendered as one JSON object. Serial traffic goes through the
``paintbridge.serial.traffic`` logger via :func:`log_serial_traffic`; those
records carry the telegram and its direction, which the formatter lifts into
a ``serial`` block instead of the generic ``extra`` map.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from logging import Handler
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any, Literal

import msgspec

from .model import RuntimeConfig

SYSLOG_SOCKET = Path("/dev/log")
SYSLOG_SOCKET_FALLBACK = Path("/var/run/log")
LOG_STREAM_ENV = "PAINTBRIDGE_LOG_STREAM"
TRAFFIC_LOGGER = "paintbridge.serial.traffic"

Direction = Literal["rx", "tx"]

_RESERVED_LOG_KEYS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}

_traffic_logger = logging.getLogger(TRAFFIC_LOGGER)


def log_serial_traffic(direction: Direction, line: str, message: str = "Serial telegram") -> None:
    """Record one telegram sent to (``tx``) or received from (``rx``) the controller."""
    if _traffic_logger.isEnabledFor(logging.DEBUG):
        _traffic_logger.debug(message, extra={"telegram": line, "direction": direction})


def _telegram_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("ascii", errors="backslashreplace")
    return str(value)


def _serialise_value(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, bytes):
        return _telegram_text(value)
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Emit JSON per log line while trimming the shared prefix."""

    PREFIX = "paintbridge."

    def format(self, record: logging.LogRecord) -> str:
        logger_name = record.name.removeprefix(self.PREFIX)
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": logger_name,
            "message": record.getMessage(),
        }

        fields = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_LOG_KEYS}
        telegram = fields.pop("telegram", None)
        direction = fields.pop("direction", None)
        if telegram is not None:
            serial: dict[str, str] = {"line": _telegram_text(telegram)}
            if direction is not None:
                serial["dir"] = str(direction)
            payload["serial"] = serial

        extras = {key: _serialise_value(value) for key, value in fields.items() if not key.startswith("_")}
        if extras:
            payload["extra"] = extras

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return msgspec.json.encode(payload).decode("utf-8")


def _build_handler() -> Handler:
    if os.environ.get(LOG_STREAM_ENV):
        return logging.StreamHandler()

    socket = next((path for path in (SYSLOG_SOCKET, SYSLOG_SOCKET_FALLBACK) if path.exists()), None)
    if socket is None:
        return logging.StreamHandler()
    handler = SysLogHandler(address=str(socket), facility=SysLogHandler.LOG_DAEMON)
    handler.ident = "paintbridge "
    return handler


def configure_logging(config: RuntimeConfig) -> None:
    """Configure root logging based on runtime settings.

    Serial traffic is only emitted with ``debug_logging``; otherwise the
    traffic logger is held at INFO with the rest of the hierarchy.
    """

    level_name = "DEBUG" if config.debug_logging else "INFO"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": "paintbridge.config.logging.StructuredLogFormatter",
                }
            },
            "handlers": {
                "paintbridge": {
                    "()": _build_handler,
                    "level": level_name,
                    "formatter": "structured",
                }
            },
            "loggers": {
                TRAFFIC_LOGGER: {"level": level_name},
            },
            "root": {
                "level": level_name,
                "handlers": ["paintbridge"],
            },
        }
    )

    logging.getLogger("paintbridge").info("Logging configured at level %s", level_name)


__all__ = [
    "LOG_STREAM_ENV",
    "StructuredLogFormatter",
    "TRAFFIC_LOGGER",
    "configure_logging",
    "log_serial_traffic",
]
