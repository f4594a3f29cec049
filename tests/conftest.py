"""Pytest configuration for Paint Bridge tests."""

from __future__ import annotations

import asyncio
import importlib.util
import inspect
import logging
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import msgspec
import pytest

from paintbridge.common import get_default_config
from paintbridge.config.model import RuntimeConfig
from paintbridge.config.settings import build_runtime_config
from paintbridge.config.store import ConfigurationStore
from paintbridge.services.broadcast import BroadcastHub, SubscriberClosed
from paintbridge.state.store import StateStore
from paintbridge.transport.serial import LinkClosed

_HAS_PYTEST_ASYNCIO = importlib.util.find_spec("pytest_asyncio") is not None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: mark test to run on asyncio loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Fallback asyncio runner when pytest-asyncio is unavailable."""
    if _HAS_PYTEST_ASYNCIO:
        return None
    if "asyncio" not in pyfuncitem.keywords:
        return None
    test_function = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_function):
        return None

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        loop.run_until_complete(test_function(**kwargs))
    finally:
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
        except (RuntimeError, ValueError):
            pass
        loop.close()
        asyncio.set_event_loop(None)
    return True


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Close and remove all logging handlers after each test to prevent ResourceWarnings."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        try:
            handler.close()
        except (OSError, RuntimeError):
            pass
        root.removeHandler(handler)


class RecordingSubscriber:
    """Subscriber that keeps every decoded envelope it receives."""

    def __init__(self, subscriber_id: str = "ui-1", *, fail: bool = False) -> None:
        self._id = subscriber_id
        self.fail = fail
        self.messages: list[dict[str, Any]] = []
        self.closed = False

    @property
    def subscriber_id(self) -> str:
        return self._id

    def deliver(self, data: bytes) -> None:
        if self.fail:
            raise SubscriberClosed("gone")
        self.messages.append(msgspec.json.decode(data))

    def close(self) -> None:
        self.closed = True

    def of_type(self, message_type: str) -> list[Any]:
        return [message["payload"] for message in self.messages if message["type"] == message_type]

    @property
    def types(self) -> list[str]:
        return [message["type"] for message in self.messages]


class FakeLink:
    """In-memory stand-in for :class:`SerialLink` recording written lines."""

    def __init__(self, *, is_open: bool = True) -> None:
        self.is_open = is_open
        self.lines: list[str] = []
        self.write_line = AsyncMock(side_effect=self._write)
        self.open = AsyncMock()
        self.closed = False

    async def _write(self, text: str) -> None:
        if not self.is_open:
            raise LinkClosed()
        self.lines.append(text)

    def close(self) -> None:
        self.closed = True
        self.is_open = False


@pytest.fixture()
def runtime_config(tmp_path: Path) -> RuntimeConfig:
    values = get_default_config()
    values.update(
        {
            "serial_port": "/dev/ttyUSB0",
            "settings_path": str(tmp_path / "settings.json"),
            "mqtt_topic": "paint",
        }
    )
    return build_runtime_config(values)


@pytest.fixture()
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture()
def subscriber(hub: BroadcastHub) -> RecordingSubscriber:
    recorder = RecordingSubscriber()
    hub.attach(recorder)
    return recorder


@pytest.fixture()
def state_store(hub: BroadcastHub) -> StateStore:
    return StateStore(hub, last_maintenance_date="2024-01-01")


@pytest.fixture()
def config_store(tmp_path: Path) -> ConfigurationStore:
    return ConfigurationStore(tmp_path / "settings.json")


@pytest.fixture()
def make_subscriber(hub: BroadcastHub):
    def factory(subscriber_id: str, *, fail: bool = False) -> RecordingSubscriber:
        recorder = RecordingSubscriber(subscriber_id, fail=fail)
        hub.attach(recorder)
        return recorder

    return factory


@pytest.fixture()
def fake_link() -> FakeLink:
    return FakeLink()


@pytest.fixture()
def recording_subscriber() -> type[RecordingSubscriber]:
    return RecordingSubscriber
