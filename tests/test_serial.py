"""Tests for the serial link framing and lifecycle."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from paintbridge.const import SERIAL_MAX_LINE_BYTES
from paintbridge.services.inbox import Inbox, LinkDropped, LinkOpened, TelegramReceived
from paintbridge.transport import serial as serial_module
from paintbridge.transport.serial import LinkClosed, LinkFailure, SerialLineProtocol, SerialLink


def _drain(inbox: Inbox) -> list:
    items = []
    while not inbox.empty():
        items.append(inbox._queue.get_nowait())
    return items


def _transport() -> MagicMock:
    transport = MagicMock()
    transport.is_closing.return_value = False
    return transport


@pytest.mark.asyncio
async def test_lines_are_split_and_trimmed() -> None:
    inbox = Inbox()
    link = SerialLink("/dev/ttyUSB0", 115200, inbox)
    protocol = SerialLineProtocol(link, asyncio.get_running_loop())

    protocol.data_received(b"State changed:HOMED\r\nTemp")
    protocol.data_received(b"erature: 25\n\n   \n")

    assert _drain(inbox) == [
        TelegramReceived(line="State changed:HOMED"),
        TelegramReceived(line="Temperature: 25"),
    ]


@pytest.mark.asyncio
async def test_overlong_line_is_discarded_until_terminator() -> None:
    inbox = Inbox()
    link = SerialLink("/dev/ttyUSB0", 115200, inbox)
    protocol = SerialLineProtocol(link, asyncio.get_running_loop())

    protocol.data_received(b"x" * (SERIAL_MAX_LINE_BYTES + 1))
    protocol.data_received(b"tail of junk\nServo - Angle: 10\n")

    assert _drain(inbox) == [TelegramReceived(line="Servo - Angle: 10")]


@pytest.mark.asyncio
async def test_write_line_appends_terminator() -> None:
    inbox = Inbox()
    link = SerialLink("/dev/ttyUSB0", 115200, inbox)
    protocol = SerialLineProtocol(link, asyncio.get_running_loop())
    transport = _transport()
    protocol.connection_made(transport)
    link.protocol = protocol

    assert link.is_open
    await link.write_line("HOME")
    transport.write.assert_called_once_with(b"HOME\n")


@pytest.mark.asyncio
async def test_write_without_port_raises_link_closed() -> None:
    link = SerialLink("/dev/ttyUSB0", 115200, Inbox())
    with pytest.raises(LinkClosed, match="Serial port not connected"):
        await link.write_line("HOME")


@pytest.mark.asyncio
async def test_write_error_becomes_link_failure() -> None:
    link = SerialLink("/dev/ttyUSB0", 115200, Inbox())
    protocol = SerialLineProtocol(link, asyncio.get_running_loop())
    transport = _transport()
    transport.write.side_effect = OSError("I/O error")
    protocol.connection_made(transport)
    link.protocol = protocol

    with pytest.raises(LinkFailure, match="I/O error") as excinfo:
        await link.write_line("STOP")
    assert not isinstance(excinfo.value, LinkClosed)


@pytest.mark.asyncio
async def test_unexpected_close_posts_link_dropped() -> None:
    inbox = Inbox()
    link = SerialLink("/dev/ttyUSB0", 115200, inbox)
    protocol = SerialLineProtocol(link, asyncio.get_running_loop())
    protocol.connection_made(_transport())
    link.protocol = protocol

    protocol.connection_lost(None)
    assert link.protocol is None
    assert _drain(inbox) == [LinkDropped(reason="USB connection closed")]

    link.on_connection_lost(OSError("device reports readiness to read but returned no data"))
    (dropped,) = _drain(inbox)
    assert dropped.error is True


@pytest.mark.asyncio
async def test_requested_close_is_silent() -> None:
    inbox = Inbox()
    link = SerialLink("/dev/ttyUSB0", 115200, inbox)
    protocol = SerialLineProtocol(link, asyncio.get_running_loop())
    transport = _transport()
    protocol.connection_made(transport)
    link.protocol = protocol

    link.close()
    transport.close.assert_called_once()
    protocol.connection_lost(None)
    assert inbox.empty()


@pytest.mark.asyncio
async def test_open_posts_link_opened(monkeypatch: pytest.MonkeyPatch) -> None:
    inbox = Inbox()
    link = SerialLink("/dev/ttyUSB0", 115200, inbox)
    calls = []

    async def fake_create(loop, factory, port, baudrate):
        calls.append((port, baudrate))
        protocol = factory()
        protocol.connection_made(_transport())
        return protocol.transport, protocol

    monkeypatch.setattr(serial_module.serial_asyncio_fast, "create_serial_connection", fake_create)

    await link.open("/dev/ttyACM0")
    assert calls == [("/dev/ttyACM0", 115200)]
    assert link.is_open
    assert _drain(inbox) == [LinkOpened(port="/dev/ttyACM0")]


@pytest.mark.asyncio
async def test_open_failure_raises_link_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    link = SerialLink("/dev/ttyUSB9", 115200, Inbox())

    async def fake_create(*args, **kwargs):
        raise OSError("No such file or directory")

    monkeypatch.setattr(serial_module.serial_asyncio_fast, "create_serial_connection", fake_create)

    with pytest.raises(LinkFailure, match="Failed to open /dev/ttyUSB9"):
        await link.open()
    assert not link.is_open


@pytest.mark.asyncio
async def test_open_on_live_port_reports_opened(monkeypatch: pytest.MonkeyPatch) -> None:
    inbox = Inbox()
    link = SerialLink("/dev/ttyUSB0", 115200, inbox)
    protocol = SerialLineProtocol(link, asyncio.get_running_loop())
    protocol.connection_made(_transport())
    link.protocol = protocol

    async def fail_create(*args, **kwargs):
        raise AssertionError("port is already open")

    monkeypatch.setattr(serial_module.serial_asyncio_fast, "create_serial_connection", fail_create)

    await link.open()
    assert link.protocol is protocol
    assert _drain(inbox) == [LinkOpened(port="/dev/ttyUSB0")]
