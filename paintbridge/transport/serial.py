"""Serial link to the motion controller using pyserial-asyncio-fast.

The link speaks newline-terminated ASCII in both directions. Received lines
are posted to the gateway inbox; writes are awaited one line at a time.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import cast

# pyserial-asyncio-fast is mandatory; do not catch ImportError.
import serial_asyncio_fast  # type: ignore

from ..config.logging import log_serial_traffic
from ..const import SERIAL_LINE_TERMINATOR, SERIAL_MAX_LINE_BYTES
from ..services.inbox import Inbox, LinkDropped, LinkOpened, TelegramReceived

logger = logging.getLogger("paintbridge.serial")


class LinkFailure(OSError):
    """Opening or writing the serial link failed."""


class LinkClosed(LinkFailure):
    """A write was attempted while the port is not open."""

    def __init__(self, message: str = "Serial port not connected") -> None:
        super().__init__(message)


class SerialLineProtocol(asyncio.Protocol):
    """Frame the byte stream into lines and post them to the inbox."""

    def __init__(self, link: SerialLink, loop: asyncio.AbstractEventLoop) -> None:
        self.link = link
        self.transport: asyncio.Transport | None = None
        self.connected_future: asyncio.Future[None] = loop.create_future()
        self._loop = loop
        self._buffer = bytearray()
        self._discarding = False
        self._paused = False
        self._drain_waiter: asyncio.Future[None] | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = cast(asyncio.Transport, transport)
        logger.info("Serial transport established.")
        if not self.connected_future.done():
            self.connected_future.set_result(None)

    def connection_lost(self, exc: Exception | None) -> None:
        self.transport = None
        if not self.connected_future.done():
            self.connected_future.set_exception(exc or ConnectionError("Closed"))
        if self._drain_waiter is not None and not self._drain_waiter.done():
            self._drain_waiter.set_exception(exc or ConnectionResetError("Connection lost"))
        self._drain_waiter = None
        self.link.on_connection_lost(exc)

    def data_received(self, data: bytes) -> None:
        self._buffer.extend(data)
        while True:
            index = self._buffer.find(SERIAL_LINE_TERMINATOR)
            if index < 0:
                break
            raw = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            if self._discarding:
                self._discarding = False
                continue
            self._emit(raw)

        if len(self._buffer) > SERIAL_MAX_LINE_BYTES:
            logger.warning("Serial line exceeds %d bytes without terminator; discarding.", SERIAL_MAX_LINE_BYTES)
            self._buffer.clear()
            self._discarding = True

    def _emit(self, raw: bytes) -> None:
        line = raw.decode("ascii", errors="replace").strip()
        if not line:
            return
        log_serial_traffic("rx", line)
        self.link.inbox.post(TelegramReceived(line=line))

    def pause_writing(self) -> None:
        self._paused = True

    def resume_writing(self) -> None:
        self._paused = False
        if self._drain_waiter is not None and not self._drain_waiter.done():
            self._drain_waiter.set_result(None)
        self._drain_waiter = None

    async def drain(self) -> None:
        if self.transport is None:
            raise ConnectionResetError("Connection lost")
        if not self._paused:
            return
        if self._drain_waiter is None:
            self._drain_waiter = self._loop.create_future()
        await self._drain_waiter


class SerialLink:
    """Own the serial connection; the only path to the controller."""

    def __init__(self, port: str, baudrate: int, inbox: Inbox) -> None:
        self.port = port
        self.baudrate = baudrate
        self.inbox = inbox
        self.protocol: SerialLineProtocol | None = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return (
            self.protocol is not None
            and self.protocol.transport is not None
            and not self.protocol.transport.is_closing()
        )

    async def open(self, port: str | None = None) -> None:
        """Open the port (or *port*), raising :class:`LinkFailure` on error."""
        if port:
            self.port = port
        if self.is_open:
            self.inbox.post(LinkOpened(port=self.port))
            return
        loop = asyncio.get_running_loop()
        logger.info("Opening serial port %s at %d baud", self.port, self.baudrate)
        self._closing = False
        protocol_factory = functools.partial(SerialLineProtocol, self, loop)
        try:
            _transport, proto = await serial_asyncio_fast.create_serial_connection(
                loop, protocol_factory, self.port, baudrate=self.baudrate
            )
            protocol = cast(SerialLineProtocol, proto)
            await protocol.connected_future
        except (OSError, ConnectionError, ValueError) as exc:
            self.protocol = None
            raise LinkFailure(f"Failed to open {self.port}: {exc}") from exc
        self.protocol = protocol
        self.inbox.post(LinkOpened(port=self.port))

    async def write_line(self, text: str) -> None:
        protocol = self.protocol
        if protocol is None or not self.is_open or protocol.transport is None:
            raise LinkClosed()
        try:
            protocol.transport.write(text.encode("ascii") + SERIAL_LINE_TERMINATOR)
            await protocol.drain()
        except (OSError, ConnectionError, UnicodeEncodeError) as exc:
            raise LinkFailure(str(exc)) from exc
        log_serial_traffic("tx", text)

    def close(self) -> None:
        self._closing = True
        protocol, self.protocol = self.protocol, None
        if protocol is not None and protocol.transport is not None:
            protocol.transport.close()

    def on_connection_lost(self, exc: Exception | None) -> None:
        if self._closing:
            logger.info("Serial port %s closed.", self.port)
            return
        self.protocol = None
        if exc is not None:
            logger.error("Serial port %s failed: %s", self.port, exc)
            self.inbox.post(LinkDropped(reason=str(exc), error=True))
        else:
            logger.warning("Serial port %s closed unexpectedly.", self.port)
            self.inbox.post(LinkDropped(reason="USB connection closed"))


__all__ = ["LinkClosed", "LinkFailure", "SerialLineProtocol", "SerialLink"]
