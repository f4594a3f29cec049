from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..config.model import RuntimeConfig
from ..config.store import ConfigurationStore
from ..protocol.telegrams import parse_telegram
from ..state.events import LinkLost, LinkRestored, UptimeTick
from ..state.model import format_uptime
from ..state.store import StateStore
from ..supervisor import MANUAL_RESTART_MESSAGE, BackoffPolicy, ReconnectMode, ReconnectSupervisor
from ..transport.locator import locate_device
from ..transport.serial import LinkFailure, SerialLink
from .broadcast import BroadcastHub
from .gateway import CommandGateway
from .inbox import (
    ClockTick,
    CommandReceived,
    Inbox,
    InboxItem,
    LinkDropped,
    LinkOpened,
    SubscriberJoined,
    SubscriberLeft,
    TelegramReceived,
)

logger = logging.getLogger("paintbridge.service")


class GatewayService:
    """Owns the inbox and every component that reacts to it.

    The serial protocol, the MQTT transport and the uptime clock only post to
    :attr:`inbox`; :meth:`run` is the single consumer and handles one item to
    completion before taking the next, so state changes and link writes never
    interleave.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        settings: ConfigurationStore,
        *,
        link: SerialLink | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.settings = settings
        self.inbox = Inbox()
        self.hub = BroadcastHub()
        self.store = StateStore(
            self.hub,
            last_maintenance_date=settings.settings.maintenance.last_maintenance_date,
        )
        self.link = link or SerialLink(config.serial_port, config.serial_baud, self.inbox)
        self.supervisor = ReconnectSupervisor(
            self.open_link,
            BackoffPolicy(
                base_delay=config.reconnect_base_delay,
                max_delay=config.reconnect_max_delay,
                max_attempts=config.reconnect_max_attempts,
            ),
            mode=ReconnectMode(config.reconnect_mode),
            on_failed=self._on_reconnect_failed,
            sleep=sleep,
        )
        self.gateway = CommandGateway(
            self.link,
            self.store,
            self.hub,
            settings,
            on_link_failure=self.supervisor.link_lost,
        )
        self._handlers: dict[type[InboxItem], Callable[[Any], Awaitable[None]]] = {
            TelegramReceived: self._on_telegram,
            SubscriberJoined: self._on_subscriber_joined,
            SubscriberLeft: self._on_subscriber_left,
            CommandReceived: self._on_command,
            LinkOpened: self._on_link_opened,
            LinkDropped: self._on_link_dropped,
            ClockTick: self._on_clock_tick,
        }

    async def open_link(self) -> None:
        """Resolve the serial port when auto-detecting, then open the link."""
        port: str | None = None
        if self.config.auto_detect_port:
            serial = self.settings.settings.serial
            port = await asyncio.to_thread(locate_device, serial.vendor_ids, serial.common_paths, serial.baud_rate)
        await self.link.open(port)

    async def start_link(self) -> None:
        """First open attempt; failures enter the normal link-loss path."""
        try:
            await self.open_link()
        except LinkFailure as exc:
            logger.error("Unable to open serial link: %s", exc)
            self._link_lost("Serial Port Error", f"Serial communication error: {exc}", str(exc))

    async def run(self) -> None:
        """Drain the inbox forever."""
        while True:
            item = await self.inbox.get()
            try:
                await self.process(item)
            finally:
                self.inbox.task_done()

    async def process(self, item: InboxItem) -> None:
        handler = self._handlers.get(type(item))
        if handler is None:
            logger.warning("Unhandled inbox item %s", type(item).__name__)
            return
        await handler(item)

    async def run_clock(self) -> None:
        """Post an uptime tick every ``uptime_interval`` seconds."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            await asyncio.sleep(self.config.uptime_interval)
            self.inbox.post(ClockTick(elapsed=loop.time() - started))

    async def shutdown(self) -> None:
        await self.gateway.send_stop()
        await self.supervisor.stop()
        self.link.close()
        self.hub.detach_all()

    # --- inbox handlers ---

    async def _on_telegram(self, item: TelegramReceived) -> None:
        self.store.apply(parse_telegram(item.line), line=item.line)

    async def _on_subscriber_joined(self, item: SubscriberJoined) -> None:
        self.hub.attach(item.subscriber)
        await self.gateway.greet(item.subscriber.subscriber_id)

    async def _on_subscriber_left(self, item: SubscriberLeft) -> None:
        self.hub.detach(item.subscriber_id)

    async def _on_command(self, item: CommandReceived) -> None:
        await self.gateway.handle(item.subscriber_id, item.raw)

    async def _on_link_opened(self, item: LinkOpened) -> None:
        logger.info("Serial link open on %s", item.port)
        self.supervisor.link_restored()
        self.store.apply(LinkRestored())
        try:
            await self.gateway.push_configuration()
        except LinkFailure as exc:
            # The protocol reports the drop separately.
            logger.error("Configuration push failed: %s", exc)

    async def _on_link_dropped(self, item: LinkDropped) -> None:
        if item.error:
            self._link_lost("Serial Port Error", f"Serial communication error: {item.reason}", item.reason)
        else:
            self._link_lost("USB Disconnected", item.reason, item.reason)

    async def _on_clock_tick(self, item: ClockTick) -> None:
        self.store.apply(UptimeTick(uptime=format_uptime(item.elapsed)))

    # --- link health ---

    def _link_lost(self, title: str, message: str, reason: str) -> None:
        if not self.config.auto_reconnect:
            title, message = "USB Disconnected", MANUAL_RESTART_MESSAGE
        self.store.apply(LinkLost(title=title, message=message))
        self.supervisor.link_lost(reason)

    def _on_reconnect_failed(self, title: str, message: str) -> None:
        self.hub.notify_warning(title, message, "high")


__all__ = ["GatewayService"]
