"""MQTT transport carrying the subscriber channel."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import aiomqtt
import tenacity
from transitions import Machine

from ..config.model import RuntimeConfig
from ..const import MQTT_MAX_RECONNECT_WAIT
from ..mqtt import build_event_properties, build_mqtt_connect_properties, build_will, configure_tls_context
from ..protocol.topics import (
    INBOUND_ACTIONS,
    STATUS_OFFLINE,
    STATUS_ONLINE,
    ClientAction,
    TopicRoute,
    client_subscription,
    client_topic,
    parse_topic,
    status_topic,
)
from ..services.broadcast import SubscriberClosed, SubscriberOverflow
from ..services.inbox import CommandReceived, Inbox, SubscriberJoined, SubscriberLeft

logger = logging.getLogger("paintbridge.mqtt")


def _log_retry_attempt(retry_state: tenacity.RetryCallState) -> None:
    if retry_state.attempt_number > 1:
        logger.info(
            "Reconnecting MQTT (attempt %d, next wait %.2fs)...",
            retry_state.attempt_number,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )


_RETRYABLE: tuple[type[BaseException], ...] = (aiomqtt.MqttError, OSError, asyncio.TimeoutError)


def _leaf_exceptions(group: BaseExceptionGroup) -> list[BaseException]:
    leaves: list[BaseException] = []
    for exc in group.exceptions:
        if isinstance(exc, BaseExceptionGroup):
            leaves.extend(_leaf_exceptions(exc))
        else:
            leaves.append(exc)
    return leaves


def _payload_bytes(payload: Any) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    return str(payload).encode("utf-8")


class MqttSubscriber:
    """One remote subscriber reachable on ``<prefix>/client/<id>/events``.

    ``deliver`` never waits: envelopes go onto the transport's shared
    outbound queue and at most ``limit`` may be pending for this subscriber.
    """

    def __init__(self, client_id: str, topic: str, outbound: asyncio.Queue[tuple[MqttSubscriber, bytes]], limit: int):
        self._client_id = client_id
        self.topic = topic
        self._outbound = outbound
        self._limit = limit
        self.pending = 0
        self.closed = False

    @property
    def subscriber_id(self) -> str:
        return self._client_id

    def deliver(self, data: bytes) -> None:
        if self.closed:
            raise SubscriberClosed(f"{self._client_id} is closed")
        if self.pending >= self._limit:
            raise SubscriberOverflow(f"{self._client_id} has {self.pending} undelivered messages")
        self.pending += 1
        self._outbound.put_nowait((self, data))

    def sent(self) -> None:
        self.pending = max(0, self.pending - 1)

    def close(self) -> None:
        self.closed = True


class MqttTransport:
    """MQTT transport with FSM-based state management."""

    # FSM States
    STATE_DISCONNECTED = "disconnected"
    STATE_CONNECTING = "connecting"
    STATE_SUBSCRIBING = "subscribing"
    STATE_READY = "ready"

    def __init__(self, config: RuntimeConfig, inbox: Inbox) -> None:
        self.config = config
        self.inbox = inbox
        self.prefix = config.mqtt_topic
        self.outbound: asyncio.Queue[tuple[MqttSubscriber, bytes]] = asyncio.Queue()
        self.subscribers: dict[str, MqttSubscriber] = {}
        self.fsm_state = self.STATE_DISCONNECTED

        self.machine = Machine(
            model=self,
            states=[
                self.STATE_DISCONNECTED,
                self.STATE_CONNECTING,
                self.STATE_SUBSCRIBING,
                self.STATE_READY,
            ],
            initial=self.STATE_DISCONNECTED,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
        )

        self.machine.add_transition("connect", "*", self.STATE_CONNECTING)
        self.machine.add_transition("connected", self.STATE_CONNECTING, self.STATE_SUBSCRIBING)
        self.machine.add_transition("subscribed", self.STATE_SUBSCRIBING, self.STATE_READY)
        self.machine.add_transition("disconnect", "*", self.STATE_DISCONNECTED, after="_drop_subscribers")

    async def run(self) -> None:
        """Main run loop with reconnection logic."""
        tls_context = configure_tls_context(self.config)
        reconnect_delay = max(1, self.config.reconnect_delay)

        retryer = tenacity.AsyncRetrying(
            wait=tenacity.wait_exponential(multiplier=reconnect_delay, max=MQTT_MAX_RECONNECT_WAIT)
            + tenacity.wait_random(0, 2),
            retry=tenacity.retry_if_exception_type(_RETRYABLE),
            before_sleep=_log_retry_attempt,
            reraise=True,
        )

        try:
            async for attempt in retryer:
                with attempt:
                    try:
                        await self._connect_session(tls_context)
                    except ExceptionGroup as exc_group:
                        retryable, rest = exc_group.split(_RETRYABLE)
                        if retryable is None or rest is not None:
                            raise
                        # Unwrap so tenacity sees a retryable exception
                        leaves = _leaf_exceptions(retryable)
                        for exc in leaves:
                            logger.error("MQTT connection error: %s", exc)
                        raise leaves[0] from exc_group
                    finally:
                        if self.fsm_state != self.STATE_DISCONNECTED:
                            self.trigger("disconnect")
        except asyncio.CancelledError:
            logger.info("MQTT transport stopping.")
            self.trigger("disconnect")
            raise

    async def _connect_session(self, tls_context: Any) -> None:
        if not self.config.mqtt_user:
            logger.warning(
                "MQTT connecting without authentication (anonymous); "
                "consider setting mqtt_user/mqtt_pass for production"
            )

        self.trigger("connect")

        async with aiomqtt.Client(
            hostname=self.config.mqtt_host,
            port=self.config.mqtt_port,
            username=self.config.mqtt_user or None,
            password=self.config.mqtt_pass or None,
            tls_context=tls_context,
            logger=logging.getLogger("paintbridge.mqtt.client"),
            protocol=aiomqtt.ProtocolVersion.V5,
            clean_session=None,
            properties=build_mqtt_connect_properties(),
            will=build_will(self.prefix),
        ) as client:
            self.trigger("connected")
            logger.info("Connected to MQTT broker %s:%d.", self.config.mqtt_host, self.config.mqtt_port)

            await self._subscribe_topics(client)
            await client.publish(status_topic(self.prefix), STATUS_ONLINE, qos=1, retain=True)
            self.trigger("subscribed")

            try:
                async with asyncio.TaskGroup() as task_group:
                    task_group.create_task(self._publisher_loop(client))
                    task_group.create_task(self._subscriber_loop(client))
            except asyncio.CancelledError:
                with contextlib.suppress(aiomqtt.MqttError, asyncio.TimeoutError):
                    async with asyncio.timeout(1.0):
                        await client.publish(status_topic(self.prefix), STATUS_OFFLINE, qos=0, retain=True)
                raise

    async def _subscribe_topics(self, client: aiomqtt.Client) -> None:
        topics = [client_subscription(self.prefix, action) for action in INBOUND_ACTIONS]
        for topic in topics:
            await client.subscribe(topic, qos=1)
        logger.info("Subscribed to %d subscriber topics.", len(topics))

    async def _publisher_loop(self, client: aiomqtt.Client) -> None:
        properties = build_event_properties()
        while True:
            subscriber, payload = await self.outbound.get()
            try:
                if subscriber.closed:
                    continue
                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug("MQTT PUB > %s (%d bytes)", subscriber.topic, len(payload))
                await client.publish(subscriber.topic, payload, qos=1, properties=properties)
            except aiomqtt.MqttError as exc:
                logger.warning("MQTT publish to %s failed: %s", subscriber.topic, exc)
                raise
            finally:
                subscriber.sent()
                self.outbound.task_done()

    async def _subscriber_loop(self, client: aiomqtt.Client) -> None:
        try:
            async for message in client.messages:
                topic_name = str(message.topic)
                route = parse_topic(self.prefix, topic_name)
                if route is None:
                    logger.debug("Ignoring message on foreign topic %s", topic_name)
                    continue
                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug("MQTT SUB < %s", topic_name)
                self.handle_route(route, _payload_bytes(message.payload))
        except aiomqtt.MqttError as exc:
            logger.warning("MQTT subscriber loop interrupted: %s", exc)
            raise

    def handle_route(self, route: TopicRoute, payload: bytes) -> None:
        """Turn one inbound subscriber message into inbox items."""
        if route.action is ClientAction.CONNECT:
            self._join(route.client_id)
        elif route.action is ClientAction.DISCONNECT:
            self._leave(route.client_id)
        elif route.action is ClientAction.COMMAND:
            current = self.subscribers.get(route.client_id)
            if current is None or current.closed:
                self._join(route.client_id)
            self.inbox.post(CommandReceived(subscriber_id=route.client_id, raw=payload))

    def _join(self, client_id: str) -> None:
        previous = self.subscribers.get(client_id)
        if previous is not None:
            previous.close()
        try:
            topic = client_topic(self.prefix, client_id, ClientAction.EVENTS)
        except ValueError as exc:
            logger.warning("Rejecting subscriber: %s", exc)
            return
        subscriber = MqttSubscriber(client_id, topic, self.outbound, self.config.mqtt_queue_limit)
        self.subscribers[client_id] = subscriber
        self.inbox.post(SubscriberJoined(subscriber=subscriber))

    def _leave(self, client_id: str) -> None:
        subscriber = self.subscribers.pop(client_id, None)
        if subscriber is None:
            return
        subscriber.close()
        self.inbox.post(SubscriberLeft(subscriber_id=client_id))

    def _drop_subscribers(self) -> None:
        for client_id in list(self.subscribers):
            self._leave(client_id)


async def mqtt_task(config: RuntimeConfig, inbox: Inbox) -> None:
    """Wrapper to run the MqttTransport."""
    transport = MqttTransport(config, inbox)
    await transport.run()


__all__ = ["MqttSubscriber", "MqttTransport", "mqtt_task"]
