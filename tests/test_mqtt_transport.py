"""Tests for the MQTT subscriber transport."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import aiomqtt
import pytest

from paintbridge import mqtt as mqtt_helpers
from paintbridge.config.settings import build_runtime_config
from paintbridge.protocol.topics import ClientAction, TopicRoute
from paintbridge.services.broadcast import BroadcastHub, SubscriberClosed, SubscriberOverflow
from paintbridge.services.inbox import CommandReceived, Inbox, SubscriberJoined, SubscriberLeft
from paintbridge.transport import mqtt as mqtt_module
from paintbridge.transport.mqtt import MqttSubscriber, MqttTransport


def _drain(inbox: Inbox) -> list:
    items = []
    while not inbox.empty():
        items.append(inbox._queue.get_nowait())
    return items


def _route(client_id: str, action: ClientAction) -> TopicRoute:
    return TopicRoute(raw=f"paint/client/{client_id}/{action}", client_id=client_id, action=action)


@pytest.fixture()
def transport(runtime_config) -> MqttTransport:
    return MqttTransport(runtime_config, Inbox())


class FakeClient:
    """Scripted stand-in for ``aiomqtt.Client``."""

    script: list[Any] = []
    instances: list[FakeClient] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.subscribed: list[tuple[str, int]] = []
        self.published: list[dict[str, Any]] = []
        self.messages = self._messages()
        FakeClient.instances.append(self)

    async def __aenter__(self) -> FakeClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False

    async def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscribed.append((topic, qos))

    async def publish(self, topic: str, payload: Any = None, qos: int = 0, retain: bool = False, properties=None):
        self.published.append({"topic": topic, "payload": payload, "qos": qos, "retain": retain})

    async def _messages(self):
        for item in self.script:
            if isinstance(item, BaseException):
                raise item
            yield item


def test_subscriber_delivery_is_bounded() -> None:
    outbound: asyncio.Queue = asyncio.Queue()
    subscriber = MqttSubscriber("ui-1", "paint/client/ui-1/events", outbound, limit=2)

    subscriber.deliver(b"one")
    subscriber.deliver(b"two")
    with pytest.raises(SubscriberOverflow):
        subscriber.deliver(b"three")
    assert outbound.qsize() == 2

    subscriber.sent()
    subscriber.deliver(b"three")
    subscriber.close()
    with pytest.raises(SubscriberClosed):
        subscriber.deliver(b"four")


def test_connect_route_joins_subscriber(transport: MqttTransport) -> None:
    transport.handle_route(_route("ui-1", ClientAction.CONNECT), b"")
    (joined,) = _drain(transport.inbox)
    assert isinstance(joined, SubscriberJoined)
    assert joined.subscriber.subscriber_id == "ui-1"
    assert joined.subscriber.topic == "paint/client/ui-1/events"


def test_reconnecting_client_replaces_old_channel(transport: MqttTransport) -> None:
    transport.handle_route(_route("ui-1", ClientAction.CONNECT), b"")
    first = transport.subscribers["ui-1"]
    transport.handle_route(_route("ui-1", ClientAction.CONNECT), b"")
    assert first.closed
    assert transport.subscribers["ui-1"] is not first


def test_command_from_unknown_client_joins_first(transport: MqttTransport) -> None:
    transport.handle_route(_route("ui-2", ClientAction.COMMAND), b'{"type": "HEARTBEAT"}')
    joined, command = _drain(transport.inbox)
    assert isinstance(joined, SubscriberJoined)
    assert command == CommandReceived(subscriber_id="ui-2", raw=b'{"type": "HEARTBEAT"}')

    transport.handle_route(_route("ui-2", ClientAction.COMMAND), b"{}")
    assert _drain(transport.inbox) == [CommandReceived(subscriber_id="ui-2", raw=b"{}")]


def test_command_after_overflow_drop_rejoins(transport: MqttTransport) -> None:
    hub = BroadcastHub()
    transport.handle_route(_route("ui-9", ClientAction.CONNECT), b"")
    (joined,) = _drain(transport.inbox)
    hub.attach(joined.subscriber)

    for _ in range(transport.config.mqtt_queue_limit + 1):
        hub.broadcast("STATE_UPDATE", {})
    assert "ui-9" not in hub
    assert joined.subscriber.closed

    transport.handle_route(_route("ui-9", ClientAction.COMMAND), b'{"type": "BOGUS"}')
    rejoined, command = _drain(transport.inbox)
    assert isinstance(rejoined, SubscriberJoined)
    assert rejoined.subscriber is not joined.subscriber
    assert transport.subscribers["ui-9"] is rejoined.subscriber
    assert command == CommandReceived(subscriber_id="ui-9", raw=b'{"type": "BOGUS"}')


def test_disconnect_route_leaves(transport: MqttTransport) -> None:
    transport.handle_route(_route("ui-1", ClientAction.CONNECT), b"")
    subscriber = transport.subscribers["ui-1"]
    _drain(transport.inbox)

    transport.handle_route(_route("ui-1", ClientAction.DISCONNECT), b"")
    assert _drain(transport.inbox) == [SubscriberLeft(subscriber_id="ui-1")]
    assert subscriber.closed

    transport.handle_route(_route("ui-1", ClientAction.DISCONNECT), b"")
    assert transport.inbox.empty()


def test_broker_disconnect_drops_all_subscribers(transport: MqttTransport) -> None:
    transport.handle_route(_route("a", ClientAction.CONNECT), b"")
    transport.handle_route(_route("b", ClientAction.CONNECT), b"")
    _drain(transport.inbox)

    transport.trigger("connect")
    transport.trigger("disconnect")
    assert transport.fsm_state == MqttTransport.STATE_DISCONNECTED
    assert transport.subscribers == {}
    assert {item.subscriber_id for item in _drain(transport.inbox)} == {"a", "b"}


@pytest.mark.asyncio
async def test_publisher_loop_sends_to_subscriber_topics(transport: MqttTransport) -> None:
    client = FakeClient()
    live = MqttSubscriber("ui-1", "paint/client/ui-1/events", transport.outbound, limit=4)
    gone = MqttSubscriber("ui-2", "paint/client/ui-2/events", transport.outbound, limit=4)
    live.deliver(b'{"type":"STATE_UPDATE"}')
    gone.deliver(b'{"type":"STATE_UPDATE"}')
    gone.close()

    task = asyncio.create_task(transport._publisher_loop(client))
    await transport.outbound.join()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert client.published == [
        {"topic": "paint/client/ui-1/events", "payload": b'{"type":"STATE_UPDATE"}', "qos": 1, "retain": False}
    ]
    assert live.pending == 0
    assert gone.pending == 0


@pytest.mark.asyncio
async def test_session_subscribes_announces_and_routes(
    transport: MqttTransport, monkeypatch: pytest.MonkeyPatch
) -> None:
    FakeClient.instances = []
    FakeClient.script = [
        SimpleNamespace(topic="paint/client/ui-1/connect", payload=b""),
        SimpleNamespace(topic="elsewhere/topic", payload=b"x"),
        SimpleNamespace(topic="paint/client/ui-1/command", payload='{"type": "HOME_SYSTEM"}'),
        aiomqtt.MqttError("connection lost"),
    ]
    monkeypatch.setattr(mqtt_module.aiomqtt, "Client", FakeClient)

    with pytest.raises(ExceptionGroup) as excinfo:
        await transport._connect_session(None)
    assert excinfo.group_contains(aiomqtt.MqttError)

    (client,) = FakeClient.instances
    assert client.kwargs["protocol"] == aiomqtt.ProtocolVersion.V5
    assert client.kwargs["will"].topic == "paint/bridge/status"
    assert client.subscribed == [
        ("paint/client/+/connect", 1),
        ("paint/client/+/disconnect", 1),
        ("paint/client/+/command", 1),
    ]
    assert client.published[0] == {"topic": "paint/bridge/status", "payload": b"online", "qos": 1, "retain": True}

    joined, command = _drain(transport.inbox)
    assert isinstance(joined, SubscriberJoined)
    assert command == CommandReceived(subscriber_id="ui-1", raw=b'{"type": "HOME_SYSTEM"}')


@pytest.mark.asyncio
async def test_non_retryable_errors_propagate(transport: MqttTransport, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    async def broken_session(tls_context):
        calls.append(tls_context)
        transport.trigger("connect")
        raise ExceptionGroup("session", [ValueError("bad payload handling")])

    monkeypatch.setattr(transport, "_connect_session", broken_session)

    with pytest.raises(ExceptionGroup):
        await transport.run()
    assert calls == [None]
    assert transport.fsm_state == MqttTransport.STATE_DISCONNECTED


def test_connect_properties_and_will() -> None:
    props = mqtt_helpers.build_mqtt_connect_properties()
    assert props.SessionExpiryInterval == 0
    assert props.RequestProblemInformation == 1

    event_props = mqtt_helpers.build_event_properties()
    assert event_props.ContentType == "application/json"

    will = mqtt_helpers.build_will("shop/paint")
    assert will.topic == "shop/paint/bridge/status"
    assert will.payload == b"offline"
    assert will.retain is True


def test_tls_context_disabled_and_missing_ca(tmp_path) -> None:
    assert mqtt_helpers.configure_tls_context(build_runtime_config({})) is None

    config = build_runtime_config({"mqtt_tls": True, "mqtt_cafile": str(tmp_path / "missing.pem")})
    with pytest.raises(RuntimeError, match="CA file missing"):
        mqtt_helpers.configure_tls_context(config)


def test_tls_context_enforces_minimum_version() -> None:
    context = mqtt_helpers.configure_tls_context(build_runtime_config({"mqtt_tls": True, "mqtt_tls_insecure": True}))
    assert context is not None
    assert context.minimum_version == mqtt_helpers.MQTT_TLS_MIN_VERSION
    assert context.check_hostname is False
