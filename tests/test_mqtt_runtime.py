from __future__ import annotations

import asyncio
from typing import Any

import paho.mqtt.client as mqtt
import pytest

from mqtt2coap._mqtt import BridgeState, BrokerEvent, Direction, MqttRuntime, PacketKind
from mqtt2coap.config import BridgeConfig
from mqtt2coap.exceptions import BrokerTransportError, SubscriptionError


class _RC:
    """Minimal stand-in for paho's ReasonCode."""

    def __init__(self, name: str, *, failure: bool = False) -> None:
        self._name = name
        self.is_failure = failure

    def __str__(self) -> str:
        return self._name


class _FakeClient:
    def __init__(self, *, connect_error: Exception | None = None, subscribe_result: int = 0) -> None:
        self._connect_error = connect_error
        self._subscribe_result = subscribe_result
        self.connected_to: tuple[str, int, int] | None = None
        self.subscriptions: list[list[tuple[str, int]]] = []
        self.loop_started = False
        self.loop_stopped = False
        self.disconnected = False

    def connect(self, host: str, port: int, keepalive: int = 60) -> int:
        if self._connect_error is not None:
            raise self._connect_error
        self.connected_to = (host, port, keepalive)
        return 0

    def loop_start(self) -> int:
        self.loop_started = True
        return 0

    def loop_stop(self) -> int:
        self.loop_stopped = True
        return 0

    def disconnect(self) -> int:
        self.disconnected = True
        return 0

    def subscribe(self, topics: list[tuple[str, int]]) -> tuple[int, int]:
        self.subscriptions.append(topics)
        return self._subscribe_result, 1


def _runtime(client: _FakeClient, **config: Any) -> MqttRuntime:
    cfg = BridgeConfig(topic_prefix="zigbee2mqtt/", topics="sensor1, plug", **config)
    return MqttRuntime(cfg, loop=asyncio.get_running_loop(), client=client)  # type: ignore[arg-type]


async def _in_thread(func: Any, *args: Any) -> None:
    # paho callbacks run on the network thread and block on the queue
    await asyncio.to_thread(func, *args)


@pytest.mark.asyncio
async def test_start_connects_and_starts_loop() -> None:
    client = _FakeClient()
    runtime = _runtime(client, mqtt_host="broker.local", mqtt_port=1884)

    runtime.start()

    assert client.connected_to == ("broker.local", 1884, 25)
    assert client.loop_started is True
    assert runtime.is_running is True
    assert runtime.state == BridgeState.CONNECTING


@pytest.mark.asyncio
async def test_start_connect_error_is_subscription_error() -> None:
    runtime = _runtime(_FakeClient(connect_error=ConnectionRefusedError("refused")))

    with pytest.raises(SubscriptionError, match="refused"):
        runtime.start()
    assert runtime.is_running is False


@pytest.mark.asyncio
async def test_connect_subscribes_prefixed_topics_at_qos1() -> None:
    client = _FakeClient()
    runtime = _runtime(client)
    runtime.start()

    await _in_thread(runtime._on_connect, client, None, None, _RC("Success"), None)

    assert client.subscriptions == [[("zigbee2mqtt/sensor1", 1), ("zigbee2mqtt/plug", 1)]]
    event = await runtime.poll()
    assert event.kind is PacketKind.CONNACK
    assert event.direction is Direction.INCOMING


@pytest.mark.asyncio
async def test_suback_resolves_startup_and_moves_to_polling() -> None:
    client = _FakeClient()
    runtime = _runtime(client)
    runtime.start()

    await _in_thread(runtime._on_connect, client, None, None, _RC("Success"), None)
    await _in_thread(runtime._on_subscribe, client, None, 1, [_RC("Granted QoS 1"), _RC("Granted QoS 1")], None)
    await runtime.wait_subscribed(1.0)

    assert runtime.state == BridgeState.SUBSCRIBED
    assert (await runtime.poll()).kind is PacketKind.CONNACK
    assert runtime.state == BridgeState.POLLING
    assert (await runtime.poll()).kind is PacketKind.SUBACK


@pytest.mark.asyncio
async def test_rejected_subscription_is_fatal() -> None:
    client = _FakeClient()
    runtime = _runtime(client)
    runtime.start()

    reason_codes = [_RC("Granted QoS 1"), _RC("Not authorized", failure=True)]
    await _in_thread(runtime._on_subscribe, client, None, 1, reason_codes, None)

    with pytest.raises(SubscriptionError, match="Not authorized"):
        await runtime.wait_subscribed(1.0)


@pytest.mark.asyncio
async def test_refused_connection_is_fatal_at_startup_and_transient_in_stream() -> None:
    client = _FakeClient()
    runtime = _runtime(client)
    runtime.start()

    await _in_thread(runtime._on_connect, client, None, None, _RC("Bad user name or password", failure=True), None)

    with pytest.raises(SubscriptionError):
        await runtime.wait_subscribed(1.0)
    with pytest.raises(BrokerTransportError):
        await runtime.poll()
    assert runtime.state == BridgeState.RECONNECT_BACKOFF


@pytest.mark.asyncio
async def test_subscribe_call_failure_is_fatal() -> None:
    client = _FakeClient(subscribe_result=mqtt.MQTT_ERR_NO_CONN)
    runtime = _runtime(client)
    runtime.start()

    await _in_thread(runtime._on_connect, client, None, None, _RC("Success"), None)

    with pytest.raises(SubscriptionError, match="subscribe failed"):
        await runtime.wait_subscribed(1.0)


@pytest.mark.asyncio
async def test_missing_suback_times_out() -> None:
    runtime = _runtime(_FakeClient())
    runtime.start()

    with pytest.raises(SubscriptionError, match="No SUBACK"):
        await runtime.wait_subscribed(0.05)


@pytest.mark.asyncio
async def test_message_becomes_publish_event() -> None:
    client = _FakeClient()
    runtime = _runtime(client)
    runtime.start()

    msg = mqtt.MQTTMessage(topic=b"zigbee2mqtt/sensor1")
    msg.payload = b'{"temperature": 21.5}'
    await _in_thread(runtime._on_message, client, None, msg)

    event = await runtime.poll()
    assert event == BrokerEvent.publish("zigbee2mqtt/sensor1", b'{"temperature": 21.5}')
    assert event.message is not None
    assert event.message.topic == "zigbee2mqtt/sensor1"


@pytest.mark.asyncio
async def test_keepalive_traffic_from_client_log() -> None:
    client = _FakeClient()
    runtime = _runtime(client)
    runtime.start()

    runtime._on_log(client, None, mqtt.MQTT_LOG_DEBUG, "Sending PINGREQ")
    runtime._on_log(client, None, mqtt.MQTT_LOG_DEBUG, "Sending PUBLISH (d0, q0, r0, m1)")
    runtime._on_log(client, None, mqtt.MQTT_LOG_DEBUG, "Received PINGRESP")
    await asyncio.sleep(0)

    first = await runtime.poll()
    second = await runtime.poll()
    assert (first.direction, first.kind) == (Direction.OUTGOING, PacketKind.PINGREQ)
    assert (second.direction, second.kind) == (Direction.INCOMING, PacketKind.PINGRESP)


@pytest.mark.asyncio
async def test_unexpected_disconnect_queues_transport_error() -> None:
    client = _FakeClient()
    runtime = _runtime(client)
    runtime.start()

    await _in_thread(runtime._on_disconnect, client, None, None, _RC("Unspecified error", failure=True), None)

    assert (await runtime.poll()).kind is PacketKind.DISCONNECT
    with pytest.raises(BrokerTransportError, match="connection lost"):
        await runtime.poll()
    assert runtime.state == BridgeState.RECONNECT_BACKOFF


@pytest.mark.asyncio
async def test_stop_disconnects_and_ignores_later_disconnect() -> None:
    client = _FakeClient()
    runtime = _runtime(client)
    runtime.start()

    runtime.stop()
    runtime._on_disconnect(client, None, None, _RC("Normal disconnection"), None)

    assert client.disconnected is True
    assert client.loop_stopped is True
    assert runtime.is_running is False
