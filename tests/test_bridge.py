from __future__ import annotations

import asyncio

import pytest

from mqtt2coap._mqtt import BrokerEvent
from mqtt2coap._transport import TransportResponse
from mqtt2coap.bridge import Bridge
from mqtt2coap.config import BridgeConfig
from mqtt2coap.exceptions import BridgeError, SubscriptionError


class _Transport:
    def __init__(self) -> None:
        self.bodies: list[bytes] = []
        self.closed = False

    async def post(self, url: str, body: bytes, timeout: float) -> TransportResponse:
        self.bodies.append(body)
        return TransportResponse(status="2.04 Changed", payload=b"")

    async def close(self) -> None:
        self.closed = True


class _Runtime:
    """Pretends to be MqttRuntime; replays *events* then blocks."""

    def __init__(self, events: list[BrokerEvent], *, subscribe_error: Exception | None = None) -> None:
        self._events = list(events)
        self._subscribe_error = subscribe_error
        self.started = False
        self.stopped = False
        self.drained = asyncio.Event()

    def start(self) -> None:
        self.started = True

    async def wait_subscribed(self, timeout: float) -> None:
        if self._subscribe_error is not None:
            raise self._subscribe_error

    async def poll(self) -> BrokerEvent:
        if not self._events:
            self.drained.set()
            await asyncio.Event().wait()
        return self._events.pop(0)

    def stop(self) -> None:
        self.stopped = True


@pytest.mark.asyncio
async def test_bridge_forwards_publish_and_cleans_up() -> None:
    config = BridgeConfig(topic_prefix="zigbee2mqtt/", topics="sensor1")
    transport = _Transport()
    runtime = _Runtime([BrokerEvent.publish("zigbee2mqtt/sensor1", b'{"temperature": 21.5, "battery": 87}')])

    async with Bridge(config, transport=transport, runtime=runtime) as bridge:  # type: ignore[arg-type]
        assert runtime.started is True
        run_task = asyncio.create_task(bridge.run())
        await asyncio.wait_for(runtime.drained.wait(), 1.0)
        await bridge.dispatcher.wait_idle()
        run_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run_task

    assert sorted(transport.bodies) == [b"sensor1/battery 87.00", b"sensor1/temperature 21.50"]
    assert runtime.stopped is True
    assert transport.closed is True


@pytest.mark.asyncio
async def test_bridge_startup_subscription_failure_propagates() -> None:
    transport = _Transport()
    runtime = _Runtime([], subscribe_error=SubscriptionError("Broker rejected subscription"))

    with pytest.raises(SubscriptionError):
        async with Bridge(BridgeConfig(), transport=transport, runtime=runtime):  # type: ignore[arg-type]
            pass

    assert runtime.stopped is True
    assert transport.closed is True


def test_bridge_dispatcher_requires_start() -> None:
    with pytest.raises(BridgeError):
        Bridge(BridgeConfig()).dispatcher
