"""Internal MQTT runtime: a threaded paho-mqtt client exposed as an event stream."""

from __future__ import annotations

import asyncio
import concurrent.futures
import enum
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import paho.mqtt.client as mqtt

from mqtt2coap.config import BridgeConfig
from mqtt2coap.exceptions import BrokerTransportError, SubscriptionError
from mqtt2coap.models import InboundMessage

_logger = logging.getLogger(__name__)

# QoS used for every subscription (at-least-once).
SUBSCRIBE_QOS = 1


class Direction(enum.StrEnum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class PacketKind(enum.StrEnum):
    CONNACK = "connack"
    SUBACK = "suback"
    PUBLISH = "publish"
    PINGREQ = "pingreq"
    PINGRESP = "pingresp"
    DISCONNECT = "disconnect"


class BridgeState(enum.StrEnum):
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    POLLING = "polling"
    RECONNECT_BACKOFF = "reconnect_backoff"


# paho-mqtt reports keep-alive traffic only through its log callback.
_LOGGED_PACKETS: dict[str, tuple[Direction, PacketKind]] = {
    "Sending PINGREQ": (Direction.OUTGOING, PacketKind.PINGREQ),
    "Received PINGRESP": (Direction.INCOMING, PacketKind.PINGRESP),
}


@dataclass(frozen=True)
class BrokerEvent:
    """One event observed on the broker connection."""

    direction: Direction
    kind: PacketKind
    message: InboundMessage | None = None
    detail: str = ""

    @classmethod
    def publish(cls, topic: str, payload: bytes) -> BrokerEvent:
        return cls(Direction.INCOMING, PacketKind.PUBLISH, InboundMessage(topic=topic, payload=payload))


class EventSource(Protocol):
    """Anything the dispatcher can poll for broker events.

    ``poll()`` raises :class:`BrokerTransportError` for transient
    connection problems; the caller is expected to keep polling.
    """

    async def poll(self) -> BrokerEvent:
        ...


class MqttRuntime:
    """Threaded paho-mqtt runtime that queues events onto an asyncio loop.

    Subscriptions are (re)issued from ``on_connect`` so they survive
    reconnects.  The first SUBACK (or the first failure) resolves the
    future awaited by :meth:`wait_subscribed`.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        loop: asyncio.AbstractEventLoop,
        client: mqtt.Client | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._queue: asyncio.Queue[BrokerEvent | BrokerTransportError] = asyncio.Queue(
            maxsize=config.event_queue_size
        )
        self._client = client
        self._running = False
        self._state = BridgeState.CONNECTING
        self._subscribed: asyncio.Future[None] = loop.create_future()

    @property
    def is_running(self) -> bool:
        """Whether the MQTT network loop is active."""
        return self._running

    @property
    def state(self) -> BridgeState:
        return self._state

    def _set_state(self, state: BridgeState) -> None:
        if state != self._state:
            _logger.debug("Bridge state %s -> %s", self._state, state)
            self._state = state

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._config.client_id,
            clean_session=True,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(logging.getLogger("mqtt2coap.paho"))
        if self._config.mqtt_username:
            client.username_pw_set(self._config.mqtt_username, self._config.mqtt_password)
        if self._config.mqtt_tls:
            client.tls_set()
        client.reconnect_delay_set(min_delay=1, max_delay=60)
        return client

    def start(self) -> None:
        """Connect and start the network loop.  Blocking; run in an executor."""
        client = self._client or self._build_client()
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect
        client.on_log = self._on_log
        self._client = client

        self._set_state(BridgeState.CONNECTING)
        _logger.debug(
            "MQTT connect host=%s port=%s client_id=%s",
            self._config.mqtt_host,
            self._config.mqtt_port,
            self._config.client_id,
        )
        try:
            client.connect(self._config.mqtt_host, self._config.mqtt_port, keepalive=self._config.mqtt_keepalive)
        except (OSError, ValueError) as exc:
            raise SubscriptionError(
                f"Cannot connect to MQTT broker {self._config.mqtt_host}:{self._config.mqtt_port}: {exc}"
            ) from exc
        self._running = True
        client.loop_start()
        _logger.debug("MQTT network loop started")

    async def wait_subscribed(self, timeout: float) -> None:
        """Wait for the broker to acknowledge the initial subscriptions."""
        try:
            await asyncio.wait_for(asyncio.shield(self._subscribed), timeout)
        except TimeoutError as exc:
            raise SubscriptionError(f"No SUBACK from broker within {timeout:.1f}s") from exc

    async def poll(self) -> BrokerEvent:
        """Return the next broker event, raising transient errors in order."""
        item = await self._queue.get()
        if isinstance(item, BrokerTransportError):
            raise item
        if self._state == BridgeState.SUBSCRIBED:
            self._set_state(BridgeState.POLLING)
        return item

    def stop(self) -> None:
        """Disconnect and stop the network loop.  Blocking; run in an executor."""
        client = self._client
        was_running = self._running
        self._running = False
        if client is None:
            return
        try:
            if was_running:
                _logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            _logger.debug("MQTT network loop stopped")

    # ------------------------------------------------------------------
    # Thread hand-off
    # ------------------------------------------------------------------

    def _put(self, item: BrokerEvent | BrokerTransportError) -> None:
        """Queue *item* from the paho thread, blocking while the queue is full."""
        try:
            future = asyncio.run_coroutine_threadsafe(self._queue.put(item), self._loop)
        except RuntimeError:
            _logger.debug("Event loop closed, dropping %r", item)
            return
        while True:
            try:
                future.result(timeout=1.0)
                return
            except concurrent.futures.TimeoutError:
                if not self._running:
                    future.cancel()
                    return

    def _put_nowait(self, item: BrokerEvent) -> None:
        def _enqueue() -> None:
            try:
                self._queue.put_nowait(item)
            except asyncio.QueueFull:
                pass

        try:
            self._loop.call_soon_threadsafe(_enqueue)
        except RuntimeError:
            _logger.debug("Event loop closed, dropping %r", item)

    def _resolve_subscribed(self, exc: BaseException | None = None) -> None:
        def _set() -> None:
            if self._subscribed.done():
                return
            if exc is None:
                self._subscribed.set_result(None)
            else:
                self._subscribed.set_exception(exc)

        self._loop.call_soon_threadsafe(_set)

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(
        self,
        client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.is_failure:
            _logger.warning("MQTT connect failed: %s", reason_code)
            self._resolve_subscribed(SubscriptionError(f"MQTT connect refused: {reason_code}"))
            self._set_state(BridgeState.RECONNECT_BACKOFF)
            self._put(BrokerTransportError(f"MQTT connect refused: {reason_code}", reason=str(reason_code)))
            return

        _logger.debug("MQTT connected reason=%s", reason_code)
        self._put(BrokerEvent(Direction.INCOMING, PacketKind.CONNACK, detail=str(reason_code)))

        subscriptions = self._config.subscriptions
        for topic in subscriptions:
            _logger.info("Subscribing topic %s", topic)
        result, _mid = client.subscribe([(topic, SUBSCRIBE_QOS) for topic in subscriptions])
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._resolve_subscribed(SubscriptionError(f"MQTT subscribe failed: {mqtt.error_string(result)}"))
            self._put(BrokerTransportError(f"MQTT subscribe failed: {mqtt.error_string(result)}"))

    def _on_connect_fail(self, _client: mqtt.Client, _userdata: Any) -> None:
        self._set_state(BridgeState.RECONNECT_BACKOFF)
        self._put(BrokerTransportError("MQTT reconnect attempt failed"))

    def _on_subscribe(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        mid: int,
        reason_code_list: list[Any],
        _properties: Any,
    ) -> None:
        failures = [str(rc) for rc in reason_code_list if rc.is_failure]
        detail = ", ".join(str(rc) for rc in reason_code_list)
        if failures:
            _logger.error("MQTT subscription rejected mid=%s: %s", mid, detail)
            self._resolve_subscribed(SubscriptionError(f"Broker rejected subscription: {', '.join(failures)}"))
        else:
            self._set_state(BridgeState.SUBSCRIBED)
            self._resolve_subscribed()
        self._put(BrokerEvent(Direction.INCOMING, PacketKind.SUBACK, detail=f"mid={mid} {detail}"))

    def _on_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            self._put(BrokerEvent.publish(msg.topic, bytes(msg.payload)))
        except Exception:
            _logger.error("MQTT message hand-off failed topic=%s", msg.topic, exc_info=True)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if not self._running:
            return
        self._set_state(BridgeState.RECONNECT_BACKOFF)
        self._put(BrokerEvent(Direction.INCOMING, PacketKind.DISCONNECT, detail=str(reason_code)))
        if reason_code.is_failure:
            self._put(BrokerTransportError(f"MQTT connection lost: {reason_code}", reason=str(reason_code)))

    def _on_log(self, _client: mqtt.Client, _userdata: Any, _level: int, buf: str) -> None:
        packet = _LOGGED_PACKETS.get(buf)
        if packet is not None:
            direction, kind = packet
            self._put_nowait(BrokerEvent(direction, kind))
