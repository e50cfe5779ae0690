"""High-level async bridge from MQTT topics to a CoAP endpoint."""

from __future__ import annotations

import asyncio
import logging

from mqtt2coap._mqtt import MqttRuntime
from mqtt2coap._transport import DeliveryClient, Transport, build_transport
from mqtt2coap.config import BridgeConfig
from mqtt2coap.dispatcher import EventDispatcher
from mqtt2coap.exceptions import BridgeError

_logger = logging.getLogger(__name__)


class Bridge:
    """Wires the MQTT runtime, the dispatcher and the delivery client.

    Usage::

        async with Bridge(config) as bridge:
            await bridge.run()

    Entering the context connects to the broker and waits for the
    initial subscriptions; a :class:`~mqtt2coap.exceptions.SubscriptionError`
    raised there is fatal.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        transport: Transport | None = None,
        runtime: MqttRuntime | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._runtime = runtime
        self._delivery: DeliveryClient | None = None
        self._dispatcher: EventDispatcher | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> Bridge:
        self._loop = asyncio.get_running_loop()
        if self._transport is None:
            self._transport = build_transport(self._config.coap_url)
        self._delivery = DeliveryClient(
            self._config.coap_url,
            self._transport,
            timeout=self._config.delivery_timeout,
        )
        self._dispatcher = EventDispatcher(self._delivery, separator=self._config.topic_separator)
        if self._runtime is None:
            self._runtime = MqttRuntime(self._config, loop=self._loop)

        try:
            await self._loop.run_in_executor(None, self._runtime.start)
            await self._runtime.wait_subscribed(self._config.subscribe_timeout)
        except BaseException:
            await self.aclose()
            raise
        _logger.info(
            "Bridging %s:%s [%s] -> %s",
            self._config.mqtt_host,
            self._config.mqtt_port,
            ", ".join(self._config.subscriptions),
            self._config.coap_url,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    @property
    def dispatcher(self) -> EventDispatcher:
        if self._dispatcher is None:
            raise BridgeError("Bridge is not started; use 'async with Bridge(...)'")
        return self._dispatcher

    async def run(self) -> None:
        """Translate broker events until cancelled."""
        if self._runtime is None:
            raise BridgeError("Bridge is not started; use 'async with Bridge(...)'")
        await self.dispatcher.run(self._runtime)

    async def aclose(self) -> None:
        runtime = self._runtime
        self._runtime = None
        if runtime is not None and self._loop is not None:
            try:
                await self._loop.run_in_executor(None, runtime.stop)
            except Exception:
                _logger.debug("MQTT runtime stop failed", exc_info=True)

        dispatcher = self._dispatcher
        if dispatcher is not None:
            await dispatcher.aclose()

        delivery = self._delivery
        self._delivery = None
        if delivery is not None:
            await delivery.close()
