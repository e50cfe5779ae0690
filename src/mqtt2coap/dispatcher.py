"""Event dispatcher: routes broker events into per-field deliveries."""

from __future__ import annotations

import asyncio
import logging

from mqtt2coap._logfmt import TRACE, truncate_for_log
from mqtt2coap._mqtt import BrokerEvent, Direction, EventSource, PacketKind
from mqtt2coap._transport import DeliveryClient
from mqtt2coap.exceptions import BrokerTransportError
from mqtt2coap.ingestion.normalize import flatten_payload, normalize_topic
from mqtt2coap.models import DeliveryOutcome, FlatField, InboundMessage

_logger = logging.getLogger(__name__)


class EventDispatcher:
    """Polls an :class:`EventSource` forever and fans out deliveries.

    Every flattened field is delivered by its own task.  The poll loop
    never waits for deliveries, and a failed delivery is logged without
    touching its siblings.
    """

    def __init__(self, delivery: DeliveryClient, *, separator: str = "/") -> None:
        self._delivery = delivery
        self._separator = separator
        self._tasks: set[asyncio.Task[DeliveryOutcome]] = set()
        self._count = 0

    @property
    def in_flight(self) -> int:
        """Number of deliveries not yet finished."""
        return len(self._tasks)

    async def run(self, source: EventSource) -> None:
        """Poll *source* until cancelled."""
        while True:
            self._count += 1
            try:
                event = await source.poll()
            except BrokerTransportError as exc:
                _logger.error("MQTT event error: %s", exc)
                continue
            self.handle_event(event, self._count)

    def handle_event(self, event: BrokerEvent, index: int) -> list[asyncio.Task[DeliveryOutcome]]:
        """Route a single broker event; returns the delivery tasks it spawned."""
        _logger.log(TRACE, "mqtt event #%s: %s", index, event)
        if event.direction is not Direction.INCOMING:
            return []
        if event.kind is PacketKind.PINGRESP:
            return []
        if event.kind is PacketKind.PUBLISH and event.message is not None:
            return self.handle_message(event.message, index)

        _logger.debug("Notification #%s = %s %s %s", index, event.direction, event.kind, event.detail)
        return []

    def handle_message(self, message: InboundMessage, index: int) -> list[asyncio.Task[DeliveryOutcome]]:
        """Flatten *message* and start one delivery task per field."""
        _logger.info("Publish #%s = topic=%s bytes=%d", index, message.topic, len(message.payload))

        namespace = normalize_topic(message.topic, self._separator)
        _logger.debug("Payload #%s = %s -- %s", index, namespace, truncate_for_log(message.payload))

        fields = flatten_payload(namespace, message.payload, index=index)
        return [self._spawn(field, index) for field in fields]

    def _spawn(self, field: FlatField, index: int) -> asyncio.Task[DeliveryOutcome]:
        task = asyncio.create_task(self._deliver(field, index), name=f"deliver-{index}-{field.key}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, field: FlatField, index: int) -> DeliveryOutcome:
        try:
            outcome = await self._delivery.deliver(field, index=index)
        except Exception as exc:
            _logger.error("Send error: #%s %s: %r", index, field.key, exc, exc_info=True)
            return DeliveryOutcome.failed(field, repr(exc))
        if not outcome.success:
            _logger.error("Send error: #%s %s: %s", index, field.key, outcome.error)
        return outcome

    async def wait_idle(self) -> None:
        """Wait until every delivery started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self, grace: float = 5.0) -> None:
        """Give in-flight deliveries *grace* seconds, then cancel the rest."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        _, still_pending = await asyncio.wait(pending, timeout=grace)
        for task in still_pending:
            task.cancel()
        if still_pending:
            _logger.warning("Cancelled %d unfinished deliveries", len(still_pending))
            await asyncio.gather(*still_pending, return_exceptions=True)
