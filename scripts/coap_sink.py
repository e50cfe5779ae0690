#!/usr/bin/env python3
"""Development CoAP endpoint that accepts ``store_data`` POSTs.

Run it next to the bridge to watch what would reach the storage service::

    python scripts/coap_sink.py --port 5683 &
    mqtt2coap -v --topic-prefix zigbee2mqtt/ --topics '#' \\
        --coap-url coap://127.0.0.1/store_data

Each request body is ``"<key> <value>"``; malformed bodies get 4.00.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

import aiocoap
import aiocoap.resource as resource
from aiocoap.numbers.codes import Code

_LOG = logging.getLogger("coap_sink")


class StoreDataResource(resource.Resource):
    """Logs every measurement and answers 2.04 Changed."""

    def __init__(self) -> None:
        super().__init__()
        self.count = 0

    async def render_post(self, request: aiocoap.Message) -> aiocoap.Message:
        text = request.payload.decode("utf-8", errors="replace")
        key, _, value = text.rpartition(" ")
        try:
            reading = float(value)
        except ValueError:
            _LOG.warning("Rejected body: %r", text)
            return aiocoap.Message(code=Code.BAD_REQUEST, payload=b"expected '<key> <value>'")
        if not key:
            _LOG.warning("Rejected body without key: %r", text)
            return aiocoap.Message(code=Code.BAD_REQUEST, payload=b"missing key")

        self.count += 1
        _LOG.info("#%d %s = %.2f", self.count, key, reading)
        return aiocoap.Message(code=Code.CHANGED, payload=b"OK")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print measurements POSTed by mqtt2coap.")
    parser.add_argument("--host", default="127.0.0.1", help="Address to bind.")
    parser.add_argument("--port", type=int, default=5683, help="UDP port to bind.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


async def _serve(host: str, port: int) -> None:
    root = resource.Site()
    root.add_resource(["store_data"], StoreDataResource())
    context = await aiocoap.Context.create_server_context(root, bind=(host, port))
    _LOG.info("Listening on coap://%s:%d/store_data", host, port)
    try:
        await asyncio.get_running_loop().create_future()  # run forever
    finally:
        await context.shutdown()


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(_serve(args.host, args.port))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
