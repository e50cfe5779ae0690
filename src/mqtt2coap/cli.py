"""Command-line entry point for the mqtt2coap bridge."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import platform
import signal
import sys
from importlib.metadata import PackageNotFoundError, version

from mqtt2coap import __version__
from mqtt2coap._logfmt import TRACE
from mqtt2coap.bridge import Bridge
from mqtt2coap.config import BridgeConfig
from mqtt2coap.exceptions import BridgeConfigError, BrokerError

PROGRAM = "mqtt2coap"

_logger = logging.getLogger(PROGRAM)

EXIT_OK = 0
EXIT_BROKER = 1
EXIT_CONFIG = 2


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=PROGRAM,
        description="Forward JSON fields published on MQTT topics to a CoAP endpoint.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable info logs.")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logs.")
    parser.add_argument("-t", "--trace", action="store_true", help="Enable trace logs, including paho-mqtt.")
    parser.add_argument("--mqtt-host", help="MQTT broker host (default: localhost).")
    parser.add_argument("--mqtt-port", type=int, help="MQTT broker port (default: 1883).")
    parser.add_argument("--topic-prefix", help="Prefix prepended to every topic (default: empty).")
    parser.add_argument("--topics", help="Comma-separated topics to subscribe (default: test123).")
    parser.add_argument(
        "--coap-url",
        help="Endpoint receiving one POST per field (default: coap://localhost/store_data).",
    )
    parser.add_argument(
        "--timeout",
        dest="delivery_timeout",
        type=float,
        help="Seconds to wait for each delivery (default: 30).",
    )
    parser.add_argument("--client-id", help="MQTT client id (default: mqtt2coap).")
    return parser.parse_args(argv)


def get_loglevel(args: argparse.Namespace) -> int:
    if args.trace:
        return TRACE
    if args.debug:
        return logging.DEBUG
    if args.verbose:
        return logging.INFO
    return logging.ERROR


def start_pgm(args: argparse.Namespace) -> None:
    """Configure logging and print the startup banner."""
    level = get_loglevel(args)
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    logging.getLogger(PROGRAM).setLevel(level)
    if level > TRACE:
        # paho's client log is only useful when tracing
        logging.getLogger(f"{PROGRAM}.paho").setLevel(logging.WARNING)

    _logger.info("Starting up %s v%s...", PROGRAM, __version__)
    _logger.debug("Python version: %s", platform.python_version())
    for dist in ("paho-mqtt", "aiocoap", "aiohttp"):
        try:
            _logger.debug("%s version: %s", dist, version(dist))
        except PackageNotFoundError:
            _logger.debug("%s version: unknown", dist)


async def _serve(config: BridgeConfig) -> None:
    loop = asyncio.get_running_loop()
    async with Bridge(config) as bridge:
        run_task = asyncio.create_task(bridge.run())
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, run_task.cancel)
        try:
            await run_task
        except asyncio.CancelledError:
            _logger.info("Shutting down")
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(NotImplementedError):
                    loop.remove_signal_handler(sig)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    start_pgm(args)

    try:
        config = BridgeConfig.from_env(
            mqtt_host=args.mqtt_host,
            mqtt_port=args.mqtt_port,
            topic_prefix=args.topic_prefix,
            topics=args.topics,
            coap_url=args.coap_url,
            delivery_timeout=args.delivery_timeout,
            client_id=args.client_id,
        )
    except BridgeConfigError as exc:
        print(f"{PROGRAM}: invalid configuration: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    _logger.debug("Runtime config:\n%s", config.redacted())

    try:
        asyncio.run(_serve(config))
    except BrokerError as exc:
        _logger.error("MQTT startup failed: %s", exc)
        print(f"{PROGRAM}: {exc}", file=sys.stderr)
        return EXIT_BROKER
    except KeyboardInterrupt:
        pass
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
