"""Outbound delivery: one POST per measurement, over CoAP or HTTP."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlsplit

import aiocoap
import aiocoap.error
import aiohttp

from mqtt2coap.exceptions import BridgeConfigError, DeliveryError
from mqtt2coap.models import DeliveryOutcome, FlatField

_logger = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    """Render *exc* with its constructor arguments.

    aiocoap's errors format a generic help text from ``__str__`` and drop
    the message they were raised with.
    """
    text = str(exc)
    extra = [str(arg) for arg in exc.args if str(arg) and str(arg) not in text]
    if extra:
        return f"{text} ({', '.join(extra)})"
    return text or type(exc).__name__


@dataclass(frozen=True)
class TransportResponse:
    """Response returned by the downstream endpoint."""

    status: str
    payload: bytes

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


class Transport(Protocol):
    """Structural transport interface used by :class:`DeliveryClient`.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementations concrete.
    """

    async def post(self, url: str, body: bytes, timeout: float) -> TransportResponse:
        ...

    async def close(self) -> None:
        ...


class CoapTransport:
    """CoAP POST over UDP using a shared aiocoap client context."""

    def __init__(self, context: aiocoap.Context | None = None) -> None:
        self._context = context
        self._external_context = context is not None
        self._lock = asyncio.Lock()

    async def _ensure_context(self) -> aiocoap.Context:
        async with self._lock:
            if self._context is None:
                self._context = await aiocoap.Context.create_client_context()
            return self._context

    async def post(self, url: str, body: bytes, timeout: float) -> TransportResponse:
        try:
            context = await self._ensure_context()
        except (aiocoap.error.Error, OSError) as exc:
            raise DeliveryError(f"CoAP client setup for {url} failed: {_describe(exc)}", url=url) from exc
        try:
            request = aiocoap.Message(code=aiocoap.POST, payload=body, uri=url)
        except ValueError as exc:
            raise DeliveryError(f"Invalid CoAP URL {url}: {exc}", url=url) from exc

        try:
            response = await asyncio.wait_for(context.request(request).response, timeout)
        except TimeoutError as exc:
            raise DeliveryError(f"CoAP POST to {url} timed out after {timeout:.1f}s", url=url) from exc
        except (aiocoap.error.Error, OSError) as exc:
            raise DeliveryError(f"CoAP POST to {url} failed: {_describe(exc)}", url=url) from exc

        status = str(response.code)
        if not response.code.is_successful():
            raise DeliveryError(
                f"CoAP POST to {url} rejected: {status} {response.payload[:200]!r}",
                url=url,
                code=status,
            )
        return TransportResponse(status=status, payload=response.payload)

    async def close(self) -> None:
        context = self._context
        self._context = None
        if context is not None and not self._external_context:
            await context.shutdown()


class HttpTransport:
    """Plain HTTP POST for endpoints reachable through an HTTP gateway."""

    def __init__(self, session: aiohttp.ClientSession | None = None) -> None:
        self._http = session
        self._external_session = session is not None

    async def post(self, url: str, body: bytes, timeout: float) -> TransportResponse:
        if self._http is None:
            self._http = aiohttp.ClientSession()

        headers = {"content-type": "text/plain; charset=utf-8"}
        try:
            async with self._http.post(
                url,
                data=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                payload = await resp.read()
                if resp.status >= 400:
                    raise DeliveryError(
                        f"HTTP {resp.status} from {url}: {payload[:200]!r}",
                        url=url,
                        code=str(resp.status),
                    )
                return TransportResponse(status=str(resp.status), payload=payload)
        except DeliveryError:
            raise
        except TimeoutError as exc:
            raise DeliveryError(f"HTTP POST to {url} timed out after {timeout:.1f}s", url=url) from exc
        except aiohttp.ClientError as exc:
            raise DeliveryError(f"HTTP POST to {url} failed: {exc}", url=url) from exc

    async def close(self) -> None:
        session = self._http
        self._http = None
        if session is not None and not self._external_session:
            await session.close()


def build_transport(url: str) -> Transport:
    """Pick a transport for *url* based on its scheme."""
    scheme = urlsplit(url).scheme.lower()
    if scheme in {"coap", "coaps"}:
        return CoapTransport()
    if scheme in {"http", "https"}:
        return HttpTransport()
    raise BridgeConfigError(f"Unsupported endpoint scheme in {url!r}")


class DeliveryClient:
    """Sends single key/value measurements to the downstream endpoint.

    A failed delivery never raises; it comes back as a failed
    :class:`DeliveryOutcome` and the caller decides what to do with it.
    """

    def __init__(self, url: str, transport: Transport, *, timeout: float) -> None:
        if timeout <= 0:
            raise BridgeConfigError(f"Delivery timeout must be positive: {timeout}")
        self._url = url
        self._transport = transport
        self._timeout = timeout

    @property
    def url(self) -> str:
        return self._url

    @property
    def timeout(self) -> float:
        return self._timeout

    async def send(self, key: str, value: float, *, index: int | None = None) -> DeliveryOutcome:
        """Deliver ``"<key> <value>"`` with the value rounded to two decimals."""
        return await self.deliver(FlatField(key=key, value=value), index=index)

    async def deliver(self, field: FlatField, *, index: int | None = None) -> DeliveryOutcome:
        payload = field.body()
        _logger.info("*** #%s POST %s <-- %s", index, self._url, payload)

        try:
            response = await self._transport.post(self._url, payload.encode("utf-8"), self._timeout)
        except DeliveryError as exc:
            return DeliveryOutcome.failed(field, str(exc), status=exc.code)

        _logger.info("<-- #%s %s %s", index, response.status, response.text)
        return DeliveryOutcome.delivered(field, status=response.status, body=response.text)

    async def close(self) -> None:
        await self._transport.close()
