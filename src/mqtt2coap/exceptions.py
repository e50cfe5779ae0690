"""Custom exception hierarchy for mqtt2coap."""

from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all mqtt2coap errors."""


class BridgeConfigError(BridgeError):
    """Invalid or missing configuration."""


class BrokerError(BridgeError):
    """MQTT broker connection or subscription failure."""


class BrokerTransportError(BrokerError):
    """Transient broker failure observed while polling for events.

    Raised out of an event source's ``poll()`` when the connection drops
    or a reconnect attempt fails.  The dispatcher logs it and keeps
    polling; the paho network loop reconnects on its own.
    """

    def __init__(self, message: str, *, reason: str = "") -> None:
        self.reason = reason
        super().__init__(message)


class SubscriptionError(BrokerError):
    """Could not connect or subscribe to the initial topics at startup.

    This is the only failure that stops the bridge.
    """


class DeliveryError(BridgeError):
    """A single outbound POST failed (network, timeout, error response)."""

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        code: str | None = None,
    ) -> None:
        self.url = url
        self.code = code
        super().__init__(message)
