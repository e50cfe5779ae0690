"""mqtt2coap - Forward MQTT JSON telemetry to a CoAP endpoint, one field per request."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mqtt2coap")
except PackageNotFoundError:
    __version__ = "0+local"
from mqtt2coap._transport import CoapTransport, DeliveryClient, HttpTransport
from mqtt2coap.bridge import Bridge
from mqtt2coap.config import BridgeConfig
from mqtt2coap.dispatcher import EventDispatcher
from mqtt2coap.exceptions import (
    BridgeConfigError,
    BridgeError,
    BrokerError,
    BrokerTransportError,
    DeliveryError,
    SubscriptionError,
)
from mqtt2coap.ingestion import coerce_value, flatten_payload, normalize_topic
from mqtt2coap.models import DeliveryOutcome, FlatField, InboundMessage

__all__ = [
    "__version__",
    "Bridge",
    "BridgeConfig",
    "BridgeConfigError",
    "BridgeError",
    "BrokerError",
    "BrokerTransportError",
    "CoapTransport",
    "DeliveryClient",
    "DeliveryError",
    "DeliveryOutcome",
    "EventDispatcher",
    "FlatField",
    "HttpTransport",
    "InboundMessage",
    "SubscriptionError",
    "coerce_value",
    "flatten_payload",
    "normalize_topic",
]
