"""Bridge configuration for mqtt2coap."""

from __future__ import annotations

import dataclasses
import os
from typing import Any
from urllib.parse import urlsplit

from mqtt2coap.exceptions import BridgeConfigError

SUPPORTED_SCHEMES: frozenset[str] = frozenset({"coap", "coaps", "http", "https"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class BridgeConfig:
    """Bridge configuration.

    Parameters
    ----------
    mqtt_host : str
        MQTT broker host name.
    mqtt_port : int
        MQTT broker TCP port.
    topic_prefix : str
        String prepended to every entry of ``topics`` when subscribing
        (e.g. ``"zigbee2mqtt/"``).
    topics : str
        Comma-separated list of topic filters.
    coap_url : str
        Downstream endpoint receiving one POST per measurement. ``coap://``
        and ``coaps://`` go over UDP; ``http://`` and ``https://`` are
        accepted for ingestion services behind an HTTP proxy.
    delivery_timeout : float
        Seconds to wait for a single delivery before giving up on it.
    client_id : str
        MQTT client identifier.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_username : str or None
        Optional broker username.
    mqtt_password : str or None
        Optional broker password, only used with ``mqtt_username``.
    mqtt_tls : bool
        Connect to the broker over TLS.
    topic_separator : str
        Single character separating the topic prefix segment from the
        measurement namespace.
    event_queue_size : int
        Capacity of the queue between the MQTT network thread and the
        dispatcher.
    subscribe_timeout : float
        Seconds to wait for the broker to acknowledge the initial
        subscriptions before giving up.
    """

    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    topic_prefix: str = ""
    topics: str = "test123"
    coap_url: str = "coap://localhost/store_data"
    delivery_timeout: float = 30.0
    client_id: str = "mqtt2coap"
    mqtt_keepalive: int = 25
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    topic_separator: str = "/"
    event_queue_size: int = 42
    subscribe_timeout: float = 10.0

    def __post_init__(self) -> None:
        if not self.mqtt_host.strip():
            raise BridgeConfigError("mqtt_host must be non-empty")
        if not 0 < self.mqtt_port < 65536:
            raise BridgeConfigError(f"mqtt_port out of range: {self.mqtt_port}")
        if self.delivery_timeout <= 0:
            raise BridgeConfigError(f"delivery_timeout must be positive: {self.delivery_timeout}")
        if self.subscribe_timeout <= 0:
            raise BridgeConfigError(f"subscribe_timeout must be positive: {self.subscribe_timeout}")
        if self.mqtt_keepalive <= 0:
            raise BridgeConfigError(f"mqtt_keepalive must be positive: {self.mqtt_keepalive}")
        if self.event_queue_size <= 0:
            raise BridgeConfigError(f"event_queue_size must be positive: {self.event_queue_size}")
        if len(self.topic_separator) != 1:
            raise BridgeConfigError(f"topic_separator must be one character: {self.topic_separator!r}")
        scheme = urlsplit(self.coap_url).scheme.lower()
        if scheme not in SUPPORTED_SCHEMES:
            raise BridgeConfigError(f"Unsupported endpoint scheme in {self.coap_url!r}")
        if not self.subscriptions:
            raise BridgeConfigError("No topics to subscribe to")

    @property
    def subscriptions(self) -> list[str]:
        """Topic filters to subscribe, each joined with ``topic_prefix``."""
        return [f"{self.topic_prefix}{topic.strip()}" for topic in self.topics.split(",") if topic.strip()]

    @classmethod
    def from_env(cls, **overrides: Any) -> BridgeConfig:
        """Create configuration from environment variables.

        Reads optional ``MQTT2COAP_*`` variables. Explicit keyword
        arguments override environment values; ``None`` overrides are
        ignored so unset CLI flags fall through to the environment.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        BridgeConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "MQTT2COAP_MQTT_HOST": "mqtt_host",
            "MQTT2COAP_TOPIC_PREFIX": "topic_prefix",
            "MQTT2COAP_TOPICS": "topics",
            "MQTT2COAP_COAP_URL": "coap_url",
            "MQTT2COAP_CLIENT_ID": "client_id",
            "MQTT2COAP_MQTT_USERNAME": "mqtt_username",
            "MQTT2COAP_MQTT_PASSWORD": "mqtt_password",
            "MQTT2COAP_TOPIC_SEPARATOR": "topic_separator",
        }
        _ENV_INT_MAP = {
            "MQTT2COAP_MQTT_PORT": "mqtt_port",
            "MQTT2COAP_MQTT_KEEPALIVE": "mqtt_keepalive",
            "MQTT2COAP_EVENT_QUEUE_SIZE": "event_queue_size",
        }
        _ENV_FLOAT_MAP = {
            "MQTT2COAP_DELIVERY_TIMEOUT": "delivery_timeout",
            "MQTT2COAP_SUBSCRIBE_TIMEOUT": "subscribe_timeout",
        }

        config_kwargs: dict[str, Any] = {}
        try:
            for env_key, field_name in _ENV_STR_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = val
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = int(val)
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = float(val)
        except ValueError as exc:
            raise BridgeConfigError(f"Invalid numeric environment value: {exc}") from exc

        config_kwargs["mqtt_tls"] = _env_bool(env.get("MQTT2COAP_MQTT_TLS"), False)

        config_kwargs.update({key: value for key, value in overrides.items() if value is not None})

        return cls(**config_kwargs)

    def redacted(self) -> dict[str, Any]:
        """Return the config as a dict safe for debug logs."""
        data = dataclasses.asdict(self)
        if data.get("mqtt_password"):
            data["mqtt_password"] = "<redacted>"
        return data
