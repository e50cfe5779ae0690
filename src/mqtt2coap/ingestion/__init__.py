"""Inbound message normalization: topics to namespaces, payloads to measurements."""

from mqtt2coap.ingestion.normalize import coerce_value, flatten_payload, normalize_topic, parse_payload

__all__ = ["coerce_value", "flatten_payload", "normalize_topic", "parse_payload"]
