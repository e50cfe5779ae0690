from __future__ import annotations

import pydantic
import pytest

from mqtt2coap.models import DeliveryOutcome, FlatField, InboundMessage


@pytest.mark.parametrize(
    ("value", "body"),
    [
        (21.5, "sensor1/temperature 21.50"),
        (87, "sensor1/temperature 87.00"),
        (1.0 / 3.0, "sensor1/temperature 0.33"),
        (2.345678, "sensor1/temperature 2.35"),
        (-4.0, "sensor1/temperature -4.00"),
        (0.0, "sensor1/temperature 0.00"),
    ],
)
def test_flat_field_body_has_two_decimals(value: float, body: str) -> None:
    assert FlatField(key="sensor1/temperature", value=value).body() == body


def test_flat_field_is_frozen() -> None:
    field = FlatField(key="a/b", value=1.0)
    with pytest.raises(pydantic.ValidationError):
        field.value = 2.0  # type: ignore[misc]


def test_delivery_outcome_constructors() -> None:
    field = FlatField(key="a/b", value=3.0)

    ok = DeliveryOutcome.delivered(field, status="2.04 Changed", body="stored")
    assert ok.success is True
    assert ok.key == "a/b"
    assert ok.value == 3.0
    assert ok.error is None

    failed = DeliveryOutcome.failed(field, "  timed out  ")
    assert failed.success is False
    assert failed.error == "timed out"
    assert failed.status is None


def test_delivery_outcome_failed_without_reason_still_has_error() -> None:
    failed = DeliveryOutcome.failed(FlatField(key="k", value=0.0), "")
    assert failed.error == "unknown error"


def test_inbound_message_is_immutable() -> None:
    message = InboundMessage(topic="zigbee2mqtt/sensor1", payload=b"{}")
    with pytest.raises(AttributeError):
        message.topic = "other"  # type: ignore[misc]
