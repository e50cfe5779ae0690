"""Data carried through the translation pipeline.

An :class:`InboundMessage` arrives from the broker, is flattened into
zero or more :class:`FlatField` measurements, and every measurement
produces exactly one :class:`DeliveryOutcome` once it has been sent.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, field_validator


@dataclass(frozen=True)
class InboundMessage:
    """A single PUBLISH received from the broker."""

    topic: str
    payload: bytes


class FlatField(BaseModel):
    """One scalar measurement extracted from a JSON payload."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Measurement key, ``<namespace>/<json field>``")
    value: float

    def body(self) -> str:
        """Render the request body sent downstream."""
        return f"{self.key} {self.value:.2f}"


class DeliveryOutcome(BaseModel):
    """Result of delivering one :class:`FlatField`."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: float
    success: bool
    status: str | None = Field(default=None, description="Response code reported by the endpoint")
    body: str | None = Field(default=None, description="Response payload, decoded as text")
    error: str | None = Field(default=None, description="Failure reason")

    @field_validator("error")
    @classmethod
    def _strip_error(cls, value: str | None) -> str | None:
        if value is None:
            return None
        text = value.strip()
        return text or None

    @classmethod
    def delivered(cls, field: FlatField, *, status: str | None = None, body: str | None = None) -> DeliveryOutcome:
        return cls(key=field.key, value=field.value, success=True, status=status, body=body)

    @classmethod
    def failed(cls, field: FlatField, reason: str, *, status: str | None = None) -> DeliveryOutcome:
        return cls(key=field.key, value=field.value, success=False, status=status, error=reason or "unknown error")
