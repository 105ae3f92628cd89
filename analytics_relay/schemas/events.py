from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat, field_validator


# Fields of the sink schema that a payload may carry under the same name.
KNOWN_FIELDS = (
    "event_id",
    "event_type",
    "event_time",
    "created_at",
    "user_id",
    "session_id",
    "product_id",
    "category",
    "price",
    "page",
    "referrer",
    "device_family",
    "country",
    "properties",
)


@dataclass(frozen=True)
class LogRecord:
    """One unsent outbox row as the relay sees it."""

    id: int
    event_id: str
    event_type: str
    payload: Any  # dict for json/jsonb columns, str for text columns
    created_at: datetime | None = None


class EventPayload(BaseModel):
    """
    Generic outbox payload.

    Every well-known field is optional; ``null`` and missing both mean "use the
    typed zero value". Unknown keys are kept (``model_extra``) so newer producers
    never break an older relay.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    event_id: str | None = None
    event_type: str | None = None
    event_time: str | None = None
    created_at: str | None = None

    user_id: str = ""
    session_id: str = ""
    product_id: str = ""
    category: str = ""
    price: float = 0
    page: str = ""
    referrer: str = ""
    device_family: str = ""
    country: str = ""

    properties: Any = Field(default_factory=dict)

    @field_validator(
        "user_id", "session_id", "product_id", "category", "page", "referrer", "device_family", "country",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("price", mode="before")
    @classmethod
    def _none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None or v == "" else v

    @field_validator("properties", mode="before")
    @classmethod
    def _none_to_dict(cls, v: Any) -> Any:
        return v or {}

    @field_validator("event_id", "event_type", "event_time", "created_at", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return v.isoformat()
        return v or None

    def extra_properties(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class CommercePayload(EventPayload):
    """purchase / cart events: a negative price is a producer bug."""

    price: NonNegativeFloat = 0


PAYLOAD_MODELS: dict[str, type[EventPayload]] = {
    "purchase": CommercePayload,
    "add_to_cart": CommercePayload,
    "remove_from_cart": CommercePayload,
}


def payload_model_for(event_type: Any) -> type[EventPayload]:
    if not isinstance(event_type, str):
        return EventPayload
    return PAYLOAD_MODELS.get(event_type, EventPayload)


class AnalyticsRow(BaseModel):
    """Flat row for the sink's fixed schema. No field is ever missing."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    event_time: str
    event_date: str
    user_id: str = ""
    session_id: str = ""
    event_type: str
    product_id: str = ""
    category: str = ""
    price: float = 0
    page: str = ""
    referrer: str = ""
    device_family: str = ""
    country: str = ""
    properties: str = "{}"
