from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TrackEventIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_type: str = Field(min_length=1, max_length=100)
    event_id: str | None = Field(default=None, max_length=200)
    event_time: str | None = None

    user_id: str | None = None
    session_id: str | None = None
    product_id: str | None = None
    category: str | None = None
    price: float | None = None
    page: str | None = None
    referrer: str | None = None
    device_family: str | None = None
    country: str | None = None
    properties: dict[str, Any] | None = None


class TrackRequest(BaseModel):
    events: list[TrackEventIn] = Field(default_factory=list)


class TrackResponse(BaseModel):
    ok: bool
    recorded: int
    event_ids: list[str]


class OutboxStatsOut(BaseModel):
    pending: int
    sent: int
    quarantined: int
    oldest_pending_created_at: str | None
