from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from analytics_relay.core.errors import TransformError
from analytics_relay.schemas.events import AnalyticsRow, EventPayload, LogRecord, payload_model_for


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(dt: datetime) -> str:
    """2024-03-01T12:30:00.000Z"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_sink_time(iso: str) -> str:
    """ISO8601 `T`/`Z` form -> the sink's `YYYY-MM-DD HH:MM:SS[.fff]`."""
    out = iso.replace("T", " ", 1)
    if out.endswith("Z"):
        out = out[:-1]
    return out


def to_sink_date(iso: str) -> str:
    return iso[:10]


def dump_properties(props: Any) -> str:
    return json.dumps(props, separators=(",", ":"), ensure_ascii=False, default=str)


def parse_payload(record: LogRecord) -> EventPayload:
    raw = record.payload
    if raw is None:
        raw = {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw) if raw else {}
        except ValueError as e:
            raise TransformError(f"payload is not valid JSON: {e}", record_id=record.id) from e
    if not isinstance(raw, dict):
        raise TransformError(f"payload must be an object, got {type(raw).__name__}", record_id=record.id)

    tag = raw.get("event_type")
    # a non-string tag fails validation below; pick the model from the column
    model = payload_model_for(tag if isinstance(tag, str) and tag else record.event_type)
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise TransformError(f"payload failed validation: {e.errors(include_url=False)}", record_id=record.id) from e


def _event_time(payload: EventPayload, record: LogRecord, now: Clock) -> str:
    # Wall-clock fallback means a late transform shifts event_time forward.
    value = payload.event_time or payload.created_at or iso_utc(now())
    # The sink's DateTime64 input takes no offsets; naive values are UTC.
    try:
        return iso_utc(datetime.fromisoformat(value))
    except (ValueError, OverflowError) as e:
        raise TransformError(f"unparseable event time {value!r}", record_id=record.id) from e


def to_analytics_row(record: LogRecord, *, now: Clock = utcnow) -> AnalyticsRow:
    """
    Map one outbox record to the sink row.

    Priority per field: same-named payload field, then the record's own
    event_id/event_type columns, then the typed zero value.
    Raises TransformError for payloads that cannot be mapped.
    """
    payload = parse_payload(record)
    event_time = _event_time(payload, record, now)

    properties: Any = payload.extra_properties()
    if isinstance(payload.properties, dict):
        properties.update(payload.properties)
    elif payload.properties:
        # non-object properties are delivered as-is
        properties = payload.properties

    return AnalyticsRow(
        event_id=payload.event_id or record.event_id or "",
        event_time=to_sink_time(event_time),
        event_date=to_sink_date(event_time),
        user_id=payload.user_id,
        session_id=payload.session_id,
        event_type=payload.event_type or record.event_type or "",
        product_id=payload.product_id,
        category=payload.category,
        price=payload.price,
        page=payload.page,
        referrer=payload.referrer,
        device_family=payload.device_family,
        country=payload.country,
        properties=dump_properties(properties),
    )


@dataclass
class TransformedBatch:
    rows: list[AnalyticsRow] = field(default_factory=list)
    ids: list[int] = field(default_factory=list)
    failures: list[tuple[int, str]] = field(default_factory=list)


def transform_batch(records: list[LogRecord], *, now: Clock = utcnow) -> TransformedBatch:
    """Transform a fetched batch; a bad record is reported, not raised."""
    out = TransformedBatch()
    for record in records:
        try:
            row = to_analytics_row(record, now=now)
        except TransformError as e:
            out.failures.append((record.id, str(e)))
            continue
        out.rows.append(row)
        out.ids.append(record.id)
    return out
