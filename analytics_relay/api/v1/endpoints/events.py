import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_relay.core.db import get_db
from analytics_relay.schemas.track import TrackRequest, TrackResponse
from analytics_relay.services.outbox import record_event

log = logging.getLogger(__name__)

router = APIRouter()


def _device_family(user_agent: str) -> str:
    ua = user_agent.lower()
    if "mobile" in ua:
        return "mobile"
    if "tablet" in ua:
        return "tablet"
    return "desktop" if ua else "unknown"


@router.post("/events/track", response_model=TrackResponse)
async def track_events(
    body: TrackRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TrackResponse:
    if not body.events:
        raise HTTPException(status_code=400, detail="no events")

    referrer = request.headers.get("referer", "")
    device_family = _device_family(request.headers.get("user-agent", ""))

    event_ids: list[str] = []
    for e in body.events:
        payload = e.model_dump(exclude_none=True, exclude={"event_type", "event_id"})
        payload.setdefault("referrer", referrer)
        payload.setdefault("device_family", device_family)
        ev = await record_event(db, event_type=e.event_type, payload=payload, event_id=e.event_id)
        event_ids.append(ev.event_id)

    # one transaction for the whole batch
    await db.commit()
    log.info("track: recorded %d events", len(event_ids))
    return TrackResponse(ok=True, recorded=len(event_ids), event_ids=event_ids)
