from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_relay.core.db import get_db
from analytics_relay.schemas.track import OutboxStatsOut
from analytics_relay.services.outbox import outbox_stats

router = APIRouter()


@router.get("/outbox/stats", response_model=OutboxStatsOut)
async def get_outbox_stats(db: AsyncSession = Depends(get_db)) -> OutboxStatsOut:
    s = await outbox_stats(db)
    return OutboxStatsOut(
        pending=s.pending,
        sent=s.sent,
        quarantined=s.quarantined,
        oldest_pending_created_at=str(s.oldest_pending_created_at) if s.oldest_pending_created_at else None,
    )
