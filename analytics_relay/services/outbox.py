from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, Sequence

from sqlalchemy import func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_relay.core.ids import gen_event_id
from analytics_relay.models.outbox import OutboxEvent
from analytics_relay.schemas.events import LogRecord
from analytics_relay.services.transform import iso_utc


async def record_event(
    db: AsyncSession,
    *,
    event_type: str,
    payload: dict[str, Any],
    event_id: str | None = None,
) -> OutboxEvent:
    """
    Add an outbox row to the caller's open transaction.

    Does not commit: the row must become durable together with the business
    write it describes, so the caller owns the transaction.
    """
    event_id = event_id or payload.get("event_id") or gen_event_id()
    body = {"event_id": event_id, "event_type": event_type, **payload}
    body.setdefault("created_at", iso_utc(datetime.now(timezone.utc)))

    ev = OutboxEvent(event_id=event_id, event_type=event_type, payload=body)
    db.add(ev)
    await db.flush()
    return ev


class OutboxStore(Protocol):
    async def ping(self) -> None:
        ...

    async def fetch_unsent(self, limit: int) -> list[LogRecord]:
        ...

    async def mark_sent(self, ids: Sequence[int]) -> int:
        ...

    async def quarantine(self, failures: Sequence[tuple[int, str]]) -> int:
        ...


def _unsent():
    return (
        OutboxEvent.sent.is_(False),
        OutboxEvent.quarantined_at.is_(None),
    )


class SqlOutboxStore:
    """
    Event log store backed by the `outbox_events` table.

    Every call runs in its own short transaction; nothing is held open across
    the sink insert. With `worker_id` set, fetch claims rows with a lease so
    several relays can share one log.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        worker_id: str | None = None,
        claim_ttl_seconds: int = 300,
    ):
        self._Session = session_factory
        self.worker_id = worker_id
        self.claim_ttl = timedelta(seconds=claim_ttl_seconds)

    async def ping(self) -> None:
        async with self._Session() as db:
            await db.execute(text("SELECT 1"))

    async def fetch_unsent(self, limit: int) -> list[LogRecord]:
        if self.worker_id:
            return await self._claim_unsent(limit)

        stmt = (
            select(OutboxEvent)
            .where(*_unsent())
            .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
            .limit(limit)
        )
        async with self._Session() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [_to_record(r) for r in rows]

    async def _claim_unsent(self, limit: int) -> list[LogRecord]:
        now = datetime.now(timezone.utc)
        stmt = (
            select(OutboxEvent)
            .where(
                *_unsent(),
                (OutboxEvent.claimed_by.is_(None)) | (OutboxEvent.claim_expires_at < now),
            )
            .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
            .with_for_update(skip_locked=True)
            .limit(limit)
        )
        async with self._Session() as db:
            rows = (await db.execute(stmt)).scalars().all()
            if not rows:
                await db.commit()
                return []

            records = [_to_record(r) for r in rows]
            await db.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id.in_([r.id for r in records]))
                .values(claimed_by=self.worker_id, claim_expires_at=now + self.claim_ttl)
            )
            await db.commit()
            return records

    async def mark_sent(self, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id.in_(list(ids)), OutboxEvent.sent.is_(False))
            .values(sent=True, sent_at=func.now())
        )
        if self.worker_id:
            stmt = stmt.where(OutboxEvent.claimed_by == self.worker_id).values(claimed_by=None, claim_expires_at=None)

        async with self._Session() as db:
            result = await db.execute(stmt)
            await db.commit()
            return int(result.rowcount or 0)

    async def quarantine(self, failures: Sequence[tuple[int, str]]) -> int:
        n = 0
        async with self._Session() as db:
            for record_id, error in failures:
                result = await db.execute(
                    update(OutboxEvent)
                    .where(OutboxEvent.id == record_id, OutboxEvent.sent.is_(False))
                    .values(quarantined_at=func.now(), last_error=error[:2000], claimed_by=None, claim_expires_at=None)
                )
                n += int(result.rowcount or 0)
            await db.commit()
        return n


def _to_record(row: OutboxEvent) -> LogRecord:
    return LogRecord(
        id=row.id,
        event_id=row.event_id,
        event_type=row.event_type,
        payload=row.payload,
        created_at=row.created_at,
    )


@dataclass(frozen=True)
class OutboxStats:
    pending: int
    sent: int
    quarantined: int
    oldest_pending_created_at: datetime | None


async def outbox_stats(db: AsyncSession) -> OutboxStats:
    pending = (await db.execute(select(func.count()).select_from(OutboxEvent).where(*_unsent()))).scalar_one()
    sent = (await db.execute(select(func.count()).select_from(OutboxEvent).where(OutboxEvent.sent.is_(True)))).scalar_one()
    quarantined = (await db.execute(
        select(func.count()).select_from(OutboxEvent).where(OutboxEvent.quarantined_at.is_not(None))
    )).scalar_one()
    oldest = (await db.execute(select(func.min(OutboxEvent.created_at)).where(*_unsent()))).scalar_one()
    return OutboxStats(pending=int(pending), sent=int(sent), quarantined=int(quarantined), oldest_pending_created_at=oldest)
