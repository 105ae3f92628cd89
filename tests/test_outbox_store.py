from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from analytics_relay.models.outbox import OutboxEvent
from analytics_relay.services.outbox import SqlOutboxStore, outbox_stats, record_event


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_fetch_selects_oldest_unsent_first(store, add_outbox):
    # inserted out of created_at order on purpose
    await add_outbox(
        {"event_id": "t3", "created_at": T0 + timedelta(seconds=3)},
        {"event_id": "t1", "created_at": T0 + timedelta(seconds=1)},
        {"event_id": "t2", "created_at": T0 + timedelta(seconds=2)},
    )

    first = await store.fetch_unsent(2)
    assert [r.event_id for r in first] == ["t1", "t2"]

    await store.mark_sent([r.id for r in first])

    second = await store.fetch_unsent(2)
    assert [r.event_id for r in second] == ["t3"]


@pytest.mark.asyncio
async def test_mark_sent_sets_flag_and_timestamp_once(store, add_outbox, session_factory):
    ids = await add_outbox({"event_id": "A"}, {"event_id": "B"})

    assert await store.mark_sent(ids[:1]) == 1
    # already sent rows are not touched again
    assert await store.mark_sent(ids[:1]) == 0

    async with session_factory() as db:
        a = (await db.execute(select(OutboxEvent).where(OutboxEvent.event_id == "A"))).scalar_one()
        b = (await db.execute(select(OutboxEvent).where(OutboxEvent.event_id == "B"))).scalar_one()
    assert a.sent is True and a.sent_at is not None
    assert b.sent is False and b.sent_at is None


@pytest.mark.asyncio
async def test_mark_sent_with_no_ids_is_noop(store):
    assert await store.mark_sent([]) == 0


@pytest.mark.asyncio
async def test_quarantined_rows_are_not_fetched(store, add_outbox, session_factory):
    ids = await add_outbox(
        {"event_id": "bad", "created_at": T0},
        {"event_id": "good", "created_at": T0 + timedelta(seconds=1)},
    )

    assert await store.quarantine([(ids[0], "payload is not valid JSON")]) == 1

    fetched = await store.fetch_unsent(10)
    assert [r.event_id for r in fetched] == ["good"]

    async with session_factory() as db:
        bad = (await db.execute(select(OutboxEvent).where(OutboxEvent.id == ids[0]))).scalar_one()
    assert bad.sent is False
    assert bad.quarantined_at is not None
    assert bad.last_error == "payload is not valid JSON"


@pytest.mark.asyncio
async def test_claim_mode_hides_rows_from_other_workers(session_factory, add_outbox):
    await add_outbox({"event_id": "A", "created_at": T0}, {"event_id": "B", "created_at": T0 + timedelta(seconds=1)})

    w1 = SqlOutboxStore(session_factory, worker_id="relay_1", claim_ttl_seconds=300)
    w2 = SqlOutboxStore(session_factory, worker_id="relay_2", claim_ttl_seconds=300)

    claimed = await w1.fetch_unsent(1)
    assert [r.event_id for r in claimed] == ["A"]

    other = await w2.fetch_unsent(10)
    assert [r.event_id for r in other] == ["B"]

    # w2 cannot mark a row w1 holds
    assert await w2.mark_sent([claimed[0].id]) == 0
    assert await w1.mark_sent([claimed[0].id]) == 1

    async with session_factory() as db:
        a = (await db.execute(select(OutboxEvent).where(OutboxEvent.event_id == "A"))).scalar_one()
    assert a.sent is True
    assert a.claimed_by is None


@pytest.mark.asyncio
async def test_expired_claims_are_reclaimed(session_factory, add_outbox):
    await add_outbox({"event_id": "A", "created_at": T0})

    w1 = SqlOutboxStore(session_factory, worker_id="relay_1", claim_ttl_seconds=1)
    w2 = SqlOutboxStore(session_factory, worker_id="relay_2", claim_ttl_seconds=300)

    assert len(await w1.fetch_unsent(10)) == 1
    assert await w2.fetch_unsent(10) == []

    async with session_factory() as db:
        row = (await db.execute(select(OutboxEvent))).scalar_one()
        row.claim_expires_at = datetime.now(timezone.utc) - timedelta(seconds=5)
        await db.commit()

    assert [r.event_id for r in await w2.fetch_unsent(10)] == ["A"]


@pytest.mark.asyncio
async def test_record_event_joins_callers_transaction(session_factory):
    async with session_factory() as db:
        ev = await record_event(db, event_type="purchase", payload={"product_id": "P1", "price": 10})
        assert ev.id is not None
        await db.rollback()

    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(OutboxEvent))).scalar_one()
    assert count == 0

    async with session_factory() as db:
        ev = await record_event(db, event_type="purchase", payload={"product_id": "P1"}, event_id="E-42")
        await db.commit()

    async with session_factory() as db:
        row = (await db.execute(select(OutboxEvent))).scalar_one()
    assert row.event_id == "E-42"
    assert row.sent is False
    assert row.payload["event_id"] == "E-42"
    assert row.payload["event_type"] == "purchase"
    assert row.payload["created_at"].endswith("Z")


@pytest.mark.asyncio
async def test_outbox_stats(store, add_outbox, db_session):
    ids = await add_outbox(
        {"event_id": "A", "created_at": T0},
        {"event_id": "B", "created_at": T0 + timedelta(seconds=1)},
        {"event_id": "C", "created_at": T0 + timedelta(seconds=2)},
    )
    await store.mark_sent([ids[0]])
    await store.quarantine([(ids[1], "boom")])

    s = await outbox_stats(db_session)
    assert (s.pending, s.sent, s.quarantined) == (1, 1, 1)
    assert s.oldest_pending_created_at is not None
    assert s.oldest_pending_created_at.replace(tzinfo=None) == (T0 + timedelta(seconds=2)).replace(tzinfo=None)


@pytest.mark.asyncio
async def test_ping(store):
    await store.ping()
