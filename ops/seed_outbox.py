from __future__ import annotations

import argparse
import asyncio
import random
import sys
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from analytics_relay.core.config import settings
from analytics_relay.core.db import make_engine, make_session_factory
from analytics_relay.core.errors import ConfigurationError
from analytics_relay.services.outbox import record_event
from analytics_relay.services.transform import iso_utc


def synthetic_event(rng: random.Random, now: datetime) -> tuple[str, dict[str, Any]]:
    roll = rng.random()
    if roll < 0.02:
        event_type = "purchase"
    elif roll < 0.2:
        event_type = "add_to_cart"
    else:
        event_type = "product_view"

    ts = now - timedelta(milliseconds=rng.randrange(0, 1000 * 60 * 60 * 24))
    return event_type, {
        "event_time": iso_utc(ts),
        "user_id": f"user-{rng.randrange(200)}",
        "session_id": f"sess-{rng.randrange(10000)}",
        "product_id": f"prod-{1 + rng.randrange(100)}",
        "category": f"cat-{1 + rng.randrange(10)}",
        "price": round(rng.random() * 500, 2),
        "page": "/product",
        "referrer": "organic",
        "device_family": "mobile" if rng.random() < 0.5 else "desktop",
        "country": "IN",
        "properties": {"seed": True},
    }


async def seed(db: AsyncSession, n: int, *, seed_value: int | None = None, chunk: int = 1000) -> int:
    rng = random.Random(seed_value)
    now = datetime.now(timezone.utc)
    for i in range(n):
        event_type, payload = synthetic_event(rng, now)
        await record_event(db, event_type=event_type, payload=payload)
        if (i + 1) % chunk == 0:
            await db.commit()
    await db.commit()
    return n


def main() -> int:
    p = argparse.ArgumentParser(description="Insert synthetic analytics events into the outbox")
    p.add_argument("count", nargs="?", type=int, default=10_000)
    p.add_argument("--seed", type=int, default=None)
    args = p.parse_args()

    try:
        database_url = settings.require_database_url()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    async def _run() -> int:
        engine = make_engine(database_url)
        try:
            async with make_session_factory(engine)() as db:
                return await seed(db, args.count, seed_value=args.seed)
        finally:
            await engine.dispose()

    n = asyncio.run(_run())
    print(f"seeded {n} outbox events")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
