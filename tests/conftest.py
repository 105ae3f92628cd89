import os

# Keep tests away from a real collector and from any developer .env database.
os.environ["OTEL_ENABLED"] = "false"

from datetime import datetime, timezone  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from analytics_relay.core.db import get_db, make_session_factory  # noqa: E402
from analytics_relay.main import app  # noqa: E402
from analytics_relay.models.base import Base  # noqa: E402
from analytics_relay.models.outbox import OutboxEvent  # noqa: E402
from analytics_relay.services.outbox import SqlOutboxStore  # noqa: E402
from analytics_relay.sinks.memory import InMemorySink  # noqa: E402


TABLE = "analytics.events"


@pytest_asyncio.fixture
async def async_engine():
    # One shared in-memory SQLite connection per test.
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory) -> SqlOutboxStore:
    return SqlOutboxStore(session_factory)


@pytest.fixture
def sink() -> InMemorySink:
    return InMemorySink()


@pytest.fixture
def add_outbox(session_factory):
    """Insert committed outbox rows; returns their ids in insertion order."""

    async def _add(*events: dict) -> list[int]:
        async with session_factory() as db:
            rows = []
            for e in events:
                row = OutboxEvent(
                    event_id=e["event_id"],
                    event_type=e.get("event_type", "page_view"),
                    payload=e.get("payload", {}),
                    created_at=e.get("created_at", datetime.now(timezone.utc)),
                )
                db.add(row)
                rows.append(row)
            await db.commit()
            return [r.id for r in rows]

    return _add


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client whose requests use the test database."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
