from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from analytics_relay.schemas.events import AnalyticsRow


@runtime_checkable
class AnalyticsSink(Protocol):
    """
    Bulk insert into the columnar analytics store.

    insert() returns on success and raises on any failure. A raise means
    "nothing in this batch was delivered", even if the store kept part of it;
    the store's replacing engine absorbs the resulting duplicates.
    """

    key: str

    async def insert(self, table: str, rows: Sequence[AnalyticsRow]) -> None:
        ...

    async def aclose(self) -> None:
        ...
