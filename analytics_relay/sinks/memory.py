from __future__ import annotations

from collections import defaultdict
from typing import Sequence

from analytics_relay.core.errors import SinkError
from analytics_relay.schemas.events import AnalyticsRow


class InMemorySink:
    """
    Sink double that mimics the analytics table's replacing engine.

    `rows(table)` is what a reader sees before background merges (duplicates
    included); `compacted(table)` is the post-merge view, one row per
    (event_id, event_time) with the last insert winning.
    """

    key = "memory"

    def __init__(self) -> None:
        self._tables: dict[str, list[AnalyticsRow]] = defaultdict(list)
        self.insert_calls = 0
        self.fail_next = 0
        self.fail_with: Exception | None = None

    async def insert(self, table: str, rows: Sequence[AnalyticsRow]) -> None:
        self.insert_calls += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            raise self.fail_with or SinkError("forced insert failure", error_code="MEMORY_FAIL")
        self._tables[table].extend(rows)

    async def aclose(self) -> None:
        return None

    def rows(self, table: str) -> list[AnalyticsRow]:
        return list(self._tables.get(table, []))

    def compacted(self, table: str) -> list[AnalyticsRow]:
        latest: dict[tuple[str, str], AnalyticsRow] = {}
        for row in self._tables.get(table, []):
            latest[(row.event_id, row.event_time)] = row
        return list(latest.values())
