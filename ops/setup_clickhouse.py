from __future__ import annotations

import argparse
import asyncio
import sys

from analytics_relay.core.config import settings
from analytics_relay.core.errors import SinkError
from analytics_relay.sinks.clickhouse import ClickHouseSink


# ORDER BY carries event_id and event_time so the replacing engine folds
# redelivered rows into one per event.
EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS {database}.{table} (
  event_id String,
  event_time DateTime64(3),
  event_date Date,
  user_id String,
  session_id String,
  event_type String,
  product_id String,
  category String,
  price Float64,
  page String,
  referrer String,
  device_family String,
  country String,
  properties String
) ENGINE = ReplacingMergeTree()
PARTITION BY toYYYYMM(event_date)
ORDER BY (event_date, event_type, product_id, event_id, event_time)
""".strip()


def events_ddl(database: str, table: str) -> str:
    return EVENTS_DDL.format(database=database, table=table)


async def setup(sink: ClickHouseSink, *, database: str, table: str) -> int:
    await sink.ping()
    print("ClickHouse connection successful")

    await sink.command(f"CREATE DATABASE IF NOT EXISTS {database}")
    print(f"Database '{database}' created or already exists")

    await sink.command(events_ddl(database, table))
    print(f"Table {database}.{table} created or already exists")

    result = await sink.query_json(f"SELECT count() AS count FROM {database}.{table}")
    data = result.get("data") or [{}]
    count = int(data[0].get("count", 0))
    print(f"Current event count: {count}")
    return count


def main() -> int:
    p = argparse.ArgumentParser(description="Create the analytics database and events table")
    p.add_argument("--url", default=settings.clickhouse_url)
    p.add_argument("--user", default=settings.clickhouse_user)
    p.add_argument("--database", default=settings.clickhouse_database)
    p.add_argument("--table", default=settings.clickhouse_table)
    args = p.parse_args()

    async def _run() -> None:
        sink = ClickHouseSink(
            url=args.url,
            username=args.user,
            password=settings.clickhouse_password.get_secret_value(),
        )
        try:
            await setup(sink, database=args.database, table=args.table)
        finally:
            await sink.aclose()

    try:
        asyncio.run(_run())
    except SinkError as e:
        print(f"Setup failed: {e}", file=sys.stderr)
        if e.error_code == "REQUEST_ERROR":
            print(f"Make sure ClickHouse is running on {args.url}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
