from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

import httpx

from analytics_relay.core.errors import SinkError
from analytics_relay.schemas.events import AnalyticsRow


log = logging.getLogger(__name__)

RETRYABLE_STATUS = (408, 429, 500, 502, 503, 504)


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


def encode_json_each_row(rows: Sequence[AnalyticsRow]) -> bytes:
    lines = [json.dumps(r.model_dump(), separators=(",", ":"), ensure_ascii=False) for r in rows]
    return ("\n".join(lines) + "\n").encode("utf-8")


class ClickHouseSink:
    """
    ClickHouse over its HTTP interface.

    - Uses one AsyncClient instance for the life of the relay.
    - Does NOT retry; the relay loop owns backoff.
    - Every failure surfaces as SinkError with a retryable classification.
    """

    key = "clickhouse"

    def __init__(
        self,
        *,
        url: str,
        username: str = "default",
        password: str = "",
        timeout_seconds: float = 20.0,
        max_error_body_chars: int = 2_000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url.rstrip("/") + "/"
        self._max_body = max_error_body_chars
        headers = {"X-ClickHouse-User": username}
        if password:
            headers["X-ClickHouse-Key"] = password
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, *, params: Mapping[str, str], content: bytes) -> httpx.Response:
        try:
            resp = await self._client.post(self._url, params=dict(params), content=content)
        except httpx.TimeoutException as e:
            raise SinkError(f"clickhouse timeout: {e}", error_code="TIMEOUT", retryable=True) from e
        except httpx.RequestError as e:
            # DNS errors, connection refused, TLS, etc.
            raise SinkError(f"clickhouse request error: {e}", error_code="REQUEST_ERROR", retryable=True) from e

        if 200 <= resp.status_code < 300:
            return resp

        retryable = resp.status_code in RETRYABLE_STATUS
        # 401/403/404 mean bad credentials or a missing table; retrying will not help
        if resp.status_code in (401, 403, 404):
            retryable = False

        raise SinkError(
            f"clickhouse HTTP {resp.status_code}: {_cap_text(resp.text.strip(), max_chars=self._max_body)}",
            status_code=resp.status_code,
            error_code=resp.headers.get("x-clickhouse-exception-code") or f"HTTP_{resp.status_code}",
            retryable=retryable,
        )

    async def insert(self, table: str, rows: Sequence[AnalyticsRow]) -> None:
        if not rows:
            return
        await self._post(
            params={"query": f"INSERT INTO {table} FORMAT JSONEachRow"},
            content=encode_json_each_row(rows),
        )
        log.debug("clickhouse: inserted %d rows into %s", len(rows), table)

    async def command(self, sql: str) -> str:
        resp = await self._post(params={}, content=sql.encode("utf-8"))
        return resp.text

    async def query_json(self, sql: str) -> dict[str, Any]:
        body = await self.command(f"{sql} FORMAT JSON")
        return json.loads(body) if body else {}

    async def ping(self) -> None:
        await self.command("SELECT 1")
