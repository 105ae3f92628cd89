"""
Outbox relay: drains `outbox_events` into the analytics sink.

One sequential loop per process:

    CONNECTING -> POLLING <-> (IDLE_SLEEP | PROCESSING -> POLLING)
    any state -> ERROR_BACKOFF -> POLLING

A record counts as delivered only once mark_sent() commits, which always
happens after the sink insert succeeded. A crash in between re-sends the
batch on the next cycle; the sink's replacing engine folds the duplicates.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Awaitable, TypeVar

from analytics_relay.core.config import Settings, settings
from analytics_relay.core.db import make_engine, make_session_factory
from analytics_relay.core.errors import ConfigurationError, StartupError
from analytics_relay.core.ids import gen_worker_id
from analytics_relay.core.telemetry import get_tracer, setup_worker_telemetry, shutdown_telemetry
from analytics_relay.services.outbox import OutboxStore, SqlOutboxStore
from analytics_relay.services.retry import CycleBackoff
from analytics_relay.services.transform import Clock, utcnow, transform_batch
from analytics_relay.sinks.base import AnalyticsSink
from analytics_relay.sinks.registry import build_sink


log = logging.getLogger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")


class RelayState(str, enum.Enum):
    CONNECTING = "connecting"
    POLLING = "polling"
    PROCESSING = "processing"
    IDLE_SLEEP = "idle_sleep"
    ERROR_BACKOFF = "error_backoff"
    STOPPED = "stopped"


@dataclass
class CycleResult:
    fetched: int = 0
    delivered: int = 0
    quarantined: int = 0


@dataclass
class RelayStats:
    cycles: int = 0
    delivered: int = 0
    quarantined: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_error: str | None = None


class OutboxRelay:
    def __init__(
        self,
        store: OutboxStore,
        sink: AnalyticsSink,
        *,
        table: str,
        batch_size: int = 500,
        poll_interval: float = 1.0,
        backoff: CycleBackoff | None = None,
        io_timeout: float | None = None,
        now: Clock = utcnow,
    ):
        self.store = store
        self.sink = sink
        self.table = table
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.backoff = backoff or CycleBackoff(base=poll_interval * 2, cap=poll_interval * 2, strategy="fixed")
        self.io_timeout = io_timeout or None
        self._now = now

        self.state = RelayState.STOPPED
        self.stats = RelayStats()
        self._stop = asyncio.Event()

    @classmethod
    def from_settings(cls, store: OutboxStore, sink: AnalyticsSink, cfg: Settings) -> "OutboxRelay":
        return cls(
            store,
            sink,
            table=cfg.sink_table,
            batch_size=cfg.outbox_batch_size,
            poll_interval=cfg.poll_interval_seconds,
            backoff=CycleBackoff(
                base=cfg.poll_interval_seconds * 2,
                cap=cfg.relay_backoff_max_seconds,
                strategy=cfg.relay_backoff,
            ),
            io_timeout=cfg.relay_io_timeout_seconds,
        )

    def _set_state(self, state: RelayState) -> None:
        if state != self.state:
            log.debug("relay: %s -> %s", self.state.value, state.value)
        self.state = state

    def stop(self) -> None:
        log.info("relay: stop requested")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def _io(self, aw: Awaitable[T]) -> T:
        if self.io_timeout is None:
            return await aw
        return await asyncio.wait_for(aw, timeout=self.io_timeout)

    async def _sleep(self, seconds: float) -> None:
        # Returns early when stop() is called.
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def connect(self) -> None:
        self._set_state(RelayState.CONNECTING)
        try:
            await self._io(self.store.ping())
        except Exception as e:
            raise StartupError(f"cannot reach event log store: {type(e).__name__}: {e}") from e
        log.info("relay: connected to event log store")

    async def run_cycle(self) -> CycleResult:
        """
        Fetch -> transform -> bulk insert -> mark delivered, strictly in order.

        Any exception aborts the cycle before mark_sent(), so nothing in the
        batch is recorded as delivered.
        """
        self._set_state(RelayState.POLLING)
        with tracer.start_as_current_span("outbox_relay.cycle") as span:
            records = await self._io(self.store.fetch_unsent(self.batch_size))
            span.set_attribute("outbox.fetched", len(records))
            if not records:
                return CycleResult()

            self._set_state(RelayState.PROCESSING)
            batch = transform_batch(records, now=self._now)

            quarantined = 0
            if batch.failures:
                quarantined = await self._io(self.store.quarantine(batch.failures))
                for record_id, error in batch.failures:
                    log.warning("relay: quarantined outbox record id=%s: %s", record_id, error)

            delivered = 0
            if batch.rows:
                await self._io(self.sink.insert(self.table, batch.rows))
                delivered = await self._io(self.store.mark_sent(batch.ids))
                if delivered != len(batch.ids):
                    # Claim lost to another relay, or rows already marked.
                    log.warning("relay: marked %d of %d inserted records as sent", delivered, len(batch.ids))

            span.set_attribute("outbox.delivered", delivered)
            span.set_attribute("outbox.quarantined", quarantined)
            log.info("relay: flushed %d events to %s", len(batch.rows), self.table)
            return CycleResult(fetched=len(records), delivered=delivered, quarantined=quarantined)

    async def run(self) -> None:
        """Run until stop(). Only a failed CONNECTING step raises."""
        await self.connect()

        while not self.stopping:
            try:
                result = await self.run_cycle()
            except Exception as e:
                self.stats.failures += 1
                self.stats.consecutive_failures += 1
                self.stats.last_error = f"{type(e).__name__}: {e}"
                # retryable=False (bad credentials, missing table) needs an operator
                log.exception(
                    "relay: cycle failed (consecutive=%d retryable=%s)",
                    self.stats.consecutive_failures, getattr(e, "retryable", True),
                )

                self._set_state(RelayState.ERROR_BACKOFF)
                await self._sleep(self.backoff.next_delay())
                continue

            self.stats.cycles += 1
            self.stats.delivered += result.delivered
            self.stats.quarantined += result.quarantined
            self.stats.consecutive_failures = 0
            self.backoff.reset()

            if result.fetched == 0:
                self._set_state(RelayState.IDLE_SLEEP)
                await self._sleep(self.poll_interval)
            # full or partial batch: poll again immediately to drain backlog

        self._set_state(RelayState.STOPPED)
        log.info(
            "relay: stopped (cycles=%d delivered=%d quarantined=%d failures=%d)",
            self.stats.cycles, self.stats.delivered, self.stats.quarantined, self.stats.failures,
        )


async def _run(cfg: Settings) -> int:
    engine = make_engine(cfg.require_database_url(), pool_size=1, max_overflow=0)
    setup_worker_telemetry(engine)

    worker_id = gen_worker_id() if cfg.relay_claim_leases else None
    store = SqlOutboxStore(make_session_factory(engine), worker_id=worker_id, claim_ttl_seconds=cfg.relay_claim_ttl_seconds)
    sink = build_sink(cfg)
    relay = OutboxRelay.from_settings(store, sink, cfg)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, relay.stop)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    log.info(
        "relay: starting (sink=%s table=%s batch_size=%d poll_interval_ms=%d backoff=%s worker_id=%s)",
        sink.key, cfg.sink_table, cfg.outbox_batch_size, cfg.outbox_poll_interval_ms, cfg.relay_backoff, worker_id,
    )
    try:
        await relay.run()
    finally:
        await sink.aclose()
        await engine.dispose()
        shutdown_telemetry()
    return 0


def main() -> int:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        return asyncio.run(_run(settings))
    except ConfigurationError as e:
        log.error("relay: configuration error: %s", e)
        return 1
    except StartupError as e:
        log.error("relay: startup failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
