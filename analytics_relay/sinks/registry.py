from analytics_relay.core.config import Settings
from analytics_relay.sinks.base import AnalyticsSink
from analytics_relay.sinks.clickhouse import ClickHouseSink
from analytics_relay.sinks.memory import InMemorySink


def build_sink(cfg: Settings) -> AnalyticsSink:
    if cfg.analytics_sink == "clickhouse":
        return ClickHouseSink(
            url=cfg.clickhouse_url,
            username=cfg.clickhouse_user,
            password=cfg.clickhouse_password.get_secret_value(),
            timeout_seconds=cfg.clickhouse_timeout_seconds,
        )
    if cfg.analytics_sink == "memory":
        return InMemorySink()
    raise KeyError(f"Unknown analytics sink: {cfg.analytics_sink}")
