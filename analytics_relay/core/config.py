from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from analytics_relay.core.errors import ConfigurationError


ENV_PATH = Path(__file__).resolve().parents[2] / ".env"

_ASYNC_DRIVER = "postgresql+asyncpg://"


def to_async_database_url(url: str) -> str:
    # Producers usually hand us a plain libpq URL; the relay talks asyncpg.
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return _ASYNC_DRIVER + url[len(prefix):]
    return url


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=ENV_PATH, env_file_encoding="utf-8", extra="ignore")

    # App
    env: str = "dev"
    service_name: str = "outbox-relay"
    log_level: str = "INFO"

    # Event log store
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PG_CONNECTION_STRING", "DATABASE_URL", "POSTGRES_URL"),
    )

    # Analytics sink
    analytics_sink: Literal["clickhouse", "memory"] = "clickhouse"
    clickhouse_url: str = "http://localhost:8123"
    clickhouse_user: str = "default"
    clickhouse_password: SecretStr = SecretStr("")
    clickhouse_database: str = "analytics"
    clickhouse_table: str = "events"
    clickhouse_timeout_seconds: float = 20.0

    # Relay loop
    outbox_poll_interval_ms: int = Field(default=1000, gt=0)
    outbox_batch_size: int = Field(default=500, gt=0)
    relay_backoff: Literal["fixed", "exponential"] = "fixed"
    relay_backoff_max_seconds: float = Field(default=30.0, gt=0)
    relay_io_timeout_seconds: float = Field(default=30.0, ge=0)  # 0 = no timeout
    relay_claim_leases: bool = False
    relay_claim_ttl_seconds: int = Field(default=300, gt=0)

    # Telemetry
    otel_enabled: bool = True
    otlp_endpoint: str = "http://localhost:4318"  # Jaeger OTLP HTTP

    @field_validator("database_url")
    @classmethod
    def _normalize_database_url(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return to_async_database_url(v.strip())

    @property
    def poll_interval_seconds(self) -> float:
        return self.outbox_poll_interval_ms / 1000

    @property
    def sink_table(self) -> str:
        return f"{self.clickhouse_database}.{self.clickhouse_table}"

    def require_database_url(self) -> str:
        if not self.database_url:
            raise ConfigurationError(
                "Postgres connection string not found; set one of "
                "PG_CONNECTION_STRING, DATABASE_URL or POSTGRES_URL"
            )
        return self.database_url


settings = Settings()
