import pytest

import worker.relay as relay_module
from analytics_relay.core.config import Settings, to_async_database_url
from analytics_relay.core.errors import ConfigurationError


@pytest.fixture
def no_db_env(monkeypatch):
    for name in ("PG_CONNECTION_STRING", "DATABASE_URL", "POSTGRES_URL"):
        monkeypatch.delenv(name, raising=False)


def test_plain_postgres_urls_use_asyncpg():
    assert to_async_database_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
    assert to_async_database_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
    assert to_async_database_url("postgresql+asyncpg://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"


def test_connection_string_env_aliases(no_db_env, monkeypatch):
    monkeypatch.setenv("POSTGRES_URL", "postgresql://u:p@h/db")
    cfg = Settings(_env_file=None)
    assert cfg.require_database_url() == "postgresql+asyncpg://u:p@h/db"

    monkeypatch.setenv("PG_CONNECTION_STRING", "postgresql://first@h/db")
    assert Settings(_env_file=None).database_url == "postgresql+asyncpg://first@h/db"


def test_relay_defaults(no_db_env):
    cfg = Settings(_env_file=None)
    assert cfg.outbox_batch_size == 500
    assert cfg.poll_interval_seconds == 1.0
    assert cfg.sink_table == "analytics.events"
    assert cfg.relay_backoff == "fixed"


def test_missing_connection_string_is_configuration_error(no_db_env):
    with pytest.raises(ConfigurationError):
        Settings(_env_file=None).require_database_url()


def test_worker_exits_1_without_connection_string(no_db_env, monkeypatch):
    monkeypatch.setattr(relay_module, "settings", Settings(_env_file=None))
    assert relay_module.main() == 1


def test_default_backoff_is_constant_twice_poll_interval(no_db_env, monkeypatch):
    monkeypatch.delenv("RELAY_BACKOFF", raising=False)
    monkeypatch.setenv("OUTBOX_POLL_INTERVAL_MS", "250")
    relay = relay_module.OutboxRelay.from_settings(None, None, Settings(_env_file=None))
    assert [relay.backoff.next_delay() for _ in range(4)] == [0.5, 0.5, 0.5, 0.5]
