from analytics_relay.models.base import Base  # noqa: F401

from analytics_relay.models.outbox import OutboxEvent  # noqa: F401
