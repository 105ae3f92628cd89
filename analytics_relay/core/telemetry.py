from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from sqlalchemy.ext.asyncio import AsyncEngine

from analytics_relay.core.config import settings


_provider: TracerProvider | None = None


def _setup_provider(service_name: str) -> None:
    global _provider
    if _provider is not None:
        return
    resource = Resource.create({"service.name": service_name, "deployment.environment": settings.env})
    provider = TracerProvider(resource=resource)
    processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{settings.otlp_endpoint}/v1/traces"))
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)
    _provider = provider


def setup_telemetry(app) -> None:
    if not settings.otel_enabled:
        return
    _setup_provider(f"{settings.service_name}-api")
    FastAPIInstrumentor.instrument_app(app)
    # The API engine is created lazily, so instrument globally.
    SQLAlchemyInstrumentor().instrument()


def setup_worker_telemetry(engine: AsyncEngine) -> None:
    if not settings.otel_enabled:
        return
    _setup_provider(settings.service_name)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def shutdown_telemetry() -> None:
    if _provider is not None:
        _provider.shutdown()


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)
