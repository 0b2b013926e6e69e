from __future__ import annotations

import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from policy_engine.core.config import Settings


logger = logging.getLogger("policy_engine.otel")


def build_tracer_provider(settings: Settings) -> TracerProvider:
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.app_name,
                "service.version": settings.app_version,
            }
        )
    )

    if settings.otel_exporter_otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning(
                "otel.exporter.unavailable",
                extra={"error": "OTLP endpoint configured but the 'otlp' extra is not installed"},
            )
        else:
            exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
            provider.add_span_processor(BatchSpanProcessor(exporter))

    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    return provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    """Install the engine's tracer provider unless tracing is off or an SDK provider is already installed."""

    if not settings.otel_enabled:
        return None

    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider):
        return current

    provider = build_tracer_provider(settings)
    trace.set_tracer_provider(provider)
    return provider


def setup_inmemory_otel(settings: Settings | None = None) -> InMemorySpanExporter:
    settings = (settings or Settings()).model_copy(update={"otel_enabled": True})
    provider = setup_otel(settings)
    assert provider is not None
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str):
    return trace.get_tracer(name)
