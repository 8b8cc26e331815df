"""OpenTelemetry tracing configuration."""

from __future__ import annotations

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
)
from opentelemetry.semconv.resource import ResourceAttributes

from bluegreen.config import Environment, ObservabilitySettings


logger = structlog.get_logger(__name__)


def setup_tracing(
    settings: ObservabilitySettings,
    environment: Environment = Environment.PRODUCTION,
) -> bool:
    """Install a tracer provider. Returns False when tracing is disabled."""
    if not settings.tracing_enabled:
        return False

    resource = Resource.create({
        ResourceAttributes.SERVICE_NAME: settings.service_name,
        ResourceAttributes.SERVICE_VERSION: "1.0.0",
    })
    provider = TracerProvider(resource=resource)

    if environment == Environment.DEVELOPMENT:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint))
    )

    trace.set_tracer_provider(provider)
    logger.info(
        "tracing_configured",
        service_name=settings.service_name,
        endpoint=settings.otlp_endpoint,
    )
    return True


def get_tracer(name: str = "bluegreen") -> trace.Tracer:
    """Get a tracer instance."""
    return trace.get_tracer(name)
