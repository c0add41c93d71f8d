"""
Bookbox OpenTelemetry Setup

Traces for the order pipeline:
- order.commit spans around the stock transaction
- fulfillment.handoff spans per paid order
- delivery.attempt spans per worker pass over a job
"""
from __future__ import annotations
from typing import Optional
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor


def setup_otel(
    service_name: str = "bookbox",
    endpoint: Optional[str] = None,
):
    """Initialize OpenTelemetry; spans are exported only with an OTLP endpoint."""
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    otlp_endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint:
        # Exporter ships in the "otlp" extra
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    return trace.get_tracer(service_name)


def get_tracer(name: str):
    """Module tracer; a no-op until setup_otel() installs a provider."""
    return trace.get_tracer(name)
