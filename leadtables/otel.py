from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Span, Status, StatusCode

from leadtables.context import CORRELATION_HEADER, accept_correlation_id
from leadtables.core.config import Settings


_provider: TracerProvider | None = None
_exporters_attached = False


def _tracer_provider(service_name: str, service_version: str = "0.1.0") -> TracerProvider:
    global _provider

    if _provider is None:
        resource = Resource.create({"service.name": service_name, "service.version": service_version})
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    """Install the tracer provider and the exporters named in settings; no-op when tracing is off."""
    global _exporters_attached

    if not settings.otel_enabled:
        return None

    provider = _tracer_provider(settings.otel_service_name, settings.app_version)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint))
        )
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_attached = True
    return provider


def setup_inmemory_otel(service_name: str = "leadtables-api") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def mark_span_failed(span: Span, code: str, message: str) -> None:
    span.set_attribute("error_code", code)
    span.set_status(Status(StatusCode.ERROR, message))


def get_fastapi_server_request_hook():
    def server_request_hook(span: Span | None, scope: dict[str, Any]) -> None:
        if span is None or not span.is_recording():
            return
        for name, value in scope.get("headers", []):
            if name.decode("latin-1") == CORRELATION_HEADER:
                raw = value.decode("latin-1")
                if accept_correlation_id(raw) == raw:
                    span.set_attribute("correlation_id", raw)
                return

    return server_request_hook
