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
from starlette.datastructures import Headers

from growthcrm.core.config import Settings, get_settings
from growthcrm.tenancy.resolver import origin_hint_from_headers


_provider: TracerProvider | None = None
_exporters_installed = False


def _provider_for(service_name: str, settings: Settings) -> TracerProvider:
    """The process has one provider; the first caller names the service."""

    global _provider
    if _provider is None:
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.app_env,
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings | None = None) -> TracerProvider | None:
    global _exporters_installed

    resolved = settings or get_settings()
    if not resolved.otel_enabled:
        return None

    provider = _provider_for(resolved.otel_service_name, resolved)
    if _exporters_installed:
        return provider

    if resolved.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=resolved.otel_exporter_otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    if resolved.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_installed = True
    return provider


def setup_inmemory_otel(service_name: str = "growthcrm-api") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _provider_for(service_name, get_settings()).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_fastapi_server_request_hook():
    """Tag server spans with the correlation id and the tenant the request asked for."""

    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        headers = Headers(scope=scope)
        correlation_id = headers.get("x-correlation-id")
        if correlation_id:
            span.set_attribute("correlation_id", correlation_id)
        tenant_hint = origin_hint_from_headers(headers)
        if tenant_hint:
            span.set_attribute("tenant.hint", tenant_hint)

    return server_request_hook
