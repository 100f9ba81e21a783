"""OpenTelemetry wiring for the points API."""

from __future__ import annotations

from typing import Dict

from fastapi import FastAPI
from loguru import logger
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

_PROVIDER: TracerProvider | None = None


def parse_otlp_headers(raw: str | None) -> Dict[str, str] | None:
    """Parse ``key=value,key2=value2`` into a header mapping."""

    if not raw:
        return None
    headers: Dict[str, str] = {}
    for pair in raw.split(","):
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers or None


def _build_exporter(endpoint: str | None, headers: str | None) -> SpanExporter:
    if endpoint:
        return OTLPSpanExporter(endpoint=endpoint, headers=parse_otlp_headers(headers))
    return ConsoleSpanExporter()


def configure_tracing(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str,
    environment: str,
    endpoint: str | None = None,
    headers: str | None = None,
) -> None:
    """Install a tracer provider once per process and instrument ``app``."""

    global _PROVIDER

    if _PROVIDER is None:
        resource = Resource.create(
            {
                SERVICE_NAME: service_name,
                SERVICE_VERSION: service_version,
                DEPLOYMENT_ENVIRONMENT: environment,
            }
        )
        _PROVIDER = TracerProvider(resource=resource)
        _PROVIDER.add_span_processor(BatchSpanProcessor(_build_exporter(endpoint, headers)))
        trace.set_tracer_provider(_PROVIDER)
        LoggingInstrumentor().instrument(set_logging_format=False)
        logger.info("Tracing configured", service=service_name, exporter="otlp" if endpoint else "console")

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_PROVIDER)


__all__ = ["configure_tracing", "parse_otlp_headers"]
