"""OpenTelemetry setup and span helpers for sync runs."""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)

TRACER_NAME = "questsync"

# The global provider can only be set once per process.
_tracer_provider_installed: bool = False


def _install_otlp_provider(service_name: str, endpoint: str) -> None:
    # The gRPC exporter is an optional extra; only import it when exporting.
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)


def init_telemetry(service_name: str = TRACER_NAME) -> trace.Tracer:
    """Export spans over OTLP when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set.

    Without the variable the API's no-op provider stays in place. Repeated
    calls reuse whatever provider the first call installed.
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.debug("No OTLP endpoint configured; spans are not exported")
    elif not _tracer_provider_installed:
        _install_otlp_provider(service_name, endpoint)
        _tracer_provider_installed = True
        logger.info("Exporting spans to %s as %s", endpoint, service_name)
    return trace.get_tracer(service_name)


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    return trace.get_tracer(name)


def record_span_error(span: trace.Span, exc: BaseException) -> None:
    """Mark *span* failed and attach *exc* as an exception event."""
    span.set_status(Status(StatusCode.ERROR, str(exc)))
    span.record_exception(exc)
