"""OpenTelemetry tracing for processing jobs.

Each orchestrator stage runs inside its own span so a slow or failing stage
can be located from the trace of a single video.
"""

import logging
from typing import Optional
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.trace import Status, StatusCode, Span

logger = logging.getLogger(__name__)

# Global tracer instance
_tracer: Optional[trace.Tracer] = None
_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    service_version: str,
    environment: str = "development",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False,
) -> trace.Tracer:
    """Set up OpenTelemetry tracing.

    Args:
        service_name: Name of the service
        service_version: Version of the service
        environment: Deployment environment
        otlp_endpoint: OTLP exporter endpoint (optional)
        enable_console_export: Enable console span export for debugging

    Returns:
        Configured tracer instance
    """
    global _tracer, _provider

    resource = Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
        "deployment.environment": environment,
    })

    _provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            _provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
            logger.info(f"OTLP tracing enabled, exporting to {otlp_endpoint}")
        except ImportError:
            logger.warning("OTLP exporter not available, skipping")

    if enable_console_export:
        _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console span export enabled")

    trace.set_tracer_provider(_provider)

    _tracer = trace.get_tracer(service_name, service_version)

    logger.info(f"Tracing initialized for {service_name} v{service_version}")

    return _tracer


def get_tracer() -> trace.Tracer:
    """Get the configured tracer, or a no-op tracer if not initialized."""
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


def get_current_span() -> Optional[Span]:
    """Get the current active span."""
    return trace.get_current_span()


def get_trace_id() -> Optional[str]:
    """Get the current trace ID as a hex string."""
    span = get_current_span()
    if span and span.get_span_context().is_valid:
        return format(span.get_span_context().trace_id, "032x")
    return None


def get_span_id() -> Optional[str]:
    """Get the current span ID as a hex string."""
    span = get_current_span()
    if span and span.get_span_context().is_valid:
        return format(span.get_span_context().span_id, "016x")
    return None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[dict] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
):
    """Create a new span as a context manager.

    Args:
        name: Span name
        attributes: Optional span attributes
        kind: Span kind

    Yields:
        The created span
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name,
        kind=kind,
        attributes=attributes or {},
    ) as span:
        yield span


def set_span_status(status_code: StatusCode, description: str = "") -> None:
    """Set the status of the current span."""
    span = get_current_span()
    if span:
        span.set_status(Status(status_code, description))


def shutdown_tracing() -> None:
    """Shutdown the tracer provider and flush pending spans."""
    global _provider
    if _provider:
        _provider.shutdown()
        logger.info("Tracing shutdown complete")
