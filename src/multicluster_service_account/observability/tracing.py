"""
OpenTelemetry distributed tracing for the multicluster service account operator.

This module provides:
- Tracer provider setup with OTLP export and ratio sampling
- Span helpers for semantic operations (reconcile, remote connection, admission)

Usage:
    from multicluster_service_account.observability.tracing import (
        setup_tracing,
        get_tracer,
    )

    setup_tracing(enabled=True)
    tracer = get_tracer(__name__)
    with tracer.start_as_current_span("my_operation"):
        ...

When tracing is disabled the OpenTelemetry API hands out no-op tracers, so
callers never need to check whether tracing is on.
"""

import contextlib
import logging
from collections.abc import Iterator

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | None = None
_initialized: bool = False


def setup_tracing(
    enabled: bool = False,
    endpoint: str = "http://localhost:4317",
    service_name: str = "multicluster-service-account",
    sample_rate: float = 1.0,
    insecure: bool = True,
) -> TracerProvider | None:
    """
    Initialize OpenTelemetry tracing for the operator.

    Args:
        enabled: Enable tracing (if False, returns None and does nothing)
        endpoint: OTLP collector endpoint (gRPC)
        service_name: Service name for traces
        sample_rate: Sampling rate (0.0-1.0, 1.0 = 100% of traces)
        insecure: Use insecure connection (no TLS)

    Returns:
        TracerProvider if enabled, None otherwise
    """
    global _tracer_provider, _initialized

    if _initialized:
        return _tracer_provider

    _initialized = True

    if not enabled:
        logger.info("OpenTelemetry tracing is disabled")
        return None

    # The exporter pulls in grpc, only import it when tracing is wanted
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
        OTLPSpanExporter,
    )

    logger.info(
        f"Initializing OpenTelemetry tracing: endpoint={endpoint}, "
        f"service={service_name}, sample_rate={sample_rate}"
    )

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "multicluster-service-account",
            "deployment.environment": "kubernetes",
        }
    )
    _tracer_provider = TracerProvider(
        resource=resource, sampler=ParentBased(root=TraceIdRatioBased(sample_rate))
    )
    _tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=insecure))
    )
    trace.set_tracer_provider(_tracer_provider)

    return _tracer_provider


def shutdown_tracing() -> None:
    """Flush pending spans and shut the provider down."""
    global _tracer_provider, _initialized

    if _tracer_provider is not None:
        try:
            _tracer_provider.shutdown()
        except Exception as e:
            logger.warning(f"Error shutting down tracing: {e}")
    _tracer_provider = None
    _initialized = False


def get_tracer(name: str = __name__) -> Tracer:
    return trace.get_tracer(name)


@contextlib.contextmanager
def traced_operation(
    tracer: Tracer, span_name: str, /, **attributes: str | int | bool
) -> Iterator[Span]:
    """
    Run a block inside a span, recording exceptions on it.

    Attribute names are prefixed with ``msa.``, so ``name`` and
    ``namespace`` are valid attribute keywords.
    """
    with tracer.start_as_current_span(
        span_name, record_exception=False, set_status_on_exception=False
    ) as span:
        for key, value in attributes.items():
            span.set_attribute(f"msa.{key}", value)
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
