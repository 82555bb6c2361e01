"""OpenTelemetry configuration for the AI Mediator.

Tracing is enabled only when OTEL_EXPORTER_OTLP_ENDPOINT is configured,
otherwise every helper here degrades to a no-op tracer.
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)

# Environment configuration
OTEL_EXPORTER_OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
OTEL_SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "ai-mediator")

# Module-level state
_tracer = None
_telemetry_enabled = False


def is_telemetry_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    return _telemetry_enabled


def setup_telemetry() -> bool:
    """Initialize OpenTelemetry tracing.

    Configures the tracer provider with an OTLP exporter if
    OTEL_EXPORTER_OTLP_ENDPOINT is set. Otherwise telemetry stays disabled.

    Returns:
        True if telemetry was successfully configured, False otherwise.
    """
    global _tracer, _telemetry_enabled

    if not OTEL_EXPORTER_OTLP_ENDPOINT:
        logger.info(
            "OpenTelemetry disabled: OTEL_EXPORTER_OTLP_ENDPOINT not configured"
        )
        return False

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource.create({"service.name": OTEL_SERVICE_NAME})

        provider = TracerProvider(resource=resource)
        otlp_exporter = OTLPSpanExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        trace.set_tracer_provider(provider)

        _tracer = trace.get_tracer(__name__)
        _telemetry_enabled = True

        logger.info(
            "OpenTelemetry initialized. Endpoint: %s, Service: %s",
            OTEL_EXPORTER_OTLP_ENDPOINT,
            OTEL_SERVICE_NAME,
        )
        return True

    except ImportError as e:
        logger.warning("OpenTelemetry packages not available: %s", e)
        return False
    except Exception as e:
        logger.warning("Failed to initialize OpenTelemetry: %s", e)
        return False


def get_tracer() -> Any:
    """Get the configured tracer, or a no-op tracer when disabled."""
    if _tracer is not None:
        return _tracer
    return _NoOpTracer()


class _NoOpSpan:
    """Span stand-in used while tracing is disabled.

    Attributes and status are only set while tracing is on, so this only
    needs the context manager protocol.
    """

    def __enter__(self) -> "_NoOpSpan":
        return self

    def __exit__(self, *args: Any) -> None:
        pass


class _NoOpTracer:
    """Tracer stand-in used while tracing is disabled."""

    def start_as_current_span(self, name: str, **kwargs: Any) -> _NoOpSpan:
        return _NoOpSpan()


def record_error(span: Any, error: BaseException) -> None:
    """Attach an exception and an ERROR status to ``span`` when tracing is on."""
    if not _telemetry_enabled:
        return
    span.record_exception(error)
    from opentelemetry.trace import Status, StatusCode

    span.set_status(Status(StatusCode.ERROR, str(error)))


def instrument_fastapi(app: Any) -> None:
    """Instrument FastAPI application with OpenTelemetry.

    Args:
        app: The FastAPI application instance.
    """
    if not _telemetry_enabled:
        logger.debug("Skipping FastAPI instrumentation: telemetry disabled")
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI instrumentation enabled")
    except ImportError:
        logger.warning("FastAPI instrumentation package not available")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


def instrument_httpx() -> None:
    """Instrument httpx client with OpenTelemetry."""
    if not _telemetry_enabled:
        logger.debug("Skipping httpx instrumentation: telemetry disabled")
        return

    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()
        logger.info("httpx instrumentation enabled")
    except ImportError:
        logger.warning("httpx instrumentation package not available")
    except Exception as e:
        logger.warning("Failed to instrument httpx: %s", e)


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Any]:
    """Create a traced span as a context manager.

    Args:
        name: The name of the span.
        attributes: Optional attributes to set on the span.

    Yields:
        The span object (real or no-op).
    """
    if _telemetry_enabled:
        with get_tracer().start_as_current_span(name) as span:
            if attributes:
                span.set_attributes(attributes)
            yield span
    else:
        yield _NoOpSpan()
