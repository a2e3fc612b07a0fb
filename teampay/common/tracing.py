"""OpenTelemetry wiring for the gateway and spans around processor calls."""

from contextlib import contextmanager

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.trace import Status, StatusCode


tracer = trace.get_tracer("teampay")


def setup_tracing(service_name: str, endpoint: str, environment: str = "sandbox") -> None:
    """Register a tracer provider exporting over OTLP/HTTP."""

    resource = Resource.create(
        {"service.name": service_name, "deployment.environment": environment}
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app, excluded_urls="/health,/metrics")


@contextmanager
def processor_span(operation: str, **attributes):
    """Span for one processor operation; marks the span failed if the block raises."""

    with tracer.start_as_current_span(f"square.{operation}") as span:
        for name, value in attributes.items():
            if value is not None:
                span.set_attribute(f"payment.{name}", value)
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise
