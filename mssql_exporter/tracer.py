from contextlib import asynccontextmanager

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

_TRACER_NAME = "mssql_exporter"


def init_tracing(enabled: bool) -> None:
    """Install a console-exporting tracer provider when tracing is enabled.

    Left disabled, the OpenTelemetry API hands out its no-op tracer and spans
    cost nothing.
    """
    if not enabled:
        return
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    provider = TracerProvider()
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def get_tracer():
    return trace.get_tracer(_TRACER_NAME)


@asynccontextmanager
async def start_span_async(name: str, **attributes):
    with get_tracer().start_as_current_span(name, attributes=attributes or None) as span:
        yield span


def mark_failed(span, exc: BaseException) -> None:
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc)))
