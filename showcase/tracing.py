from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from showcase.config import Settings, settings

_tracer_provider: TracerProvider | None = None


def _build_tracer_provider(source: Settings) -> TracerProvider:
    global _tracer_provider
    if _tracer_provider is None:
        resource = Resource.create({SERVICE_NAME: source.tracing_service_name})
        provider = TracerProvider(resource=resource)
        exporter = OTLPSpanExporter(endpoint=source.otlp_endpoint, insecure=source.otlp_insecure)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        _tracer_provider = provider
    return _tracer_provider


def setup_tracing(app=None, source: Settings = settings) -> None:
    """Export spans over OTLP when tracing is enabled.

    With an app the FastAPI routes are instrumented too; without one only the
    global provider is installed, which is what the upload CLI needs for the
    multipart coordinator spans.
    """
    if not source.tracing_enabled:
        return
    provider = _build_tracer_provider(source)
    if app is not None and not getattr(app.state, "tracing_instrumented", False):
        FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
        app.state.tracing_instrumented = True


def shutdown_tracing() -> None:
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
