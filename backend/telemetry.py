# telemetry.py — Tracing for agent runs and presence fan-out
"""
Spans are opened through ``tracer`` everywhere in the service. Until
``setup_telemetry`` installs an SDK provider, the OpenTelemetry API hands
out non-recording spans, so instrumented code pays almost nothing.

``setup_telemetry`` is called from the app lifespan. It installs a
provider only when OTEL_EXPORTER_OTLP_ENDPOINT is set and the
``telemetry`` extra (SDK, OTLP exporter, instrumentations) is installed.
"""
import os
import logging

from opentelemetry import trace

logger = logging.getLogger("ralph-multiplayer.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "ralph-multiplayer-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")

# Proxy tracer: binds to whichever provider is installed later
tracer = trace.get_tracer("ralph-multiplayer", SERVICE_VERSION)


def _instrument(app, provider) -> list:
    """Auto-instrument FastAPI and the SQLAlchemy engine when available"""
    instrumented = []
    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(
                app, excluded_urls="health,party/stats", tracer_provider=provider,
            )
            instrumented.append("fastapi")
        except ImportError:
            logger.warning("opentelemetry-instrumentation-fastapi not installed")

    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        from database import engine
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
        instrumented.append("sqlalchemy")
    except ImportError:
        logger.warning("opentelemetry-instrumentation-sqlalchemy not installed")
    return instrumented


def setup_telemetry(app=None, exporter=None):
    """Install a tracer provider exporting to the OTLP collector.

    ``exporter`` replaces the OTLP exporter (tests pass an in-memory one).
    Returns the provider, or None when tracing stays disabled.
    """
    if not OTLP_ENDPOINT:
        logger.info("Tracing disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource
    except ImportError:
        logger.warning("OTEL_EXPORTER_OTLP_ENDPOINT set but opentelemetry-sdk is not installed")
        return None

    if exporter is None:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning("opentelemetry-exporter-otlp-proto-grpc not installed")
            return None
        exporter = OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)

    provider = TracerProvider(resource=Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    }))
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    instrumented = _instrument(app, provider)
    logger.info(f"Tracing to {OTLP_ENDPOINT} ({', '.join(instrumented) or 'manual spans only'})")
    return provider
