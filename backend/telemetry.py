# telemetry.py — OpenTelemetry tracing for TaskLedger
"""
Exports spans to an OTLP collector when OTEL_EXPORTER_OTLP_ENDPOINT is set.
Without an endpoint, or without the optional ``otel`` extra installed, every
helper here is a no-op so the API runs unchanged in development and tests.
"""
import os
import logging
from contextlib import contextmanager

logger = logging.getLogger("taskledger.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "taskledger-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")

_provider = None


def setup_telemetry(app=None):
    """Register a tracer provider and instrument FastAPI + SQLAlchemy."""
    global _provider
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.info("OpenTelemetry SDK not installed; tracing disabled")
        return None

    resource = Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)

    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)
            logger.info("FastAPI instrumented with OpenTelemetry")
        except ImportError:
            logger.warning("opentelemetry-instrumentation-fastapi not installed")

    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        from database import engine
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
        logger.info("SQLAlchemy instrumented with OpenTelemetry")
    except ImportError:
        logger.warning("opentelemetry-instrumentation-sqlalchemy not installed")

    logger.info(f"OpenTelemetry initialised -> {OTLP_ENDPOINT}")
    _provider = provider
    return provider


def shutdown_telemetry():
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None


@contextmanager
def traced(name: str, **attributes):
    """Span around a block when tracing is active, otherwise nothing."""
    if _provider is None:
        yield None
        return
    from opentelemetry import trace
    tracer = trace.get_tracer("taskledger", SERVICE_VERSION)
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span
