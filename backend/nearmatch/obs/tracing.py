"""Distributed tracing setup (OpenTelemetry) for the backend."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.asyncpg import AsyncPGInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from nearmatch.settings import settings

LOGGER = logging.getLogger(__name__)
_instrumented = False


def get_tracer() -> trace.Tracer:
	return trace.get_tracer(settings.service_name)


def init_tracing(app: FastAPI) -> Optional[TracerProvider]:
	"""Initialise OpenTelemetry tracing when enabled and an OTLP endpoint is set."""
	global _instrumented
	if not settings.obs_tracing_enabled:
		LOGGER.debug("Tracing disabled via configuration")
		return None
	if settings.otel_exporter_otlp_endpoint is None:
		LOGGER.warning("Tracing requested but OTLP endpoint not configured")
		return None
	if _instrumented:
		FastAPIInstrumentor.instrument_app(app)
		return trace.get_tracer_provider()  # type: ignore[return-value]

	resource = Resource.create(
		{
			"service.name": settings.service_name,
			"service.version": settings.git_commit,
			"deployment.environment": settings.environment,
		}
	)
	provider = TracerProvider(resource=resource)
	exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
	provider.add_span_processor(BatchSpanProcessor(exporter))
	trace.set_tracer_provider(provider)

	FastAPIInstrumentor.instrument_app(app)
	AsyncPGInstrumentor().instrument()
	RedisInstrumentor().instrument()

	_instrumented = True
	LOGGER.info("OpenTelemetry tracing initialised", extra={"endpoint": settings.otel_exporter_otlp_endpoint})
	return provider


def shutdown_tracing() -> None:
	provider = trace.get_tracer_provider()
	if hasattr(provider, "shutdown"):
		provider.shutdown()  # type: ignore[call-arg]


def current_trace_ids() -> Optional[tuple[str, str]]:
	"""Return (trace_id, span_id) hex strings for the active span, if it is sampled."""
	context = trace.get_current_span().get_span_context()
	if not context or not context.is_valid:
		return None
	return f"{context.trace_id:032x}", f"{context.span_id:016x}"
