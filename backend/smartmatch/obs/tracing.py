"""OpenTelemetry wiring for the match API.

The exporter stack is an optional extra. Without it, or with tracing switched
off, `span()` yields None and the ranking path runs untraced.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Iterator, Optional

from fastapi import FastAPI

from smartmatch.settings import settings

try:  # pragma: no cover - optional extra
	from opentelemetry import trace
	from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
	from opentelemetry.instrumentation.asyncpg import AsyncPGInstrumentor
	from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
	from opentelemetry.instrumentation.redis import RedisInstrumentor
	from opentelemetry.sdk.resources import Resource
	from opentelemetry.sdk.trace import TracerProvider
	from opentelemetry.sdk.trace.export import BatchSpanProcessor
	from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
except ImportError:  # pragma: no cover
	trace = None  # type: ignore[assignment]

LOGGER = logging.getLogger(__name__)
TRACER_NAME = "smartmatch.matching"

_provider: Optional[Any] = None


def _sample_ratio() -> float:
	return min(1.0, max(0.0, float(settings.obs_trace_sample_ratio)))


def init_tracing(app: FastAPI) -> Optional[Any]:
	"""Install the OTLP exporter and instrument FastAPI, asyncpg and Redis once."""
	global _provider
	if _provider is not None:
		return _provider
	if not settings.obs_tracing_enabled:
		LOGGER.info("tracing_disabled")
		return None
	if trace is None:
		LOGGER.warning("tracing_unavailable", extra={"reason": "opentelemetry_missing"})
		return None
	if not settings.otel_exporter_otlp_endpoint:
		LOGGER.warning("tracing_unavailable", extra={"reason": "endpoint_missing"})
		return None

	resource = Resource.create(
		{
			"service.name": settings.service_name,
			"service.version": settings.git_commit,
			"deployment.environment": settings.environment,
		}
	)
	provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(_sample_ratio())))
	provider.add_span_processor(
		BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True))
	)
	trace.set_tracer_provider(provider)
	FastAPIInstrumentor.instrument_app(app, excluded_urls="health/live,health/ready,metrics")
	AsyncPGInstrumentor().instrument()
	RedisInstrumentor().instrument()

	_provider = provider
	LOGGER.info(
		"tracing_initialised",
		extra={"endpoint": settings.otel_exporter_otlp_endpoint, "sample_ratio": _sample_ratio()},
	)
	return provider


@contextlib.contextmanager
def span(name: str, **attributes: Any) -> Iterator[Optional[Any]]:
	"""Open a child span on the current trace; attributes with None values are dropped."""
	if trace is None or _provider is None:
		yield None
		return
	tracer = trace.get_tracer(TRACER_NAME)
	with tracer.start_as_current_span(name) as current:
		for key, value in attributes.items():
			if value is not None:
				current.set_attribute(f"match.{key}", value)
		yield current


def shutdown_tracing() -> None:
	global _provider
	if _provider is None:
		return
	provider, _provider = _provider, None
	provider.shutdown()
