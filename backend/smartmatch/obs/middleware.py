"""Request-id binding, HTTP metrics and access logs."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from smartmatch.obs import logging as obs_logging
from smartmatch.obs import metrics
from smartmatch.settings import settings

try:  # pragma: no cover - otel optional
	from opentelemetry import trace
except ImportError:  # pragma: no cover
	trace = None  # type: ignore

REQUEST_ID_HEADER = "X-Request-Id"
_MAX_REQUEST_ID_LENGTH = 128


def _request_id(request: Request) -> str:
	supplied = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
	if supplied and len(supplied) <= _MAX_REQUEST_ID_LENGTH:
		return supplied
	return str(uuid4())


def _route_template(request: Request) -> str:
	route = request.scope.get("route")
	return getattr(route, "path", None) or request.url.path


def _traceparent() -> str | None:
	if trace is None:
		return None
	context = trace.get_current_span().get_span_context()
	if not context.is_valid:
		return None
	return f"00-{context.trace_id:032x}-{context.span_id:016x}-01"


class ObservabilityMiddleware(BaseHTTPMiddleware):
	"""Always binds a request id; with observability on, also records latency and an access log."""

	def __init__(self, app, *, enabled: bool = True) -> None:
		super().__init__(app)
		self._enabled = enabled
		self._logger = obs_logging.get_logger("smartmatch.http")

	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		request_id = _request_id(request)
		request.state.request_id = request_id
		if not (self._enabled and settings.obs_enabled):
			tokens = obs_logging.bind_context(request_id=request_id)
			try:
				response = await call_next(request)
			finally:
				obs_logging.reset_context(tokens)
			response.headers.setdefault(REQUEST_ID_HEADER, request_id)
			return response

		client = request.client
		tokens = obs_logging.bind_context(
			request_id=request_id,
			route=_route_template(request),
			client_ip=client.host if client else None,
		)
		start = time.perf_counter()
		status_code = 500
		try:
			response = await call_next(request)
			status_code = response.status_code
		except Exception:
			self._logger.exception("http_request_error", extra={"method": request.method, "path": request.url.path})
			raise
		finally:
			elapsed = time.perf_counter() - start
			# Route templates resolve only after routing, so read it again here.
			metrics.observe_request(_route_template(request), request.method, status_code, elapsed)
			self._logger.info(
				"http_request",
				extra={"status": status_code, "method": request.method, "latency_ms": round(elapsed * 1000, 3)},
			)
			obs_logging.reset_context(tokens)

		response.headers.setdefault(REQUEST_ID_HEADER, request_id)
		traceparent = _traceparent()
		if traceparent:
			response.headers.setdefault("traceparent", traceparent)
		return response


def install(app, *, enabled: bool = True) -> None:
	app.add_middleware(ObservabilityMiddleware, enabled=enabled)
