"""JSON logging with per-request context.

The middleware binds the request id and route; the match router adds the
authenticated requester and the ranking context once the body is parsed.
Every record emitted while those are bound carries them.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from smartmatch.settings import settings

try:  # pragma: no cover - otel optional
	from opentelemetry import trace as otel_trace
except ImportError:  # pragma: no cover
	otel_trace = None  # type: ignore

_LOGGER_NAME = "smartmatch"

# bound name -> (context var, output key)
_CONTEXT_FIELDS: Dict[str, tuple[ContextVar[Optional[str]], str]] = {
	"request_id": (ContextVar("obs_request_id", default=None), "request_id"),
	"route": (ContextVar("obs_route", default=None), "route"),
	"user_id": (ContextVar("obs_user_id", default=None), "user_id"),
	"client_ip": (ContextVar("obs_client_ip", default=None), "ip"),
	"match_context": (ContextVar("obs_match_context", default=None), "match_context"),
}

_SENSITIVE_KEYWORDS = ("token", "secret", "authorization", "password", "email", "body", "embedding")
_MAX_STRING_LENGTH = 256
_MAX_COLLECTION_ITEMS = 10

_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "taskName"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind the non-None fields for the current task; returns tokens for `reset_context`."""
	tokens: Dict[str, Token] = {}
	for name, value in fields.items():
		if value is None:
			continue
		var, _ = _CONTEXT_FIELDS[name]
		tokens[name] = var.set(value)
	return tokens


def reset_context(tokens: Dict[str, Token]) -> None:
	for name, token in tokens.items():
		_CONTEXT_FIELDS[name][0].reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT_FIELDS["request_id"][0].get()


def _sanitize_value(value: Any) -> Any:
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING_LENGTH else f"{value[:_MAX_STRING_LENGTH]}…"
	if isinstance(value, dict):
		result: Dict[str, Any] = {}
		for idx, (key, nested) in enumerate(value.items()):
			if idx >= _MAX_COLLECTION_ITEMS:
				result["…"] = f"+{len(value) - _MAX_COLLECTION_ITEMS} keys"
				break
			result[str(key)] = _sanitize_field(str(key), nested)
		return result
	if isinstance(value, (list, tuple, set)):
		items = [_sanitize_value(item) for item in list(value)[: _MAX_COLLECTION_ITEMS + 1]]
		if len(items) > _MAX_COLLECTION_ITEMS:
			items = items[:_MAX_COLLECTION_ITEMS] + ["…"]
		return items
	return value


def _sanitize_field(key: str, value: Any) -> Any:
	lowered = key.lower()
	if any(keyword in lowered for keyword in _SENSITIVE_KEYWORDS):
		return "[redacted]"
	# Candidate id lists can run to the pool cap; only their size is useful in logs.
	if lowered.endswith("_ids") and isinstance(value, (list, tuple, set)):
		return {"count": len(value)}
	return _sanitize_value(value)


def _trace_fields() -> Dict[str, str]:
	if otel_trace is None:
		return {}
	context = otel_trace.get_current_span().get_span_context()
	if not context.is_valid:
		return {}
	return {"trace_id": f"{context.trace_id:032x}", "span_id": f"{context.span_id:016x}"}


class JSONLogFormatter(logging.Formatter):
	"""Render records as single-line JSON with bound context and sanitized extras."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, object] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for var, output_key in _CONTEXT_FIELDS.values():
			value = var.get()
			if value:
				payload[output_key] = value
		payload.update(_trace_fields())
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RESERVED_ATTRS or key in payload:
				continue
			payload[key] = _sanitize_field(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Sample info records at the configured rate; other levels always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
