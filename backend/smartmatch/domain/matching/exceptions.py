"""Domain-level exceptions for match ranking."""

from __future__ import annotations

from fastapi import status

from smartmatch.infra.rate_limit import RateLimitExceeded


class MatchError(Exception):
	"""Base class for match ranking errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "match_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class InvalidMatchRequest(MatchError):
	"""Client input rejected before any store access."""

	detail = "invalid_request"


class InvalidContext(InvalidMatchRequest):
	detail = "invalid_context"


class MissingEventId(InvalidMatchRequest):
	detail = "event_id_required"


class InvalidEventId(InvalidMatchRequest):
	detail = "invalid_event_id"


class InvalidFilters(InvalidMatchRequest):
	detail = "invalid_filters"


class CollaboratorUnavailable(MatchError):
	"""A store, similarity RPC, or experiment service call failed.

	Callers inside the engine degrade to the documented fallback; it only
	reaches the API surface if raised outside those paths.
	"""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	detail = "collaborator_unavailable"

	def __init__(self, collaborator: str, detail: str | None = None) -> None:
		super().__init__(detail)
		self.collaborator = collaborator


class MatchRateLimitExceeded(RateLimitExceeded):
	"""Raised when a user exceeds the per-minute match request quota."""

	status_code = status.HTTP_429_TOO_MANY_REQUESTS
