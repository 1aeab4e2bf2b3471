"""Smart match ranking endpoint."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from redis.exceptions import RedisError

from smartmatch.domain.matching import exceptions as match_errors
from smartmatch.domain.matching.schemas import MatchRequest, MatchResponse
from smartmatch.domain.matching.service import MatchService, parse_match_request
from smartmatch.infra.auth import AuthenticatedUser, get_current_user
from smartmatch.infra.rate_limit import consume
from smartmatch.obs import logging as obs_logging
from smartmatch.obs import metrics as obs_metrics
from smartmatch.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matches", tags=["matches"])
_service: MatchService | None = None


def get_match_service() -> MatchService:
	global _service
	if _service is None:
		_service = MatchService()
	return _service


def _map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, match_errors.MatchRateLimitExceeded):
		return HTTPException(status.HTTP_429_TOO_MANY_REQUESTS, detail=exc.reason, headers=exc.headers)
	if isinstance(exc, match_errors.MatchError):
		return HTTPException(exc.status_code, detail=exc.detail)
	return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal_error")


async def _enforce_rate_limit(user_id: str) -> None:
	try:
		decision = await consume("matches", user_id, limit=settings.match_rate_limit_per_minute)
	except RedisError:
		# Fail open; ranking is read-only.
		logger.warning("match_rate_limit_unavailable", exc_info=True)
		return
	if not decision.allowed:
		raise match_errors.MatchRateLimitExceeded(decision)


async def _parse_body(request: Request) -> MatchRequest:
	try:
		raw = await request.json()
	except (json.JSONDecodeError, UnicodeDecodeError):
		raise match_errors.InvalidMatchRequest() from None
	return parse_match_request(raw)


@router.post("", response_model=MatchResponse, response_model_by_alias=True)
async def get_matches(
	request: Request,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MatchService = Depends(get_match_service),
) -> MatchResponse:
	tokens = obs_logging.bind_context(user_id=auth_user.id)
	try:
		try:
			await _enforce_rate_limit(auth_user.id)
			payload = await _parse_body(request)
		except match_errors.MatchRateLimitExceeded as exc:
			logger.warning("match_rate_limited")
			obs_metrics.inc_match_request("unknown", "rate_limited")
			raise _map_error(exc) from None
		except match_errors.MatchError as exc:
			obs_metrics.inc_match_request("unknown", "invalid")
			raise _map_error(exc) from None

		tokens.update(obs_logging.bind_context(match_context=payload.context))
		try:
			return await service.get_matches(auth_user.id, payload)
		except match_errors.MatchError as exc:
			obs_metrics.inc_match_request(payload.context, "error")
			raise _map_error(exc) from None
		except Exception as exc:
			logger.exception("match_request_failed")
			obs_metrics.inc_match_request(payload.context, "error")
			raise _map_error(exc) from exc
	finally:
		obs_logging.reset_context(tokens)
