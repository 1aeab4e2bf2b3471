"""Match request orchestration: weights, candidates, signals, ranking, impressions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Callable, Optional

from pydantic import ValidationError

from smartmatch.domain.matching import candidates as candidate_module
from smartmatch.domain.matching import impressions
from smartmatch.domain.matching import ranker
from smartmatch.domain.matching import signals
from smartmatch.domain.matching import weights as weight_module
from smartmatch.domain.matching.exceptions import (
	CollaboratorUnavailable,
	InvalidContext,
	InvalidEventId,
	InvalidFilters,
	InvalidMatchRequest,
	MissingEventId,
)
from smartmatch.domain.matching.models import CONTEXTS, ZONE, ImpressionRecord, RequesterProfile
from smartmatch.domain.matching.schemas import MatchMeta, MatchRequest, MatchResponse
from smartmatch.domain.matching.store import MatchStore, PostgresMatchStore
from smartmatch.obs import metrics as obs_metrics
from smartmatch.obs import tracing
from smartmatch.settings import settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def parse_match_request(raw: Any) -> MatchRequest:
	"""Validate a raw JSON body, raising a client-input error before any store access."""
	if not isinstance(raw, dict):
		raise InvalidMatchRequest()
	if raw.get("context") not in CONTEXTS:
		raise InvalidContext()
	if raw["context"] == ZONE and not raw.get("event_id"):
		raise MissingEventId()
	try:
		return MatchRequest.model_validate(raw)
	except ValidationError as exc:
		errors = exc.errors()
		field = errors[0]["loc"][0] if errors and errors[0].get("loc") else None
		if field == "event_id":
			raise InvalidEventId() from exc
		if field == "filters":
			raise InvalidFilters() from exc
		raise InvalidMatchRequest() from exc


def effective_limit(requested: Optional[int]) -> int:
	# 0 means "use the default", same as an absent limit.
	limit = requested or settings.match_default_limit
	return max(1, min(limit, settings.match_max_limit))


class MatchService:
	"""Produces a ranked, paginated page of matches for one requester."""

	def __init__(
		self,
		store: MatchStore | None = None,
		*,
		clock: Callable[[], datetime] | None = None,
	) -> None:
		self.store = store or PostgresMatchStore()
		self._clock = clock or _utcnow

	async def _load_requester(self, user_id: str) -> RequesterProfile:
		try:
			profile = await self.store.load_requester(user_id)
		except CollaboratorUnavailable as exc:
			logger.warning("match_requester_profile_failed", extra={"error": str(exc)})
			obs_metrics.inc_signal_fallback("requester", "unavailable")
			profile = None
		return profile or RequesterProfile(user_id=user_id)

	async def get_matches(self, user_id: str, request: MatchRequest) -> MatchResponse:
		start = perf_counter()
		now = self._clock()
		context = request.context
		event_id = request.event_key
		limit = effective_limit(request.limit)

		with tracing.span("match.retrieve", context=context, event_id=event_id):
			experiment, requester, pool, blocked_ids = await asyncio.gather(
				weight_module.resolve_experiment_weights(self.store, user_id, context),
				self._load_requester(user_id),
				candidate_module.fetch_pool(
					self.store,
					user_id,
					context,
					event_id=event_id,
					filters=request.filters,
				),
				candidate_module.load_blocked_ids(self.store, user_id),
			)
		pool = candidate_module.exclude_blocked(pool, blocked_ids)
		obs_metrics.observe_candidate_pool(context, len(pool))

		candidate_ids = [candidate.user_id for candidate in pool]
		with tracing.span("match.signals", context=context, candidates=len(candidate_ids)):
			similarities, behavioral, sessions = await asyncio.gather(
				signals.embedding_similarities(self.store, user_id, candidate_ids),
				signals.behavioral_affinity(self.store, user_id, candidate_ids, context, now=now),
				signals.session_affinity(self.store, user_id, candidate_ids, context, event_id),
			)

		scored = [
			(
				candidate,
				ranker.build_signals(
					requester,
					candidate,
					similarities=similarities,
					behavioral=behavioral,
					sessions=sessions,
					now=now,
				),
			)
			for candidate in pool
		]
		with tracing.span("match.rank", variant=experiment.variant, candidates=len(scored)):
			ranked = ranker.rank_candidates(scored, experiment.weights)
		page = ranker.paginate(ranked, offset=request.offset, limit=limit)
		matches = [ranker.to_match_result(item) for item in page.items]
		weights_used = experiment.weights.as_dict()
		processing_time_ms = int((perf_counter() - start) * 1000)

		impressions.record_impression(
			self.store,
			ImpressionRecord(
				requester_id=user_id,
				experiment_id=experiment.experiment_id,
				variant=experiment.variant,
				context=context,
				event_id=event_id,
				candidate_ids=tuple(match.user_id for match in matches),
				scores=tuple(match.match_score for match in matches),
				avg_score=page.avg_score,
				weights_used=weights_used,
				processing_time_ms=processing_time_ms,
			),
		)

		obs_metrics.inc_match_request(context, "ok" if matches else "empty")
		obs_metrics.observe_match_processing(context, processing_time_ms)
		if matches:
			obs_metrics.observe_page_score(page.avg_score)
		log_fields = {
			"context": context,
			"candidates": len(pool),
			"returned": len(matches),
			"premium": sum(1 for match in matches if match.is_premium),
			"online": sum(1 for match in matches if match.is_online),
			"avg_score": page.avg_score,
			"processing_time_ms": processing_time_ms,
			"experiment_id": experiment.experiment_id,
			"variant": experiment.variant,
		}
		logger.info("match_request", extra=log_fields)
		if processing_time_ms > settings.match_slow_threshold_ms:
			logger.warning("match_request_slow", extra=log_fields)

		return MatchResponse(
			matches=matches,
			context=context,
			total=len(matches),
			meta=MatchMeta(
				avg_score=ranker.js_round(page.avg_score),
				processing_time_ms=processing_time_ms,
				experiment_id=experiment.experiment_id,
				variant=experiment.variant,
				weights_used=weights_used,
			),
		)


__all__ = ["MatchService", "effective_limit", "parse_match_request"]
