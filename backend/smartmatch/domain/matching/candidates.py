"""Candidate pool retrieval for pulse and zone contexts."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from smartmatch.domain.matching.exceptions import CollaboratorUnavailable
from smartmatch.domain.matching.models import ZONE, CandidateProfile
from smartmatch.domain.matching.schemas import MatchFilters
from smartmatch.domain.matching.store import MatchStore, unique_ids
from smartmatch.obs import metrics as obs_metrics
from smartmatch.settings import settings

logger = logging.getLogger(__name__)


async def fetch_pool(
	store: MatchStore,
	requester_id: str,
	context: str,
	*,
	event_id: Optional[str],
	filters: MatchFilters,
	cap: Optional[int] = None,
) -> list[CandidateProfile]:
	"""Return the capped candidate pool before blocks are removed by `exclude_blocked`.

	Zone requests are restricted to attendees checked in to `event_id`. Any store
	failure yields an empty pool.
	"""
	cap = settings.match_candidate_cap if cap is None else cap
	attendee_ids: Optional[list[str]] = None
	try:
		if context == ZONE:
			if not event_id:
				return []
			attendee_ids = unique_ids(await store.fetch_event_attendees(event_id))
			attendee_ids = [uid for uid in attendee_ids if uid != requester_id]
			if not attendee_ids:
				return []
		candidates = await store.fetch_profiles(
			exclude_user_id=requester_id,
			user_ids=attendee_ids,
			filters=filters,
			cap=cap,
		)
	except CollaboratorUnavailable as exc:
		logger.error(
			"match_candidates_failed",
			extra={"context": context, "collaborator": exc.collaborator, "error": str(exc)},
		)
		obs_metrics.inc_signal_fallback("candidates", "unavailable")
		return []
	# Store order is by user id; keep the first row per user and at most `cap`.
	seen: set[str] = set()
	pool: list[CandidateProfile] = []
	for candidate in candidates:
		if candidate.user_id == requester_id or candidate.user_id in seen:
			continue
		seen.add(candidate.user_id)
		pool.append(candidate)
		if len(pool) >= cap:
			break
	return pool


async def load_blocked_ids(store: MatchStore, requester_id: str) -> Optional[set[str]]:
	"""Return the requester's blocked ids, or None when the block list cannot be read."""
	try:
		return set(await store.fetch_blocked_ids(requester_id))
	except CollaboratorUnavailable as exc:
		logger.error("match_blocklist_failed", extra={"error": str(exc)})
		obs_metrics.inc_signal_fallback("blocklist", "unavailable")
		return None


def exclude_blocked(
	candidates: Iterable[CandidateProfile], blocked_ids: Optional[set[str]]
) -> list[CandidateProfile]:
	# An unreadable block list means nobody can be shown safely.
	if blocked_ids is None:
		return []
	return [candidate for candidate in candidates if candidate.user_id not in blocked_ids]


__all__ = ["exclude_blocked", "fetch_pool", "load_blocked_ids"]
