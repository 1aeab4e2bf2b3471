"""Relevance signals computed per candidate.

The scoring helpers are pure functions over explicit inputs. The async
collectors gather their inputs from the store and degrade to neutral values
(null similarity, zero behavioral/session score) when a collaborator fails.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence

from smartmatch.domain.matching.exceptions import CollaboratorUnavailable
from smartmatch.domain.matching.models import (
	ZONE,
	CandidateProfile,
	InteractionEvent,
	OverlapResult,
	RequesterProfile,
	SignalWeight,
)
from smartmatch.domain.matching.store import MatchStore
from smartmatch.domain.matching.weights import load_signal_weights
from smartmatch.obs import metrics as obs_metrics
from smartmatch.settings import settings

logger = logging.getLogger(__name__)

LN2 = math.log(2)

BEHAVIORAL_MIN = -50.0
BEHAVIORAL_MAX = 100.0

SKILL_POINTS, SKILL_CAP = 12, 40
INTEREST_POINTS, INTEREST_CAP = 10, 30
GOAL_POINTS = 8
COMPLEMENTARITY_POINTS = 25
ORGANIZATION_POINTS = 12

SESSION_POINTS, SESSION_CAP = 15, 100

FRESHNESS_MAX = 100.0
FRESHNESS_DECAY_PER_HOUR = 2.0


def _aware(value: datetime) -> datetime:
	return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def decay_factor(age_days: float, half_life_days: float) -> float:
	"""Exponential half-life decay; 1.0 for a fresh event, 0.5 at one half-life."""
	if half_life_days <= 0:
		raise ValueError("half_life_days must be positive")
	return math.exp(-LN2 * max(0.0, age_days) / half_life_days)


def behavioral_scores(
	events: Iterable[InteractionEvent],
	weights: Mapping[str, SignalWeight],
	context: str,
	*,
	now: datetime,
) -> dict[str, float]:
	"""Sum decayed, context-weighted interactions per target, clamped to [-50, 100]."""
	now = _aware(now)
	totals: dict[str, float] = {}
	for event in events:
		weight = weights.get(event.event_type)
		if weight is None or not weight.is_active or weight.decay_half_life_days <= 0:
			continue
		try:
			age_days = (now - _aware(event.created_at)).total_seconds() / 86400.0
			contribution = weight.weight_for(context) * decay_factor(age_days, weight.decay_half_life_days)
		except (TypeError, ValueError, AttributeError, ArithmeticError):
			continue
		totals[event.target_user_id] = totals.get(event.target_user_id, 0.0) + contribution
	return {user_id: max(BEHAVIORAL_MIN, min(BEHAVIORAL_MAX, total)) for user_id, total in totals.items()}


def attribute_overlap(requester: RequesterProfile, candidate: CandidateProfile) -> OverlapResult:
	"""Score facet overlap between the requester and one candidate (0..107, unclamped)."""
	shared_skills = tuple(skill for skill in requester.skills if skill in candidate.skills)
	shared_interests = tuple(interest for interest in requester.interests if interest in candidate.interests)
	shared_goals = tuple(goal for goal in requester.looking_for if goal in candidate.looking_for)
	complementary = any(skill in candidate.looking_for for skill in requester.skills) or any(
		skill in requester.looking_for for skill in candidate.skills
	)

	score = min(SKILL_CAP, SKILL_POINTS * len(shared_skills))
	score += min(INTEREST_CAP, INTEREST_POINTS * len(shared_interests))
	score += COMPLEMENTARITY_POINTS if complementary else GOAL_POINTS * len(shared_goals)
	if requester.organization and candidate.organization:
		if requester.organization.lower() == candidate.organization.lower():
			score += ORGANIZATION_POINTS

	return OverlapResult(
		score=float(score),
		shared_skills=shared_skills,
		shared_interests=shared_interests,
		shared_goals=shared_goals,
		goal_complementarity=complementary,
	)


def session_scores(
	requester_sessions: Iterable[str],
	candidate_bookmarks: Iterable[tuple[str, str]],
) -> dict[str, float]:
	mine = set(requester_sessions)
	if not mine:
		return {}
	shared: dict[str, set[str]] = {}
	for user_id, session_id in candidate_bookmarks:
		if session_id in mine:
			shared.setdefault(user_id, set()).add(session_id)
	return {user_id: float(min(SESSION_CAP, SESSION_POINTS * len(sessions))) for user_id, sessions in shared.items()}


def freshness_score(last_active_at: Optional[datetime], *, now: datetime) -> float:
	if last_active_at is None:
		return 0.0
	hours = max(0.0, (_aware(now) - _aware(last_active_at)).total_seconds() / 3600.0)
	return max(0.0, FRESHNESS_MAX - FRESHNESS_DECAY_PER_HOUR * hours)


async def embedding_similarities(
	store: MatchStore,
	requester_id: str,
	candidate_ids: Sequence[str],
	*,
	timeout: Optional[float] = None,
) -> dict[str, float]:
	"""Batched similarity lookup; an empty mapping means every similarity is null.

	The embedding presence check and the similarity RPC share one timeout budget.
	"""
	if not candidate_ids:
		return {}

	async def _lookup() -> Optional[Mapping[str, Any]]:
		if not await store.has_embedding(requester_id):
			return None
		return await store.similarities(requester_id, list(candidate_ids))

	timeout = settings.match_similarity_timeout_seconds if timeout is None else timeout
	try:
		raw = await asyncio.wait_for(_lookup(), timeout=timeout)
	except asyncio.TimeoutError:
		logger.warning("match_similarity_timeout", extra={"timeout_s": timeout, "candidates": len(candidate_ids)})
		obs_metrics.inc_signal_fallback("embedding", "timeout")
		return {}
	except CollaboratorUnavailable as exc:
		logger.warning("match_similarity_failed", extra={"error": str(exc)})
		obs_metrics.inc_signal_fallback("embedding", "unavailable")
		return {}
	if raw is None:
		obs_metrics.inc_signal_fallback("embedding", "no_embedding")
		return {}

	wanted = set(candidate_ids)
	similarities: dict[str, float] = {}
	for user_id, value in raw.items():
		if user_id not in wanted or value is None:
			continue
		try:
			value = float(value)
		except (TypeError, ValueError):
			continue
		if math.isfinite(value):
			similarities[user_id] = value
	return similarities


async def behavioral_affinity(
	store: MatchStore,
	requester_id: str,
	candidate_ids: Sequence[str],
	context: str,
	*,
	now: datetime,
) -> dict[str, float]:
	if not candidate_ids:
		return {}
	since = _aware(now) - timedelta(days=settings.match_interaction_lookback_days)
	try:
		events, weights = await asyncio.gather(
			store.fetch_interactions(requester_id, list(candidate_ids), since=since),
			load_signal_weights(store),
		)
	except CollaboratorUnavailable as exc:
		logger.warning("match_interactions_failed", extra={"error": str(exc)})
		obs_metrics.inc_signal_fallback("behavioral", "unavailable")
		return {}
	if not weights:
		return {}
	return behavioral_scores(events, weights, context, now=now)


async def session_affinity(
	store: MatchStore,
	requester_id: str,
	candidate_ids: Sequence[str],
	context: str,
	event_id: Optional[str],
) -> dict[str, float]:
	if context != ZONE or not event_id or not candidate_ids:
		return {}
	try:
		mine = await store.fetch_session_bookmarks(requester_id, event_id)
		if not mine:
			return {}
		bookmarks = await store.fetch_candidate_bookmarks(event_id, list(candidate_ids))
	except CollaboratorUnavailable as exc:
		logger.warning("match_bookmarks_failed", extra={"error": str(exc)})
		obs_metrics.inc_signal_fallback("session", "unavailable")
		return {}
	return session_scores(mine, bookmarks)


__all__ = [
	"attribute_overlap",
	"behavioral_affinity",
	"behavioral_scores",
	"decay_factor",
	"embedding_similarities",
	"freshness_score",
	"session_affinity",
	"session_scores",
]
