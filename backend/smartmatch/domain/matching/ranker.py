"""Weighted blending, ordering and pagination of scored candidates."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from time import perf_counter
from typing import Callable, Iterable, Mapping, Sequence

from smartmatch.domain.matching.models import (
	CandidateProfile,
	CandidateSignals,
	MatchCategory,
	OverlapResult,
	RequesterProfile,
	WeightVector,
)
from smartmatch.domain.matching.schemas import MatchResult
from smartmatch.domain.matching.signals import attribute_overlap, freshness_score
from smartmatch.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100
PROFESSIONAL_MIN_SKILLS = 3
SOCIAL_MIN_INTERESTS = 3
EVENT_MIN_SESSION = 30.0


@dataclass(slots=True)
class RankedCandidate:
	"""Candidate with its signals and blended score."""

	profile: CandidateProfile
	signals: CandidateSignals
	score: int
	category: MatchCategory


@dataclass(slots=True)
class Page:
	items: list[RankedCandidate]
	avg_score: float


def js_round(value: float) -> int:
	"""Round halves up (46.5 -> 47, -0.5 -> 0)."""
	return int(math.floor(value + 0.5))


def final_score(signals: CandidateSignals, weights: WeightVector) -> int:
	overlap = signals.overlap.score
	similarity = signals.embedding_similarity if signals.embedding_similarity is not None else overlap
	raw = (
		similarity * weights.embedding
		+ signals.behavioral * weights.behavioral
		+ overlap * weights.overlap
		+ signals.session * weights.session
		+ signals.freshness * weights.freshness
	)
	if not math.isfinite(raw):
		raise ArithmeticError("non-finite score")
	return max(SCORE_MIN, min(SCORE_MAX, js_round(raw)))


def match_category(signals: CandidateSignals) -> MatchCategory:
	overlap = signals.overlap
	if overlap.goal_complementarity:
		return "complementary"
	if len(overlap.shared_skills) >= PROFESSIONAL_MIN_SKILLS:
		return "professional"
	if len(overlap.shared_interests) >= SOCIAL_MIN_INTERESTS:
		return "social"
	if signals.session > EVENT_MIN_SESSION:
		return "event"
	return "general"


def _guarded(signal: str, func: Callable[[], object], default):
	try:
		return func()
	except (TypeError, ValueError, AttributeError, ArithmeticError):
		logger.warning("match_signal_failed", extra={"signal": signal}, exc_info=True)
		obs_metrics.inc_signal_fallback(signal, "error")
		return default


def build_signals(
	requester: RequesterProfile,
	candidate: CandidateProfile,
	*,
	similarities: Mapping[str, float],
	behavioral: Mapping[str, float],
	sessions: Mapping[str, float],
	now: datetime,
) -> CandidateSignals:
	"""Assemble one candidate's signals, substituting the neutral value for any that fail."""
	return CandidateSignals(
		embedding_similarity=similarities.get(candidate.user_id),
		behavioral=float(behavioral.get(candidate.user_id, 0.0)),
		overlap=_guarded("overlap", lambda: attribute_overlap(requester, candidate), OverlapResult()),
		session=float(sessions.get(candidate.user_id, 0.0)),
		freshness=_guarded("freshness", lambda: freshness_score(candidate.last_active_at, now=now), 0.0),
	)


def _sort_key(item: RankedCandidate):
	return (not item.profile.is_premium, not item.profile.is_verified, -item.score, item.profile.user_id)


def rank_candidates(
	candidates: Iterable[tuple[CandidateProfile, CandidateSignals]],
	weights: WeightVector,
) -> list[RankedCandidate]:
	"""Score and order candidates: premium, then verified, then score, then user id."""
	start = perf_counter()
	ranked: list[RankedCandidate] = []
	for profile, signals in candidates:
		score = _guarded("final", lambda: final_score(signals, weights), SCORE_MIN)
		ranked.append(
			RankedCandidate(profile=profile, signals=signals, score=score, category=match_category(signals))
		)
	ranked.sort(key=_sort_key)
	obs_metrics.observe_rank_duration((perf_counter() - start) * 1000.0)
	return ranked


def paginate(ranked: Sequence[RankedCandidate], *, offset: int, limit: int) -> Page:
	if offset < 0 or limit < 0:
		raise ValueError("offset and limit must be non-negative")
	items = list(ranked[offset : offset + limit])
	avg = sum(item.score for item in items) / len(items) if items else 0.0
	return Page(items=items, avg_score=avg)


def to_match_result(item: RankedCandidate) -> MatchResult:
	profile = item.profile
	overlap = item.signals.overlap
	return MatchResult(
		user_id=profile.user_id,
		full_name=profile.full_name or "User",
		avatar_url=profile.avatar_url,
		headline=profile.headline,
		organization=profile.organization,
		match_score=item.score,
		shared_skills=list(overlap.shared_skills),
		shared_interests=list(overlap.shared_interests),
		shared_goals=list(overlap.shared_goals),
		is_online=profile.is_online,
		is_premium=profile.is_premium,
		is_verified=profile.is_verified,
		match_category=item.category,
		embedding_similarity=item.signals.embedding_similarity,
		behavioral_score=item.signals.behavioral,
	)


__all__ = [
	"Page",
	"RankedCandidate",
	"build_signals",
	"final_score",
	"js_round",
	"match_category",
	"paginate",
	"rank_candidates",
	"to_match_result",
]
