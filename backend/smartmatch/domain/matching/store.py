"""Store capability consumed by the match engine and its asyncpg implementation."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from functools import wraps
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

import asyncpg

from smartmatch.domain.matching.exceptions import CollaboratorUnavailable
from smartmatch.domain.matching.models import (
	CandidateProfile,
	ImpressionRecord,
	InteractionEvent,
	RequesterProfile,
	SignalWeight,
)
from smartmatch.domain.matching.schemas import MatchFilters
from smartmatch.infra.postgres import get_pool


class MatchStore(Protocol):
	"""Read/write operations the engine needs from the managed data store."""

	async def load_requester(self, user_id: str) -> Optional[RequesterProfile]: ...

	async def has_embedding(self, user_id: str) -> bool: ...

	async def fetch_profiles(
		self,
		*,
		exclude_user_id: str,
		user_ids: Optional[Sequence[str]],
		filters: MatchFilters,
		cap: int,
	) -> list[CandidateProfile]: ...

	async def fetch_event_attendees(self, event_id: str) -> list[str]: ...

	async def fetch_blocked_ids(self, user_id: str) -> set[str]: ...

	async def similarities(self, query_user_id: str, candidate_ids: Sequence[str]) -> dict[str, float]: ...

	async def fetch_interactions(
		self, user_id: str, candidate_ids: Sequence[str], *, since: datetime
	) -> list[InteractionEvent]: ...

	async def fetch_signal_weights(self) -> list[SignalWeight]: ...

	async def fetch_session_bookmarks(self, user_id: str, event_id: str) -> set[str]: ...

	async def fetch_candidate_bookmarks(
		self, event_id: str, candidate_ids: Sequence[str]
	) -> list[tuple[str, str]]: ...

	async def fetch_experiment_assignment(self, user_id: str, context: str) -> Optional[Mapping[str, Any]]: ...

	async def insert_impression(self, record: ImpressionRecord) -> None: ...


def _facets(value: Any) -> tuple[str, ...]:
	if value is None:
		return ()
	if isinstance(value, str):
		try:
			value = json.loads(value)
		except ValueError:
			return (value,) if value.strip() else ()
	if not isinstance(value, (list, tuple)):
		return ()
	seen: list[str] = []
	for item in value:
		text = str(item).strip()
		if text and text not in seen:
			seen.append(text)
	return tuple(seen)


def _candidate_from_row(row: Mapping[str, Any]) -> CandidateProfile:
	return CandidateProfile(
		user_id=str(row["user_id"]),
		full_name=row["full_name"],
		avatar_url=row["avatar_url"],
		headline=row["headline"],
		organization=row["organization"],
		skills=_facets(row["skills"]),
		interests=_facets(row["interests"]),
		looking_for=_facets(row["looking_for"]),
		is_online=bool(row["is_online"]),
		is_premium=bool(row["is_premium"]),
		is_verified=bool(row["is_verified"]),
		last_active_at=row["last_active_at"],
	)


def _unavailable(collaborator: str):
	"""Translate driver and connection failures into CollaboratorUnavailable."""

	def decorator(func):
		@wraps(func)
		async def wrapper(*args, **kwargs):
			try:
				return await func(*args, **kwargs)
			except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
				raise CollaboratorUnavailable(collaborator, str(exc)) from exc

		return wrapper

	return decorator


class PostgresMatchStore:
	"""Thin data-access layer around asyncpg."""

	_PROFILE_COLUMNS = """
		user_id, full_name, avatar_url, headline, organization,
		skills, interests, looking_for, is_online, is_premium, is_verified, last_active_at
	"""

	@_unavailable("profiles")
	async def load_requester(self, user_id: str) -> Optional[RequesterProfile]:
		pool = await get_pool()
		row = await pool.fetchrow(
			"""
			SELECT skills, interests, looking_for, organization, current_event_id
			FROM impact_profiles
			WHERE user_id = $1::uuid
			""",
			user_id,
		)
		if row is None:
			return None
		return RequesterProfile(
			user_id=user_id,
			skills=_facets(row["skills"]),
			interests=_facets(row["interests"]),
			looking_for=_facets(row["looking_for"]),
			organization=row["organization"],
			current_event_id=str(row["current_event_id"]) if row["current_event_id"] else None,
		)

	@_unavailable("embeddings")
	async def has_embedding(self, user_id: str) -> bool:
		pool = await get_pool()
		value = await pool.fetchval(
			"SELECT user_embedding IS NOT NULL FROM profile_embeddings WHERE user_id = $1::uuid",
			user_id,
		)
		return bool(value)

	@_unavailable("profiles")
	async def fetch_profiles(
		self,
		*,
		exclude_user_id: str,
		user_ids: Optional[Sequence[str]],
		filters: MatchFilters,
		cap: int,
	) -> list[CandidateProfile]:
		clauses = ["user_id <> $1::uuid"]
		params: list[Any] = [exclude_user_id]

		def _param(value: Any) -> str:
			params.append(value)
			return f"${len(params)}"

		if user_ids is not None:
			clauses.append(f"user_id = ANY({_param(list(user_ids))}::uuid[])")
		if filters.online_only:
			clauses.append("is_online = TRUE")
		if filters.skills:
			clauses.append(f"skills && {_param(filters.skills)}::text[]")
		if filters.interests:
			clauses.append(f"interests && {_param(filters.interests)}::text[]")
		if filters.goals:
			clauses.append(f"looking_for && {_param(filters.goals)}::text[]")
		limit_ref = _param(cap)
		query = (
			f"SELECT {self._PROFILE_COLUMNS} FROM impact_profiles "
			f"WHERE {' AND '.join(clauses)} ORDER BY user_id LIMIT {limit_ref}"
		)
		pool = await get_pool()
		rows = await pool.fetch(query, *params)
		return [_candidate_from_row(row) for row in rows]

	@_unavailable("checkins")
	async def fetch_event_attendees(self, event_id: str) -> list[str]:
		pool = await get_pool()
		rows = await pool.fetch(
			"SELECT DISTINCT user_id FROM event_checkins WHERE event_id = $1::uuid",
			event_id,
		)
		return [str(row["user_id"]) for row in rows]

	@_unavailable("blocks")
	async def fetch_blocked_ids(self, user_id: str) -> set[str]:
		pool = await get_pool()
		rows = await pool.fetch(
			"SELECT blocked_user_id FROM blocked_users WHERE user_id = $1::uuid",
			user_id,
		)
		return {str(row["blocked_user_id"]) for row in rows}

	@_unavailable("similarity")
	async def similarities(self, query_user_id: str, candidate_ids: Sequence[str]) -> dict[str, float]:
		if not candidate_ids:
			return {}
		pool = await get_pool()
		rows = await pool.fetch(
			"SELECT user_id, similarity FROM get_embedding_similarities($1::uuid, $2::uuid[])",
			query_user_id,
			list(candidate_ids),
		)
		return {str(row["user_id"]): float(row["similarity"]) for row in rows if row["similarity"] is not None}

	@_unavailable("interactions")
	async def fetch_interactions(
		self, user_id: str, candidate_ids: Sequence[str], *, since: datetime
	) -> list[InteractionEvent]:
		if not candidate_ids:
			return []
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT target_user_id, event_type, created_at
			FROM user_interaction_events
			WHERE user_id = $1::uuid
			  AND target_user_id = ANY($2::uuid[])
			  AND created_at >= $3
			""",
			user_id,
			list(candidate_ids),
			since,
		)
		return [
			InteractionEvent(
				target_user_id=str(row["target_user_id"]),
				event_type=row["event_type"],
				created_at=row["created_at"],
			)
			for row in rows
		]

	@_unavailable("signal_weights")
	async def fetch_signal_weights(self) -> list[SignalWeight]:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT signal_name, pulse_weight, zone_weight, decay_half_life_days, is_active
			FROM ml_signal_weights
			WHERE is_active = TRUE
			"""
		)
		return [
			SignalWeight(
				signal_name=row["signal_name"],
				pulse_weight=float(row["pulse_weight"] or 0.0),
				zone_weight=float(row["zone_weight"] or 0.0),
				decay_half_life_days=float(row["decay_half_life_days"] or 0.0),
				is_active=bool(row["is_active"]),
			)
			for row in rows
		]

	@_unavailable("bookmarks")
	async def fetch_session_bookmarks(self, user_id: str, event_id: str) -> set[str]:
		pool = await get_pool()
		rows = await pool.fetch(
			"SELECT session_id FROM session_bookmarks WHERE user_id = $1::uuid AND event_id = $2::uuid",
			user_id,
			event_id,
		)
		return {str(row["session_id"]) for row in rows}

	@_unavailable("bookmarks")
	async def fetch_candidate_bookmarks(
		self, event_id: str, candidate_ids: Sequence[str]
	) -> list[tuple[str, str]]:
		if not candidate_ids:
			return []
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT user_id, session_id
			FROM session_bookmarks
			WHERE event_id = $1::uuid AND user_id = ANY($2::uuid[])
			""",
			event_id,
			list(candidate_ids),
		)
		return [(str(row["user_id"]), str(row["session_id"])) for row in rows]

	@_unavailable("experiments")
	async def fetch_experiment_assignment(self, user_id: str, context: str) -> Optional[Mapping[str, Any]]:
		pool = await get_pool()
		raw = await pool.fetchval("SELECT get_experiment_weights($1::uuid, $2)", user_id, context)
		if raw is None:
			return None
		if isinstance(raw, str):
			raw = json.loads(raw)
		return raw if isinstance(raw, Mapping) else None

	@_unavailable("impressions")
	async def insert_impression(self, record: ImpressionRecord) -> None:
		pool = await get_pool()
		await pool.execute(
			"""
			INSERT INTO ai_match_impressions (
				user_id, experiment_id, variant, context, event_id,
				match_user_ids, match_scores, avg_score, weights_config, processing_time_ms
			)
			VALUES ($1::uuid, $2, $3, $4, $5::uuid, $6::uuid[], $7::int[], $8, $9::jsonb, $10)
			""",
			record.requester_id,
			record.experiment_id,
			record.variant,
			record.context,
			record.event_id,
			list(record.candidate_ids),
			list(record.scores),
			record.avg_score,
			dict(record.weights_used),
			record.processing_time_ms,
		)


def unique_ids(values: Iterable[str]) -> list[str]:
	"""Deduplicate ids while keeping first-seen order."""
	seen: dict[str, None] = {}
	for value in values:
		seen.setdefault(str(value), None)
	return list(seen)
