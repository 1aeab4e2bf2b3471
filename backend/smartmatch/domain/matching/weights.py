"""Signal weight configuration and experiment weight resolution.

Both are pure reads. Signal weights are slow-changing configuration and may be
cached in Redis for a short TTL; `invalidate_signal_weights` is the hook for
the admin write path. Experiment weights always come from the assignment
collaborator, falling back to the static per-context defaults.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

from redis.exceptions import RedisError

from smartmatch.domain.matching.exceptions import CollaboratorUnavailable
from smartmatch.domain.matching.models import (
	CONTROL_VARIANT,
	DEFAULT_WEIGHTS,
	ExperimentWeights,
	SignalWeight,
	WeightVector,
)
from smartmatch.domain.matching.store import MatchStore
from smartmatch.infra.redis import redis_client
from smartmatch.obs import metrics as obs_metrics
from smartmatch.settings import settings

logger = logging.getLogger(__name__)

SIGNAL_WEIGHTS_CACHE_KEY = "match:signal_weights:v1"


def default_weights(context: str) -> WeightVector:
	return DEFAULT_WEIGHTS[context]


def parse_assignment(data: Optional[Mapping[str, Any]], context: str) -> ExperimentWeights:
	"""Turn a raw assignment into ExperimentWeights.

	An empty assignment is the control variant. An assignment without weights keeps
	its experiment id and variant but uses the context defaults. Malformed weights
	raise ValueError.
	"""
	if not data:
		return ExperimentWeights.control(context)
	experiment_id = data.get("experiment_id")
	variant = data.get("variant") or CONTROL_VARIANT
	raw_weights = data.get("weights")
	if raw_weights:
		if not isinstance(raw_weights, Mapping):
			raise ValueError("invalid_weights")
		weights = WeightVector.from_mapping(raw_weights)
	else:
		weights = default_weights(context)
	return ExperimentWeights(
		experiment_id=str(experiment_id) if experiment_id else None,
		variant=str(variant),
		weights=weights,
	)


async def resolve_experiment_weights(
	store: MatchStore,
	user_id: str,
	context: str,
	*,
	timeout: Optional[float] = None,
) -> ExperimentWeights:
	"""Resolve the effective weight vector for (user, context); never raises for collaborator failures."""
	timeout = settings.match_experiment_timeout_seconds if timeout is None else timeout
	try:
		raw = await asyncio.wait_for(store.fetch_experiment_assignment(user_id, context), timeout=timeout)
	except asyncio.TimeoutError:
		logger.warning("experiment_weights_timeout", extra={"context": context, "timeout_s": timeout})
		obs_metrics.inc_experiment_resolution("timeout")
		return ExperimentWeights.control(context)
	except CollaboratorUnavailable as exc:
		logger.warning("experiment_weights_unavailable", extra={"context": context, "error": str(exc)})
		obs_metrics.inc_experiment_resolution("error")
		return ExperimentWeights.control(context)

	try:
		resolved = parse_assignment(raw, context)
	except (TypeError, ValueError) as exc:
		logger.warning("experiment_weights_malformed", extra={"context": context, "error": str(exc)})
		obs_metrics.inc_experiment_resolution("malformed")
		return ExperimentWeights.control(context)

	obs_metrics.inc_experiment_resolution("experiment" if resolved.experiment_id else "default")
	return resolved


def _encode_signal_weights(rows: list[SignalWeight]) -> list[dict[str, Any]]:
	return [
		{
			"signal_name": row.signal_name,
			"pulse_weight": row.pulse_weight,
			"zone_weight": row.zone_weight,
			"decay_half_life_days": row.decay_half_life_days,
			"is_active": row.is_active,
		}
		for row in rows
	]


async def _read_cache() -> Optional[list[SignalWeight]]:
	try:
		cached = await redis_client.get_json(SIGNAL_WEIGHTS_CACHE_KEY)
	except RedisError:
		logger.warning("signal_weights_cache_read_failed", exc_info=True)
		return None
	except ValueError:
		logger.warning("signal_weights_cache_corrupt")
		return None
	if cached is None:
		return None
	try:
		return [SignalWeight(**item) for item in cached]
	except TypeError:
		logger.warning("signal_weights_cache_corrupt")
		return None


async def _write_cache(rows: list[SignalWeight]) -> None:
	ttl = settings.match_signal_weights_cache_ttl_seconds
	if ttl <= 0:
		return
	try:
		await redis_client.set_json(SIGNAL_WEIGHTS_CACHE_KEY, _encode_signal_weights(rows), ttl_seconds=ttl)
	except RedisError:
		logger.warning("signal_weights_cache_write_failed", exc_info=True)


async def load_signal_weights(store: MatchStore) -> dict[str, SignalWeight]:
	"""Return active signal weights keyed by event type; empty when unavailable."""
	rows = await _read_cache()
	if rows is not None:
		obs_metrics.inc_signal_weights_cache("hit")
	else:
		obs_metrics.inc_signal_weights_cache("miss")
		try:
			rows = await store.fetch_signal_weights()
		except CollaboratorUnavailable as exc:
			logger.warning("signal_weights_unavailable", extra={"error": str(exc)})
			obs_metrics.inc_signal_fallback("behavioral", "weights_unavailable")
			return {}
		await _write_cache(rows)
	return {row.signal_name: row for row in rows if row.is_active}


async def invalidate_signal_weights() -> None:
	"""Drop the cached signal weights so the next request re-reads the store."""
	try:
		await redis_client.delete(SIGNAL_WEIGHTS_CACHE_KEY)
	except RedisError:
		logger.warning("signal_weights_cache_invalidate_failed", exc_info=True)
