"""Liveness and readiness probes.

Readiness gates on the two collaborators every ranking request touches:
Redis (quotas, signal weight cache) and Postgres (the match store).
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Tuple

from smartmatch.domain.matching import impressions
from smartmatch.infra import postgres
from smartmatch.infra.redis import redis_client
from smartmatch.obs import metrics

LOGGER = logging.getLogger(__name__)

REDIS_TIMEOUT_SECONDS = 0.2
POSTGRES_TIMEOUT_SECONDS = 0.3


async def _ping_postgres() -> None:
	pool = await postgres.get_pool()
	async with pool.acquire() as conn:
		await conn.execute("SELECT 1")


async def _probe(
	name: str,
	check: Callable[[], Awaitable[Any]],
	timeout: float,
	mark: Callable[..., None],
) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(check(), timeout=timeout)
	except Exception as exc:
		mark(False)
		LOGGER.warning("readiness_check_failed", extra={"check": name, "error": str(exc) or type(exc).__name__})
		return {"ok": False, "error": str(exc) or type(exc).__name__}
	latency = perf_counter() - start
	mark(True, latency_seconds=latency)
	return {"ok": True, "latency_ms": round(latency * 1000, 2)}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state, postgres_state = await asyncio.gather(
		_probe("redis", redis_client.ping, REDIS_TIMEOUT_SECONDS, metrics.mark_redis),
		_probe("postgres", _ping_postgres, POSTGRES_TIMEOUT_SECONDS, metrics.mark_postgres),
	)
	postgres_state["pool"] = postgres.pool_stats()
	ok = bool(redis_state["ok"] and postgres_state["ok"])
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"checks": {"redis": redis_state, "postgres": postgres_state},
			"pending_impressions": impressions.pending_count(),
		},
	)
