"""Fixed-window request quotas kept in Redis."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Optional

from smartmatch.infra.redis import redis_client


@dataclass(slots=True, frozen=True)
class QuotaDecision:
	allowed: bool
	limit: int
	remaining: int
	retry_after: int

	def headers(self) -> dict[str, str]:
		values = {
			"X-RateLimit-Limit": str(self.limit),
			"X-RateLimit-Remaining": str(self.remaining),
		}
		if not self.allowed:
			values["Retry-After"] = str(self.retry_after)
		return values


def quota_key(scope: str, actor_id: str, window_seconds: int, now: float) -> str:
	window = max(1, int(window_seconds))
	bucket = int(math.floor(now / window))
	return f"quota:{scope}:{actor_id}:{window}:{bucket}"


async def consume(
	scope: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> QuotaDecision:
	"""Count one request against the actor's current window.

	A non-positive limit denies everything without touching Redis.
	"""
	now = time.time() if now is None else now
	window = max(1, int(window_seconds))
	retry_after = max(1, int(math.ceil(window - (now % window))))
	if limit <= 0:
		return QuotaDecision(allowed=False, limit=0, remaining=0, retry_after=retry_after)
	key = quota_key(scope, actor_id, window, now)
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window)
		used, _ = await pipe.execute()
	used = int(used)
	return QuotaDecision(
		allowed=used <= limit,
		limit=limit,
		remaining=max(0, limit - used),
		retry_after=retry_after,
	)


class RateLimitExceeded(Exception):
	"""Raised when a quota window is exhausted."""

	def __init__(self, decision: QuotaDecision | None = None, reason: str = "rate_limited") -> None:
		super().__init__(reason)
		self.reason = reason
		self.decision = decision

	@property
	def headers(self) -> dict[str, str] | None:
		return self.decision.headers() if self.decision is not None else None
