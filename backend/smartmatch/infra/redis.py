"""Shared Redis client.

Modules import `redis_client` once; the proxy lets tests swap in fakeredis
and lets shutdown close the pool without stale references elsewhere.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as redis

from smartmatch.settings import settings


def build_client(url: Optional[str] = None) -> redis.Redis:
	return redis.from_url(
		url or settings.redis_url,
		decode_responses=True,
		socket_timeout=settings.redis_socket_timeout_seconds,
		socket_connect_timeout=settings.redis_socket_timeout_seconds,
		health_check_interval=settings.redis_health_check_interval_seconds,
	)


class RedisProxy:
	"""Forwards attribute access to the current client and adds JSON helpers."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	async def get_json(self, key: str) -> Any:
		"""Return the decoded value, or None on a miss. Raises ValueError on corrupt payloads."""
		raw = await self._client.get(key)
		if raw is None or raw == "":
			return None
		return json.loads(raw)

	async def set_json(self, key: str, value: Any, *, ttl_seconds: Optional[int] = None) -> None:
		payload = json.dumps(value, separators=(",", ":"))
		if ttl_seconds:
			await self._client.set(key, payload, ex=ttl_seconds)
		else:
			await self._client.set(key, payload)

	async def close(self) -> None:
		await self._client.aclose()

	def __getattr__(self, item):
		return getattr(self._client, item)


redis_client: RedisProxy = RedisProxy(build_client())


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


async def close_redis() -> None:
	await redis_client.close()
