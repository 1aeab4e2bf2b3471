"""asyncpg pool for the match store."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from smartmatch.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def _init_connection(conn: asyncpg.Connection) -> None:
	# jsonb parameters and results travel as Python dicts/lists.
	await conn.set_type_codec(
		"jsonb",
		encoder=json.dumps,
		decoder=json.loads,
		schema="pg_catalog",
	)


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			command_timeout=settings.postgres_command_timeout_seconds,
			ssl="require" if settings.postgres_ssl else "disable",
			init=_init_connection,
		)
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	return _pool if _pool is not None else await init_pool()


def pool_stats() -> dict[str, Any]:
	if _pool is None:
		return {"open": False}
	return {
		"open": True,
		"size": _pool.get_size(),
		"idle": _pool.get_idle_size(),
		"max": _pool.get_max_size(),
	}


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		pool, _pool = _pool, None
		await pool.close()
