from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import asyncpg
import pytest

from smartmatch.domain.matching import store as store_module
from smartmatch.domain.matching.exceptions import CollaboratorUnavailable
from smartmatch.domain.matching.models import ImpressionRecord
from smartmatch.domain.matching.schemas import MatchFilters


class _FakePool:
	def __init__(self, rows=None, value=None, error: Exception | None = None) -> None:
		self.rows = rows or []
		self.value = value
		self.error = error
		self.queries: list[tuple[str, tuple]] = []

	async def fetch(self, query, *args):
		self.queries.append((query, args))
		if self.error:
			raise self.error
		return self.rows

	async def fetchrow(self, query, *args):
		self.queries.append((query, args))
		if self.error:
			raise self.error
		return self.rows[0] if self.rows else None

	async def fetchval(self, query, *args):
		self.queries.append((query, args))
		if self.error:
			raise self.error
		return self.value

	async def execute(self, query, *args):
		self.queries.append((query, args))
		if self.error:
			raise self.error
		return "INSERT 0 1"


def _use_pool(monkeypatch, pool: _FakePool) -> None:
	async def _get_pool():
		return pool

	monkeypatch.setattr(store_module, "get_pool", _get_pool)


def test_facets_normalise_arrays_and_json():
	assert store_module._facets(None) == ()
	assert store_module._facets(["python", " python ", "", "sql"]) == ("python", "sql")
	assert store_module._facets('["go", "rust"]') == ("go", "rust")
	assert store_module._facets("solo") == ("solo",)
	assert store_module._facets(42) == ()


def test_unique_ids_keeps_first_seen_order():
	assert store_module.unique_ids(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


@pytest.mark.asyncio
async def test_fetch_profiles_builds_filtered_query(monkeypatch):
	pool = _FakePool(
		rows=[
			{
				"user_id": "a",
				"full_name": "Ada",
				"avatar_url": None,
				"headline": None,
				"organization": "Acme",
				"skills": ["python"],
				"interests": None,
				"looking_for": [],
				"is_online": True,
				"is_premium": None,
				"is_verified": False,
				"last_active_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
			}
		]
	)
	_use_pool(monkeypatch, pool)
	profiles = await store_module.PostgresMatchStore().fetch_profiles(
		exclude_user_id="me",
		user_ids=["a", "b"],
		filters=MatchFilters(skills=["python"], goals=["mentor"], online_only=True),
		cap=500,
	)
	query, args = pool.queries[0]
	assert "user_id = ANY($2::uuid[])" in query
	assert "is_online = TRUE" in query
	assert "skills && $3::text[]" in query
	assert "looking_for && $4::text[]" in query
	assert query.rstrip().endswith("ORDER BY user_id LIMIT $5")
	assert args == ("me", ["a", "b"], ["python"], ["mentor"], 500)
	assert profiles[0].skills == ("python",)
	assert profiles[0].interests == ()
	assert profiles[0].is_premium is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"call, collaborator",
	[
		(lambda store: store.load_requester("me"), "profiles"),
		(lambda store: store.fetch_blocked_ids("me"), "blocks"),
		(lambda store: store.has_embedding("me"), "embeddings"),
	],
)
async def test_command_timeouts_become_collaborator_unavailable(monkeypatch, call, collaborator):
	_use_pool(monkeypatch, _FakePool(error=asyncio.TimeoutError()))
	with pytest.raises(CollaboratorUnavailable) as excinfo:
		await call(store_module.PostgresMatchStore())
	assert excinfo.value.collaborator == collaborator


@pytest.mark.asyncio
async def test_driver_errors_become_collaborator_unavailable(monkeypatch):
	_use_pool(monkeypatch, _FakePool(error=asyncpg.PostgresError("boom")))
	with pytest.raises(CollaboratorUnavailable) as excinfo:
		await store_module.PostgresMatchStore().fetch_blocked_ids("me")
	assert excinfo.value.collaborator == "blocks"


@pytest.mark.asyncio
async def test_experiment_assignment_decodes_json(monkeypatch):
	_use_pool(monkeypatch, _FakePool(value='{"experiment_id": "exp-1", "variant": "b"}'))
	assignment = await store_module.PostgresMatchStore().fetch_experiment_assignment("me", "pulse")
	assert assignment == {"experiment_id": "exp-1", "variant": "b"}


@pytest.mark.asyncio
async def test_similarities_skip_null_rows(monkeypatch):
	pool = _FakePool(rows=[{"user_id": "a", "similarity": 0.75}, {"user_id": "b", "similarity": None}])
	_use_pool(monkeypatch, pool)
	result = await store_module.PostgresMatchStore().similarities("me", ["a", "b"])
	assert result == {"a": 0.75}
	assert await store_module.PostgresMatchStore().similarities("me", []) == {}
	assert len(pool.queries) == 1


@pytest.mark.asyncio
async def test_insert_impression_passes_weights_as_mapping(monkeypatch):
	pool = _FakePool()
	_use_pool(monkeypatch, pool)
	record = ImpressionRecord(
		requester_id="me",
		experiment_id=None,
		variant="control",
		context="zone",
		event_id="evt",
		candidate_ids=("a",),
		scores=(55,),
		avg_score=55.0,
		weights_used={"embedding": 0.25},
		processing_time_ms=8,
	)
	await store_module.PostgresMatchStore().insert_impression(record)
	_, args = pool.queries[0]
	assert args[5] == ["a"]
	assert args[6] == [55]
	assert args[8] == {"embedding": 0.25}
