import sys
from pathlib import Path
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from smartmatch.api import matches as matches_api
from smartmatch.domain.matching import impressions
from smartmatch.domain.matching.exceptions import CollaboratorUnavailable
from smartmatch.domain.matching.models import RequesterProfile
from smartmatch.domain.matching.service import MatchService
from smartmatch.infra import postgres
from smartmatch.main import app
from smartmatch.settings import settings


class FakeMatchStore:
	"""In-memory MatchStore; set `fail` to a method name to make it raise CollaboratorUnavailable."""

	def __init__(self) -> None:
		self.requester: Optional[RequesterProfile] = None
		self.embedding = False
		self.profiles: list = []
		self.attendees: dict[str, list[str]] = {}
		self.blocked: set[str] = set()
		self.similarity_map: dict[str, float] = {}
		self.interactions: list = []
		self.signal_weights: list = []
		self.my_bookmarks: set[str] = set()
		self.candidate_bookmarks: list[tuple[str, str]] = []
		self.assignment: Optional[dict[str, Any]] = None
		self.impressions: list = []
		self.fail: set[str] = set()
		self.calls: list[str] = []

	def _enter(self, name: str) -> None:
		self.calls.append(name)
		if name in self.fail:
			raise CollaboratorUnavailable(name, f"{name}_down")

	async def load_requester(self, user_id):
		self._enter("load_requester")
		return self.requester

	async def has_embedding(self, user_id):
		self._enter("has_embedding")
		return self.embedding

	async def fetch_profiles(self, *, exclude_user_id, user_ids, filters, cap):
		self._enter("fetch_profiles")
		rows = []
		for profile in sorted(self.profiles, key=lambda item: item.user_id):
			if profile.user_id == exclude_user_id:
				continue
			if user_ids is not None and profile.user_id not in user_ids:
				continue
			if filters.online_only and not profile.is_online:
				continue
			if filters.skills and not set(filters.skills) & set(profile.skills):
				continue
			if filters.interests and not set(filters.interests) & set(profile.interests):
				continue
			if filters.goals and not set(filters.goals) & set(profile.looking_for):
				continue
			rows.append(profile)
		return rows[:cap]

	async def fetch_event_attendees(self, event_id):
		self._enter("fetch_event_attendees")
		return list(self.attendees.get(event_id, []))

	async def fetch_blocked_ids(self, user_id):
		self._enter("fetch_blocked_ids")
		return set(self.blocked)

	async def similarities(self, query_user_id, candidate_ids):
		self._enter("similarities")
		return {uid: value for uid, value in self.similarity_map.items() if uid in candidate_ids}

	async def fetch_interactions(self, user_id, candidate_ids, *, since):
		self._enter("fetch_interactions")
		return [event for event in self.interactions if event.target_user_id in candidate_ids and event.created_at >= since]

	async def fetch_signal_weights(self):
		self._enter("fetch_signal_weights")
		return list(self.signal_weights)

	async def fetch_session_bookmarks(self, user_id, event_id):
		self._enter("fetch_session_bookmarks")
		return set(self.my_bookmarks)

	async def fetch_candidate_bookmarks(self, event_id, candidate_ids):
		self._enter("fetch_candidate_bookmarks")
		return [(uid, sid) for uid, sid in self.candidate_bookmarks if uid in candidate_ids]

	async def fetch_experiment_assignment(self, user_id, context):
		self._enter("fetch_experiment_assignment")
		return self.assignment

	async def insert_impression(self, record):
		self._enter("insert_impression")
		self.impressions.append(record)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from smartmatch.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		await impressions.drain()
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in dev mode.
	"""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def match_store():
	return FakeMatchStore()


@pytest.fixture
def match_service(match_store):
	return MatchService(store=match_store)


@pytest_asyncio.fixture
async def api_client(match_service):
	app.dependency_overrides[matches_api.get_match_service] = lambda: match_service
	transport = ASGITransport(app=app)
	try:
		async with AsyncClient(transport=transport, base_url="http://testserver") as client:
			yield client
	finally:
		app.dependency_overrides.pop(matches_api.get_match_service, None)
