import contextlib

import pytest

from smartmatch.domain.matching import weights
from smartmatch.domain.matching.models import SignalWeight
from smartmatch.infra import postgres
from smartmatch.infra.redis import redis_client
from smartmatch.settings import settings


class _Conn:
	async def execute(self, query):
		return "SELECT 1"


class _Pool:
	@contextlib.asynccontextmanager
	async def acquire(self):
		yield _Conn()


@pytest.mark.asyncio
async def test_readiness_reports_both_collaborators(api_client, monkeypatch):
	async def _get_pool():
		return _Pool()

	monkeypatch.setattr(postgres, "get_pool", _get_pool)
	response = await api_client.get("/health/ready")
	assert response.status_code == 200
	body = response.json()
	assert body["status"] == "ok"
	assert body["checks"]["redis"]["ok"] is True
	assert body["checks"]["postgres"]["ok"] is True
	assert body["pending_impressions"] == 0


@pytest.mark.asyncio
async def test_readiness_degrades_when_postgres_is_down(api_client, monkeypatch):
	async def _get_pool():
		raise OSError("connection refused")

	monkeypatch.setattr(postgres, "get_pool", _get_pool)
	response = await api_client.get("/health/ready")
	assert response.status_code == 503
	body = response.json()
	assert body["status"] == "degraded"
	assert body["checks"]["postgres"] == {"ok": False, "error": "connection refused", "pool": {"open": False}}


@pytest.mark.asyncio
async def test_liveness(api_client):
	response = await api_client.get("/health/live")
	assert response.status_code == 200
	assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_metrics_require_admin_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", "secret")
	denied = await api_client.get("/metrics")
	assert denied.status_code == 403
	allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "secret"})
	assert allowed.status_code == 200
	assert "smartmatch_match_requests_total" in allowed.text


@pytest.mark.asyncio
async def test_invalidate_signal_weights(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_admin_token", "secret")
	await redis_client.set(weights.SIGNAL_WEIGHTS_CACHE_KEY, "[]")
	response = await api_client.post(
		"/ops/signal-weights/invalidate",
		headers={"Authorization": "Bearer secret"},
	)
	assert response.status_code == 204
	assert await redis_client.get(weights.SIGNAL_WEIGHTS_CACHE_KEY) is None


@pytest.mark.asyncio
async def test_signal_weights_listing(api_client, match_store, monkeypatch):
	monkeypatch.setattr(settings, "obs_admin_token", "secret")
	match_store.signal_weights = [
		SignalWeight("view", 0.5, 0.5, 14.0),
		SignalWeight("like", 2.0, 3.0, 7.0),
		SignalWeight("legacy", 1.0, 1.0, 7.0, is_active=False),
	]
	denied = await api_client.get("/ops/signal-weights", headers={"X-Admin-Token": "wrong"})
	assert denied.status_code == 403
	response = await api_client.get("/ops/signal-weights", headers={"X-Admin-Token": "secret"})
	assert response.status_code == 200
	names = [row["signal_name"] for row in response.json()["signals"]]
	assert names == ["like", "view"]
