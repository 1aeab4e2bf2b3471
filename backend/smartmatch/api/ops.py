"""Operator endpoints: probes, Prometheus scrape, signal weight cache control."""

from __future__ import annotations

import secrets
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from smartmatch.api.matches import get_match_service
from smartmatch.domain.matching.service import MatchService
from smartmatch.domain.matching.weights import invalidate_signal_weights, load_signal_weights
from smartmatch.obs import health
from smartmatch.settings import settings

router = APIRouter(prefix="", tags=["ops"])


def _presented_token(x_admin_token: Optional[str], authorization: Optional[str]) -> str:
	if x_admin_token:
		return x_admin_token
	scheme, _, credential = (authorization or "").partition(" ")
	return credential.strip() if scheme.lower() == "bearer" else ""


async def require_admin(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	expected = settings.obs_admin_token
	if not expected:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	presented = _presented_token(x_admin_token, authorization)
	if not secrets.compare_digest(presented.encode(), expected.encode()):
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


async def require_metrics_access(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if not settings.obs_metrics_public:
		await require_admin(x_admin_token=x_admin_token, authorization=authorization)


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready() -> Response:
	status_code, payload = await health.readiness()
	return JSONResponse(content=payload, status_code=status_code)


@router.get("/metrics")
async def metrics_endpoint(_: None = Depends(require_metrics_access)) -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/ops/signal-weights")
async def signal_weights_endpoint(
	_: None = Depends(require_admin),
	service: MatchService = Depends(get_match_service),
) -> dict[str, Any]:
	"""Active behavioral signal weights as the ranking path currently sees them."""
	loaded = await load_signal_weights(service.store)
	return {
		"signals": [
			{
				"signal_name": row.signal_name,
				"pulse_weight": row.pulse_weight,
				"zone_weight": row.zone_weight,
				"decay_half_life_days": row.decay_half_life_days,
			}
			for row in sorted(loaded.values(), key=lambda item: item.signal_name)
		]
	}


@router.post("/ops/signal-weights/invalidate", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_signal_weights_endpoint(_: None = Depends(require_admin)) -> Response:
	await invalidate_signal_weights()
	return Response(status_code=status.HTTP_204_NO_CONTENT)
