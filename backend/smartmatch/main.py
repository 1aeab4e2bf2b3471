"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smartmatch.api import matches, ops
from smartmatch.api.errors import install_error_handlers
from smartmatch.domain.matching import impressions
from smartmatch.infra import postgres
from smartmatch.infra.redis import close_redis
from smartmatch.obs import init as obs_init
from smartmatch.obs import shutdown as obs_shutdown
from smartmatch.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	try:
		yield
	finally:
		await impressions.drain()
		await postgres.close_pool()
		await close_redis()
		obs_shutdown()


app = FastAPI(title="Smart Match API", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins and settings.is_dev():
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins:
	allow_origins = [origin for origin in allow_origins if origin != "*"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
obs_init(app)

app.include_router(matches.router, tags=["matches"])
app.include_router(ops.router, tags=["ops"])
