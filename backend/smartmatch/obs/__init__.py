"""Observability bootstrap: request ids, JSON logs and tracing."""

from __future__ import annotations

from fastapi import FastAPI

from smartmatch.obs import logging as obs_logging
from smartmatch.obs import middleware, tracing
from smartmatch.settings import settings

_installed_on: set[int] = set()


def init(app: FastAPI) -> None:
	"""Wire observability into `app`; repeated calls for the same app are no-ops."""
	if id(app) in _installed_on:
		return
	# Error bodies carry the request id, so the middleware is installed even when disabled.
	middleware.install(app, enabled=settings.obs_enabled)
	if settings.obs_enabled:
		obs_logging.configure_logging()
		tracing.init_tracing(app)
	_installed_on.add(id(app))


def shutdown() -> None:
	tracing.shutdown_tracing()


__all__ = ["init", "shutdown"]
