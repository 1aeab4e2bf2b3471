"""HS256 access tokens for the match API.

Issuer, audience and lifetime come from settings so tokens minted by the
identity service and by local tooling validate the same way.
"""

from __future__ import annotations

import time
from typing import Any, Mapping, Optional

import jwt
from jwt import InvalidTokenError

from smartmatch.settings import settings

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ("exp", "iat", "iss", "aud", "sub")
LEEWAY_SECONDS = 5


def encode_access(
	claims: Mapping[str, Any],
	*,
	ttl_seconds: Optional[int] = None,
	now: Optional[int] = None,
) -> str:
	"""Sign an access token. Explicit `exp`, `iss` or `aud` claims win over defaults."""
	issued_at = int(time.time()) if now is None else int(now)
	lifetime = settings.jwt_access_ttl_seconds if ttl_seconds is None else ttl_seconds
	body: dict[str, Any] = {
		"iss": settings.jwt_issuer,
		"aud": settings.jwt_audience,
		"iat": issued_at,
		"exp": issued_at + int(lifetime),
	}
	body.update(claims)
	return jwt.encode(body, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> dict[str, Any]:
	"""Validate signature and registered claims; raises InvalidTokenError subclasses."""
	payload = jwt.decode(
		token,
		settings.secret_key,
		algorithms=[ALGORITHM],
		audience=settings.jwt_audience,
		issuer=settings.jwt_issuer,
		leeway=LEEWAY_SECONDS,
		options={"require": list(REQUIRED_CLAIMS)},
	)
	if not str(payload.get("sub") or "").strip():
		raise InvalidTokenError("empty_claim:sub")
	return payload
