"""Requester authentication for the match API.

Production requires a Bearer access token. Development builds also accept an
`X-User-Id` header so local tooling can rank as any user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from smartmatch.infra import jwt as jwt_helper
from smartmatch.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	session_id: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorised() -> HTTPException:
	return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		payload = jwt_helper.decode_access(token)
	except InvalidTokenError:
		raise _unauthorised() from None
	session_id = payload.get("sid")
	return AuthenticatedUser(
		id=str(payload["sub"]).strip(),
		session_id=str(session_id).strip() if session_id is not None else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id and x_user_id.strip():
		return AuthenticatedUser(id=x_user_id.strip())
	raise _unauthorised()
