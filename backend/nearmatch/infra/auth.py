"""Authentication helpers for FastAPI endpoints and socket handshakes.

Identity is issued by the external auth service as an HS256 access JWT whose
``sub`` claim is the user id. The ``X-User-Id`` header is honoured only in
development so local tools can act as any user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from nearmatch.domain.errors import Unauthenticated
from nearmatch.infra import jwt as jwt_helper
from nearmatch.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	session_id: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser."""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		raise Unauthenticated("invalid_token") from None
	session_id = payload.get("sid")
	return AuthenticatedUser(
		id=str(payload["sub"]).strip(),
		session_id=str(session_id).strip() if session_id is not None else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow a plain header. In all other environments a valid
	Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		try:
			return verify_access_jwt(credentials.credentials)
		except Unauthenticated:
			raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from None

	if settings.is_dev() and x_user_id and x_user_id.strip():
		return AuthenticatedUser(id=x_user_id.strip())

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def _header(scope: Mapping, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def resolve_socket_identity(environ: Mapping, auth: Optional[Mapping] = None) -> Optional[str]:
	"""Return the verified user id carried by a socket handshake, if any.

	Looks at the Socket.IO ``auth`` payload token, then the Authorization header.
	Raises Unauthenticated when a token is presented but does not verify.
	"""
	scope = environ.get("asgi.scope", environ)
	token: Optional[str] = None
	if auth and auth.get("token"):
		token = str(auth["token"])
	else:
		authorization = _header(scope, "authorization") or environ.get("HTTP_AUTHORIZATION")
		if authorization and authorization.lower().startswith("bearer "):
			token = authorization.split(" ", 1)[1].strip()
	if token:
		return verify_access_jwt(token).id
	if settings.is_dev():
		header_user = _header(scope, "x-user-id")
		if header_user and header_user.strip():
			return header_user.strip()
	return None
