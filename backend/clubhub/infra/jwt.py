"""HS256 access tokens shared with the ClubHub identity service."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

import jwt

from clubhub.settings import settings

ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sub"]


@dataclass(frozen=True, slots=True)
class AccessClaims:
	subject: str
	roles: Tuple[str, ...]
	name: Optional[str] = None
	email: Optional[str] = None


def split_roles(claim: object) -> Tuple[str, ...]:
	"""Roles arrive as a list or as a comma separated string."""
	if isinstance(claim, str):
		claim = claim.split(",")
	if not isinstance(claim, (list, tuple)):
		return ()
	return tuple(role for role in (str(item).strip() for item in claim) if role)


def encode_access(payload: Mapping[str, Any], *, ttl_seconds: int = 3600) -> str:
	issued = int(time.time())
	body: dict[str, Any] = {
		"iss": settings.jwt_issuer,
		"aud": settings.jwt_audience,
		"iat": issued,
		"exp": issued + ttl_seconds,
		**payload,
	}
	return jwt.encode(body, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> AccessClaims:
	"""Validate signature and registered claims.

	Raises ``jwt.InvalidTokenError`` (or a subclass) when the token is unusable.
	Older tokens carry a single ``role`` claim instead of ``roles``.
	"""
	payload = jwt.decode(
		token,
		settings.secret_key,
		algorithms=[ALGORITHM],
		audience=settings.jwt_audience,
		issuer=settings.jwt_issuer,
		leeway=settings.jwt_leeway_seconds,
		options={"require": _REQUIRED_CLAIMS},
	)
	subject = str(payload["sub"]).strip()
	if not subject:
		raise jwt.InvalidTokenError("empty_subject")
	name = payload.get("name") or payload.get("display_name")
	email = payload.get("email")
	return AccessClaims(
		subject=subject,
		roles=split_roles(payload.get("roles") or payload.get("role")),
		name=str(name) if name is not None else None,
		email=str(email) if email is not None else None,
	)
