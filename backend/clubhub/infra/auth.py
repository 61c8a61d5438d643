"""Caller identity for the registrations API.

Production callers present the identity service's bearer JWT. In development
``X-User-Id`` / ``X-User-Roles`` headers stand in for it so scripts and the
check-in kiosk emulator can act as any member.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from clubhub.infra import jwt as jwt_helper
from clubhub.settings import settings

ADMIN_ROLE = "admin"
MODERATOR_ROLE = "moderator"
STAFF_ROLES = (ADMIN_ROLE, MODERATOR_ROLE)

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	display_name: Optional[str] = None
	email: Optional[str] = None
	roles: Tuple[str, ...] = ()

	def has_role(self, role: str) -> bool:
		return role in self.roles

	@property
	def is_admin(self) -> bool:
		return self.has_role(ADMIN_ROLE)

	@property
	def is_staff(self) -> bool:
		"""Admins and moderators; moderators still only manage events they organize."""
		return any(self.has_role(role) for role in STAFF_ROLES)


def _unauthorized() -> HTTPException:
	return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		claims = jwt_helper.decode_access(token)
	except InvalidTokenError as exc:
		raise _unauthorized() from exc
	return AuthenticatedUser(id=claims.subject, display_name=claims.name, email=claims.email, roles=claims.roles)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	if credentials is not None and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	# header identities are ignored outside development
	if x_user_id and settings.is_dev():
		return AuthenticatedUser(id=x_user_id.strip(), roles=jwt_helper.split_roles(x_user_roles or ""))
	raise _unauthorized()


def require_roles(*roles: str):
	"""Dependency factory: the caller must hold at least one of ``roles``."""
	accepted = frozenset(role.strip() for role in roles if role.strip())

	async def _dependency(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
		if accepted and accepted.isdisjoint(user.roles):
			raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient_role")
		return user

	return _dependency


get_admin_user = require_roles(ADMIN_ROLE)
