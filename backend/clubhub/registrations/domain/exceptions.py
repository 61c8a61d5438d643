"""Typed errors raised by the registration subsystem.

Each error carries the HTTP status it maps to and a snake_case ``detail``
the frontend switches on (a check-in operator sees different feedback for
``already_checked_in`` and ``registration_not_confirmed``).
"""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class RegistrationError(Exception):
	"""Base class for registration errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "registration_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class NotFoundError(RegistrationError):
	"""Event or registration is missing."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"


class RegistrationClosedError(RegistrationError):
	"""The event's registration window is not open."""

	status_code = status.HTTP_400_BAD_REQUEST
	detail = "registration_closed"


class AlreadyRegisteredError(RegistrationError):
	status_code = status.HTTP_409_CONFLICT
	detail = "already_registered"


class ForbiddenError(RegistrationError):
	"""Raised when the caller lacks ownership or role."""

	status_code = status.HTTP_403_FORBIDDEN
	detail = "forbidden"


class InvalidTransitionError(RegistrationError):
	"""A state machine guard rejected the requested status change."""

	status_code = status.HTTP_409_CONFLICT
	detail = "invalid_transition"

	def __init__(self, current: str | None = None, target: str | None = None) -> None:
		detail = f"invalid_transition:{current}->{target}" if current and target else None
		super().__init__(detail)
		self.current = current
		self.target = target


class RegistrationCancelledError(RegistrationError):
	"""Details of a cancelled registration are frozen."""

	status_code = status.HTTP_409_CONFLICT
	detail = "registration_cancelled"


class AlreadyCheckedInError(RegistrationError):
	status_code = status.HTTP_409_CONFLICT
	detail = "already_checked_in"


class NotConfirmedError(RegistrationError):
	status_code = status.HTTP_409_CONFLICT
	detail = "registration_not_confirmed"


class EventFullError(RegistrationError):
	"""No capacity slot is free for a confirmation."""

	status_code = status.HTTP_409_CONFLICT
	detail = "event_full"


class ValidationError(RegistrationError):
	"""Raised for validation errors not covered by FastAPI schema validation."""

	status_code = _HTTP_422
	detail = "validation_error"


class RateLimitedError(RegistrationError):
	status_code = status.HTTP_429_TOO_MANY_REQUESTS
	detail = "rate_limited"

	def __init__(self, retry_after: int = 60) -> None:
		super().__init__()
		self.retry_after = retry_after
