"""Authorization policies for registration operations."""

from __future__ import annotations

from clubhub.infra.auth import AuthenticatedUser
from clubhub.registrations.domain import models
from clubhub.registrations.domain.exceptions import ForbiddenError

# Statuses each kind of caller may request through an update.
OWNER_STATUS_CHANGES = frozenset({models.RegistrationStatus.CANCELLED})
ADMIN_STATUS_CHANGES = frozenset(
	{
		models.RegistrationStatus.CONFIRMED,
		models.RegistrationStatus.CANCELLED,
		models.RegistrationStatus.NO_SHOW,
	}
)


def is_owner(user: AuthenticatedUser, registration: models.Registration) -> bool:
	return str(registration.user_id) == user.id


def can_manage_event(user: AuthenticatedUser, event: models.Event) -> bool:
	"""Admins manage every event; moderators only the events they organize."""
	if user.is_admin:
		return True
	return user.is_staff and event.is_organizer(user.id)


def assert_can_manage_event(user: AuthenticatedUser, event: models.Event) -> None:
	if not can_manage_event(user, event):
		raise ForbiddenError("not_event_organizer")


def assert_is_owner(user: AuthenticatedUser, registration: models.Registration) -> None:
	if not is_owner(user, registration):
		raise ForbiddenError("not_registration_owner")


def assert_can_cancel(user: AuthenticatedUser, registration: models.Registration) -> None:
	if not (is_owner(user, registration) or user.is_admin):
		raise ForbiddenError("not_registration_owner")


def assert_can_edit(user: AuthenticatedUser, registration: models.Registration, event: models.Event) -> None:
	if not (is_owner(user, registration) or can_manage_event(user, event)):
		raise ForbiddenError("not_registration_owner")


def assert_status_change_allowed(
	user: AuthenticatedUser,
	registration: models.Registration,
	target: models.RegistrationStatus,
) -> None:
	if user.is_admin and target in ADMIN_STATUS_CHANGES:
		return
	if is_owner(user, registration) and target in OWNER_STATUS_CHANGES:
		return
	raise ForbiddenError("status_change_not_allowed")
