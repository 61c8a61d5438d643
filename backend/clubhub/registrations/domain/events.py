"""Helper utilities to format outbox payloads for registrations."""

from __future__ import annotations

from typing import Any

from clubhub.registrations.domain import models

REGISTRATION_CREATED = "registration.created"
REGISTRATION_CANCELLED = "registration.cancelled"
REGISTRATION_PROMOTED = "registration.promoted"
REGISTRATION_CHECKED_IN = "registration.checked_in"


def registration_payload(registration: models.Registration) -> dict[str, Any]:
	return {
		"id": str(registration.id),
		"registration_id": registration.registration_id,
		"event_id": str(registration.event_id),
		"user_id": str(registration.user_id),
		"status": registration.status.value,
		"registered_at": registration.registered_at.isoformat(),
	}
