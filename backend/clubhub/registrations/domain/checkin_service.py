"""Door check-in: resolve a code or id and mark the registration attended."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import asyncpg

from clubhub.obs import metrics as obs_metrics
from clubhub.registrations.domain import codes, models, repo as repo_module
from clubhub.registrations.domain.exceptions import (
	AlreadyCheckedInError,
	NotConfirmedError,
	NotFoundError,
	ValidationError,
)
from clubhub.registrations.domain.state_machine import RegistrationStateMachine

_LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class CheckInReceipt:
	registration: models.Registration
	event: models.Event
	participant: Optional[models.Participant]


class CheckInService:
	def __init__(
		self,
		repository: repo_module.RegistrationRepository | None = None,
		state_machine: RegistrationStateMachine | None = None,
	) -> None:
		self.repo = repository or repo_module.RegistrationRepository()
		self.state_machine = state_machine or RegistrationStateMachine(self.repo)

	async def resolve(
		self,
		conn: asyncpg.Connection,
		*,
		check_in_code: Optional[str] = None,
		registration_id: Optional[UUID] = None,
	) -> models.Registration:
		"""Find the registration, preferring the scanned code over the id."""
		if check_in_code and check_in_code.strip():
			registration = await self.repo.get_registration_by_code(conn, codes.normalize_check_in_code(check_in_code))
		elif registration_id is not None:
			registration = await self.repo.get_registration(conn, registration_id)
		else:
			raise ValidationError("check_in_code_or_id_required")
		if registration is None:
			obs_metrics.inc_check_in("not_found")
			raise NotFoundError("registration_not_found")
		return registration

	async def check_in(self, conn: asyncpg.Connection, registration: models.Registration) -> CheckInReceipt:
		try:
			result = await self.state_machine.mark_attended(conn, registration.id)
		except AlreadyCheckedInError:
			obs_metrics.inc_check_in("already_checked_in")
			raise
		except NotConfirmedError:
			obs_metrics.inc_check_in("not_confirmed")
			raise
		obs_metrics.inc_check_in("success")
		event = await self.repo.get_event(conn, registration.event_id)
		if event is None:
			raise NotFoundError("event_not_found")
		participant = await self.repo.get_participant(conn, registration.user_id)
		_LOG.info(
			"registration.checked_in",
			extra={"registration_id": str(registration.id), "event_id": str(registration.event_id)},
		)
		return CheckInReceipt(registration=result.registration, event=event, participant=participant)


__all__ = ["CheckInReceipt", "CheckInService"]
