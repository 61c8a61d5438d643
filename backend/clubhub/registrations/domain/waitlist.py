"""FIFO promotion of waitlisted registrations."""

from __future__ import annotations

import logging

import asyncpg

from clubhub.obs import metrics as obs_metrics
from clubhub.registrations.domain import events, models, repo as repo_module
from clubhub.registrations.domain.state_machine import RegistrationStateMachine

_LOG = logging.getLogger(__name__)


class WaitlistPromoter:
	"""Fills the single slot freed by a confirmed cancellation."""

	def __init__(
		self,
		repository: repo_module.RegistrationRepository | None = None,
		state_machine: RegistrationStateMachine | None = None,
	) -> None:
		self.repo = repository or repo_module.RegistrationRepository()
		self.state_machine = state_machine or RegistrationStateMachine(self.repo)

	async def promote_next(self, conn: asyncpg.Connection, event: models.Event) -> models.Registration | None:
		"""Promote the earliest waitlisted registration, if a slot is actually free.

		Must run in the cancelling transaction with the event row locked.
		"""
		if event.max_participants is not None:
			live = await self.repo.count_capacity_holders(conn, event.id)
			if live >= event.max_participants:
				return None
		candidate = await self.repo.next_waitlisted(conn, event.id)
		if candidate is None:
			return None
		result = await self.state_machine.promote(conn, candidate.id)
		promoted = result.registration
		await self.repo.enqueue_outbox(
			conn,
			aggregate_type="registration",
			aggregate_id=promoted.id,
			event_type=events.REGISTRATION_PROMOTED,
			payload=events.registration_payload(promoted),
		)
		obs_metrics.inc_waitlist_promotions()
		_LOG.info(
			"waitlist.promoted",
			extra={"event_id": str(event.id), "registration_id": str(promoted.id)},
		)
		return promoted


__all__ = ["WaitlistPromoter"]
