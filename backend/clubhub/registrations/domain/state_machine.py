"""Registration lifecycle transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional
from uuid import UUID

import asyncpg

from clubhub.obs import metrics as obs_metrics
from clubhub.registrations.domain import models, repo as repo_module
from clubhub.registrations.domain.exceptions import (
	AlreadyCheckedInError,
	EventFullError,
	InvalidTransitionError,
	NotConfirmedError,
	NotFoundError,
)
from clubhub.registrations.domain.reconciler import CapacityReconciler

_LOG = logging.getLogger(__name__)

Status = models.RegistrationStatus

# target -> statuses it may be reached from
ALLOWED_SOURCES: Mapping[Status, frozenset[Status]] = {
	Status.CONFIRMED: frozenset({Status.PENDING, Status.WAITLIST}),
	Status.CANCELLED: frozenset({Status.PENDING, Status.CONFIRMED, Status.WAITLIST}),
	Status.ATTENDED: frozenset({Status.CONFIRMED}),
	Status.NO_SHOW: frozenset({Status.CONFIRMED}),
}

INITIAL_STATUSES = frozenset({Status.PENDING, Status.CONFIRMED, Status.WAITLIST})

# waitlist -> confirmed is reserved for the waitlist promoter, which keeps FIFO order
PROMOTION_SOURCES = frozenset({Status.WAITLIST})


def sources_for(target: Status, *, promotion: bool = False) -> frozenset[Status]:
	sources = ALLOWED_SOURCES.get(target, frozenset())
	if target is Status.CONFIRMED and not promotion:
		return sources - PROMOTION_SOURCES
	return sources


def assert_transition(current: Status, target: Status, *, promotion: bool = False) -> None:
	"""Raise the error a caller should see when ``current -> target`` is not allowed.

	Only ``promotion=True`` lets a waitlisted registration become confirmed.
	"""
	if current in sources_for(target, promotion=promotion):
		return
	if target is Status.ATTENDED:
		if current is Status.ATTENDED:
			raise AlreadyCheckedInError()
		if current in (Status.PENDING, Status.WAITLIST):
			raise NotConfirmedError()
	raise InvalidTransitionError(current.value, target.value)


def affects_capacity(previous: Status, target: Status) -> bool:
	return (previous in models.CAPACITY_STATUSES) != (target in models.CAPACITY_STATUSES)


@dataclass(slots=True)
class TransitionResult:
	registration: models.Registration
	previous_status: Status

	@property
	def freed_slot(self) -> bool:
		return self.previous_status is Status.CONFIRMED and self.registration.status is Status.CANCELLED


class RegistrationStateMachine:
	"""Applies guarded status changes to a single registration.

	Writes are compare-and-set on the current status, so a concurrent change
	turns the write into a no-op which is then reported with the error that
	matches the row's fresh status.
	"""

	def __init__(
		self,
		repository: repo_module.RegistrationRepository | None = None,
		reconciler: CapacityReconciler | None = None,
	) -> None:
		self.repo = repository or repo_module.RegistrationRepository()
		self.reconciler = reconciler or CapacityReconciler(self.repo)

	async def transition(
		self,
		conn: asyncpg.Connection,
		registration_id: UUID,
		target: Status,
		*,
		note: Optional[models.AdminNote] = None,
		promotion: bool = False,
	) -> TransitionResult:
		current = await self.repo.get_registration(conn, registration_id)
		if current is None:
			raise NotFoundError("registration_not_found")
		assert_transition(current.status, target, promotion=promotion)
		applied = await self.repo.transition_status(
			conn,
			registration_id=registration_id,
			target=target,
			sources=sorted(sources_for(target, promotion=promotion), key=lambda status: status.value),
			note=note,
		)
		if applied is None:
			fresh = await self.repo.get_registration(conn, registration_id)
			if fresh is None:
				raise NotFoundError("registration_not_found")
			assert_transition(fresh.status, target, promotion=promotion)
			raise InvalidTransitionError(fresh.status.value, target.value)
		registration, previous = applied
		obs_metrics.inc_transition(target.value)
		_LOG.info(
			"registration.transition",
			extra={
				"registration_id": str(registration.id),
				"event_id": str(registration.event_id),
				"from_status": previous.value,
				"to_status": target.value,
			},
		)
		if affects_capacity(previous, target):
			await self.reconciler.reconcile(conn, registration.event_id)
		return TransitionResult(registration=registration, previous_status=previous)

	async def confirm(
		self,
		conn: asyncpg.Connection,
		event: models.Event,
		registration_id: UUID,
		*,
		note: Optional[models.AdminNote] = None,
	) -> TransitionResult:
		"""Confirm a pending registration if a slot is free.

		Waitlisted entries are only confirmed through ``promote``.

		The caller must hold the event row lock so the capacity check and the
		write cannot interleave with another admission or promotion.
		"""
		current = await self.repo.get_registration(conn, registration_id)
		if current is None or current.event_id != event.id:
			raise NotFoundError("registration_not_found")
		assert_transition(current.status, Status.CONFIRMED, promotion=False)
		if event.max_participants is not None:
			live = await self.repo.count_capacity_holders(conn, event.id)
			if live >= event.max_participants:
				raise EventFullError()
		return await self.transition(conn, registration_id, Status.CONFIRMED, note=note)

	async def promote(self, conn: asyncpg.Connection, registration_id: UUID) -> TransitionResult:
		return await self.transition(conn, registration_id, Status.CONFIRMED, promotion=True)

	async def cancel(
		self,
		conn: asyncpg.Connection,
		registration_id: UUID,
		*,
		note: Optional[models.AdminNote] = None,
	) -> TransitionResult:
		return await self.transition(conn, registration_id, Status.CANCELLED, note=note)

	async def mark_attended(self, conn: asyncpg.Connection, registration_id: UUID) -> TransitionResult:
		return await self.transition(conn, registration_id, Status.ATTENDED)

	async def mark_no_show(
		self,
		conn: asyncpg.Connection,
		registration_id: UUID,
		*,
		note: Optional[models.AdminNote] = None,
	) -> TransitionResult:
		return await self.transition(conn, registration_id, Status.NO_SHOW, note=note)


__all__ = [
	"ALLOWED_SOURCES",
	"INITIAL_STATUSES",
	"PROMOTION_SOURCES",
	"RegistrationStateMachine",
	"TransitionResult",
	"affects_capacity",
	"sources_for",
	"assert_transition",
]
