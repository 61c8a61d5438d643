"""Admission control for new registrations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

import asyncpg

from clubhub.obs import metrics as obs_metrics
from clubhub.registrations.domain import codes, events, models, repo as repo_module
from clubhub.registrations.domain.exceptions import (
	AlreadyRegisteredError,
	NotFoundError,
	RegistrationClosedError,
	RegistrationError,
)
from clubhub.registrations.domain.reconciler import CapacityReconciler
from clubhub.settings import settings

_LOG = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


def check_window(event: models.Event, now: datetime) -> None:
	if now < event.registration_start_date:
		raise RegistrationClosedError("registration_not_started")
	if now > event.registration_end_date:
		raise RegistrationClosedError("registration_ended")


@dataclass(frozen=True, slots=True)
class AdmissionDecision:
	status: models.RegistrationStatus
	payment_status: models.PaymentStatus

	@property
	def waitlisted(self) -> bool:
		return self.status is models.RegistrationStatus.WAITLIST


def available_slots(event: models.Event, live_count: int) -> int | None:
	"""Free slots from the live count; None means unlimited."""
	if event.max_participants is None:
		return None
	return event.max_participants - live_count


def decide_admission(event: models.Event, live_count: int) -> AdmissionDecision:
	"""Pick the initial status. ``live_count`` must be the live confirmed + attended count."""
	available = available_slots(event, live_count)
	if available is not None and available <= 0:
		return AdmissionDecision(models.RegistrationStatus.WAITLIST, models.PaymentStatus.PENDING)
	if event.registration_fee <= 0:
		return AdmissionDecision(models.RegistrationStatus.CONFIRMED, models.PaymentStatus.COMPLETED)
	return AdmissionDecision(models.RegistrationStatus.PENDING, models.PaymentStatus.PENDING)


@dataclass(slots=True)
class AdmissionResult:
	registration: models.Registration
	event: models.Event
	decision: AdmissionDecision

	@property
	def waitlisted(self) -> bool:
		return self.decision.waitlisted


class AdmissionController:
	"""Runs the ordered admission checks and creates the registration.

	Must be called inside a transaction; the event row is locked first so
	the count-then-insert cannot race another admission for the same event.
	"""

	def __init__(
		self,
		repository: repo_module.RegistrationRepository | None = None,
		reconciler: CapacityReconciler | None = None,
		*,
		code_length: int | None = None,
	) -> None:
		self.repo = repository or repo_module.RegistrationRepository()
		self.reconciler = reconciler or CapacityReconciler(self.repo)
		self.code_length = code_length or settings.check_in_code_length

	async def admit(
		self,
		conn: asyncpg.Connection,
		*,
		event_id: UUID,
		user_id: UUID,
		contact_info: models.ContactInfo,
		additional_info: models.AdditionalInfo,
		notes: Optional[str] = None,
		source: models.RegistrationSource = models.RegistrationSource.WEBSITE,
		now: Optional[datetime] = None,
	) -> AdmissionResult:
		try:
			event = await self.repo.get_event(conn, event_id, for_update=True)
			if event is None or not event.is_active:
				raise NotFoundError("event_not_found")
			check_window(event, now or datetime.now(timezone.utc))
			existing = await self.repo.get_registration_for_user(conn, event_id=event_id, user_id=user_id)
			if existing is not None:
				raise AlreadyRegisteredError()
			live = await self.repo.count_capacity_holders(conn, event_id)
			decision = decide_admission(event, live)
			registration = await self._insert(
				conn,
				event=event,
				user_id=user_id,
				decision=decision,
				contact_info=contact_info,
				additional_info=additional_info,
				notes=notes,
				source=source,
			)
		except RegistrationError as exc:
			obs_metrics.inc_registration_rejected(exc.detail)
			raise
		if registration.holds_slot:
			await self.reconciler.reconcile(conn, event.id)
		await self.repo.enqueue_outbox(
			conn,
			aggregate_type="registration",
			aggregate_id=registration.id,
			event_type=events.REGISTRATION_CREATED,
			payload=events.registration_payload(registration),
		)
		obs_metrics.inc_registration_created(registration.status.value)
		_LOG.info(
			"registration.created",
			extra={
				"registration_id": str(registration.id),
				"event_id": str(event.id),
				"status": registration.status.value,
				"live_count": live,
			},
		)
		return AdmissionResult(registration=registration, event=event, decision=decision)

	async def _insert(
		self,
		conn: asyncpg.Connection,
		*,
		event: models.Event,
		user_id: UUID,
		decision: AdmissionDecision,
		contact_info: models.ContactInfo,
		additional_info: models.AdditionalInfo,
		notes: Optional[str],
		source: models.RegistrationSource,
	) -> models.Registration:
		last_error: repo_module.CheckInCodeCollision | None = None
		for _ in range(MAX_CODE_ATTEMPTS):
			code = codes.generate_check_in_code(self.code_length)
			try:
				return await self.repo.insert_registration(
					conn,
					event_id=event.id,
					user_id=user_id,
					status=decision.status,
					contact_info=contact_info,
					additional_info=additional_info,
					payment_amount=Decimal(event.registration_fee),
					payment_status=decision.payment_status,
					check_in_code=code,
					notes=notes,
					source=source,
				)
			except repo_module.CheckInCodeCollision as exc:
				_LOG.warning("registration.check_in_code_collision", extra={"event_id": str(event.id)})
				last_error = exc
		raise RuntimeError("could not allocate a unique check-in code") from last_error


__all__ = [
	"AdmissionController",
	"AdmissionDecision",
	"AdmissionResult",
	"available_slots",
	"check_window",
	"decide_admission",
]
