"""RSVP orchestration for club events."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import asyncpg
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from clubhub.infra import rate_limit
from clubhub.infra.auth import AuthenticatedUser
from clubhub.infra.postgres import get_pool, run_in_transaction
from clubhub.obs import metrics as obs_metrics
from clubhub.registrations.domain import events, models, policies, repo as repo_module, stats
from clubhub.registrations.domain.admission import AdmissionController
from clubhub.registrations.domain.checkin_service import CheckInService
from clubhub.registrations.domain.exceptions import (
	ForbiddenError,
	InvalidTransitionError,
	NotFoundError,
	RateLimitedError,
	RegistrationCancelledError,
	ValidationError,
)
from clubhub.registrations.domain.reconciler import CapacityReconciler
from clubhub.registrations.domain.state_machine import RegistrationStateMachine, TransitionResult
from clubhub.registrations.domain.waitlist import WaitlistPromoter
from clubhub.registrations.schemas import dto
from clubhub.settings import settings

_LOG = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")

Status = models.RegistrationStatus


def _user_uuid(user: AuthenticatedUser) -> UUID:
	try:
		return UUID(user.id)
	except ValueError as exc:
		raise ForbiddenError("invalid_user_id") from exc


def _merge(model_cls: type[M], current: M, patch: Optional[BaseModel]) -> M:
	"""Shallow-merge the keys the client sent over the stored value."""
	if patch is None:
		return current
	data = current.model_dump()
	data.update(patch.model_dump(exclude_unset=True))
	try:
		return model_cls.model_validate(data)
	except PydanticValidationError as exc:
		raise ValidationError("invalid_registration_details") from exc


class RSVPService:
	"""Handles registration lifecycle, waitlist promotion, and check-in."""

	def __init__(self, repository: repo_module.RegistrationRepository | None = None) -> None:
		self.repo = repository or repo_module.RegistrationRepository()
		self.reconciler = CapacityReconciler(self.repo)
		self.state_machine = RegistrationStateMachine(self.repo, self.reconciler)
		self.admission = AdmissionController(self.repo, self.reconciler)
		self.waitlist = WaitlistPromoter(self.repo, self.state_machine)
		self.check_ins = CheckInService(self.repo, self.state_machine)

	async def register(
		self,
		user: AuthenticatedUser,
		payload: dto.RegistrationCreateRequest,
		*,
		now: Optional[datetime] = None,
	) -> dto.RegistrationCreateResponse:
		user_id = _user_uuid(user)
		await self._enforce_rate_limit(user)

		async def _runner(conn: asyncpg.Connection):
			return await self.admission.admit(
				conn,
				event_id=payload.event_id,
				user_id=user_id,
				contact_info=payload.contact_info,
				additional_info=payload.additional_info,
				notes=payload.notes,
				source=payload.source,
				now=now,
			)

		result = await run_in_transaction(_runner, name="register")
		return dto.RegistrationCreateResponse(
			registration=dto.registration_response(result.registration, event=dto.event_summary(result.event)),
			waitlisted=result.waitlisted,
			message="added_to_waitlist" if result.waitlisted else "registered",
		)

	async def list_my_registrations(
		self,
		user: AuthenticatedUser,
		*,
		status: Optional[Status] = None,
		page: int = 1,
		limit: int = 10,
	) -> dto.MyRegistrationsResponse:
		user_id = _user_uuid(user)

		async def _fetch(conn: asyncpg.Connection):
			return await self.repo.list_user_registrations(
				conn,
				user_id,
				status=status.value if status else None,
				limit=limit,
				offset=(page - 1) * limit,
			)

		items, total = await self._with_conn(_fetch)
		registrations = [
			dto.registration_response(
				registration,
				event=dto.EventSummary(
					id=registration.event_id,
					title=extras["event_title"],
					starts_at=extras["event_starts_at"],
					venue=extras["event_venue"],
				),
			)
			for registration, extras in items
		]
		return dto.MyRegistrationsResponse(
			registrations=registrations,
			pagination=dto.Pagination.build(page=page, limit=limit, total=total),
		)

	async def list_event_registrations(
		self,
		user: AuthenticatedUser,
		event_id: UUID,
		*,
		status: Optional[Status] = None,
		page: int = 1,
		limit: int = 50,
	) -> dto.EventRegistrationsResponse:
		async def _fetch(conn: asyncpg.Connection):
			await self._load_managed_event(conn, user, event_id)
			items, total = await self.repo.list_event_registrations(
				conn,
				event_id,
				status=status.value if status else None,
				limit=limit,
				offset=(page - 1) * limit,
			)
			rows = await self.repo.list_status_rows(conn, event_id)
			return items, total, rows

		items, total, rows = await self._with_conn(_fetch)
		breakdown = stats.summarize_statuses(row_status for row_status, _ in rows)
		return dto.EventRegistrationsResponse(
			registrations=[
				dto.registration_response(registration, participant=self._participant(registration, extras))
				for registration, extras in items
			],
			stats=dto.breakdown_response(breakdown),
			pagination=dto.Pagination.build(page=page, limit=limit, total=total),
		)

	async def export_event_registrations(
		self,
		user: AuthenticatedUser,
		event_id: UUID,
		*,
		status: Optional[Status] = None,
	) -> dto.EventRegistrationsExport:
		async def _fetch(conn: asyncpg.Connection):
			await self._load_managed_event(conn, user, event_id)
			items, _ = await self.repo.list_event_registrations(
				conn,
				event_id,
				status=status.value if status else None,
				limit=None,
			)
			return items

		items = await self._with_conn(_fetch)
		rows = [
			dto.ExportRow(
				registration_id=registration.registration_id,
				name=extras.get("participant_name"),
				email=registration.contact_info.email,
				phone=registration.contact_info.phone,
				status=registration.status,
				registered_at=registration.registered_at,
				team_name=registration.additional_info.team_name or "",
				special_needs=registration.additional_info.special_needs or "",
				payment_status=registration.payment.status,
			)
			for registration, extras in items
		]
		return dto.EventRegistrationsExport(data=rows, count=len(rows))

	async def update_registration(
		self,
		user: AuthenticatedUser,
		registration_id: UUID,
		payload: dto.RegistrationUpdateRequest,
	) -> dto.RegistrationResponse:
		actor_id = _user_uuid(user)

		async def _runner(conn: asyncpg.Connection) -> models.Registration:
			registration = await self._load_registration(conn, registration_id)
			wants_transition = payload.status is not None and payload.status != registration.status
			event = await self._load_event(conn, registration.event_id, for_update=wants_transition)
			policies.assert_can_edit(user, registration, event)
			if registration.status is Status.CANCELLED:
				if payload.status is Status.CANCELLED:
					raise InvalidTransitionError(Status.CANCELLED.value, Status.CANCELLED.value)
				raise RegistrationCancelledError()
			if wants_transition:
				assert payload.status is not None
				policies.assert_status_change_allowed(user, registration, payload.status)
			note = None
			if payload.admin_note:
				if not policies.can_manage_event(user, event):
					raise ForbiddenError("admin_note_not_allowed")
				note = models.AdminNote(note=payload.admin_note, added_by=actor_id, added_at=datetime.now(timezone.utc))

			updated = registration
			details_changed = payload.contact_info is not None or payload.additional_info is not None
			if details_changed or (note is not None and not wants_transition):
				contact_info = _merge(models.ContactInfo, registration.contact_info, payload.contact_info)
				additional_info = _merge(models.AdditionalInfo, registration.additional_info, payload.additional_info)
				updated = await self.repo.update_details(
					conn,
					registration_id,
					contact_info=contact_info,
					additional_info=additional_info,
					note=None if wants_transition else note,
				) or updated
			if wants_transition:
				assert payload.status is not None
				updated = await self._apply_status(conn, event, registration_id, payload.status, note=note)
			return updated

		registration = await run_in_transaction(_runner, name="update_registration")
		return dto.registration_response(registration)

	async def cancel_registration(self, user: AuthenticatedUser, registration_id: UUID) -> dto.CancelResponse:
		async def _runner(conn: asyncpg.Connection):
			registration = await self._load_registration(conn, registration_id)
			policies.assert_can_cancel(user, registration)
			event = await self._load_event(conn, registration.event_id, for_update=True)
			return await self._cancel_tx(conn, event, registration_id)

		result, promoted = await run_in_transaction(_runner, name="cancel_registration")
		return dto.CancelResponse(
			registration=dto.registration_response(result.registration),
			waitlist_promoted=promoted is not None,
			promoted_registration_id=promoted.id if promoted else None,
		)

	async def check_in(
		self,
		user: AuthenticatedUser,
		registration_id: UUID,
		payload: dto.CheckInRequest,
	) -> dto.CheckInResponse:
		async def _runner(conn: asyncpg.Connection):
			registration = await self.check_ins.resolve(
				conn,
				check_in_code=payload.check_in_code,
				registration_id=registration_id,
			)
			event = await self._load_event(conn, registration.event_id)
			policies.assert_can_manage_event(user, event)
			return await self.check_ins.check_in(conn, registration)

		receipt = await run_in_transaction(_runner, name="check_in")
		return dto.CheckInResponse(
			registration=dto.registration_response(
				receipt.registration,
				event=dto.event_summary(receipt.event),
				participant=receipt.participant,
			),
			event=dto.event_summary(receipt.event),
			participant=receipt.participant,
		)

	async def qr_code(self, user: AuthenticatedUser, registration_id: UUID) -> dto.QRCodeResponse:
		async def _fetch(conn: asyncpg.Connection):
			registration = await self._load_registration(conn, registration_id)
			policies.assert_is_owner(user, registration)
			event = await self.repo.get_event(conn, registration.event_id)
			return registration, event

		registration, event = await self._with_conn(_fetch)
		return dto.QRCodeResponse(
			check_in_code=registration.check_in_code,
			qr_data=dto.QRData(
				registration_id=registration.registration_id,
				check_in_code=registration.check_in_code,
				event_id=registration.event_id,
				user_id=registration.user_id,
				event_title=event.title if event else None,
			),
		)

	async def event_stats(
		self,
		user: AuthenticatedUser,
		event_id: UUID,
		*,
		now: Optional[datetime] = None,
	) -> dto.EventStatsResponse:
		async def _fetch(conn: asyncpg.Connection):
			event = await self._load_managed_event(conn, user, event_id)
			rows = await self.repo.list_status_rows(conn, event_id)
			return event, rows

		event, rows = await self._with_conn(_fetch)
		breakdown = stats.summarize_statuses(row_status for row_status, _ in rows)
		availability = stats.compute_availability(event.max_participants, breakdown)
		trend = stats.daily_trend((registered_at for _, registered_at in rows), now or datetime.now(timezone.utc))
		return dto.EventStatsResponse(
			stats=dto.breakdown_response(breakdown),
			availability=dto.AvailabilityResponse(
				available=availability.available,
				remaining=availability.remaining,
				total=availability.total,
				confirmed=availability.confirmed,
			),
			daily_trend=[dto.DailyTrendPoint(date=point.date, count=point.count) for point in trend],
			event=dto.EventStatsSummary(
				title=event.title,
				max_participants=event.max_participants,
				current_participants=event.current_participants,
				registration_fee=float(event.registration_fee),
			),
		)

	async def confirm_payment(
		self,
		user: AuthenticatedUser,
		registration_id: UUID,
		payload: dto.PaymentConfirmRequest,
	) -> dto.PaymentConfirmResponse:
		"""Hook for the payment collaborator: record payment and confirm a pending registration."""
		if not user.is_admin:
			raise ForbiddenError("admin_role_required")

		async def _runner(conn: asyncpg.Connection) -> models.Registration:
			registration = await self._load_registration(conn, registration_id)
			event = await self._load_event(conn, registration.event_id, for_update=True)
			if registration.status not in (Status.PENDING, Status.CONFIRMED, Status.ATTENDED):
				raise InvalidTransitionError(registration.status.value, Status.CONFIRMED.value)
			if registration.status is Status.PENDING:
				await self.state_machine.confirm(conn, event, registration_id)
			updated = await self.repo.mark_payment_completed(
				conn,
				registration_id,
				transaction_id=payload.transaction_id,
				payment_method=payload.payment_method,
			)
			if updated is None:
				raise NotFoundError("registration_not_found")
			return updated

		registration = await run_in_transaction(_runner, name="confirm_payment")
		_LOG.info("registration.payment_confirmed", extra={"registration_id": str(registration.id)})
		return dto.PaymentConfirmResponse(registration=dto.registration_response(registration))

	# ------------------------------------------------------------------
	# Helpers

	async def _with_conn(self, func: Callable[[asyncpg.Connection], Awaitable[T]]) -> T:
		pool = await get_pool()
		async with pool.acquire() as conn:
			return await func(conn)

	async def _enforce_rate_limit(self, user: AuthenticatedUser) -> None:
		limit = settings.rsvp_rate_limit_per_minute
		if limit <= 0:
			return
		result = await rate_limit.hit("rsvp", user.id, limit=limit)
		if not result.allowed:
			obs_metrics.inc_rate_limited("rsvp")
			raise RateLimitedError(retry_after=result.retry_after)

	async def _load_registration(self, conn: asyncpg.Connection, registration_id: UUID) -> models.Registration:
		registration = await self.repo.get_registration(conn, registration_id)
		if registration is None:
			raise NotFoundError("registration_not_found")
		return registration

	async def _load_event(
		self,
		conn: asyncpg.Connection,
		event_id: UUID,
		*,
		for_update: bool = False,
	) -> models.Event:
		event = await self.repo.get_event(conn, event_id, for_update=for_update)
		if event is None:
			raise NotFoundError("event_not_found")
		return event

	async def _load_managed_event(
		self,
		conn: asyncpg.Connection,
		user: AuthenticatedUser,
		event_id: UUID,
	) -> models.Event:
		event = await self._load_event(conn, event_id)
		policies.assert_can_manage_event(user, event)
		return event

	async def _apply_status(
		self,
		conn: asyncpg.Connection,
		event: models.Event,
		registration_id: UUID,
		target: Status,
		*,
		note: Optional[models.AdminNote] = None,
	) -> models.Registration:
		if target is Status.CONFIRMED:
			result = await self.state_machine.confirm(conn, event, registration_id, note=note)
		elif target is Status.CANCELLED:
			result, _ = await self._cancel_tx(conn, event, registration_id, note=note)
		elif target is Status.NO_SHOW:
			result = await self.state_machine.mark_no_show(conn, registration_id, note=note)
		else:
			raise ForbiddenError("status_change_not_allowed")
		return result.registration

	async def _cancel_tx(
		self,
		conn: asyncpg.Connection,
		event: models.Event,
		registration_id: UUID,
		*,
		note: Optional[models.AdminNote] = None,
	) -> tuple[TransitionResult, models.Registration | None]:
		"""Cancel and, when a confirmed slot was freed, promote the next waitlisted entry.

		The event row must already be locked by the caller.
		"""
		result = await self.state_machine.cancel(conn, registration_id, note=note)
		promoted = None
		if result.freed_slot:
			promoted = await self.waitlist.promote_next(conn, event)
		await self.repo.enqueue_outbox(
			conn,
			aggregate_type="registration",
			aggregate_id=result.registration.id,
			event_type=events.REGISTRATION_CANCELLED,
			payload=events.registration_payload(result.registration),
		)
		return result, promoted

	@staticmethod
	def _participant(registration: models.Registration, extras: dict[str, Any]) -> models.Participant:
		return models.Participant(
			id=registration.user_id,
			name=extras.get("participant_name"),
			email=extras.get("participant_email"),
		)


__all__ = ["RSVPService"]
