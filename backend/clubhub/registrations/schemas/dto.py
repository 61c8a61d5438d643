"""Pydantic DTOs for the registrations API.

JSON bodies use the web client's camelCase keys; snake_case is accepted too.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import Field

from clubhub.registrations.domain import models, stats
from clubhub.registrations.domain.models import (
	AdditionalInfo,
	AdminNote,
	CamelModel,
	ContactInfo,
	CustomFieldValue,
	EmergencyContact,
	Participant,
	Payment,
	RegistrationSource,
	RegistrationStatus,
	TeamMember,
	TShirtSize,
	EMAIL_PATTERN,
	PHONE_PATTERN,
)


class RegistrationCreateRequest(CamelModel):
	event_id: UUID
	contact_info: ContactInfo
	additional_info: AdditionalInfo = Field(default_factory=AdditionalInfo)
	notes: Optional[str] = Field(default=None, max_length=1000)
	source: RegistrationSource = RegistrationSource.WEBSITE


class ContactInfoUpdate(CamelModel):
	email: Optional[str] = Field(default=None, max_length=254, pattern=EMAIL_PATTERN)
	phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
	emergency_contact: Optional[EmergencyContact] = None


class AdditionalInfoUpdate(CamelModel):
	team_name: Optional[str] = Field(default=None, max_length=100)
	team_members: Optional[List[TeamMember]] = Field(default=None, max_length=20)
	dietary_restrictions: Optional[List[str]] = Field(default=None, max_length=20)
	special_needs: Optional[str] = Field(default=None, max_length=500)
	tshirt_size: Optional[TShirtSize] = None
	accommodation_needed: Optional[bool] = None
	custom_fields: Optional[Dict[str, CustomFieldValue]] = Field(default=None, max_length=50)


class RegistrationUpdateRequest(CamelModel):
	"""Partial update; provided keys are merged into the stored info."""

	contact_info: Optional[ContactInfoUpdate] = None
	additional_info: Optional[AdditionalInfoUpdate] = None
	status: Optional[RegistrationStatus] = None
	admin_note: Optional[str] = Field(default=None, min_length=1, max_length=500)


class CheckInRequest(CamelModel):
	check_in_code: Optional[str] = Field(default=None, max_length=32)


class PaymentConfirmRequest(CamelModel):
	transaction_id: Optional[str] = Field(default=None, max_length=128)
	payment_method: Optional[str] = Field(default=None, max_length=50)


class EventSummary(CamelModel):
	id: UUID
	title: str
	starts_at: Optional[datetime] = None
	venue: Optional[str] = None


class RegistrationResponse(CamelModel):
	id: UUID
	registration_id: str
	event_id: UUID
	user_id: UUID
	status: RegistrationStatus
	contact_info: ContactInfo
	additional_info: AdditionalInfo
	payment: Payment
	check_in_code: str
	registered_at: datetime
	confirmed_at: Optional[datetime] = None
	cancelled_at: Optional[datetime] = None
	attended_at: Optional[datetime] = None
	admin_notes: List[AdminNote] = Field(default_factory=list)
	notes: Optional[str] = None
	source: RegistrationSource = RegistrationSource.WEBSITE
	event: Optional[EventSummary] = None
	participant: Optional[Participant] = None


class RegistrationCreateResponse(CamelModel):
	registration: RegistrationResponse
	waitlisted: bool
	message: str


class Pagination(CamelModel):
	current_page: int
	total_pages: int
	total_count: int
	has_next: bool
	has_prev: bool

	@classmethod
	def build(cls, *, page: int, limit: int, total: int) -> "Pagination":
		total_pages = (total + limit - 1) // limit if limit > 0 else 0
		return cls(
			current_page=page,
			total_pages=total_pages,
			total_count=total,
			has_next=page < total_pages,
			has_prev=page > 1,
		)


class MyRegistrationsResponse(CamelModel):
	registrations: List[RegistrationResponse]
	pagination: Pagination


class StatusBreakdownResponse(CamelModel):
	total: int = 0
	pending: int = 0
	confirmed: int = 0
	cancelled: int = 0
	waitlist: int = 0
	attended: int = 0
	no_show: int = 0


class EventRegistrationsResponse(CamelModel):
	registrations: List[RegistrationResponse]
	stats: StatusBreakdownResponse
	pagination: Pagination


class ExportRow(CamelModel):
	registration_id: str
	name: Optional[str] = None
	email: str
	phone: Optional[str] = None
	status: RegistrationStatus
	registered_at: datetime
	team_name: str = ""
	special_needs: str = ""
	payment_status: models.PaymentStatus


class EventRegistrationsExport(CamelModel):
	data: List[ExportRow]
	count: int


class CancelResponse(CamelModel):
	registration: RegistrationResponse
	waitlist_promoted: bool
	promoted_registration_id: Optional[UUID] = None


class CheckInResponse(CamelModel):
	registration: RegistrationResponse
	event: EventSummary
	participant: Optional[Participant] = None
	message: str = "checked_in"


class QRData(CamelModel):
	registration_id: str
	check_in_code: str
	event_id: UUID
	user_id: UUID
	event_title: Optional[str] = None


class QRCodeResponse(CamelModel):
	check_in_code: str
	qr_data: QRData


class AvailabilityResponse(CamelModel):
	available: bool
	remaining: Optional[int] = None
	total: Optional[int] = None
	confirmed: int


class DailyTrendPoint(CamelModel):
	date: str
	count: int


class EventStatsSummary(CamelModel):
	title: str
	max_participants: Optional[int] = None
	current_participants: int = 0
	registration_fee: float = 0.0


class EventStatsResponse(CamelModel):
	stats: StatusBreakdownResponse
	availability: AvailabilityResponse
	daily_trend: List[DailyTrendPoint]
	event: EventStatsSummary


class PaymentConfirmResponse(CamelModel):
	registration: RegistrationResponse


def registration_response(
	registration: models.Registration,
	*,
	event: Optional[EventSummary] = None,
	participant: Optional[Participant] = None,
) -> RegistrationResponse:
	return RegistrationResponse(
		id=registration.id,
		registration_id=registration.registration_id,
		event_id=registration.event_id,
		user_id=registration.user_id,
		status=registration.status,
		contact_info=registration.contact_info,
		additional_info=registration.additional_info,
		payment=registration.payment,
		check_in_code=registration.check_in_code,
		registered_at=registration.registered_at,
		confirmed_at=registration.confirmed_at,
		cancelled_at=registration.cancelled_at,
		attended_at=registration.attended_at,
		admin_notes=registration.admin_notes,
		notes=registration.notes,
		source=registration.source,
		event=event,
		participant=participant,
	)


def event_summary(event: models.Event) -> EventSummary:
	return EventSummary(id=event.id, title=event.title, starts_at=event.starts_at, venue=event.venue)


def breakdown_response(breakdown: stats.StatusBreakdown) -> StatusBreakdownResponse:
	return StatusBreakdownResponse(
		total=breakdown.total,
		pending=breakdown.pending,
		confirmed=breakdown.confirmed,
		cancelled=breakdown.cancelled,
		waitlist=breakdown.waitlist,
		attended=breakdown.attended,
		no_show=breakdown.no_show,
	)
