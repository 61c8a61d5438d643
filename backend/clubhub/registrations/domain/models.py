"""Domain models for event registrations."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from pydantic.alias_generators import to_camel

# Same acceptance rules as the web client's registration form.
EMAIL_PATTERN = r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$"
PHONE_PATTERN = r"^\d{10}$"


class RegistrationStatus(str, Enum):
	PENDING = "pending"
	CONFIRMED = "confirmed"
	CANCELLED = "cancelled"
	WAITLIST = "waitlist"
	ATTENDED = "attended"
	NO_SHOW = "no-show"


# Statuses that occupy a capacity slot.
CAPACITY_STATUSES = frozenset({RegistrationStatus.CONFIRMED, RegistrationStatus.ATTENDED})
TERMINAL_STATUSES = frozenset(
	{RegistrationStatus.CANCELLED, RegistrationStatus.ATTENDED, RegistrationStatus.NO_SHOW}
)


class PaymentStatus(str, Enum):
	PENDING = "pending"
	COMPLETED = "completed"
	FAILED = "failed"
	REFUNDED = "refunded"


class RegistrationSource(str, Enum):
	WEBSITE = "website"
	MOBILE_APP = "mobile_app"
	SOCIAL_MEDIA = "social_media"
	WORD_OF_MOUTH = "word_of_mouth"
	OTHER = "other"


class TShirtSize(str, Enum):
	XS = "XS"
	S = "S"
	M = "M"
	L = "L"
	XL = "XL"
	XXL = "XXL"


CustomFieldValue = Union[bool, int, float, str, None]


class CamelModel(BaseModel):
	"""Base model accepting both snake_case and the web client's camelCase keys."""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class EmergencyContact(CamelModel):
	name: Optional[str] = Field(default=None, max_length=100)
	phone: Optional[str] = Field(default=None, max_length=20)
	relation: Optional[str] = Field(default=None, max_length=50)


class ContactInfo(CamelModel):
	email: str = Field(..., max_length=254, pattern=EMAIL_PATTERN)
	phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
	emergency_contact: Optional[EmergencyContact] = None


class TeamMember(CamelModel):
	name: str = Field(..., min_length=1, max_length=100)
	email: Optional[str] = Field(default=None, max_length=254, pattern=EMAIL_PATTERN)
	phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
	role: Optional[str] = Field(default=None, max_length=50)


class AdditionalInfo(CamelModel):
	team_name: Optional[str] = Field(default=None, max_length=100)
	team_members: List[TeamMember] = Field(default_factory=list, max_length=20)
	dietary_restrictions: List[str] = Field(default_factory=list, max_length=20)
	special_needs: Optional[str] = Field(default=None, max_length=500)
	tshirt_size: Optional[TShirtSize] = None
	accommodation_needed: bool = False
	custom_fields: Dict[str, CustomFieldValue] = Field(default_factory=dict, max_length=50)

	@model_validator(mode="after")
	def _team_members_need_team(self) -> "AdditionalInfo":
		if self.team_members and not self.team_name:
			raise ValueError("team_name is required when team members are listed")
		return self


class Payment(CamelModel):
	amount: Decimal = Decimal("0")
	status: PaymentStatus = PaymentStatus.PENDING
	transaction_id: Optional[str] = None
	payment_method: Optional[str] = None
	paid_at: Optional[datetime] = None

	@field_serializer("amount")
	def _amount_as_number(self, value: Decimal) -> float:
		return float(value)


class AdminNote(CamelModel):
	note: str
	added_by: UUID
	added_at: datetime


class Event(CamelModel):
	"""Snapshot of the catalog fields admission depends on."""

	id: UUID
	title: str
	starts_at: Optional[datetime] = None
	venue: Optional[str] = None
	max_participants: Optional[int] = Field(default=None, ge=0)
	current_participants: int = 0
	registration_start_date: datetime
	registration_end_date: datetime
	registration_fee: Decimal = Decimal("0")
	organizer_ids: List[UUID] = Field(default_factory=list)
	is_active: bool = True

	@field_serializer("registration_fee")
	def _fee_as_number(self, value: Decimal) -> float:
		return float(value)

	def is_organizer(self, user_id: UUID | str) -> bool:
		return str(user_id) in {str(uid) for uid in self.organizer_ids}


class Registration(CamelModel):
	"""One user's registration for one event."""

	id: UUID
	event_id: UUID
	user_id: UUID
	status: RegistrationStatus
	contact_info: ContactInfo
	additional_info: AdditionalInfo = Field(default_factory=AdditionalInfo)
	payment: Payment = Field(default_factory=Payment)
	check_in_code: str
	registered_at: datetime
	confirmed_at: Optional[datetime] = None
	cancelled_at: Optional[datetime] = None
	attended_at: Optional[datetime] = None
	admin_notes: List[AdminNote] = Field(default_factory=list)
	notes: Optional[str] = None
	source: RegistrationSource = RegistrationSource.WEBSITE
	updated_at: Optional[datetime] = None

	@property
	def registration_id(self) -> str:
		return format_registration_id(self.event_id, self.id)

	@property
	def holds_slot(self) -> bool:
		return self.status in CAPACITY_STATUSES

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "Registration":
		"""Build from a flat ``event_registration`` row."""
		data = dict(record)
		data["payment"] = {
			"amount": data.pop("payment_amount", Decimal("0")) or Decimal("0"),
			"status": data.pop("payment_status", PaymentStatus.PENDING.value),
			"transaction_id": data.pop("payment_transaction_id", None),
			"payment_method": data.pop("payment_method", None),
			"paid_at": data.pop("paid_at", None),
		}
		data["contact_info"] = data.get("contact_info") or {}
		data["additional_info"] = data.get("additional_info") or {}
		data["admin_notes"] = data.get("admin_notes") or []
		return cls.model_validate(data)


class Participant(CamelModel):
	"""Display fields for the registrant, owned by the identity service."""

	id: UUID
	name: Optional[str] = None
	email: Optional[str] = None


def format_registration_id(event_id: UUID, registration_id: UUID) -> str:
	"""Human friendly id printed on receipts, e.g. ``REG-1A2B3C-4D5E6F``."""
	event_tail = event_id.hex[-6:].upper()
	reg_tail = registration_id.hex[-6:].upper()
	return f"REG-{event_tail}-{reg_tail}"
