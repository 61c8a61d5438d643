"""RSVP API endpoints."""

from __future__ import annotations

from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status

from clubhub.infra.auth import (
	STAFF_ROLES,
	AuthenticatedUser,
	get_admin_user,
	get_current_user,
	require_roles,
)
from clubhub.registrations.api._errors import to_http_error
from clubhub.registrations.domain.models import RegistrationStatus
from clubhub.registrations.domain.rsvp_service import RSVPService
from clubhub.registrations.schemas import dto

router = APIRouter(prefix="/rsvp", tags=["registrations:rsvp"])
_service = RSVPService()
_staff_user = require_roles(*STAFF_ROLES)


@router.post("", response_model=dto.RegistrationCreateResponse, status_code=status.HTTP_201_CREATED)
async def register_endpoint(
	payload: dto.RegistrationCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.RegistrationCreateResponse:
	try:
		return await _service.register(auth_user, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get("/my-registrations", response_model=dto.MyRegistrationsResponse)
async def my_registrations_endpoint(
	status_filter: Optional[RegistrationStatus] = Query(default=None, alias="status"),
	page: int = Query(default=1, ge=1),
	limit: int = Query(default=10, ge=1, le=100),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MyRegistrationsResponse:
	try:
		return await _service.list_my_registrations(auth_user, status=status_filter, page=page, limit=limit)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get(
	"/event/{event_id}",
	response_model=Union[dto.EventRegistrationsResponse, dto.EventRegistrationsExport],
)
async def event_registrations_endpoint(
	event_id: UUID,
	status_filter: Optional[RegistrationStatus] = Query(default=None, alias="status"),
	page: int = Query(default=1, ge=1),
	limit: int = Query(default=50, ge=1, le=500),
	export: bool = Query(default=False),
	auth_user: AuthenticatedUser = Depends(_staff_user),
) -> Union[dto.EventRegistrationsResponse, dto.EventRegistrationsExport]:
	try:
		if export:
			return await _service.export_event_registrations(auth_user, event_id, status=status_filter)
		return await _service.list_event_registrations(
			auth_user,
			event_id,
			status=status_filter,
			page=page,
			limit=limit,
		)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get("/stats/{event_id}", response_model=dto.EventStatsResponse)
async def event_stats_endpoint(
	event_id: UUID,
	auth_user: AuthenticatedUser = Depends(_staff_user),
) -> dto.EventStatsResponse:
	try:
		return await _service.event_stats(auth_user, event_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.put("/{rsvp_id}", response_model=dto.RegistrationResponse)
async def update_registration_endpoint(
	rsvp_id: UUID,
	payload: dto.RegistrationUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.RegistrationResponse:
	try:
		return await _service.update_registration(auth_user, rsvp_id, payload)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.delete("/{rsvp_id}", response_model=dto.CancelResponse)
async def cancel_registration_endpoint(
	rsvp_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.CancelResponse:
	try:
		return await _service.cancel_registration(auth_user, rsvp_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/{rsvp_id}/check-in", response_model=dto.CheckInResponse)
async def check_in_endpoint(
	rsvp_id: UUID,
	payload: Optional[dto.CheckInRequest] = Body(default=None),
	auth_user: AuthenticatedUser = Depends(_staff_user),
) -> dto.CheckInResponse:
	try:
		return await _service.check_in(auth_user, rsvp_id, payload or dto.CheckInRequest())
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.get("/{rsvp_id}/qr-code", response_model=dto.QRCodeResponse)
async def qr_code_endpoint(
	rsvp_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.QRCodeResponse:
	try:
		return await _service.qr_code(auth_user, rsvp_id)
	except Exception as exc:
		raise to_http_error(exc) from exc


@router.post("/{rsvp_id}/confirm-payment", response_model=dto.PaymentConfirmResponse)
async def confirm_payment_endpoint(
	rsvp_id: UUID,
	payload: Optional[dto.PaymentConfirmRequest] = Body(default=None),
	auth_user: AuthenticatedUser = Depends(get_admin_user),
) -> dto.PaymentConfirmResponse:
	try:
		return await _service.confirm_payment(auth_user, rsvp_id, payload or dto.PaymentConfirmRequest())
	except Exception as exc:
		raise to_http_error(exc) from exc
