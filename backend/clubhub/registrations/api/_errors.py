"""Error translation helpers for the registrations API."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from clubhub.infra.postgres import StorageUnavailableError
from clubhub.registrations.domain import exceptions

_LOG = logging.getLogger(__name__)


def to_http_error(exc: Exception) -> HTTPException:
	"""Translate domain exceptions to FastAPI HTTP errors."""
	if isinstance(exc, HTTPException):
		return exc
	if isinstance(exc, exceptions.RateLimitedError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail, headers={"Retry-After": str(exc.retry_after)})
	if isinstance(exc, exceptions.RegistrationError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	if isinstance(exc, StorageUnavailableError):
		return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="storage_unavailable")
	_LOG.exception("registrations.unhandled_error", exc_info=exc)
	return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal_error")
