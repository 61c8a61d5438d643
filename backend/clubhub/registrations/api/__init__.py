"""FastAPI routers for the registrations domain."""

from __future__ import annotations

from fastapi import APIRouter

from clubhub.registrations.api import rsvps

router = APIRouter(prefix="/api")

router.include_router(rsvps.router)

__all__ = ["router"]
