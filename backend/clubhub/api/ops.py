"""Health probes and the Prometheus scrape endpoint."""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from clubhub.obs import health
from clubhub.settings import settings

router = APIRouter(tags=["ops"])


def _presented_token(x_admin_token: Optional[str], authorization: Optional[str]) -> str:
	if x_admin_token:
		return x_admin_token
	scheme, _, value = (authorization or "").partition(" ")
	return value.strip() if scheme.lower() == "bearer" else ""


async def metrics_guard(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	"""Metrics are private unless published explicitly; an unset token locks them."""
	if settings.obs_metrics_public:
		return
	expected = settings.obs_admin_token
	if not expected:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	presented = _presented_token(x_admin_token, authorization)
	if not secrets.compare_digest(presented.encode(), expected.encode()):
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


@router.get("/health/live")
async def live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready")
async def ready() -> JSONResponse:
	code, body = await health.readiness()
	return JSONResponse(status_code=code, content=body)


@router.get("/metrics", dependencies=[Depends(metrics_guard)])
async def scrape() -> Response:
	return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
