"""FastAPI application entrypoint for the registrations service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clubhub.api import ops
from clubhub.api.errors import install_error_handlers
from clubhub.infra import postgres
from clubhub.infra.redis import redis_client
from clubhub.infra.scheduler import JobScheduler
from clubhub.obs import setup as setup_observability
from clubhub.registrations.api import router as registrations_router
from clubhub.registrations.workers.reconciliation_sweeper import ReconciliationSweeper
from clubhub.settings import settings

_LOG = logging.getLogger(__name__)

DEV_ORIGINS = [
	"http://localhost:3000",
	"http://127.0.0.1:3000",
	"http://localhost:5173",
	"http://127.0.0.1:5173",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	scheduler: JobScheduler | None = None
	if settings.reconcile_enabled:
		sweeper = ReconciliationSweeper(batch_size=settings.reconcile_batch_size)
		scheduler = JobScheduler()
		scheduler.start()
		scheduler.schedule_every(
			"capacity-reconciliation",
			sweeper.run_once,
			seconds=settings.reconcile_interval_seconds,
		)
		app.state.reconciliation_scheduler = scheduler
	_LOG.info("app.started", extra={"service": settings.service_name, "commit": settings.git_commit})
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		await postgres.close_pool()
		await redis_client.close()


def _allowed_origins() -> list[str]:
	if settings.cors_allow_origins:
		return list(settings.cors_allow_origins)
	if settings.is_dev():
		return DEV_ORIGINS
	return []


def create_app() -> FastAPI:
	application = FastAPI(title="ClubHub Registrations", lifespan=lifespan)
	install_error_handlers(application)
	application.add_middleware(
		CORSMiddleware,
		allow_origins=_allowed_origins(),
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	setup_observability(application)
	application.include_router(ops.router)
	application.include_router(registrations_router)
	return application


app = create_app()
