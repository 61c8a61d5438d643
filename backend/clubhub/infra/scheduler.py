"""Interval jobs (counter reconciliation) on the application's event loop."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from apscheduler.events import EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

_LOG = logging.getLogger(__name__)


class JobScheduler:
    def __init__(self) -> None:
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self.running:
            self._scheduler.start()

    def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)

    def schedule_every(self, job_id: str, func: Callable[[], Awaitable[object]], *, seconds: int) -> None:
        """(Re)register ``func``; a slow run is never overlapped by the next tick."""
        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=max(1, seconds)),
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    @staticmethod
    def _on_job_error(event: JobExecutionEvent) -> None:
        _LOG.error("scheduler.job_failed", extra={"job_id": event.job_id, "error": repr(event.exception)})


__all__ = ["JobScheduler"]
