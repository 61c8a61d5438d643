"""Background worker repairing drifted participant counters."""

from __future__ import annotations

import logging
import time

from clubhub.infra.postgres import get_pool
from clubhub.obs import metrics as obs_metrics
from clubhub.registrations.domain import repo as repo_module
from clubhub.registrations.domain.reconciler import CapacityReconciler

_LOG = logging.getLogger(__name__)

JOB_NAME = "capacity_reconciliation"


class ReconciliationSweeper:
	"""Finds events whose cached counter disagrees with the live count and rewrites it.

	This is the retry path for counter writes that failed during a
	transition; it is scheduled periodically and is safe to run concurrently
	with live traffic because each repair locks the event row.
	"""

	def __init__(
		self,
		*,
		repository: repo_module.RegistrationRepository | None = None,
		reconciler: CapacityReconciler | None = None,
		batch_size: int = 50,
	) -> None:
		self.repo = repository or repo_module.RegistrationRepository()
		self.reconciler = reconciler or CapacityReconciler(self.repo)
		self.batch_size = batch_size

	async def process_once(self) -> int:
		pool = await get_pool()
		async with pool.acquire() as conn:
			event_ids = await self.repo.list_drifted_events(conn, limit=self.batch_size)
		repaired = 0
		for event_id in event_ids:
			try:
				live = await self.reconciler.reconcile_event(event_id, source="sweep")
			except Exception:  # pragma: no cover - logged and retried next run
				_LOG.exception("reconciliation_sweeper.failed", extra={"event_id": str(event_id)})
				continue
			if live is not None:
				repaired += 1
		return repaired

	async def run_once(self) -> int:
		"""Entry point for the scheduler; records job metrics."""
		start = time.perf_counter()
		try:
			repaired = await self.process_once()
		except Exception:
			obs_metrics.record_job_run(JOB_NAME, result="error", duration_seconds=time.perf_counter() - start)
			_LOG.exception("reconciliation_sweeper.run_failed")
			return 0
		obs_metrics.record_job_run(JOB_NAME, result="ok", duration_seconds=time.perf_counter() - start)
		if repaired:
			_LOG.info("reconciliation_sweeper.repaired", extra={"events": repaired})
		return repaired


__all__ = ["ReconciliationSweeper"]
