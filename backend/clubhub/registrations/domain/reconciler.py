"""Keeps the event's cached participant counter equal to the live count."""

from __future__ import annotations

import logging
from uuid import UUID

import asyncpg

from clubhub.infra.postgres import run_in_transaction
from clubhub.obs import metrics as obs_metrics
from clubhub.registrations.domain import repo as repo_module

_LOG = logging.getLogger(__name__)


class CapacityReconciler:
	"""Recounts confirmed + attended registrations and overwrites the counter.

	Never increments or decrements, so running it again always converges on
	the live count regardless of earlier drift.
	"""

	def __init__(self, repository: repo_module.RegistrationRepository | None = None) -> None:
		self.repo = repository or repo_module.RegistrationRepository()

	async def reconcile(
		self,
		conn: asyncpg.Connection,
		event_id: UUID,
		*,
		source: str = "transition",
	) -> int | None:
		"""Rewrite the counter inside a savepoint of the caller's transaction.

		A failed write is rolled back to the savepoint and logged; the status
		change that triggered it still commits and the sweeper repairs the
		counter later. Returns the live count, or None when nothing was written.
		"""
		try:
			async with conn.transaction():
				result = await self.repo.recount_participants(conn, event_id)
		except asyncpg.PostgresError as exc:
			obs_metrics.inc_reconciliation_failure()
			_LOG.warning(
				"capacity_reconciler.failed",
				extra={"event_id": str(event_id), "source": source, "error": type(exc).__name__},
			)
			return None
		if result is None:
			return None
		live, previous = result
		if source != "transition" and live != previous:
			obs_metrics.inc_reconciliation_correction(source)
			_LOG.info(
				"capacity_reconciler.corrected",
				extra={"event_id": str(event_id), "source": source, "cached": previous, "live": live},
			)
		return live

	async def reconcile_event(self, event_id: UUID, *, source: str = "sweep") -> int | None:
		"""Standalone pass used by the background sweeper."""

		async def _runner(conn: asyncpg.Connection) -> int | None:
			event = await self.repo.get_event(conn, event_id, for_update=True)
			if event is None:
				return None
			return await self.reconcile(conn, event_id, source=source)

		return await run_in_transaction(_runner, name="reconcile_event")


__all__ = ["CapacityReconciler"]
