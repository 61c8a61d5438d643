"""AsyncPG pool management and transaction helpers for the backend."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import asyncpg

from clubhub.obs import metrics as obs_metrics
from clubhub.settings import settings

_LOG = logging.getLogger(__name__)

_pool: Optional[asyncpg.pool.Pool] = None

T = TypeVar("T")

# Errors where re-running the whole transaction from scratch is safe.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
	asyncpg.exceptions.SerializationError,
	asyncpg.exceptions.DeadlockDetectedError,
	asyncpg.exceptions.LockNotAvailableError,
)


class StorageUnavailableError(Exception):
	"""Raised when a transaction keeps failing on transient storage errors."""


async def init_connection(conn: asyncpg.Connection) -> None:
	"""Decode jsonb columns into Python objects on every pooled connection."""
	await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		# Force 127.0.0.1 instead of localhost to avoid IPv6 issues on Windows
		dsn = settings.postgres_url.replace("localhost", "127.0.0.1")
		_pool = await asyncpg.create_pool(
			dsn=dsn,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			ssl="require" if settings.postgres_ssl else "disable",
			init=init_connection,
		)
	return _pool


def set_pool(pool: Optional[asyncpg.pool.Pool]) -> None:
	global _pool
	_pool = pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


async def run_in_transaction(
	func: Callable[[asyncpg.Connection], Awaitable[T]],
	*,
	name: str,
	attempts: int | None = None,
) -> T:
	"""Run ``func`` inside a fresh transaction, retrying on transient failures.

	The whole transaction is rolled back and re-executed on every retry, so
	``func`` must not have side effects outside the connection it is given.
	"""
	max_attempts = max(1, attempts or settings.db_retry_attempts)
	delay = settings.db_retry_base_delay_seconds
	pool = await get_pool()
	for attempt in range(1, max_attempts + 1):
		try:
			async with pool.acquire() as conn:
				async with conn.transaction():
					if settings.db_lock_timeout_ms > 0:
						await conn.execute(f"SET LOCAL lock_timeout = {int(settings.db_lock_timeout_ms)}")
					return await func(conn)
		except TRANSIENT_ERRORS as exc:
			obs_metrics.inc_tx_retry(name)
			if attempt >= max_attempts:
				_LOG.error(
					"postgres.transaction_exhausted",
					extra={"tx": name, "attempts": attempt, "error": type(exc).__name__},
				)
				raise StorageUnavailableError("storage_unavailable") from exc
			_LOG.warning(
				"postgres.transaction_retry",
				extra={"tx": name, "attempt": attempt, "error": type(exc).__name__},
			)
			await asyncio.sleep(delay * (2 ** (attempt - 1)))
	raise StorageUnavailableError("storage_unavailable")  # pragma: no cover
