"""Liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Tuple

from clubhub.infra import postgres
from clubhub.infra.redis import redis_client
from clubhub.obs import metrics
from clubhub.settings import settings

_LOG = logging.getLogger(__name__)


async def _timed(name: str, probe: Callable[[], Awaitable[Any]], timeout: float) -> Tuple[Dict[str, Any], Any]:
	start = perf_counter()
	try:
		result = await asyncio.wait_for(probe(), timeout=timeout)
	except Exception as exc:
		_LOG.warning("health.check_failed", extra={"check": name, "error": type(exc).__name__})
		return {"ok": False, "error": str(exc) or type(exc).__name__}, None
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2)}, result


def _latency_seconds(state: Dict[str, Any]) -> float | None:
	return state["latency_ms"] / 1000 if state["ok"] else None


async def _check_redis() -> Dict[str, Any]:
	# rate limiting fails closed without Redis, so registration is not ready either
	state, _ = await _timed("redis", redis_client.ping, timeout=0.2)
	metrics.mark_redis(state["ok"], latency_seconds=_latency_seconds(state))
	return state


async def _check_postgres() -> Tuple[Dict[str, Any], Dict[str, Any]]:
	"""Connectivity plus the applied schema version, over one pooled connection."""

	async def _probe() -> Any:
		pool = await postgres.get_pool()
		async with pool.acquire() as conn:
			await conn.execute("SELECT 1")
			return await conn.fetchval("SELECT version FROM schema_migrations ORDER BY version DESC LIMIT 1")

	state, version = await _timed("postgres", _probe, timeout=0.5)
	metrics.mark_postgres(state["ok"], latency_seconds=_latency_seconds(state))
	if not state["ok"]:
		return state, {"ok": False, "error": "postgres_unavailable"}
	if version is None:
		return state, {"ok": False, "error": "no_migrations"}
	current = str(version)
	required = settings.health_min_migration
	return state, {"ok": current >= required, "version": current, "required": required}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state = await _check_redis()
	postgres_state, migration_state = await _check_postgres()
	ok = redis_state["ok"] and postgres_state["ok"] and migration_state["ok"]
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"checks": {"redis": redis_state, "postgres": postgres_state, "migrations": migration_state},
		},
	)
