"""Fixed-window rate limiting backed by Redis counters."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from clubhub.infra.redis import redis_client


@dataclass(frozen=True, slots=True)
class RateLimitResult:
	allowed: bool
	count: int
	retry_after: int


async def hit(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> RateLimitResult:
	"""Count one attempt in the current window.

	``retry_after`` is the number of seconds until the window rolls over.
	"""
	window = max(1, int(window_seconds))
	now = now if now is not None else time.time()
	window_start = int(now // window) * window
	key = f"rl:{kind}:{actor_id}:{window_start}"
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window)
		count, _ = await pipe.execute()
	retry_after = max(1, window_start + window - int(now))
	return RateLimitResult(allowed=int(count) <= limit, count=int(count), retry_after=retry_after)

