"""Shared Redis client used by the registration rate limiter.

Modules import ``redis_client`` once; tests point it at fakeredis through
``set_redis_client`` and every earlier import sees the swap.
"""

from __future__ import annotations

import redis.asyncio as redis

from clubhub.settings import settings


class RedisProxy:
	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	async def close(self) -> None:
		await self._client.aclose()

	def __getattr__(self, item):
		return getattr(self._client, item)


redis_client: RedisProxy = RedisProxy(redis.from_url(settings.redis_url, decode_responses=True))


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
