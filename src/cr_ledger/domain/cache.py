"""Account balance cache.

  - Cache key: f"ledger:balance:{account_id}", short TTL
  - Write path: DB commit first, then cache invalidate (LedgerEngine)
  - Read path: cache-aside (check cache -> DB on miss -> populate cache)

The cached value is a view, never the source of truth. Redis failures are
logged and treated as a miss so balance reads fall through to PostgreSQL.
"""

import logging
from collections.abc import Awaitable, Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import settings

logger = logging.getLogger(__name__)

RedisFactory = Callable[[], Awaitable[aioredis.Redis]]


def balance_key(account_id: str) -> str:
    return f"ledger:balance:{account_id}"


class BalanceCache:
    def __init__(self, redis_factory: RedisFactory, ttl_seconds: int | None = None) -> None:
        self._redis_factory = redis_factory
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.BALANCE_CACHE_TTL_SECONDS

    async def get(self, account_id: str) -> int | None:
        try:
            redis = await self._redis_factory()
            raw = await redis.get(balance_key(account_id))
        except RedisError as exc:
            logger.warning("balance cache read failed for %s: %s", account_id, exc)
            return None
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("balance cache holds a non-integer for %s: %r", account_id, raw)
            return None

    async def put(self, account_id: str, balance: int) -> None:
        try:
            redis = await self._redis_factory()
            await redis.set(balance_key(account_id), balance, ex=self._ttl)
        except RedisError as exc:
            logger.warning("balance cache write failed for %s: %s", account_id, exc)

    async def invalidate(self, account_id: str) -> None:
        try:
            redis = await self._redis_factory()
            await redis.delete(balance_key(account_id))
        except RedisError as exc:
            # The TTL bounds staleness if the delete is lost
            logger.warning("balance cache invalidate failed for %s: %s", account_id, exc)
