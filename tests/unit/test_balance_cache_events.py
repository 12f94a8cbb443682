"""BalanceCache and BalanceEventPublisher over a mocked Redis client."""

import json
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from src.cr_ledger.domain.cache import BalanceCache, balance_key
from src.cr_ledger.domain.events import BalanceChanged, BalanceEventPublisher
from src.cr_ledger.domain.models import LedgerEntry


def _factory(redis: AsyncMock):  # type: ignore[no-untyped-def]
    async def get_redis() -> AsyncMock:
        return redis

    return get_redis


def _entry(balance_after: int = 40) -> LedgerEntry:
    return LedgerEntry(
        entry_id="1",
        account_id="user-1",
        kind="debit_usage",
        amount=-5,
        balance_after=balance_after,
        account_version=3,
        idempotency_key="req-1",
    )


class TestBalanceCache:
    async def test_hit(self) -> None:
        redis = AsyncMock()
        redis.get.return_value = "560"
        cache = BalanceCache(_factory(redis), ttl_seconds=5)

        assert await cache.get("user-1") == 560
        redis.get.assert_awaited_once_with("ledger:balance:user-1")

    async def test_miss(self) -> None:
        redis = AsyncMock()
        redis.get.return_value = None
        assert await BalanceCache(_factory(redis)).get("user-1") is None

    async def test_put_uses_ttl(self) -> None:
        redis = AsyncMock()
        await BalanceCache(_factory(redis), ttl_seconds=7).put("user-1", 42)
        redis.set.assert_awaited_once_with(balance_key("user-1"), 42, ex=7)

    async def test_redis_down_reads_as_miss(self) -> None:
        redis = AsyncMock()
        redis.get.side_effect = RedisConnectionError("refused")
        assert await BalanceCache(_factory(redis)).get("user-1") is None

    async def test_corrupt_value_reads_as_miss(self) -> None:
        redis = AsyncMock()
        redis.get.return_value = "not-a-number"
        assert await BalanceCache(_factory(redis)).get("user-1") is None

    async def test_invalidate_failure_is_swallowed(self) -> None:
        redis = AsyncMock()
        redis.delete.side_effect = RedisConnectionError("refused")
        await BalanceCache(_factory(redis)).invalidate("user-1")
        redis.delete.assert_awaited_once()


class TestBalanceEvents:
    def test_low_balance_flag(self) -> None:
        assert BalanceChanged.from_entry(_entry(49), 50).low_balance is True
        assert BalanceChanged.from_entry(_entry(50), 50).low_balance is False

    async def test_publish(self) -> None:
        redis = AsyncMock()
        publisher = BalanceEventPublisher(_factory(redis), channel="test:balance")

        await publisher.publish(BalanceChanged.from_entry(_entry(), 50))

        channel, message = redis.publish.await_args.args
        assert channel == "test:balance"
        assert json.loads(message) == {
            "account_id": "user-1",
            "entry_id": "1",
            "kind": "debit_usage",
            "amount": -5,
            "balance_after": 40,
            "low_balance": True,
        }

    async def test_publish_failure_is_swallowed(self) -> None:
        redis = AsyncMock()
        redis.publish.side_effect = RedisConnectionError("refused")
        await BalanceEventPublisher(_factory(redis)).publish(BalanceChanged.from_entry(_entry(), 50))
