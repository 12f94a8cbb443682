"""Domain events for cr_ledger.

BalanceChanged is published on Redis Pub/Sub after every committed ledger
entry so notifications (low-balance warnings, purchase confirmations) stay
decoupled from the balance logic. Publishing is best effort: the ledger
result never depends on it.
"""

import json
import logging
from dataclasses import asdict, dataclass

from redis.exceptions import RedisError

from config.settings import settings
from src.cr_ledger.domain.cache import RedisFactory
from src.cr_ledger.domain.models import LedgerEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceChanged:
    account_id: str
    entry_id: str
    kind: str
    amount: int
    balance_after: int
    low_balance: bool

    @classmethod
    def from_entry(cls, entry: LedgerEntry, low_balance_threshold: int) -> "BalanceChanged":
        return cls(
            account_id=entry.account_id,
            entry_id=entry.entry_id,
            kind=entry.kind,
            amount=entry.amount,
            balance_after=entry.balance_after,
            low_balance=entry.balance_after < low_balance_threshold,
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self))


class BalanceEventPublisher:
    def __init__(self, redis_factory: RedisFactory, channel: str | None = None) -> None:
        self._redis_factory = redis_factory
        self._channel = channel or settings.BALANCE_EVENTS_CHANNEL

    async def publish(self, event: BalanceChanged) -> None:
        try:
            redis = await self._redis_factory()
            await redis.publish(self._channel, event.to_json())
        except RedisError as exc:
            logger.warning(
                "BalanceChanged publish failed for %s (entry %s): %s",
                event.account_id, event.entry_id, exc,
            )
